# refcount_checker/errors.py
"""
Error types raised while checking a function, and the structured record
the engine hands back instead of letting them escape.

Hierarchy
─────────
    RefcheckError (base)
    ├── UnsupportedConstruct        - node/type shape outside the model
    ├── AnalysisLimitation          - e.g. pointee class cannot be resolved
    └── RefcountInvariantViolation  - leaks, bad returns, merge conflicts

Only ``RefcountInvariantViolation`` is build-breaking.  The other two are
``recoverable``: the driver records them and moves on to the next function.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, unique
from typing import Any, ClassVar, Dict, Optional

from refcount_checker.nodes import Location


@unique
class ViolationKind(Enum):
    UNSUPPORTED_CONSTRUCT = "unsupported-construct"
    REFCOUNT_INVARIANT = "refcount-invariant"
    ANALYSIS_LIMITATION = "analysis-limitation"


# Error ids, grouped by kind.
REFCOUNT_LEAK = "refcountLeak"
RETURN_WITHOUT_REFERENCE = "returnWithoutReference"
UNSAFE_CALL = "unsafeCallWithOwnedRef"
CONDITION_LEAK = "conditionLeak"
MERGE_REFCOUNT_MISMATCH = "mergeRefcountMismatch"
MERGE_UNBOUND_REFERENCE = "mergeUnboundReference"
MERGE_ORPHANED_REFERENCE = "mergeOrphanedReference"
MERGE_UNKNOWN_KIND = "mergeUnknownKind"
TERNARY_MISMATCH = "ternaryBranchMismatch"
UNTRACKED_LOCAL = "untrackedLocal"
REDECLARED_VARIABLE = "redeclaredVariable"
UNSUPPORTED_CONSTRUCT = "unsupportedConstruct"
UNRESOLVED_POINTEE = "unresolvedPointee"


class RefcheckError(Exception):
    """Base class; carries an error id and the offending location."""

    kind: ClassVar[ViolationKind] = ViolationKind.REFCOUNT_INVARIANT
    recoverable: ClassVar[bool] = False
    default_error_id: ClassVar[str] = ""

    def __init__(
        self,
        message: str,
        location: Optional[Location] = None,
        error_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location or Location()
        self.error_id = error_id or self.default_error_id

    def __str__(self) -> str:
        return f"{self.location}: {self.message} [{self.error_id}]"


class UnsupportedConstruct(RefcheckError):
    kind = ViolationKind.UNSUPPORTED_CONSTRUCT
    recoverable = True
    default_error_id = UNSUPPORTED_CONSTRUCT


class AnalysisLimitation(RefcheckError):
    kind = ViolationKind.ANALYSIS_LIMITATION
    recoverable = True
    default_error_id = UNRESOLVED_POINTEE


class RefcountInvariantViolation(RefcheckError):
    kind = ViolationKind.REFCOUNT_INVARIANT
    recoverable = False
    default_error_id = REFCOUNT_LEAK


@dataclass(frozen=True)
class Violation:
    """One failed function check, as returned to the driver."""
    location: Location
    function_name: str
    kind: ViolationKind
    error_id: str
    message: str

    @property
    def recoverable(self) -> bool:
        return self.kind is not ViolationKind.REFCOUNT_INVARIANT

    @classmethod
    def from_error(cls, exc: RefcheckError, function_name: str) -> Violation:
        return cls(
            location=exc.location,
            function_name=function_name,
            kind=exc.kind,
            error_id=exc.error_id,
            message=exc.message,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.location.file,
            "line": self.location.line,
            "column": self.location.column,
            "function": self.function_name,
            "kind": self.kind.value,
            "errorId": self.error_id,
            "message": self.message,
        }

    def __str__(self) -> str:
        return f"{self.location}: in '{self.function_name}': {self.message}"
