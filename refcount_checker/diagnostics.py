"""
refcount_checker/diagnostics.py
═══════════════════════════════

Diagnostic model for refcount findings, serialisable in cppcheck's JSON
addon protocol or GCC style, plus suppression handling.

Refcount invariant violations are reported as errors.  Functions the
engine had to give up on (unsupported constructs, unresolvable types) are
reported at information level so they show up without failing the run.
"""

from __future__ import annotations

import json
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from fnmatch import fnmatch
from typing import Any, Dict, Iterable, List, Set, Tuple

from termcolor import colored

from refcount_checker.errors import Violation, ViolationKind
from refcount_checker.nodes import Location

ADDON_NAME = "refcount-checker"


class DiagnosticSeverity(Enum):
    """cppcheck-compatible severity levels."""
    ERROR = "error"
    WARNING = "warning"
    STYLE = "style"
    INFORMATION = "information"

    @property
    def color(self) -> str:
        return _SEVERITY_COLORS[self]


_SEVERITY_COLORS = {
    DiagnosticSeverity.ERROR: "red",
    DiagnosticSeverity.WARNING: "yellow",
    DiagnosticSeverity.STYLE: "cyan",
    DiagnosticSeverity.INFORMATION: "blue",
}

_SEVERITY_BY_KIND = {
    ViolationKind.REFCOUNT_INVARIANT: DiagnosticSeverity.ERROR,
    ViolationKind.UNSUPPORTED_CONSTRUCT: DiagnosticSeverity.INFORMATION,
    ViolationKind.ANALYSIS_LIMITATION: DiagnosticSeverity.INFORMATION,
}


@dataclass(frozen=True)
class Diagnostic:
    """
    A single finding.

    Attributes
    ----------
    error_id      : e.g. "refcountLeak"
    message       : human-readable description
    severity      : DiagnosticSeverity
    location      : primary source location
    function_name : function being checked
    kind          : ViolationKind the finding came from
    """
    error_id: str
    message: str
    severity: DiagnosticSeverity
    location: Location
    function_name: str = ""
    kind: ViolationKind = ViolationKind.REFCOUNT_INVARIANT
    addon: str = ADDON_NAME

    @classmethod
    def from_violation(cls, violation: Violation) -> Diagnostic:
        return cls(
            error_id=violation.error_id,
            message=f"in '{violation.function_name}': {violation.message}",
            severity=_SEVERITY_BY_KIND[violation.kind],
            location=violation.location.spelling(),
            function_name=violation.function_name,
            kind=violation.kind,
        )

    def to_cppcheck_json(self) -> Dict[str, Any]:
        """Serialize to cppcheck's JSON addon output format."""
        return {
            "file": self.location.file,
            "linenr": self.location.line,
            "column": self.location.column,
            "severity": self.severity.value,
            "message": self.message,
            "addon": self.addon,
            "errorId": self.error_id,
            "extra": self.kind.value,
        }

    def to_json_str(self) -> str:
        return json.dumps(self.to_cppcheck_json())

    def to_gcc_format(self) -> str:
        """GCC-style diagnostic string: file:line:col: severity: message."""
        return f"{self.location}: {self.severity.value}: {self.message} [{self.error_id}]"

    def render_terminal(self) -> str:
        """Two-line coloured rendering for interactive output."""
        header = colored(f"{self.severity.value}[{self.error_id}]", self.severity.color, attrs=["bold"])
        arrow = colored("-->", "blue", attrs=["bold"])
        return f"{header}: {self.message}\n  {arrow} {self.location}"


class SuppressionManager:
    """
    Diagnostic suppressions from three sources:

      1. Inline suppressions cppcheck recorded in ``cfg.suppressions``
      2. File-level suppressions (exact, suffix or fnmatch pattern)
      3. Global suppressions (command line or configuration)
    """

    def __init__(self) -> None:
        self._inline: Dict[Tuple[str, int], Set[str]] = defaultdict(set)
        self._file_level: Dict[str, Set[str]] = defaultdict(set)
        self._global: Set[str] = set()

    def load_inline_suppressions(self, cfg: Any) -> None:
        for supp in getattr(cfg, "suppressions", None) or []:
            error_id = getattr(supp, "errorId", None)
            file = getattr(supp, "fileName", "") or ""
            line = getattr(supp, "lineNumber", 0) or 0
            if not error_id:
                continue
            if file and line:
                self._inline[(file, int(line))].add(error_id)
            elif file:
                self._file_level[file].add(error_id)
            else:
                self._global.add(error_id)

    def add_file_suppression(self, error_id: str, file_pattern: str) -> None:
        self._file_level[file_pattern].add(error_id)

    def add_global_suppression(self, error_id: str) -> None:
        self._global.add(error_id)

    def is_suppressed(self, diag: Diagnostic) -> bool:
        eid = diag.error_id
        if eid in self._global or "*" in self._global:
            return True

        loc = diag.location
        # Same line, or the line before for preceding-line comments.
        for line_offset in (0, 1):
            ids = self._inline.get((loc.file, loc.line - line_offset), set())
            if eid in ids or "*" in ids:
                return True

        for pattern, ids in self._file_level.items():
            if eid not in ids and "*" not in ids:
                continue
            if pattern == loc.file or loc.file.endswith(pattern) or fnmatch(loc.file, pattern):
                return True
        return False

    def filter_diagnostics(self, diagnostics: Iterable[Diagnostic]) -> List[Diagnostic]:
        return [d for d in diagnostics if not self.is_suppressed(d)]
