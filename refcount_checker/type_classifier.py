# refcount_checker/type_classifier.py
"""Decides which types denote refcounted object pointers."""

from __future__ import annotations

from typing import Optional

from refcount_checker.errors import AnalysisLimitation
from refcount_checker.nodes import (
    BuiltinType,
    CType,
    FunctionType,
    Location,
    ParenType,
    PointerType,
    RecordType,
    TemplateParamType,
    TypedefType,
)


def desugar(t: CType) -> CType:
    """Strip parenthesization and typedef layers."""
    while isinstance(t, (ParenType, TypedefType)):
        t = t.inner if isinstance(t, ParenType) else t.target
    return t


def type_spelling(t: CType) -> str:
    if isinstance(t, PointerType):
        return type_spelling(t.pointee) + "*"
    if isinstance(t, (BuiltinType, RecordType, TemplateParamType, TypedefType)):
        return t.name
    if isinstance(t, ParenType):
        return f"({type_spelling(t.inner)})"
    return getattr(t, "spelling", "") or type(t).__name__


class TypeClassifier:
    """
    A type is refcounted iff it is a pointer to a class whose name starts
    with ``owned_prefix``.

    Pointers to template parameters are reported as not refcounted; that is
    a known precision gap.  A pointer whose pointee does not resolve to a
    class raises ``AnalysisLimitation``.
    """

    def __init__(self, owned_prefix: str = "Box") -> None:
        self.owned_prefix = owned_prefix

    def is_refcounted(self, t: CType, location: Optional[Location] = None) -> bool:
        t = desugar(t)
        if not isinstance(t, PointerType):
            return False

        pointee = desugar(t.pointee)
        if isinstance(pointee, (BuiltinType, FunctionType)):
            return False
        if isinstance(pointee, TemplateParamType):
            return False
        if not isinstance(pointee, RecordType):
            raise AnalysisLimitation(
                f"cannot resolve the class pointed to by '{type_spelling(t)}'",
                location,
            )
        return pointee.name.startswith(self.owned_prefix)
