# refcount_checker/annotations.py
"""Return-value ownership annotations recovered from macro history."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from refcount_checker.nodes import Location


class Annotation(Enum):
    NONE = "none"
    BORROWED = "borrowed"
    STOLEN = "stolen"


class AnnotationResolver:
    """
    Maps a location to the annotation macro it was expanded from.

    ``BORROWED(Box*) f()`` expands the return type inside ``BORROWED``; the
    resolver looks at the innermost macro first and then walks outwards
    through the callers until a marker matches or the chain ends.
    """

    def __init__(self, borrowed_macro: str = "BORROWED", stolen_macro: str = "STOLEN") -> None:
        self.borrowed_macro = borrowed_macro
        self.stolen_macro = stolen_macro

    def classify(self, location: Optional[Location]) -> Annotation:
        loc = location
        while loc is not None and loc.expansion is not None:
            name = loc.expansion.name
            if name == self.borrowed_macro:
                return Annotation.BORROWED
            if name == self.stolen_macro:
                return Annotation.STOLEN
            loc = loc.expansion.caller
        return Annotation.NONE
