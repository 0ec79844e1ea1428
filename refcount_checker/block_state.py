# refcount_checker/block_state.py
"""
Dataflow fact for the refcount checker and the join operator over it.

A ``BlockState`` owns an arena of ``RefState`` slots addressed by integer
handles, plus a table binding declarations to handles.  Expression results
and bindings both hold handles, so two references to the same variable
within one state see the same slot.  ``duplicate()`` copies the arena; the
copy keeps the same handle numbering, so bindings carry over unchanged and
the two states evolve independently from then on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple, Union

from refcount_checker import errors
from refcount_checker.errors import RefcountInvariantViolation
from refcount_checker.nodes import Decl, Location

_log = logging.getLogger(__name__)

Handle = int
DeclKey = Union[int, str]


class RefKind(Enum):
    UNKNOWN = "unknown"
    BORROWED = "borrowed"
    OWNED = "owned"


@dataclass
class RefState:
    """Ownership fact for one value: its kind and outstanding references."""
    kind: RefKind = RefKind.UNKNOWN
    refs: int = 0
    origin: Location = field(default_factory=Location)


class BlockState:
    """Slots plus variable bindings at one program point."""

    def __init__(self) -> None:
        self.slots: List[RefState] = []
        self.bindings: Dict[DeclKey, Handle] = {}
        self.decls: Dict[DeclKey, Decl] = {}

    # ----- slots ------------------------------------------------------------

    def add_slot(self, kind: RefKind, refs: int, origin: Optional[Location] = None) -> Handle:
        self.slots.append(RefState(kind, refs, origin or Location()))
        return len(self.slots) - 1

    def create_borrowed(self, origin: Optional[Location] = None) -> Handle:
        return self.add_slot(RefKind.BORROWED, 0, origin)

    def create_owned(self, origin: Optional[Location] = None) -> Handle:
        return self.add_slot(RefKind.OWNED, 1, origin)

    def slot(self, handle: Handle) -> RefState:
        return self.slots[handle]

    def outstanding(self) -> Iterator[Tuple[Handle, RefState]]:
        """Slots that still carry release obligations."""
        for handle, state in enumerate(self.slots):
            if state.refs != 0:
                yield handle, state

    # ----- bindings ---------------------------------------------------------

    def is_bound(self, decl: Decl) -> bool:
        return decl.key in self.bindings

    def binding(self, decl: Decl) -> Optional[Handle]:
        return self.bindings.get(decl.key)

    def bind(self, decl: Decl, handle: Handle) -> Handle:
        self.bindings[decl.key] = handle
        self.decls[decl.key] = decl
        return handle

    def unbind(self, key: DeclKey) -> None:
        del self.bindings[key]
        self.decls.pop(key, None)

    def bound_handles(self) -> Set[Handle]:
        return set(self.bindings.values())

    def name_of(self, key: DeclKey) -> str:
        decl = self.decls.get(key)
        return decl.name if decl is not None else str(key)

    def assign(self, decl: Decl, source: Handle) -> None:
        """Move the source slot's ownership into ``decl``'s binding.

        The binding must not hold references of its own; the source is
        left with none.
        """
        target = self.slots[self.bindings[decl.key]]
        incoming = self.slots[source]
        if target.refs != 0:
            raise RefcountInvariantViolation(
                f"assignment to '{decl.name}' would drop {target.refs} "
                f"outstanding reference(s)",
                decl.loc,
                errors.REFCOUNT_LEAK,
            )
        target.kind = incoming.kind
        target.refs, incoming.refs = incoming.refs, target.refs

    # ----- copying ----------------------------------------------------------

    def duplicate(self) -> BlockState:
        copy = BlockState()
        copy.slots = [replace(s) for s in self.slots]
        copy.bindings = dict(self.bindings)
        copy.decls = dict(self.decls)
        return copy

    def summary(self) -> str:
        parts = []
        for key, handle in self.bindings.items():
            s = self.slots[handle]
            parts.append(f"{self.name_of(key)}={s.kind.value}/{s.refs}")
        return "{" + ", ".join(parts) + "}"

    def __repr__(self) -> str:
        return f"<BlockState slots={len(self.slots)} bindings={self.summary()}>"


def merge_states(
    state1: BlockState,
    state2: BlockState,
    location: Optional[Location] = None,
    in_flight: Iterable[Tuple[Optional[Handle], Optional[Handle]]] = (),
) -> BlockState:
    """
    Reconcile two states reaching the same join point.

    ``state1`` is updated in place and returned.  A variable bound on one
    path only must hold no references and is dropped.  A variable bound on
    both must hold the same number of references; if the kinds differ the
    slot becomes ``OWNED`` on both sides.  Afterwards every slot that still
    holds references must be reachable from a binding, except the pairs in
    ``in_flight`` (results of an expression still being evaluated).
    """
    loc = location or Location()

    keys: List[DeclKey] = list(state1.bindings)
    keys.extend(k for k in state2.bindings if k not in state1.bindings)

    for key in keys:
        if key not in state2.bindings:
            _drop_one_sided(state1, key, loc)
        elif key not in state1.bindings:
            _drop_one_sided(state2, key, loc)
        else:
            s1 = state1.slot(state1.bindings[key])
            s2 = state2.slot(state2.bindings[key])
            name = state1.name_of(key)
            if s1.refs != s2.refs:
                raise RefcountInvariantViolation(
                    f"'{name}' holds {s1.refs} reference(s) on one path and "
                    f"{s2.refs} on the other",
                    loc,
                    errors.MERGE_REFCOUNT_MISMATCH,
                )
            if s1.kind is not s2.kind:
                if RefKind.UNKNOWN in (s1.kind, s2.kind):
                    raise RefcountInvariantViolation(
                        f"'{name}' has an unknown ownership kind at a join",
                        loc,
                        errors.MERGE_UNKNOWN_KIND,
                    )
                s1.kind = RefKind.OWNED
                s2.kind = RefKind.OWNED

    pending = list(in_flight)
    for side, state in enumerate((state1, state2)):
        reachable = state.bound_handles()
        reachable.update(pair[side] for pair in pending if pair[side] is not None)
        for handle, slot in state.outstanding():
            if handle not in reachable:
                raise RefcountInvariantViolation(
                    f"value created at {slot.origin} still holds {slot.refs} "
                    f"reference(s) but is not bound to any variable",
                    loc,
                    errors.MERGE_ORPHANED_REFERENCE,
                )

    _log.debug("merged at %s: %s", loc, state1.summary())
    return state1


def _drop_one_sided(state: BlockState, key: DeclKey, loc: Location) -> None:
    slot = state.slot(state.bindings[key])
    if slot.refs != 0:
        raise RefcountInvariantViolation(
            f"'{state.name_of(key)}' still holds {slot.refs} reference(s) "
            f"on only one of the joining paths",
            loc,
            errors.MERGE_UNBOUND_REFERENCE,
        )
    state.unbind(key)
