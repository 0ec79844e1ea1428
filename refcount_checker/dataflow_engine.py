# refcount_checker/dataflow_engine.py
"""
refcount_checker/dataflow_engine.py
═══════════════════════════════════

Intraprocedural ownership dataflow over one function body.

The walk is structural: one ``BlockState`` is threaded through
straight-line code, duplicated wherever control forks, and the copies are
reconciled with ``merge_states`` where they join again.

  ┌──────────────┐   params → BORROWED/0
  │ FunctionDef  │──────────────────────────┐
  └──────┬───────┘                          ▼
         │ body                      ┌─────────────┐
         ▼                           │ BlockState  │◄── duplicate at if/loop/?:
  ┌──────────────┐  stmt handlers    └──────┬──────┘
  │ Stmt / Expr  │─────────────────────────►│ merge_states at joins
  └──────────────┘  expr handlers           ▼
                                      every slot at 0 refs ⇒ pass

Reference rules
───────────────
* A call yielding a refcounted pointer hands the caller one reference
  (OWNED, 1).  Member accesses, ``this``, parameters, globals and
  ``new`` results are BORROWED with no references.
* A declaration moves its initializer's references into the variable.
* ``return`` of a refcounted value consumes one reference unless the
  function's return type is annotated BORROWED, in which case only a
  temporary result is dropped from tracking.
* A call that may throw is only allowed while nothing holds references.
* Loops are checked for one iteration merged with zero iterations; later
  iterations that change the ownership shape are not detected.

Callers use ``DataflowEngine.analyze_function``, which never raises for
problems in the analysed code: it returns a ``FunctionResult`` holding at
most one ``Violation`` (analysis halts at the first one).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import ClassVar, Dict, List, Optional, Type

from refcount_checker import errors
from refcount_checker.annotations import Annotation, AnnotationResolver
from refcount_checker.block_state import BlockState, Handle, merge_states
from refcount_checker.config import RefcheckConfig
from refcount_checker.errors import (
    RefcheckError,
    RefcountInvariantViolation,
    UnsupportedConstruct,
    Violation,
)
from refcount_checker.nodes import (
    AsmStmt,
    BinaryOperator,
    CallExpr,
    CastExpr,
    CompoundStmt,
    ConditionalExpr,
    ConstructExpr,
    CType,
    Decl,
    DeclRefExpr,
    DeclStmt,
    DoStmt,
    Expr,
    ExprStmt,
    ForStmt,
    FunctionDef,
    IfStmt,
    Literal,
    LiteralKind,
    Location,
    MemberExpr,
    NewExpr,
    NonInstantiatedExpr,
    ReturnStmt,
    Stmt,
    ThisExpr,
    UnaryOperator,
    WhileStmt,
    WrapperExpr,
    node_kind,
)
from refcount_checker.type_classifier import TypeClassifier, type_spelling

_log = logging.getLogger(__name__)


@dataclass
class FunctionResult:
    """Outcome of checking one function."""
    function_name: str
    location: Location
    annotation: Annotation = Annotation.NONE
    violations: List[Violation] = field(default_factory=list)
    final_state: Optional[BlockState] = None

    @property
    def ok(self) -> bool:
        return not self.violations

    @property
    def failed(self) -> bool:
        """True when a refcount invariant was violated."""
        return any(not v.recoverable for v in self.violations)


class DataflowEngine:
    """Checks functions against the reference-counting rules.

    The classifier and resolver are read-only and shared by every
    analysis; each ``analyze_function`` call builds fresh state.
    """

    def __init__(
        self,
        classifier: Optional[TypeClassifier] = None,
        resolver: Optional[AnnotationResolver] = None,
        config: Optional[RefcheckConfig] = None,
    ) -> None:
        config = config or RefcheckConfig()
        self.classifier = classifier or TypeClassifier(config.owned_prefix)
        self.resolver = resolver or AnnotationResolver(
            config.borrowed_macro, config.stolen_macro
        )

    def analyze_function(self, func: FunctionDef) -> FunctionResult:
        checker = _FunctionChecker(self, func)
        result = FunctionResult(function_name=func.name, location=func.loc)
        try:
            result.annotation = checker.resolve_annotation()
            result.final_state = checker.run()
        except RefcheckError as exc:
            _log.debug("%s: %s", func.name, exc)
            result.violations.append(Violation.from_error(exc, func.name))
        return result


class _FunctionChecker:
    """State for one function walk.  Raises ``RefcheckError`` on failure."""

    STMT_HANDLERS: ClassVar[Dict[Type, str]] = {
        CompoundStmt: "_stmt_compound",
        ExprStmt: "_stmt_expr",
        DeclStmt: "_stmt_decl",
        IfStmt: "_stmt_if",
        ForStmt: "_stmt_for",
        WhileStmt: "_stmt_while",
        DoStmt: "_stmt_do",
        ReturnStmt: "_stmt_return",
        AsmStmt: "_stmt_asm",
    }

    EXPR_HANDLERS: ClassVar[Dict[Type, str]] = {
        Literal: "_expr_opaque",
        NonInstantiatedExpr: "_expr_opaque",
        WrapperExpr: "_expr_wrapper",
        UnaryOperator: "_expr_unary",
        BinaryOperator: "_expr_binary",
        CastExpr: "_expr_cast",
        MemberExpr: "_expr_member",
        ThisExpr: "_expr_this",
        DeclRefExpr: "_expr_declref",
        CallExpr: "_expr_call",
        ConstructExpr: "_expr_construct",
        NewExpr: "_expr_new",
        ConditionalExpr: "_expr_conditional",
    }

    def __init__(self, engine: DataflowEngine, func: FunctionDef) -> None:
        self.func = func
        self.classifier = engine.classifier
        self.resolver = engine.resolver
        self.return_ann = Annotation.NONE

    def resolve_annotation(self) -> Annotation:
        self.return_ann = self.resolver.classify(self.func.return_type_loc)
        return self.return_ann

    def run(self) -> BlockState:
        state = BlockState()
        for param in self.func.params:
            if self._refcounted(param.type, param.loc):
                state.bind(param, state.create_borrowed(param.loc))
        _log.debug(
            "Checking %s: %d tracked parameter(s), returns %s (%s)",
            self.func.name, len(state.bindings),
            type_spelling(self.func.return_type), self.return_ann.value,
        )
        self.stmt(self.func.body, state)
        self._check_clean(
            state,
            self.func.loc,
            errors.REFCOUNT_LEAK,
            "at the end of '{name}'",
        )
        return state

    # ----- helpers ----------------------------------------------------------

    def _refcounted(self, t: CType, loc: Location) -> bool:
        return self.classifier.is_refcounted(t, loc)

    def _require_not_refcounted(self, node, what: str) -> None:
        if self._refcounted(node.type, node.loc):
            raise UnsupportedConstruct(
                f"{what} yielding refcounted type '{type_spelling(node.type)}' "
                f"is not modelled",
                node.loc,
            )

    def _check_clean(self, state: BlockState, loc: Location, error_id: str, where: str) -> None:
        leaked = list(state.outstanding())
        if not leaked:
            return
        by_handle = {h: key for key, h in state.bindings.items()}
        described = []
        for handle, slot in leaked:
            key = by_handle.get(handle)
            label = f"'{state.name_of(key)}'" if key is not None else f"value from {slot.origin}"
            described.append(f"{label} ({slot.refs} ref)")
        message = where.format(name=self.func.name)
        if error_id == errors.UNSAFE_CALL:
            text = f"call {message} may throw while references are outstanding: "
        else:
            text = f"references leaked {message}: "
        raise RefcountInvariantViolation(text + ", ".join(described), loc, error_id)

    def _check_condition(self, handle: Optional[Handle], state: BlockState, loc: Location) -> None:
        if handle is None:
            return
        slot = state.slot(handle)
        if slot.refs > 0 and handle not in state.bound_handles():
            raise RefcountInvariantViolation(
                "condition produces an owned reference that is never released",
                loc,
                errors.CONDITION_LEAK,
            )

    def _check_cond_var(self, decl: Optional[Decl]) -> None:
        if decl is not None and self._refcounted(decl.type, decl.loc):
            raise UnsupportedConstruct(
                f"refcounted condition variable '{decl.name}' is not supported",
                decl.loc,
            )

    # ----- statements -------------------------------------------------------

    def stmt(self, node: Stmt, state: BlockState) -> None:
        name = self.STMT_HANDLERS.get(type(node))
        if name is None:
            raise UnsupportedConstruct(
                f"unhandled statement type: {node_kind(node)}",
                getattr(node, "loc", None),
            )
        getattr(self, name)(node, state)

    def _stmt_compound(self, node: CompoundStmt, state: BlockState) -> None:
        for sub in node.body:
            self.stmt(sub, state)

    def _stmt_expr(self, node: ExprStmt, state: BlockState) -> None:
        self.expr(node.expr, state)

    def _stmt_decl(self, node: DeclStmt, state: BlockState) -> None:
        for var in node.decls:
            decl = var.decl
            if state.is_bound(decl):
                raise RefcountInvariantViolation(
                    f"'{decl.name}' is declared while already tracked",
                    decl.loc,
                    errors.REDECLARED_VARIABLE,
                )
            is_refcounted = self._refcounted(decl.type, decl.loc)
            if is_refcounted:
                state.bind(decl, state.create_borrowed(decl.loc))
            if var.init is not None:
                assigning = self.expr(var.init, state)
                if is_refcounted and assigning is not None:
                    state.assign(decl, assigning)

    def _stmt_if(self, node: IfStmt, state: BlockState) -> None:
        self._check_cond_var(node.cond_var)
        self._check_condition(self.expr(node.cond, state), state, node.cond.loc)

        else_state = state.duplicate()
        if node.then is not None:
            self.stmt(node.then, state)
        if node.else_ is not None:
            self.stmt(node.else_, else_state)
        merge_states(state, else_state, node.loc)

    def _stmt_for(self, node: ForStmt, state: BlockState) -> None:
        if node.init is not None:
            self.stmt(node.init, state)
        self._check_cond_var(node.cond_var)
        if node.cond is not None:
            self._check_condition(self.expr(node.cond, state), state, node.cond.loc)

        old_state = state.duplicate()
        self.stmt(node.body, state)
        merge_states(state, old_state, node.loc)

    def _stmt_while(self, node: WhileStmt, state: BlockState) -> None:
        self._check_cond_var(node.cond_var)
        self._check_condition(self.expr(node.cond, state), state, node.cond.loc)

        old_state = state.duplicate()
        self.stmt(node.body, state)
        merge_states(state, old_state, node.loc)

    def _stmt_do(self, node: DoStmt, state: BlockState) -> None:
        cond = node.cond
        while isinstance(cond, WrapperExpr):
            cond = cond.sub
        if not (
            isinstance(cond, Literal)
            and cond.kind is LiteralKind.BOOL
            and cond.text == "false"
        ):
            raise UnsupportedConstruct(
                "only `do { ... } while (false);` statements are supported",
                node.loc,
            )
        self.stmt(node.body, state)

    def _stmt_return(self, node: ReturnStmt, state: BlockState) -> None:
        if node.value is None:
            return
        rstate = self.expr(node.value, state)
        if rstate is None or not self._refcounted(node.value.type, node.value.loc):
            return
        slot = state.slot(rstate)
        if self.return_ann is Annotation.BORROWED:
            # A temporary handed out as borrowed is no longer this
            # function's to release; bound variables keep their counts.
            if rstate not in state.bound_handles():
                slot.refs = 0
            return
        if slot.refs <= 0:
            raise RefcountInvariantViolation(
                f"'{self.func.name}' returns an object with 0 refs",
                node.loc,
                errors.RETURN_WITHOUT_REFERENCE,
            )
        slot.refs -= 1

    def _stmt_asm(self, node: AsmStmt, state: BlockState) -> None:
        for operand in node.inputs:
            self.expr(operand, state)
        for operand in node.outputs:
            self.expr(operand, state)

    # ----- expressions ------------------------------------------------------

    def expr(self, node: Expr, state: BlockState) -> Optional[Handle]:
        name = self.EXPR_HANDLERS.get(type(node))
        if name is None:
            raise UnsupportedConstruct(
                f"unhandled expr type: {node_kind(node)}",
                getattr(node, "loc", None),
            )
        return getattr(self, name)(node, state)

    def _expr_opaque(self, node, state: BlockState) -> Optional[Handle]:
        self._require_not_refcounted(node, node_kind(node))
        return None

    def _expr_wrapper(self, node: WrapperExpr, state: BlockState) -> Optional[Handle]:
        return self.expr(node.sub, state)

    def _expr_unary(self, node: UnaryOperator, state: BlockState) -> Optional[Handle]:
        self.expr(node.operand, state)
        self._require_not_refcounted(node, f"unary '{node.op}'")
        return None

    def _expr_binary(self, node: BinaryOperator, state: BlockState) -> Optional[Handle]:
        self.expr(node.lhs, state)
        self.expr(node.rhs, state)
        self._require_not_refcounted(node, f"binary '{node.op}'")
        return None

    def _expr_cast(self, node: CastExpr, state: BlockState) -> Optional[Handle]:
        if self._refcounted(node.type, node.loc) and not self._refcounted(node.sub.type, node.sub.loc):
            if _is_null_pointer_constant(node.sub):
                return None
            raise UnsupportedConstruct(
                f"cast from '{type_spelling(node.sub.type)}' manufactures a "
                f"refcounted '{type_spelling(node.type)}'",
                node.loc,
            )
        return self.expr(node.sub, state)

    def _expr_member(self, node: MemberExpr, state: BlockState) -> Optional[Handle]:
        self.expr(node.base, state)
        if not self._refcounted(node.type, node.loc):
            return None
        return state.create_borrowed(node.loc)

    def _expr_this(self, node: ThisExpr, state: BlockState) -> Optional[Handle]:
        if not self._refcounted(node.type, node.loc):
            return None
        return state.create_borrowed(node.loc)

    def _expr_declref(self, node: DeclRefExpr, state: BlockState) -> Optional[Handle]:
        decl = node.decl
        if not self._refcounted(decl.type, node.loc):
            return None
        handle = state.binding(decl)
        if handle is not None:
            return handle
        if decl.scope.is_global:
            return state.bind(decl, state.create_borrowed(decl.loc))
        raise RefcountInvariantViolation(
            f"reference to untracked {decl.scope.value} variable '{decl.name}' "
            f"({len(state.bindings)} known)",
            node.loc,
            errors.UNTRACKED_LOCAL,
        )

    def _expr_call(self, node: CallExpr, state: BlockState) -> Optional[Handle]:
        self.expr(node.callee, state)
        for arg in node.args:
            self.expr(arg, state)

        if node.signature is not None and node.signature.can_throw:
            self._check_clean(state, node.loc, errors.UNSAFE_CALL, "in '{name}'")

        if self._refcounted(node.type, node.loc):
            return state.create_owned(node.loc)
        return None

    def _expr_construct(self, node: ConstructExpr, state: BlockState) -> Optional[Handle]:
        for arg in node.args:
            self.expr(arg, state)
        self._require_not_refcounted(node, "constructor call")
        return None

    def _expr_new(self, node: NewExpr, state: BlockState) -> Optional[Handle]:
        for arg in node.placement_args:
            self.expr(arg, state)
        if node.initializer is not None:
            self.expr(node.initializer, state)
        if self._refcounted(node.type, node.loc):
            return state.create_borrowed(node.loc)
        return None

    def _expr_conditional(self, node: ConditionalExpr, state: BlockState) -> Optional[Handle]:
        self.expr(node.cond, state)

        false_state = state.duplicate()
        s1 = self.expr(node.true_expr, state)
        s2 = self.expr(node.false_expr, false_state)
        merge_states(state, false_state, node.loc, in_flight=[(s1, s2)])

        if (s1 is None) != (s2 is None):
            raise RefcountInvariantViolation(
                "only one branch of the conditional yields a tracked value",
                node.loc,
                errors.TERNARY_MISMATCH,
            )
        if s1 is not None:
            r1, r2 = state.slot(s1), false_state.slot(s2)
            if r1.refs != r2.refs:
                raise RefcountInvariantViolation(
                    f"conditional branches yield {r1.refs} and {r2.refs} reference(s)",
                    node.loc,
                    errors.TERNARY_MISMATCH,
                )
            if r1.kind is not r2.kind:
                raise RefcountInvariantViolation(
                    f"conditional branches yield {r1.kind.value} and "
                    f"{r2.kind.value} values",
                    node.loc,
                    errors.TERNARY_MISMATCH,
                )
        return s1


def _is_null_pointer_constant(node: Expr) -> bool:
    while isinstance(node, WrapperExpr):
        node = node.sub
    if not isinstance(node, Literal):
        return False
    if node.kind is LiteralKind.NULLPTR:
        return True
    return node.kind is LiteralKind.INTEGER and node.text in ("0", "0L", "0l")


def analyze_function(func: FunctionDef, config: Optional[RefcheckConfig] = None) -> FunctionResult:
    """Convenience wrapper building a one-off engine."""
    return DataflowEngine(config=config).analyze_function(func)
