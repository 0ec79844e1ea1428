# refcount_checker/nodes.py
"""
Function-body tree consumed by the refcount dataflow engine.

The node set is closed: every statement and expression shape the engine
understands has exactly one class here, and ``STMT_TYPES`` / ``EXPR_TYPES``
list them.  Front ends (see ``refcount_checker.frontend``) translate their
own representation into these nodes; anything they cannot express is
reported as an unsupported construct at translation time.

Every node carries a ``Location`` for diagnostics.  A location that came
out of a macro expansion records the macro name and the location of the
macro's caller, which is what the return-annotation resolver walks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple, Union


# ── Source Location ──────────────────────────────────────────────

@dataclass(frozen=True)
class MacroExpansion:
    """One step of a macro expansion chain."""
    name: str
    caller: Location


@dataclass(frozen=True)
class Location:
    """Source location; ``expansion`` is set for macro locations."""
    file: str = "<unknown>"
    line: int = 0
    column: int = 0
    expansion: Optional[MacroExpansion] = None

    @property
    def is_macro(self) -> bool:
        return self.expansion is not None

    def spelling(self) -> Location:
        """The location with its macro history dropped."""
        if self.expansion is None:
            return self
        return Location(self.file, self.line, self.column)

    def __str__(self):
        if self.column:
            return f"{self.file}:{self.line}:{self.column}"
        return f"{self.file}:{self.line}"


# ── Types ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class BuiltinType:
    name: str


@dataclass(frozen=True)
class PointerType:
    pointee: CType


@dataclass(frozen=True)
class RecordType:
    """A class, struct or union, named by its declaration."""
    name: str


@dataclass(frozen=True)
class FunctionType:
    spelling: str = ""


@dataclass(frozen=True)
class TemplateParamType:
    name: str


@dataclass(frozen=True)
class ParenType:
    inner: CType


@dataclass(frozen=True)
class TypedefType:
    name: str
    target: CType


@dataclass(frozen=True)
class UnresolvedType:
    """A type the front end could not resolve to a declaration."""
    spelling: str = ""


CType = Union[
    BuiltinType, PointerType, RecordType, FunctionType,
    TemplateParamType, ParenType, TypedefType, UnresolvedType,
]

VOID = BuiltinType("void")
INT = BuiltinType("int")
BOOL = BuiltinType("bool")
UNKNOWN_TYPE = UnresolvedType()


# ── Declarations ─────────────────────────────────────────────────

class DeclScope(Enum):
    """Where a declaration lives; decides how unbound references behave."""
    LOCAL = "local"
    PARAMETER = "parameter"
    NAMESPACE = "namespace"
    TRANSLATION_UNIT = "translation-unit"
    RECORD = "record"
    FUNCTION = "function"

    @property
    def is_global(self) -> bool:
        return self in (DeclScope.NAMESPACE, DeclScope.TRANSLATION_UNIT)


@dataclass(frozen=True)
class Decl:
    """A named declaration.  ``key`` is its identity within one program."""
    key: Union[int, str]
    name: str
    type: CType
    scope: DeclScope = DeclScope.LOCAL
    loc: Location = field(default_factory=Location)


class ExceptionSpec(Enum):
    MAY_THROW = "may-throw"
    NOTHROW = "nothrow"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class FunctionSignature:
    exception_spec: ExceptionSpec = ExceptionSpec.MAY_THROW

    @property
    def can_throw(self) -> bool:
        return self.exception_spec is ExceptionSpec.MAY_THROW


# ── Expressions ──────────────────────────────────────────────────

class LiteralKind(Enum):
    INTEGER = "integer"
    FLOATING = "floating"
    STRING = "string"
    CHAR = "char"
    BOOL = "bool"
    NULLPTR = "nullptr"


class WrapperKind(Enum):
    """Single-child nodes that neither create nor consume references."""
    CLEANUPS = "cleanups"
    MATERIALIZE_TEMPORARY = "materialize-temporary"
    BIND_TEMPORARY = "bind-temporary"
    PAREN = "paren"


@dataclass
class Literal:
    kind: LiteralKind
    text: str
    type: CType = UNKNOWN_TYPE
    loc: Location = field(default_factory=Location)


@dataclass
class NonInstantiatedExpr:
    """Dependent, unresolved or otherwise opaque forms (lookups, default
    arguments, predefined names, pack expansions, ``sizeof`` ...)."""
    kind: str
    type: CType = UNKNOWN_TYPE
    loc: Location = field(default_factory=Location)


@dataclass
class WrapperExpr:
    wrapper: WrapperKind
    sub: Expr
    loc: Location = field(default_factory=Location)

    @property
    def type(self) -> CType:
        return self.sub.type


@dataclass
class UnaryOperator:
    op: str
    operand: Expr
    type: CType = UNKNOWN_TYPE
    loc: Location = field(default_factory=Location)


@dataclass
class BinaryOperator:
    op: str
    lhs: Expr
    rhs: Expr
    type: CType = UNKNOWN_TYPE
    loc: Location = field(default_factory=Location)


@dataclass
class CastExpr:
    sub: Expr
    type: CType = UNKNOWN_TYPE
    loc: Location = field(default_factory=Location)


@dataclass
class MemberExpr:
    base: Expr
    member: str
    type: CType = UNKNOWN_TYPE
    arrow: bool = False
    loc: Location = field(default_factory=Location)


@dataclass
class ThisExpr:
    type: CType = UNKNOWN_TYPE
    loc: Location = field(default_factory=Location)


@dataclass
class DeclRefExpr:
    decl: Decl
    loc: Location = field(default_factory=Location)

    @property
    def type(self) -> CType:
        return self.decl.type


@dataclass
class CallExpr:
    callee: Expr
    args: List[Expr] = field(default_factory=list)
    type: CType = UNKNOWN_TYPE
    signature: Optional[FunctionSignature] = None
    loc: Location = field(default_factory=Location)


@dataclass
class ConstructExpr:
    args: List[Expr] = field(default_factory=list)
    type: CType = UNKNOWN_TYPE
    loc: Location = field(default_factory=Location)


@dataclass
class NewExpr:
    type: CType
    placement_args: List[Expr] = field(default_factory=list)
    initializer: Optional[Expr] = None
    loc: Location = field(default_factory=Location)


@dataclass
class ConditionalExpr:
    cond: Expr
    true_expr: Expr
    false_expr: Expr
    type: CType = UNKNOWN_TYPE
    loc: Location = field(default_factory=Location)


Expr = Union[
    Literal, NonInstantiatedExpr, WrapperExpr, UnaryOperator,
    BinaryOperator, CastExpr, MemberExpr, ThisExpr, DeclRefExpr,
    CallExpr, ConstructExpr, NewExpr, ConditionalExpr,
]

EXPR_TYPES: Tuple[type, ...] = (
    Literal, NonInstantiatedExpr, WrapperExpr, UnaryOperator,
    BinaryOperator, CastExpr, MemberExpr, ThisExpr, DeclRefExpr,
    CallExpr, ConstructExpr, NewExpr, ConditionalExpr,
)


# ── Statements ───────────────────────────────────────────────────

@dataclass
class CompoundStmt:
    body: List[Stmt] = field(default_factory=list)
    loc: Location = field(default_factory=Location)


@dataclass
class ExprStmt:
    expr: Expr
    loc: Location = field(default_factory=Location)


@dataclass
class VarDecl:
    decl: Decl
    init: Optional[Expr] = None


@dataclass
class DeclStmt:
    decls: List[VarDecl] = field(default_factory=list)
    loc: Location = field(default_factory=Location)


@dataclass
class IfStmt:
    cond: Expr
    then: Optional[Stmt] = None
    else_: Optional[Stmt] = None
    cond_var: Optional[Decl] = None
    loc: Location = field(default_factory=Location)


@dataclass
class ForStmt:
    body: Stmt
    init: Optional[Stmt] = None
    cond: Optional[Expr] = None
    inc: Optional[Expr] = None
    cond_var: Optional[Decl] = None
    loc: Location = field(default_factory=Location)


@dataclass
class WhileStmt:
    cond: Expr
    body: Stmt
    cond_var: Optional[Decl] = None
    loc: Location = field(default_factory=Location)


@dataclass
class DoStmt:
    body: Stmt
    cond: Expr
    loc: Location = field(default_factory=Location)


@dataclass
class ReturnStmt:
    value: Optional[Expr] = None
    loc: Location = field(default_factory=Location)


@dataclass
class AsmStmt:
    inputs: List[Expr] = field(default_factory=list)
    outputs: List[Expr] = field(default_factory=list)
    loc: Location = field(default_factory=Location)


Stmt = Union[
    CompoundStmt, ExprStmt, DeclStmt, IfStmt, ForStmt, WhileStmt,
    DoStmt, ReturnStmt, AsmStmt,
]

STMT_TYPES: Tuple[type, ...] = (
    CompoundStmt, ExprStmt, DeclStmt, IfStmt, ForStmt, WhileStmt,
    DoStmt, ReturnStmt, AsmStmt,
)


# ── Function definitions ─────────────────────────────────────────

@dataclass
class FunctionDef:
    name: str
    body: CompoundStmt
    params: List[Decl] = field(default_factory=list)
    return_type: CType = VOID
    return_type_loc: Location = field(default_factory=Location)
    loc: Location = field(default_factory=Location)


def node_kind(node: object) -> str:
    """Short kind tag used in diagnostics."""
    return type(node).__name__
