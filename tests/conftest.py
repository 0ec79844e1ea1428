# tests/conftest.py
"""
Shared fixtures and helpers.

Two families of helpers live here:

* ``Mock*`` classes and ``make_token_chain`` stand in for the objects
  ``cppcheckdata.parsedump`` produces, so the frontend and driver can be
  tested without Cppcheck installed.
* Node builders (``box_decl``, ``call``, ``func`` ...) assemble
  ``refcount_checker.nodes`` trees directly for engine tests.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import pytest

from refcount_checker.nodes import (
    BuiltinType,
    CallExpr,
    CompoundStmt,
    Decl,
    DeclRefExpr,
    DeclScope,
    DeclStmt,
    ExceptionSpec,
    ExprStmt,
    FunctionDef,
    FunctionSignature,
    FunctionType,
    Location,
    MacroExpansion,
    PointerType,
    RecordType,
    ReturnStmt,
    VarDecl,
)


# ── Mock cppcheckdata objects ────────────────────────────────────

class MockValueType:
    def __init__(self, type="int", pointer=0, typeScope=None, originalTypeName=None):
        self.type = type
        self.pointer = pointer
        self.typeScope = typeScope
        self.originalTypeName = originalTypeName


class MockScope:
    def __init__(self, type="Function", className="", bodyStart=None, bodyEnd=None,
                 function=None, nestedIn=None):
        self.type = type
        self.className = className
        self.bodyStart = bodyStart
        self.bodyEnd = bodyEnd
        self.function = function
        self.nestedIn = nestedIn


class MockVariable:
    def __init__(self, Id, nameToken=None, isLocal=True, isArgument=False,
                 isGlobal=False, scope=None):
        self.Id = Id
        self.nameToken = nameToken
        self.isLocal = isLocal
        self.isArgument = isArgument
        self.isGlobal = isGlobal
        self.scope = scope


class MockFunction:
    def __init__(self, name, Id=None, token=None, tokenDef=None, argument=None, nestedIn=None):
        self.name = name
        self.Id = Id or f"fn-{name}"
        self.token = token
        self.tokenDef = tokenDef
        self.argument = argument or {}
        self.nestedIn = nestedIn


class MockSuppression:
    def __init__(self, errorId, fileName="", lineNumber=0):
        self.errorId = errorId
        self.fileName = fileName
        self.lineNumber = lineNumber


class MockConfiguration:
    def __init__(self, scopes=None, suppressions=None, name=""):
        self.scopes = scopes or []
        self.suppressions = suppressions or []
        self.name = name


class MockData:
    def __init__(self, configurations=None):
        self.configurations = configurations or []


class MockToken:
    """Attribute-compatible stand-in for ``cppcheckdata.Token``."""

    def __init__(self, s: str, **kw: Any) -> None:
        self.str = s
        self.next = None
        self.previous = None
        self.link = None
        self.astParent = None
        self.astOperand1 = None
        self.astOperand2 = None
        self.variable = None
        self.function = None
        self.valueType = None
        self.type = None
        self.isName = s[:1].isalpha() or s[:1] == "_"
        self.isNumber = s[:1].isdigit()
        self.isFloat = self.isNumber and "." in s
        self.isString = s.startswith('"')
        self.isChar = s.startswith("'")
        self.isBoolean = s in ("true", "false")
        self.isCast = False
        self.isSplittedVarDeclEq = False
        self.isStandardType = False
        self.macroName = None
        self.originalName = None
        self.file = "test.cpp"
        self.linenr = 1
        self.column = 1
        self.__dict__.update(kw)

    def __repr__(self) -> str:
        return f"<MockToken {self.str!r}>"


_OPEN = {"(": ")", "[": "]", "{": "}"}


def make_token_chain(source: str, file: str = "test.cpp") -> List[MockToken]:
    """Split on whitespace, chain ``next``/``previous`` and link brackets."""
    tokens = [MockToken(s, file=file, column=i + 1) for i, s in enumerate(source.split())]
    stack: List[MockToken] = []
    for prev, cur in zip(tokens, tokens[1:]):
        prev.next = cur
        cur.previous = prev
    for tok in tokens:
        if tok.str in _OPEN:
            stack.append(tok)
        elif tok.str in _OPEN.values():
            opener = stack.pop()
            opener.link = tok
            tok.link = opener
    return tokens


def ast(parent: MockToken, op1: Optional[MockToken] = None, op2: Optional[MockToken] = None) -> MockToken:
    """Attach AST operands to ``parent``."""
    parent.astOperand1 = op1
    parent.astOperand2 = op2
    for child in (op1, op2):
        if child is not None:
            child.astParent = parent
    return parent


def box_value_type(pointer: int = 1, name: str = "Box") -> MockValueType:
    return MockValueType("record", pointer, MockScope("Class", className=name))


def int_value_type() -> MockValueType:
    return MockValueType("int")


def function_scope(tokens: List[MockToken], name: str, lbrace_index: int,
                   argument: Optional[Dict[int, MockVariable]] = None,
                   tokenDef: Optional[MockToken] = None) -> MockScope:
    """A Function scope whose name token is ``tokens.str == name``."""
    name_tok = next(t for t in tokens if t.str == name)
    lbrace = tokens[lbrace_index]
    fn = MockFunction(name, token=name_tok, tokenDef=tokenDef or name_tok, argument=argument)
    return MockScope("Function", className=name, bodyStart=lbrace, bodyEnd=lbrace.link, function=fn)


def declared_function(source: str, name: str) -> MockFunction:
    """A callee whose declaration is ``source`` (e.g. ``Box * g ( ) noexcept ;``)."""
    tokens = make_token_chain(source)
    name_tok = next(t for t in tokens if t.str == name)
    return MockFunction(name, tokenDef=name_tok)


def owned_local_scope(name: str = "make", consume: bool = True, file: str = "test.cpp") -> MockScope:
    """
    ``Box * NAME ( ) { Box * b ; b = create ( ) ; return b ; }`` as cppcheck
    dumps it, with the declaration split from its initialization.  Without
    ``consume`` the ``return`` is left out and ``b`` leaks.
    """
    src = f"Box * {name} ( ) {{ Box * b ; b = create ( ) ;" + (" return b ;" if consume else "") + " }"
    t = make_token_chain(src, file=file)
    var = MockVariable(f"{name}-b", nameToken=t[8])
    for tok in t:
        if tok.str == "b":
            tok.variable = var
            tok.valueType = box_value_type()
    t[12].function = declared_function("Box * create ( ) ;", "create")
    t[13].valueType = box_value_type()
    ast(t[13], t[12])
    ast(t[11], t[10], t[13])
    t[11].isSplittedVarDeclEq = True
    if consume:
        ast(t[16], t[17])
    return function_scope(t, name, 5)


# ── Node builders ────────────────────────────────────────────────

LOC = Location("test.cpp", 1, 1)
BOX_PTR = PointerType(RecordType("Box"))
INT_T = BuiltinType("int")


def box_decl(name: str, scope: DeclScope = DeclScope.LOCAL, key: Optional[str] = None) -> Decl:
    return Decl(key or name, name, BOX_PTR, scope, Location("test.cpp", 1, 1))


def int_decl(name: str, scope: DeclScope = DeclScope.LOCAL) -> Decl:
    return Decl(name, name, INT_T, scope, Location("test.cpp", 1, 1))


def ref(decl: Decl) -> DeclRefExpr:
    return DeclRefExpr(decl, loc=LOC)


def call(name: str = "create", type=BOX_PTR, args: Sequence = (),
         spec: Optional[ExceptionSpec] = None) -> CallExpr:
    callee = DeclRefExpr(Decl(f"fn:{name}", name, FunctionType(name), DeclScope.FUNCTION), loc=LOC)
    signature = FunctionSignature(spec) if spec is not None else None
    return CallExpr(callee, list(args), type, signature, loc=LOC)


def declare(decl: Decl, init=None) -> DeclStmt:
    return DeclStmt([VarDecl(decl, init)], loc=LOC)


def expr_stmt(expr) -> ExprStmt:
    return ExprStmt(expr, loc=LOC)


def ret(value=None) -> ReturnStmt:
    return ReturnStmt(value, loc=LOC)


def block(*stmts) -> CompoundStmt:
    return CompoundStmt(list(stmts), loc=LOC)


def macro_loc(*names: str) -> Location:
    """A location expanded through ``names`` (innermost first)."""
    loc = Location("test.cpp", 1, 1)
    for name in reversed(names):
        loc = Location("test.cpp", 1, 1, MacroExpansion(name, loc))
    return loc


def func(*stmts, params: Sequence[Decl] = (), name: str = "f",
         return_type_loc: Optional[Location] = None, file: str = "test.cpp") -> FunctionDef:
    return FunctionDef(
        name=name,
        body=block(*stmts),
        params=list(params),
        return_type=BOX_PTR,
        return_type_loc=return_type_loc or Location(file, 1, 1),
        loc=Location(file, 1, 1),
    )


@pytest.fixture
def box():
    return box_decl("b")
