"""
refcount_checker.frontend
=========================

Builds ``FunctionDef`` trees from Cppcheck dump data.

Typical usage::

    from refcount_checker.frontend import DumpFrontend, load_dump

    data = load_dump("foo.cpp.dump")
    for cfg in data.configurations:
        frontend = DumpFrontend(cfg)
        for scope in frontend.iter_function_scopes():
            func = frontend.build_function(scope)

Implementation notes
--------------------
* Statements are recovered from the *token stream* between
  ``scope.bodyStart`` and ``scope.bodyEnd``, following ``link`` across
  brackets.  Cppcheck has already added braces around single-statement
  bodies, but unbraced bodies are accepted too.
* Expressions are rebuilt from the token AST (``astOperand1`` /
  ``astOperand2``).  The root of a token range is found by climbing
  ``astParent`` until the parent leaves the range.
* Cppcheck rewrites ``T x = e;`` into ``T x ; x = e ;`` and flags the
  ``=`` with ``isSplittedVarDeclEq``; the pair is folded back into a
  single declaration with an initializer.
* Types come from ``valueType``: the ``pointer`` depth on top of a
  ``record`` (named by ``typeScope.className`` or ``originalTypeName``)
  or a builtin.
* ``macroName`` on a token becomes a one-level macro expansion on its
  location, which is all the annotation resolver needs.

Anything that cannot be expressed as a ``refcount_checker.nodes`` tree
raises ``UnsupportedConstruct``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple, Union

from refcount_checker.errors import UnsupportedConstruct
from refcount_checker.nodes import (
    AsmStmt,
    BinaryOperator,
    BuiltinType,
    CallExpr,
    CastExpr,
    CompoundStmt,
    ConditionalExpr,
    ConstructExpr,
    CType,
    Decl,
    DeclRefExpr,
    DeclScope,
    DeclStmt,
    DoStmt,
    ExceptionSpec,
    Expr,
    ExprStmt,
    ForStmt,
    FunctionDef,
    FunctionSignature,
    FunctionType,
    IfStmt,
    Literal,
    LiteralKind,
    Location,
    MacroExpansion,
    MemberExpr,
    NewExpr,
    NonInstantiatedExpr,
    PointerType,
    RecordType,
    ReturnStmt,
    Stmt,
    ThisExpr,
    UnaryOperator,
    UnresolvedType,
    UNKNOWN_TYPE,
    VarDecl,
    WhileStmt,
)

_log = logging.getLogger(__name__)


class FrontendUnavailable(RuntimeError):
    """The ``cppcheckdata`` module shipped with Cppcheck is not importable."""


def load_dump(path: Union[str, Path]) -> Any:
    """Parse a ``cppcheck --dump`` file with Cppcheck's own reader."""
    try:
        import cppcheckdata  # type: ignore[import-untyped]
    except ImportError as exc:
        raise FrontendUnavailable(
            "cppcheckdata module not found; add Cppcheck's addons directory "
            "to PYTHONPATH"
        ) from exc
    _log.info("Parsing dump file: %s", path)
    return cppcheckdata.parsedump(str(path))


# ---------------------------------------------------------------------------
# Token accessors
# ---------------------------------------------------------------------------

def _s(tok) -> str:
    if tok is None:
        return ""
    return getattr(tok, "str", "") or ""


def _op1(tok):
    return getattr(tok, "astOperand1", None)


def _op2(tok):
    return getattr(tok, "astOperand2", None)


def _parent(tok):
    return getattr(tok, "astParent", None)


def _has_ast(tok) -> bool:
    return any(x is not None for x in (_parent(tok), _op1(tok), _op2(tok)))


def token_location(tok) -> Location:
    if tok is None:
        return Location()
    base = Location(
        file=getattr(tok, "file", "") or "<unknown>",
        line=int(getattr(tok, "linenr", 0) or 0),
        column=int(getattr(tok, "column", 0) or 0),
    )
    macro = getattr(tok, "macroName", None)
    if macro:
        return Location(base.file, base.line, base.column, MacroExpansion(macro, base))
    return base


def _range(start, end) -> List[Any]:
    """Tokens from *start* up to, not including, *end*."""
    out = []
    tok = start
    while tok is not None and tok is not end:
        out.append(tok)
        tok = tok.next
    return out


def _skip_to_semicolon(tok, limit):
    """Return the ``;`` ending the statement that starts at *tok*."""
    start = tok
    while tok is not None and tok is not limit:
        if _s(tok) == ";":
            return tok
        if _s(tok) in ("(", "[", "{") and getattr(tok, "link", None) is not None:
            tok = tok.link
        tok = tok.next
    raise UnsupportedConstruct("unterminated statement", token_location(start))


def _flatten_args(tok) -> List[Any]:
    """Flatten the right-leaning ',' tree cppcheck uses for argument lists."""
    out: List[Any] = []
    while tok is not None:
        if _s(tok) == ",":
            out.extend(_flatten_args(_op1(tok)))
            tok = _op2(tok)
        else:
            out.append(tok)
            break
    return out


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

_BUILTIN_TYPES = frozenset({
    "void", "bool", "char", "short", "wchar_t", "char16_t", "char32_t",
    "int", "long", "long long", "float", "double", "long double",
    "unknown int",
})

_RECORD_LIKE = frozenset({"record", "container", "iterator", "smart-pointer"})

_TYPE_NOISE = frozenset({"const", "volatile", "struct", "class", "union", "*", "&", "&&"})


def _record_name(original: Optional[str]) -> Optional[str]:
    if not original:
        return None
    words = [w for w in original.replace("*", " * ").replace("&", " & ").split()
             if w not in _TYPE_NOISE]
    if not words:
        return None
    return words[-1].split("::")[-1]


def ctype_from_value_type(vt) -> CType:
    """Translate a cppcheck ``ValueType`` into a ``CType``."""
    if vt is None:
        return UNKNOWN_TYPE
    kind = getattr(vt, "type", "") or ""
    if kind in _RECORD_LIKE:
        scope = getattr(vt, "typeScope", None)
        name = getattr(scope, "className", None) or _record_name(
            getattr(vt, "originalTypeName", None)
        )
        base: CType = RecordType(name) if name else UnresolvedType(kind)
    elif kind in _BUILTIN_TYPES:
        base = BuiltinType(kind)
    else:
        base = UnresolvedType(kind or (getattr(vt, "originalTypeName", "") or ""))
    for _ in range(int(getattr(vt, "pointer", 0) or 0)):
        base = PointerType(base)
    return base


def _tok_type(tok) -> CType:
    return ctype_from_value_type(getattr(tok, "valueType", None))


# ---------------------------------------------------------------------------
# Declarations and signatures
# ---------------------------------------------------------------------------

def _decl_scope(var) -> DeclScope:
    if getattr(var, "isArgument", False):
        return DeclScope.PARAMETER
    if getattr(var, "isLocal", False):
        return DeclScope.LOCAL
    scope_type = getattr(getattr(var, "scope", None), "type", "") or ""
    if scope_type == "Namespace":
        return DeclScope.NAMESPACE
    if getattr(var, "isGlobal", False) or scope_type == "Global":
        return DeclScope.TRANSLATION_UNIT
    if scope_type in ("Class", "Struct", "Union"):
        return DeclScope.RECORD
    return DeclScope.LOCAL


def exception_spec_of(function) -> ExceptionSpec:
    """Read ``noexcept`` / ``throw()`` from a function's declarator tokens."""
    specs = [
        _declared_exception_spec(getattr(function, attr, None))
        for attr in ("tokenDef", "token")
    ]
    if ExceptionSpec.NOTHROW in specs:
        return ExceptionSpec.NOTHROW
    if ExceptionSpec.MAY_THROW in specs:
        return ExceptionSpec.MAY_THROW
    return ExceptionSpec.UNRESOLVED


def _declared_exception_spec(name_tok) -> ExceptionSpec:
    paren = getattr(name_tok, "next", None)
    if _s(paren) != "(" or getattr(paren, "link", None) is None:
        return ExceptionSpec.UNRESOLVED
    tok = paren.link.next
    while tok is not None and _s(tok) not in ("{", ";", ":", "="):
        if _s(tok) == "noexcept":
            arg = tok.next
            if _s(arg) != "(" or getattr(arg, "link", None) is None:
                return ExceptionSpec.NOTHROW
            text = "".join(_s(t) for t in _range(arg.next, arg.link))
            if text in ("", "true"):
                return ExceptionSpec.NOTHROW
            if text == "false":
                return ExceptionSpec.MAY_THROW
            return ExceptionSpec.UNRESOLVED
        if _s(tok) == "throw" and _s(tok.next) == "(":
            if tok.next.link is tok.next.next:
                return ExceptionSpec.NOTHROW
            return ExceptionSpec.MAY_THROW
        tok = tok.next
    return ExceptionSpec.MAY_THROW


def qualified_name(function) -> str:
    name = getattr(function, "name", None) or _s(getattr(function, "tokenDef", None)) or "?"
    nested = getattr(function, "nestedIn", None)
    if nested is not None and getattr(nested, "type", "") in ("Class", "Struct", "Union", "Namespace"):
        outer = getattr(nested, "className", None)
        if outer:
            return f"{outer}::{name}"
    return name


_DECL_SPECIFIERS = frozenset({
    "static", "inline", "extern", "virtual", "constexpr", "explicit",
    "friend", "__inline", "__forceinline",
})


def return_type_tokens(name_tok) -> List[Any]:
    """Tokens of the return type written before a function's name."""
    tok = getattr(name_tok, "previous", None)
    while _s(tok) == "::":
        tok = tok.previous
        if tok is not None and getattr(tok, "isName", False):
            tok = tok.previous
    collected = []
    while tok is not None and _s(tok) not in (";", "{", "}", ":", ")"):
        if _s(tok) == ">" and _s(getattr(getattr(tok, "link", None), "previous", None)) == "template":
            break
        collected.append(tok)
        tok = tok.previous
    collected.reverse()
    while collected and _s(collected[0]) in _DECL_SPECIFIERS:
        collected.pop(0)
    return collected



_INTEGER_MODIFIERS = frozenset({"signed", "unsigned"})


def ctype_from_tokens(tokens: List[Any]) -> CType:
    """Type spelled by declarator tokens such as ``const Box *``."""
    if not tokens:
        return UNKNOWN_TYPE
    spelling = " ".join(_s(t) for t in tokens)
    if any(_s(t) in ("<", "auto", "decltype") for t in tokens):
        return UnresolvedType(spelling)
    names = [_s(t) for t in tokens if getattr(t, "isName", False) and _s(t) not in _TYPE_NOISE]
    if not names:
        return UnresolvedType(spelling)
    builtin = " ".join(n for n in names if n not in _INTEGER_MODIFIERS) or "int"
    base: CType = BuiltinType(builtin) if builtin in _BUILTIN_TYPES else RecordType(names[-1])
    for _ in range(sum(1 for t in tokens if _s(t) == "*")):
        base = PointerType(base)
    return base


# ---------------------------------------------------------------------------
# Frontend
# ---------------------------------------------------------------------------

class DumpFrontend:
    """Translates the functions of one cppcheck ``Configuration``."""

    def __init__(self, cfg: Any) -> None:
        self.cfg = cfg
        self._decls: Dict[Any, Decl] = {}
        self._signatures: Dict[Any, FunctionSignature] = {}

    def iter_function_scopes(self) -> Iterator[Any]:
        for scope in getattr(self.cfg, "scopes", None) or []:
            if getattr(scope, "type", "") != "Function":
                continue
            if getattr(scope, "bodyStart", None) is None:
                continue
            if getattr(scope, "function", None) is None:
                continue
            yield scope

    @staticmethod
    def scope_file(scope) -> str:
        return getattr(getattr(scope, "bodyStart", None), "file", "") or ""

    @staticmethod
    def scope_name(scope) -> str:
        function = getattr(scope, "function", None)
        if function is not None:
            return qualified_name(function)
        return getattr(scope, "className", "") or "?"

    def build_function(self, scope) -> FunctionDef:
        function = scope.function
        name_tok = getattr(function, "token", None) or getattr(function, "tokenDef", None)

        arguments = getattr(function, "argument", None) or {}
        params = [
            self.decl_for_variable(arguments[idx])
            for idx in sorted(arguments, key=int)
            if arguments[idx] is not None
        ]

        rt_tokens = return_type_tokens(name_tok)
        rt_loc = token_location(rt_tokens[0]) if rt_tokens else token_location(name_tok)

        body = _BodyBuilder(self).compound(scope.bodyStart)
        return FunctionDef(
            name=qualified_name(function),
            body=body,
            params=params,
            return_type=ctype_from_tokens(rt_tokens),
            return_type_loc=rt_loc,
            loc=token_location(name_tok),
        )

    # ----- declarations -------------------------------------------------------

    def decl_for_variable(self, var) -> Decl:
        key = getattr(var, "Id", None) or id(var)
        cached = self._decls.get(key)
        if cached is not None:
            return cached
        name_tok = getattr(var, "nameToken", None)
        decl = Decl(
            key=key,
            name=_s(name_tok) or "?",
            type=_tok_type(name_tok),
            scope=_decl_scope(var),
            loc=token_location(name_tok),
        )
        self._decls[key] = decl
        return decl

    def decl_for_function(self, tok) -> Decl:
        function = getattr(tok, "function", None)
        ident = getattr(function, "Id", None) or _s(tok)
        key = f"fn:{ident}"
        cached = self._decls.get(key)
        if cached is None:
            cached = Decl(key, _s(tok), FunctionType(_s(tok)), DeclScope.FUNCTION, token_location(tok))
            self._decls[key] = cached
        return cached

    def signature_for(self, callee_tok) -> Optional[FunctionSignature]:
        tok = callee_tok
        while _s(tok) in (".", "::"):
            tok = _op2(tok)
        function = getattr(tok, "function", None)
        if function is None:
            if _s(tok).startswith("__builtin_"):
                return None
            # Function pointers and callees cppcheck could not resolve may throw.
            return FunctionSignature(ExceptionSpec.MAY_THROW)
        key = getattr(function, "Id", None) or id(function)
        sig = self._signatures.get(key)
        if sig is None:
            sig = FunctionSignature(exception_spec_of(function))
            self._signatures[key] = sig
        return sig


_UNSUPPORTED_STATEMENTS = frozenset({
    "switch", "case", "default", "break", "continue", "goto",
    "try", "catch", "throw", "else",
})

_SKIPPED_STATEMENTS = frozenset({
    "typedef", "using", "static_assert", "class", "struct", "enum", "union",
})

_UNARY_OPS = frozenset({"!", "~", "-", "+", "*", "&", "++", "--"})

_UNEVALUATED = frozenset({"sizeof", "alignof", "decltype", "typeid", "noexcept", "offsetof"})


class _BodyBuilder:
    """Recursive-descent pass over a function body's tokens."""

    def __init__(self, frontend: DumpFrontend) -> None:
        self.frontend = frontend

    # ----- statements -------------------------------------------------------

    def compound(self, lbrace) -> CompoundStmt:
        end = getattr(lbrace, "link", None)
        if end is None:
            raise UnsupportedConstruct("unmatched '{'", token_location(lbrace))
        body: List[Stmt] = []
        tok = lbrace.next
        while tok is not None and tok is not end:
            stmt, tok = self.statement(tok, end)
            if stmt is not None:
                body.append(stmt)
        return CompoundStmt(body, loc=token_location(lbrace))

    def statement(self, tok, limit) -> Tuple[Optional[Stmt], Any]:
        s = _s(tok)
        if s == "{":
            return self.compound(tok), tok.link.next
        if s == ";":
            return None, tok.next
        if s == "if":
            return self._if(tok, limit)
        if s == "while":
            return self._while(tok, limit)
        if s == "for":
            return self._for(tok, limit)
        if s == "do":
            return self._do(tok, limit)
        if s == "return":
            return self._return(tok, limit)
        if s in ("asm", "__asm", "__asm__"):
            end = _skip_to_semicolon(tok, limit)
            return AsmStmt(inputs=self._asm_operands(tok, end), loc=token_location(tok)), end.next
        if s in _UNSUPPORTED_STATEMENTS:
            raise UnsupportedConstruct(f"'{s}' statements are not supported", token_location(tok))
        if getattr(tok, "isName", False) and _s(tok.next) == ":":
            raise UnsupportedConstruct(f"label '{s}' is not supported", token_location(tok))
        end = _skip_to_semicolon(tok, limit)
        if s in _SKIPPED_STATEMENTS:
            return None, end.next
        return self._simple(tok, end, limit)

    def _sub_statement(self, tok, limit) -> Tuple[Stmt, Any]:
        if tok is None or tok is limit:
            raise UnsupportedConstruct("missing statement body", token_location(tok))
        stmt, nxt = self.statement(tok, limit)
        if stmt is None:
            stmt = CompoundStmt(loc=token_location(tok))
        return stmt, nxt

    def _paren(self, keyword_tok):
        paren = keyword_tok.next
        if _s(paren) != "(" or getattr(paren, "link", None) is None:
            raise UnsupportedConstruct(
                f"expected '(' after '{_s(keyword_tok)}'", token_location(keyword_tok)
            )
        return paren

    def _condition(self, paren) -> Tuple[Expr, Optional[Decl]]:
        tokens = _range(paren.next, paren.link)
        cond_var = None
        for t in tokens:
            var = getattr(t, "variable", None)
            if var is not None and getattr(var, "nameToken", None) is t:
                cond_var = self.frontend.decl_for_variable(var)
                break
        return self.expr(self._root(tokens, paren)), cond_var

    def _if(self, tok, limit):
        paren = self._paren(tok)
        cond, cond_var = self._condition(paren)
        then, nxt = self._sub_statement(paren.link.next, limit)
        else_ = None
        if _s(nxt) == "else":
            else_, nxt = self._sub_statement(nxt.next, limit)
        return IfStmt(cond, then, else_, cond_var, loc=token_location(tok)), nxt

    def _while(self, tok, limit):
        paren = self._paren(tok)
        cond, cond_var = self._condition(paren)
        body, nxt = self._sub_statement(paren.link.next, limit)
        return WhileStmt(cond, body, cond_var, loc=token_location(tok)), nxt

    def _for(self, tok, limit):
        paren = self._paren(tok)
        parts: List[List[Any]] = [[]]
        t = paren.next
        while t is not None and t is not paren.link:
            if _s(t) == ";":
                parts.append([])
            else:
                parts[-1].append(t)
                if _s(t) in ("(", "[", "{") and getattr(t, "link", None) is not None:
                    parts[-1].extend(_range(t.next, t.link.next))
                    t = t.link
            t = t.next
        if len(parts) != 3:
            raise UnsupportedConstruct("range-based for loops are not supported", token_location(tok))

        init_tokens, cond_tokens, inc_tokens = parts
        init = self._simple_from_tokens(init_tokens, tok) if init_tokens else None
        cond = self.expr(self._root(cond_tokens, tok)) if cond_tokens else None
        inc = self.expr(self._root(inc_tokens, tok)) if inc_tokens else None
        cond_var = None
        for t in cond_tokens:
            var = getattr(t, "variable", None)
            if var is not None and getattr(var, "nameToken", None) is t:
                cond_var = self.frontend.decl_for_variable(var)
        body, nxt = self._sub_statement(paren.link.next, limit)
        return ForStmt(body, init, cond, inc, cond_var, loc=token_location(tok)), nxt

    def _do(self, tok, limit):
        body, nxt = self._sub_statement(tok.next, limit)
        if _s(nxt) != "while":
            raise UnsupportedConstruct("expected 'while' after do-body", token_location(nxt or tok))
        paren = self._paren(nxt)
        cond = self.expr(self._root(_range(paren.next, paren.link), paren))
        end = paren.link.next
        if _s(end) != ";":
            raise UnsupportedConstruct("expected ';' after do-while", token_location(paren))
        return DoStmt(body, cond, loc=token_location(tok)), end.next

    def _asm_operands(self, tok, end) -> List[Expr]:
        # Cppcheck usually folds operand lists into the template string;
        # only variables it left as tokens are recovered.
        operands = []
        tok = tok.next
        while tok is not None and tok is not end:
            if getattr(tok, "variable", None) is not None:
                operands.append(self._name(tok, token_location(tok)))
            tok = tok.next
        return operands

    def _return(self, tok, limit):
        end = _skip_to_semicolon(tok, limit)
        value = None
        if tok.next is not end:
            value = self.expr(self._root(_range(tok.next, end), tok))
        return ReturnStmt(value, loc=token_location(tok)), end.next

    def _simple(self, tok, end, limit):
        stmt = self._simple_from_tokens(_range(tok, end), tok)
        nxt = end.next
        if isinstance(stmt, DeclStmt) and len(stmt.decls) == 1 and stmt.decls[0].init is None:
            nxt = self._fold_split_init(stmt.decls[0], nxt, limit)
        return stmt, nxt

    def _fold_split_init(self, var: VarDecl, tok, limit):
        """Attach a ``x = e ;`` that cppcheck split off a declaration."""
        assign = getattr(tok, "next", None)
        if tok is None or tok is limit or _s(assign) != "=":
            return tok
        if not getattr(assign, "isSplittedVarDeclEq", False):
            return tok
        lhs_var = getattr(tok, "variable", None)
        if lhs_var is None or (getattr(lhs_var, "Id", None) or id(lhs_var)) != var.decl.key:
            return tok
        end = _skip_to_semicolon(tok, limit)
        var.init = self.expr(_op2(assign))
        return end.next

    def _simple_from_tokens(self, tokens: List[Any], anchor) -> Optional[Stmt]:
        declared = []
        for t in tokens:
            var = getattr(t, "variable", None)
            if var is not None and getattr(var, "nameToken", None) is t:
                declared.append((t, var))
        if declared:
            decls = [VarDecl(self.frontend.decl_for_variable(var), self._initializer(name_tok, var))
                     for name_tok, var in declared]
            return DeclStmt(decls, loc=token_location(tokens[0]))
        root = self._root(tokens, anchor)
        return ExprStmt(self.expr(root), loc=token_location(tokens[0]))

    def _initializer(self, name_tok, var) -> Optional[Expr]:
        parent = _parent(name_tok)
        if parent is None or _op1(parent) is not name_tok:
            return None
        if _s(parent) == "=":
            return self.expr(_op2(parent))
        if _s(parent) in ("(", "{"):
            args = [self.expr(a) for a in _flatten_args(_op2(parent))]
            decl_type = self.frontend.decl_for_variable(var).type
            if isinstance(decl_type, PointerType) and len(args) == 1:
                return args[0]
            return ConstructExpr(args, decl_type, loc=token_location(parent))
        return None

    @staticmethod
    def _root(tokens: List[Any], anchor):
        if not tokens:
            raise UnsupportedConstruct("empty expression", token_location(anchor))
        ids: Set[int] = {id(t) for t in tokens}
        for t in tokens:
            if _has_ast(t):
                root = t
                while _parent(root) is not None and id(_parent(root)) in ids:
                    root = _parent(root)
                return root
        if len(tokens) == 1:
            return tokens[0]
        raise UnsupportedConstruct(
            "cannot recover an expression from '"
            + " ".join(_s(t) for t in tokens) + "'",
            token_location(tokens[0]),
        )

    # ----- expressions ------------------------------------------------------

    def expr(self, tok) -> Expr:
        if tok is None:
            raise UnsupportedConstruct("missing expression")
        s = _s(tok)
        loc = token_location(tok)
        op1, op2 = _op1(tok), _op2(tok)

        if s == "(":
            return self._paren_expr(tok, loc)
        if s == ".":
            return MemberExpr(
                self.expr(op1), _s(op2),
                _tok_type(tok) if getattr(tok, "valueType", None) is not None else _tok_type(op2),
                arrow=getattr(tok, "originalName", "") == "->",
                loc=loc,
            )
        if s == "::":
            return self.expr(op2)
        if s == "?":
            if _s(op2) != ":":
                raise UnsupportedConstruct("malformed conditional expression", loc)
            return ConditionalExpr(
                self.expr(op1), self.expr(_op1(op2)), self.expr(_op2(op2)),
                _tok_type(tok), loc=loc,
            )
        if s == "new":
            return self._new_expr(tok, loc)
        if s == "delete":
            return UnaryOperator("delete", self.expr(op1), BuiltinType("void"), loc=loc)
        if s == "this":
            return ThisExpr(_tok_type(tok), loc=loc)
        if s == "throw":
            raise UnsupportedConstruct("throw expressions are not supported", loc)
        if s == "{":
            raise UnsupportedConstruct("initializer lists are not supported", loc)
        if s == "[":
            if op1 is None or op2 is None:
                raise UnsupportedConstruct("lambda expressions are not supported", loc)
            return BinaryOperator("[]", self.expr(op1), self.expr(op2), _tok_type(tok), loc=loc)

        literal = self._literal(tok, loc)
        if literal is not None:
            return literal

        if getattr(tok, "isName", False) and op1 is None and op2 is None:
            return self._name(tok, loc)

        if op1 is not None and op2 is not None:
            return BinaryOperator(s, self.expr(op1), self.expr(op2), _tok_type(tok), loc=loc)
        if op1 is not None and s in _UNARY_OPS:
            return UnaryOperator(s, self.expr(op1), _tok_type(tok), loc=loc)
        raise UnsupportedConstruct(f"unrecognised expression token '{s}'", loc)

    def _literal(self, tok, loc) -> Optional[Literal]:
        s = _s(tok)
        if getattr(tok, "isNumber", False):
            kind = LiteralKind.FLOATING if getattr(tok, "isFloat", False) else LiteralKind.INTEGER
        elif getattr(tok, "isString", False):
            kind = LiteralKind.STRING
        elif getattr(tok, "isChar", False):
            kind = LiteralKind.CHAR
        elif getattr(tok, "isBoolean", False) or s in ("true", "false"):
            kind = LiteralKind.BOOL
        elif s in ("nullptr", "NULL"):
            kind = LiteralKind.NULLPTR
        else:
            return None
        return Literal(kind, s, _tok_type(tok), loc=loc)

    def _name(self, tok, loc) -> Expr:
        var = getattr(tok, "variable", None)
        if var is not None:
            decl = self.frontend.decl_for_variable(var)
            if decl.scope is DeclScope.RECORD:
                return _implicit_member(var, decl, loc)
            return DeclRefExpr(decl, loc=loc)
        if getattr(tok, "function", None) is not None:
            return DeclRefExpr(self.frontend.decl_for_function(tok), loc=loc)
        return NonInstantiatedExpr("unresolved-lookup", _tok_type(tok), loc=loc)

    def _callee(self, tok) -> Expr:
        s = _s(tok)
        if s == "::":
            return self._callee(_op2(tok))
        if s == ".":
            return MemberExpr(
                self.expr(_op1(tok)), _s(_op2(tok)), FunctionType(_s(_op2(tok))),
                arrow=getattr(tok, "originalName", "") == "->",
                loc=token_location(tok),
            )
        if getattr(tok, "isName", False) and _op1(tok) is None and _op2(tok) is None:
            if getattr(tok, "variable", None) is not None:
                return self._name(tok, token_location(tok))
            return DeclRefExpr(self.frontend.decl_for_function(tok), loc=token_location(tok))
        return self.expr(tok)

    def _paren_expr(self, tok, loc) -> Expr:
        op1, op2 = _op1(tok), _op2(tok)
        if getattr(tok, "isCast", False):
            return CastExpr(self.expr(op1 if op1 is not None else op2), _tok_type(tok), loc=loc)
        if op1 is None:
            raise UnsupportedConstruct("unrecognised parenthesised expression", loc)
        if _s(op1) in _UNEVALUATED:
            return NonInstantiatedExpr(_s(op1), _tok_type(tok), loc=loc)
        if _is_type_name(op1):
            args = [self.expr(a) for a in _flatten_args(op2)]
            return ConstructExpr(args, _tok_type(tok), loc=loc)
        callee = self._callee(op1)
        args = [self.expr(a) for a in _flatten_args(op2)]
        return CallExpr(callee, args, _tok_type(tok), self.frontend.signature_for(op1), loc=loc)

    def _new_expr(self, tok, loc) -> NewExpr:
        target = _op1(tok)
        initializer = None
        type_tok = target
        if _s(target) == "(":
            type_tok = _op1(target)
            args = [self.expr(a) for a in _flatten_args(_op2(target))]
            if args:
                initializer = ConstructExpr(args, _tok_type(type_tok), loc=token_location(target))
        allocated = _tok_type(tok)
        if not isinstance(allocated, PointerType) and getattr(type_tok, "isName", False):
            allocated = PointerType(RecordType(_s(type_tok)))
        return NewExpr(allocated, initializer=initializer, loc=loc)


def _implicit_member(var, decl: Decl, loc: Location) -> MemberExpr:
    """A member named without a receiver, read through ``this``."""
    owner = getattr(getattr(var, "scope", None), "className", "") or ""
    this_type = PointerType(RecordType(owner)) if owner else UNKNOWN_TYPE
    return MemberExpr(ThisExpr(this_type, loc=loc), decl.name, decl.type, arrow=True, loc=loc)


def _is_type_name(tok) -> bool:
    if not getattr(tok, "isName", False):
        return False
    if getattr(tok, "variable", None) is not None or getattr(tok, "function", None) is not None:
        return False
    return getattr(tok, "type", None) is not None or bool(getattr(tok, "isStandardType", False))
