# tests/test_frontend.py
"""
Tests for the cppcheck dump frontend.

Token streams are built with ``make_token_chain`` and AST links attached
by hand with ``ast``, mirroring what ``cppcheck --dump`` records.
"""

import sys
from unittest.mock import patch

import pytest

from refcount_checker import errors
from refcount_checker.annotations import Annotation
from refcount_checker.dataflow_engine import analyze_function
from refcount_checker.errors import UnsupportedConstruct
from refcount_checker.frontend import (
    DumpFrontend,
    FrontendUnavailable,
    ctype_from_tokens,
    ctype_from_value_type,
    exception_spec_of,
    load_dump,
    qualified_name,
    return_type_tokens,
    token_location,
)
from refcount_checker.nodes import (
    BinaryOperator,
    BuiltinType,
    CallExpr,
    CastExpr,
    CompoundStmt,
    DeclRefExpr,
    DeclScope,
    DeclStmt,
    DoStmt,
    ExceptionSpec,
    ExprStmt,
    ForStmt,
    IfStmt,
    Literal,
    LiteralKind,
    MemberExpr,
    NewExpr,
    PointerType,
    RecordType,
    ReturnStmt,
    UnaryOperator,
    UnresolvedType,
    UNKNOWN_TYPE,
)
from tests.conftest import (
    MockConfiguration,
    MockFunction,
    MockScope,
    MockToken,
    MockValueType,
    MockVariable,
    ast,
    box_value_type,
    declared_function,
    function_scope,
    int_value_type,
    make_token_chain,
    owned_local_scope,
)


def _build(scope):
    return DumpFrontend(MockConfiguration(scopes=[scope])).build_function(scope)


def _global(name, value_type):
    return MockVariable(f"g-{name}", nameToken=MockToken(name, valueType=value_type), isLocal=False, isGlobal=True,
                        scope=MockScope("Global"))


def _use(tokens, var, value_type, *indices):
    for i in indices:
        tokens[i].variable = var
        tokens[i].valueType = value_type


# ── Types, locations, signatures ─────────────────────────────────

class TestValueTypes:

    def test_missing_value_type(self):
        assert ctype_from_value_type(None) == UNKNOWN_TYPE

    def test_record_pointer(self):
        assert ctype_from_value_type(box_value_type()) == PointerType(RecordType("Box"))

    def test_record_name_from_original_type(self):
        vt = MockValueType("record", 1, None, "const struct BoxList *")
        assert ctype_from_value_type(vt) == PointerType(RecordType("BoxList"))

    def test_qualified_original_type(self):
        vt = MockValueType("record", 0, None, "ns::BoxDict")
        assert ctype_from_value_type(vt) == RecordType("BoxDict")

    def test_builtin(self):
        assert ctype_from_value_type(int_value_type()) == BuiltinType("int")
        assert ctype_from_value_type(MockValueType("char", 2)) == PointerType(PointerType(BuiltinType("char")))

    def test_unresolved(self):
        assert ctype_from_value_type(MockValueType("container")) == UnresolvedType("container")
        assert ctype_from_value_type(MockValueType("unknown", 1)) == PointerType(UnresolvedType("unknown"))


class TestDeclaratorTypes:

    @pytest.mark.parametrize("source,expected", [
        ("const Box *", PointerType(RecordType("Box"))),
        ("ns :: Box *", PointerType(RecordType("Box"))),
        ("void", BuiltinType("void")),
        ("unsigned long", BuiltinType("long")),
        ("unsigned", BuiltinType("int")),
        ("char * *", PointerType(PointerType(BuiltinType("char")))),
    ])
    def test_spelled_types(self, source, expected):
        assert ctype_from_tokens(make_token_chain(source)) == expected

    def test_templates_are_unresolved(self):
        t = make_token_chain("std :: vector < Box * >")
        assert isinstance(ctype_from_tokens(t), UnresolvedType)

    def test_no_tokens(self):
        assert ctype_from_tokens([]) == UNKNOWN_TYPE


class TestLocations:

    def test_plain_token(self):
        tok = MockToken("x", file="a.cpp", linenr=4, column=9)
        loc = token_location(tok)
        assert (loc.file, loc.line, loc.column) == ("a.cpp", 4, 9)
        assert not loc.is_macro

    def test_macro_token(self):
        tok = MockToken("Box", file="a.cpp", linenr=4, column=9, macroName="BORROWED")
        loc = token_location(tok)
        assert loc.is_macro
        assert loc.expansion.name == "BORROWED"
        assert loc.spelling() == loc.expansion.caller

    def test_no_token(self):
        assert token_location(None).line == 0


class TestExceptionSpecs:

    @pytest.mark.parametrize("source,expected", [
        ("Box * g ( ) ;", ExceptionSpec.MAY_THROW),
        ("Box * g ( int x ) const ;", ExceptionSpec.MAY_THROW),
        ("Box * g ( ) noexcept ;", ExceptionSpec.NOTHROW),
        ("Box * g ( ) noexcept ( true ) ;", ExceptionSpec.NOTHROW),
        ("Box * g ( ) noexcept ( false ) ;", ExceptionSpec.MAY_THROW),
        ("Box * g ( ) throw ( ) ;", ExceptionSpec.NOTHROW),
        ("Box * g ( ) throw ( Err ) ;", ExceptionSpec.MAY_THROW),
        ("Box * g ( ) noexcept ( N > 1 ) ;", ExceptionSpec.UNRESOLVED),
        ("void g ( ) noexcept { }", ExceptionSpec.NOTHROW),
    ])
    def test_declarator(self, source, expected):
        assert exception_spec_of(declared_function(source, "g")) is expected

    def test_no_tokens(self):
        assert exception_spec_of(MockFunction("g")) is ExceptionSpec.UNRESOLVED

    def test_definition_noexcept_wins(self):
        decl = declared_function("void g ( ) ;", "g")
        definition = declared_function("void g ( ) noexcept { }", "g")
        fn = MockFunction("g", token=definition.tokenDef, tokenDef=decl.tokenDef)
        assert exception_spec_of(fn) is ExceptionSpec.NOTHROW


class TestReturnType:

    def test_plain(self):
        t = make_token_chain("Box * make ( ) ;")
        assert [x.str for x in return_type_tokens(t[2])] == ["Box", "*"]

    def test_specifiers_are_skipped(self):
        t = make_token_chain("static inline Box * make ( ) ;")
        assert [x.str for x in return_type_tokens(t[4])] == ["Box", "*"]

    def test_stops_at_previous_declaration(self):
        t = make_token_chain("int x ; const Box * make ( ) ;")
        assert [x.str for x in return_type_tokens(t[6])] == ["const", "Box", "*"]

    def test_qualified_definition(self):
        t = make_token_chain("Box * BoxList :: get ( ) ;")
        assert [x.str for x in return_type_tokens(t[4])] == ["Box", "*"]

    def test_qualified_name(self):
        fn = MockFunction("append", nestedIn=MockScope("Class", className="BoxList"))
        assert qualified_name(fn) == "BoxList::append"
        assert qualified_name(MockFunction("main", nestedIn=MockScope("Global"))) == "main"


# ── Function scopes ──────────────────────────────────────────────

class TestFunctionScopes:

    def test_only_function_bodies(self):
        good = owned_local_scope()
        scopes = [
            MockScope("Class", className="Box"),
            MockScope("Function", className="decl_only", function=MockFunction("decl_only")),
            good,
        ]
        frontend = DumpFrontend(MockConfiguration(scopes=scopes))
        assert list(frontend.iter_function_scopes()) == [good]
        assert frontend.scope_name(good) == "make"
        assert frontend.scope_file(good) == "test.cpp"

    def test_return_type(self):
        func = _build(owned_local_scope())
        assert func.return_type == PointerType(RecordType("Box"))

    def test_parameters(self):
        t = make_token_chain("void f ( Box * p , int n ) { }")
        p = MockVariable("vp", nameToken=t[5], isLocal=False, isArgument=True)
        n = MockVariable("vn", nameToken=t[8], isLocal=False, isArgument=True)
        t[5].valueType = box_value_type()
        t[8].valueType = int_value_type()
        func = _build(function_scope(t, "f", 10, argument={2: n, 1: p}))
        assert [d.name for d in func.params] == ["p", "n"]
        assert func.params[0].scope is DeclScope.PARAMETER
        assert func.params[0].type == PointerType(RecordType("Box"))


# ── Statements ───────────────────────────────────────────────────

class TestStatements:

    def test_split_declaration_is_folded(self):
        func = _build(owned_local_scope())
        decl_stmt, ret = func.body.body
        assert isinstance(decl_stmt, DeclStmt)
        var = decl_stmt.decls[0]
        assert var.decl.name == "b"
        assert isinstance(var.init, CallExpr)
        assert var.init.signature.exception_spec is ExceptionSpec.MAY_THROW
        assert isinstance(ret, ReturnStmt)
        assert isinstance(ret.value, DeclRefExpr)
        assert analyze_function(func).ok

    def test_leaking_function(self):
        result = analyze_function(_build(owned_local_scope(consume=False)))
        assert result.violations[0].error_id == errors.REFCOUNT_LEAK

    def test_direct_initialization(self):
        t = make_token_chain("void f ( ) { Box * b ( create ( ) ) ; }")
        b = MockVariable("vb", nameToken=t[7])
        _use(t, b, box_value_type(), 7)
        t[9].function = declared_function("Box * create ( ) noexcept ;", "create")
        t[10].valueType = box_value_type()
        ast(t[10], t[9])
        ast(t[8], t[7], t[10])
        func = _build(function_scope(t, "f", 4))
        var = func.body.body[0].decls[0]
        assert isinstance(var.init, CallExpr)
        assert var.init.signature.exception_spec is ExceptionSpec.NOTHROW
        assert analyze_function(func).violations[0].error_id == errors.REFCOUNT_LEAK

    def test_if_else(self):
        t = make_token_chain("void f ( int n ) { if ( n ) { } else { } }")
        n = MockVariable("vn", nameToken=t[4], isLocal=False, isArgument=True)
        _use(t, n, int_value_type(), 4, 9)
        ast(t[8], t[7], t[9])
        func = _build(function_scope(t, "f", 6, argument={1: n}))
        (stmt,) = func.body.body
        assert isinstance(stmt, IfStmt)
        assert isinstance(stmt.cond, DeclRefExpr)
        assert isinstance(stmt.then, CompoundStmt)
        assert isinstance(stmt.else_, CompoundStmt)
        assert stmt.cond_var is None

    def test_if_without_braces(self):
        t = make_token_chain("void f ( ) { if ( true ) return ; }")
        (stmt,) = _build(function_scope(t, "f", 4)).body.body
        assert isinstance(stmt.then, ReturnStmt)
        assert stmt.else_ is None

    def test_condition_declaration(self):
        t = make_token_chain("void f ( ) { if ( int n = 1 ) { } }")
        n = MockVariable("vn", nameToken=t[8])
        _use(t, n, int_value_type(), 8)
        ast(t[9], t[8], t[10])
        (stmt,) = _build(function_scope(t, "f", 4)).body.body
        assert stmt.cond_var.name == "n"
        assert isinstance(stmt.cond, BinaryOperator)

    def test_for_loop(self):
        t = make_token_chain("void f ( ) { for ( i = 0 ; i < 3 ; i ++ ) { } }")
        i = _global("i", int_value_type())
        _use(t, i, int_value_type(), 7, 11, 15)
        ast(t[8], t[7], t[9])
        ast(t[12], t[11], t[13])
        ast(t[16], t[15])
        func = _build(function_scope(t, "f", 4))
        (loop,) = func.body.body
        assert isinstance(loop, ForStmt)
        assert isinstance(loop.init, ExprStmt)
        assert isinstance(loop.cond, BinaryOperator) and loop.cond.op == "<"
        assert isinstance(loop.inc, UnaryOperator) and loop.inc.op == "++"
        assert analyze_function(func).ok

    def test_empty_for_clauses(self):
        t = make_token_chain("void f ( ) { for ( ; ; ) { } }")
        (loop,) = _build(function_scope(t, "f", 4)).body.body
        assert loop.init is None and loop.cond is None and loop.inc is None

    def test_while_loop(self):
        t = make_token_chain("void f ( ) { while ( false ) { } }")
        (loop,) = _build(function_scope(t, "f", 4)).body.body
        assert isinstance(loop.cond, Literal) and loop.cond.kind is LiteralKind.BOOL

    def test_do_while_false(self):
        t = make_token_chain("void f ( ) { do { } while ( false ) ; }")
        func = _build(function_scope(t, "f", 4))
        (stmt,) = func.body.body
        assert isinstance(stmt, DoStmt)
        assert analyze_function(func).ok

    def test_asm(self):
        t = make_token_chain('void f ( ) { asm ( "nop" ) ; }')
        (stmt,) = _build(function_scope(t, "f", 4)).body.body
        assert stmt.inputs == [] and stmt.outputs == []

    def test_asm_operand_variables(self):
        t = make_token_chain('void f ( ) { asm ( "mov" , b ) ; }')
        _use(t, _global("b", box_value_type()), box_value_type(), 9)
        (stmt,) = _build(function_scope(t, "f", 4)).body.body
        assert [e.decl.name for e in stmt.inputs] == ["b"]

    def test_type_declarations_are_skipped(self):
        t = make_token_chain("void f ( ) { typedef int T ; return ; }")
        (stmt,) = _build(function_scope(t, "f", 4)).body.body
        assert isinstance(stmt, ReturnStmt) and stmt.value is None

    @pytest.mark.parametrize("source", [
        "void f ( ) { switch ( x ) { } }",
        "void f ( ) { goto out ; }",
        "void f ( ) { throw 1 ; }",
        "void f ( ) { try { } catch ( ... ) { } }",
        "void f ( ) { out : return ; }",
        "void f ( ) { for ( Box * b : items ) { } }",
        "void f ( ) { while ( true ) { break ; } }",
    ])
    def test_unsupported_statements(self, source):
        t = make_token_chain(source)
        with pytest.raises(UnsupportedConstruct):
            _build(function_scope(t, "f", 4))


# ── Expressions ──────────────────────────────────────────────────

class TestExpressions:

    def test_null_cast(self):
        t = make_token_chain("void f ( ) { Box * b ; b = ( Box * ) 0 ; }")
        b = MockVariable("vb", nameToken=t[7])
        _use(t, b, box_value_type(), 7, 9)
        t[11].isCast = True
        t[11].valueType = box_value_type()
        ast(t[11], t[15])
        ast(t[10], t[9], t[11])
        t[10].isSplittedVarDeclEq = True
        func = _build(function_scope(t, "f", 4))
        init = func.body.body[0].decls[0].init
        assert isinstance(init, CastExpr)
        assert isinstance(init.sub, Literal) and init.sub.kind is LiteralKind.INTEGER
        assert analyze_function(func).ok

    def test_new(self):
        t = make_token_chain("void f ( ) { Box * b ; b = new Box ( ) ; }")
        b = MockVariable("vb", nameToken=t[7])
        _use(t, b, box_value_type(), 7, 9)
        ast(t[13], t[12])
        ast(t[11], t[13])
        ast(t[10], t[9], t[11])
        t[10].isSplittedVarDeclEq = True
        func = _build(function_scope(t, "f", 4))
        init = func.body.body[0].decls[0].init
        assert isinstance(init, NewExpr)
        assert init.type == PointerType(RecordType("Box"))
        assert analyze_function(func).ok

    def test_method_call(self):
        t = make_token_chain("void f ( ) { h . run ( ) ; }")
        h = _global("h", MockValueType("record", 0, MockScope("Class", className="Holder")))
        _use(t, h, MockValueType("record", 0, MockScope("Class", className="Holder")), 5)
        t[7].function = declared_function("void run ( ) noexcept ;", "run")
        ast(t[6], t[5], t[7])
        ast(t[8], t[6])
        (stmt,) = _build(function_scope(t, "f", 4)).body.body
        call = stmt.expr
        assert isinstance(call, CallExpr)
        assert isinstance(call.callee, MemberExpr) and call.callee.member == "run"
        assert call.signature.exception_spec is ExceptionSpec.NOTHROW

    def test_unresolved_callee(self):
        t = make_token_chain("void f ( ) { log ( 1 , 2 ) ; }")
        ast(t[8], t[7], t[9])
        ast(t[6], t[5], t[8])
        (stmt,) = _build(function_scope(t, "f", 4)).body.body
        assert stmt.expr.signature.exception_spec is ExceptionSpec.MAY_THROW
        assert [a.text for a in stmt.expr.args] == ["1", "2"]

    def test_builtin_callee_has_no_signature(self):
        t = make_token_chain("void f ( ) { __builtin_trap ( ) ; }")
        ast(t[6], t[5])
        (stmt,) = _build(function_scope(t, "f", 4)).body.body
        assert stmt.expr.signature is None

    def test_member_read_through_this(self):
        t = make_token_chain("void f ( ) { m ; }")
        m = MockVariable("m", nameToken=MockToken("m", valueType=box_value_type()),
                         isLocal=False, scope=MockScope("Class", className="Registry"))
        _use(t, m, box_value_type(), 5)
        (stmt,) = _build(function_scope(t, "f", 4)).body.body
        assert isinstance(stmt.expr, MemberExpr) and stmt.expr.member == "m"
        assert stmt.expr.arrow
        assert stmt.expr.base.type == PointerType(RecordType("Registry"))
        assert stmt.expr.type == PointerType(RecordType("Box"))

    def test_static_member_through_qualifier(self):
        t = make_token_chain("void f ( ) { Registry :: s ; }")
        s = MockVariable("s", nameToken=MockToken("s", valueType=box_value_type()),
                         isLocal=False, scope=MockScope("Class", className="Registry"))
        _use(t, s, box_value_type(), 7)
        ast(t[6], t[5], t[7])
        (stmt,) = _build(function_scope(t, "f", 4)).body.body
        assert isinstance(stmt.expr, MemberExpr) and stmt.expr.member == "s"

    def test_sizeof_is_opaque(self):
        t = make_token_chain("void f ( ) { sizeof ( int ) ; }")
        ast(t[6], t[5])
        (stmt,) = _build(function_scope(t, "f", 4)).body.body
        assert stmt.expr.kind == "sizeof"

    def test_ternary(self):
        t = make_token_chain("void f ( ) { c ? 1 : 2 ; }")
        c = _global("c", int_value_type())
        _use(t, c, int_value_type(), 5)
        ast(t[8], t[7], t[9])
        ast(t[6], t[5], t[8])
        (stmt,) = _build(function_scope(t, "f", 4)).body.body
        cond = stmt.expr
        assert cond.true_expr.text == "1" and cond.false_expr.text == "2"

    def test_global_scope(self):
        t = make_token_chain("void f ( ) { g ; }")
        g = _global("g", box_value_type())
        _use(t, g, box_value_type(), 5)
        (stmt,) = _build(function_scope(t, "f", 4)).body.body
        assert stmt.expr.decl.scope is DeclScope.TRANSLATION_UNIT

    def test_lambda_is_unsupported(self):
        t = make_token_chain("void f ( ) { [ ] ; }")
        with pytest.raises(UnsupportedConstruct):
            _build(function_scope(t, "f", 4))


# ── Annotations through the frontend ─────────────────────────────

class TestReturnAnnotation:

    def _getter(self, macro):
        t = make_token_chain("Box * get ( ) { return g ; }")
        t[0].macroName = macro
        t[1].macroName = macro
        g = _global("g", box_value_type())
        _use(t, g, box_value_type(), 7)
        ast(t[6], t[7])
        return _build(function_scope(t, "get", 5))

    def test_borrowed_getter(self):
        result = analyze_function(self._getter("BORROWED"))
        assert result.annotation is Annotation.BORROWED
        assert result.ok

    def test_unannotated_getter(self):
        result = analyze_function(self._getter(None))
        assert result.violations[0].error_id == errors.RETURN_WITHOUT_REFERENCE


class TestMemberAccess:

    def _getter(self, macro):
        t = make_token_chain("Box * get ( ) { return m ; }")
        t[0].macroName = macro
        t[1].macroName = macro
        m = MockVariable("m", nameToken=MockToken("m", valueType=box_value_type()),
                         isLocal=False, scope=MockScope("Class", className="BoxList"))
        _use(t, m, box_value_type(), 7)
        ast(t[6], t[7])
        return _build(function_scope(t, "get", 5))

    def test_borrowed_member_getter(self):
        assert analyze_function(self._getter("BORROWED")).ok

    def test_unannotated_member_getter(self):
        result = analyze_function(self._getter(None))
        assert [v.error_id for v in result.violations] == [errors.RETURN_WITHOUT_REFERENCE]


class TestCallThroughPointer:

    def test_outstanding_reference_across_pointer_call(self):
        t = make_token_chain("Box * make ( ) { Box * b ; b = create ( ) ; fp ( ) ; return b ; }")
        b = MockVariable("make-b", nameToken=t[8])
        _use(t, b, box_value_type(), 8, 10, 21)
        t[12].function = declared_function("Box * create ( ) ;", "create")
        t[13].valueType = box_value_type()
        ast(t[13], t[12])
        ast(t[11], t[10], t[13])
        t[11].isSplittedVarDeclEq = True
        _use(t, _global("fp", None), None, 16)
        ast(t[17], t[16])
        ast(t[20], t[21])
        result = analyze_function(_build(function_scope(t, "make", 5)))
        assert [v.error_id for v in result.violations] == [errors.UNSAFE_CALL]


class TestLoadDump:

    def test_missing_cppcheckdata(self):
        with patch.dict(sys.modules, {"cppcheckdata": None}):
            with pytest.raises(FrontendUnavailable):
                load_dump("x.dump")
