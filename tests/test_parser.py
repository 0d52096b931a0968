"""
Particle Script Parser Tests

Declarations, statements, expression structure and the errors found while
parsing.
"""

import pytest
from particle_script import LexError, MemoryFileSystem, ParseError, Parser, parse_expression
from particle_script.ast import *
from particle_script.model import Phase, SystemValue, ValueType, VariableFamily
from particle_script.tokens import TokenType


def parse(source, files=None):
    return Parser(source, "main.ps", MemoryFileSystem(files)).parse()


def emitter_source(body, name="e", extra='material "m"'):
    return f"emitter {name} {{\n{extra}\n{body}\n}}"


def update_body(source):
    script = parse(source)
    return script.emitters[-1].phases[Phase.UPDATE]


# =============================================================================
# Expressions
# =============================================================================

class TestExpressions:

    def test_precedence(self):
        expr = parse_expression("2 + 3 * 4")
        assert isinstance(expr, BinaryOp)
        assert expr.operator == TokenType.PLUS
        assert isinstance(expr.right, BinaryOp)
        assert expr.right.operator == TokenType.STAR

    def test_parentheses(self):
        expr = parse_expression("(2 + 3) * 4")
        assert expr.operator == TokenType.STAR
        assert expr.left.operator == TokenType.PLUS

    def test_left_associative(self):
        expr = parse_expression("1 - 2 - 3")
        assert expr.operator == TokenType.MINUS
        assert isinstance(expr.left, BinaryOp)
        assert isinstance(expr.right, Literal)

    def test_comparison_binds_looser_than_arithmetic(self):
        expr = parse_expression("time_delta + 1 < 2")
        assert expr.operator == TokenType.LT
        assert expr.left.operator == TokenType.PLUS

    def test_logic_binds_loosest(self):
        expr = parse_expression("time_delta < 1 and total_time > 2")
        assert expr.operator == TokenType.AND
        assert expr.left.operator == TokenType.LT
        assert expr.right.operator == TokenType.GT

    def test_unary(self):
        expr = parse_expression("-time_delta * 2")
        assert expr.operator == TokenType.STAR
        assert isinstance(expr.left, Negate)
        assert isinstance(parse_expression("not time_delta"), Not)

    def test_literals_round_to_float32(self):
        assert parse_expression("0.1").value == pytest.approx(0.1)
        assert parse_expression("0.1").value != 0.1

    def test_vector_literal(self):
        expr = parse_expression("{1, 2, 3}")
        assert isinstance(expr, Compound)
        assert expr.literal_values() == (1.0, 2.0, 3.0)

    def test_system_values(self):
        expr = parse_expression("entity_position")
        assert isinstance(expr, SystemValueRef)
        assert expr.values == (SystemValue.ENTITY_POSITION_X, SystemValue.ENTITY_POSITION_Y,
                               SystemValue.ENTITY_POSITION_Z)

    def test_swizzle(self):
        expr = parse_expression("entity_position.zx")
        assert isinstance(expr, Swizzle)
        assert expr.lanes == [2, 0]

    def test_builtin_call(self):
        expr = parse_expression("curve(total_time, 0, 1, 1, 0)")
        assert isinstance(expr, BuiltinCall)
        assert expr.builtin.name == 'curve'
        assert len(expr.args) == 5


class TestExpressionErrors:

    @pytest.mark.parametrize("source,message", [
        ("unknown_name", "Unknown identifier 'unknown_name'"),
        ("sin(1, 2)", "'sin' expects 1 argument(s), got 2"),
        ("curve(1, 2)", "'curve' expects t followed by key/value pairs, got 2"),
        ("entity_position.q", "Invalid subscript '.q'"),
        ("time_delta.x", "Cannot subscript a scalar value with '.x'"),
        ("entity_position.w", "out of range"),
        ("kill()", "'kill' does not return a value"),
        ("{1, 2, 3, 4, 5}", "at most 4 elements"),
        ("1 +", "Expected an expression"),
        ("(1 + 2", "Expected ')'"),
    ])
    def test_errors(self, source, message):
        with pytest.raises(ParseError) as info:
            parse_expression(source)
        assert message in info.value.message

    def test_lex_error_surfaces(self):
        with pytest.raises(LexError):
            parse_expression("1 + 2.")


# =============================================================================
# Declarations
# =============================================================================

class TestDeclarations:

    def test_constants(self):
        script = parse("const speed = 2 * 3;\nconst up = {0, 1, 0};")
        assert script.constants['speed'].values == (6.0,)
        assert script.constants['speed'].type == ValueType.FLOAT
        assert script.constants['up'].type == ValueType.FLOAT3

    def test_constant_must_be_literal(self):
        with pytest.raises(ParseError, match="Expected a constant expression"):
            parse("const t = total_time;")

    def test_params(self):
        script = parse("param strength : float\nglobal wind : float3;")
        assert [(p.name, p.offset, p.lanes) for p in script.params] == [
            ("strength", 0, 1), ("wind", 1, 3)]
        assert all(p.family == VariableFamily.PARAM for p in script.params)

    def test_world_space(self):
        assert parse("world_space;").world_space
        assert not parse("").world_space

    def test_user_function(self):
        script = parse("fn lerp(a, b, t) { return a + (b - a) * t; }")
        function = script.functions['lerp']
        assert function.params == ['a', 'b', 't']
        assert isinstance(function.body.statements[-1], Return)

    def test_emitter(self):
        source = emitter_source("""
            init_emit_count 10
            emit_per_second 2.5
            emit_move_distance -1.5
            max_ribbons 4
            max_ribbon_length 16
            in origin : float3
            out color : float4
            out size : float
            var velocity : float3
            var age : float
            fn update() { age = age + time_delta; }
        """, extra='material "fx/a.mat" mesh "fx/b.msh"')
        emitter = parse(source).emitters[0]
        assert emitter.material == "fx/a.mat"
        assert emitter.mesh == "fx/b.msh"
        assert emitter.init_emit_count == 10
        assert emitter.emit_per_second == 2.5
        assert emitter.emit_move_distance == -1.5
        assert emitter.max_ribbons == 4
        assert [(v.name, v.offset) for v in emitter.outputs] == [("color", 0), ("size", 4)]
        assert [(v.name, v.offset) for v in emitter.vars] == [("velocity", 0), ("age", 3)]
        assert list(emitter.phases) == [Phase.UPDATE]

    def test_emitter_indices(self):
        script = parse(emitter_source("", "a") + emitter_source("", "b"))
        assert [(e.name, e.index) for e in script.emitters] == [("a", 0), ("b", 1)]

    def test_import(self):
        files = {"common.ps": "const speed = 4;\nfn twice(x) { return x * 2; }"}
        script = parse('import "common.ps";\nconst fast = speed * 2;', files)
        assert script.imports == ["common.ps"]
        assert 'twice' in script.functions
        assert script.constants['fast'].values == (8.0,)

    def test_import_once(self):
        files = {"a.ps": 'import "b.ps"\nconst a = 1;', "b.ps": 'import "a.ps"\nconst b = 2;'}
        script = parse('import "a.ps"\nimport "b.ps"', files)
        assert script.imports == ["a.ps", "b.ps"]
        assert set(script.constants) == {"a", "b"}


class TestDeclarationErrors:

    @pytest.mark.parametrize("source,message", [
        ("const a = 1;\nconst a = 2;", "'a' already exists."),
        ("const sin = 1;", "'sin' already exists."),
        ('import "missing.ps"', "Failed to open import 'missing.ps'"),
        ("param p : float2", "Unknown type 'float2'"),
        ("emitter e { }", "Either material or mesh must be provided."),
        ('emitter e { material "m" max_ribbons 2 }',
         "max_ribbon_length must be set when max_ribbons is used"),
        ('emitter e { material "m" speed 2 }', "Unknown emitter property 'speed'"),
        ('emitter e { material "m" init_emit_count 2.5 }', "Expected an integer"),
        ('emitter e { material "m" var a : float var a : float3 }', "Variable 'a' already exists."),
        ('emitter e { material "m" fn tick() { } }', "Unknown emitter function 'tick'"),
        ("fn f(a, a) { }", "Duplicate parameter 'a'"),
        ("return 1;", "Unexpected 'return'"),
    ])
    def test_errors(self, source, message):
        with pytest.raises(ParseError) as info:
            parse(source)
        assert message in info.value.message

    def test_error_location(self):
        with pytest.raises(ParseError) as info:
            parse("const a = 1;\n\nconst b = nope;")
        assert info.value.line == 3
        assert info.value.filename == "main.ps"
        assert str(info.value).startswith("main.ps(3): ")


# =============================================================================
# Statements and Resolution
# =============================================================================

class TestStatements:

    def test_assignment_and_call(self):
        body = update_body(emitter_source("var age : float\nfn update() { age = 1; kill(); }"))
        assign, call = body.statements
        assert isinstance(assign, Assign)
        assert isinstance(assign.target, VariableRef)
        assert isinstance(call, CallStatement)
        assert call.call.builtin.name == 'kill'

    def test_let_declares_block_local(self):
        body = update_body(emitter_source(
            "var age : float\nfn update() { let t : float = 2; let u = t * 2; age = u; }"))
        assert [local.name for local in body.locals] == ['t', 'u']
        assert body.locals[0].type == ValueType.FLOAT
        assert body.locals[1].type is None
        assert isinstance(body.statements[2].value, LocalRef)

    def test_if_else_chain(self):
        body = update_body(emitter_source(
            "var a : float\nfn update() { if a < 1 { a = 1; } else if a > 2 { a = 2; } else { a = 0; } }"))
        node = body.statements[0]
        assert isinstance(node, If)
        assert isinstance(node.else_branch, If)
        assert isinstance(node.else_branch.else_branch, Block)

    def test_emit_statement(self):
        source = (emitter_source("in color : float4", "child")
                  + emitter_source("fn update() { emit(child, 0.5) { color = {1, 0, 0, 1}; } }", "parent"))
        script = parse(source)
        node = script.emitters[1].phases[Phase.UPDATE].statements[0]
        assert isinstance(node, Emit)
        assert node.emitter is script.emitters[0]
        assert node.condition.value == 0.5
        target = node.overrides.statements[0].target
        assert target.emit_target
        assert target.variable is script.emitters[0].inputs[0]

    def test_emit_default_condition(self):
        source = emitter_source("", "child") + emitter_source("fn update() { emit(child); }", "parent")
        node = parse(source).emitters[1].phases[Phase.UPDATE].statements[0]
        assert node.overrides is None
        assert node.condition.value == 1.0

    def test_emitter_variable_shadows_constant(self):
        body = update_body("const speed = 5;\n"
                           + emitter_source("var speed : float\nfn update() { speed = speed + 1; }"))
        assert isinstance(body.statements[0].value.left, VariableRef)

    def test_constant_inlined_as_literal(self):
        body = update_body("const up = {0, 1, 0};\n"
                           + emitter_source("var v : float3\nfn update() { v = up; }"))
        value = body.statements[0].value
        assert isinstance(value, Compound)
        assert value.literal_values() == (0.0, 1.0, 0.0)

    def test_result_variable(self):
        function = parse("fn add(a, b) { result = a + b; }").functions['add']
        assign = function.body.statements[0]
        assert isinstance(assign.target, LocalRef)
        assert assign.target.local is function.result
        assert function.body.locals == [function.result]

    def test_statements_after_early_return_move_to_else(self):
        function = parse("fn f(x) { if x > 1 { return 1; } let y = x; return y; }").functions['f']
        assert len(function.body.statements) == 1
        branch = function.body.statements[0]
        rest = branch.else_branch.statements[0]
        assert isinstance(rest, Block)
        assert isinstance(rest.statements[0], Let)
        assert isinstance(rest.statements[-1], Return)

    def test_continuation_reaches_every_open_path(self):
        function = parse("fn f(x) { if x > 1 { if x > 2 { return 2; } } return 1; }").functions['f']
        outer = function.body.statements[0]
        inner = outer.then_block.statements[0]
        assert inner.else_branch.statements[-1] is outer.else_branch.statements[-1]

    def test_assignment_does_not_count_as_read(self):
        body = update_body(emitter_source("var a : float\nfn update() { let t = 1; let u = 2; t = u; }"))
        t, u = body.locals
        assert not t.read
        assert u.read

    def test_function_arguments(self):
        script = parse("fn scale(x, k) { return x * k; }")
        ret = script.functions['scale'].body.statements[0]
        assert isinstance(ret.value.left, FunctionArgRef)
        assert ret.value.right.index == 1


class TestStatementErrors:

    @pytest.mark.parametrize("body,message", [
        ("fn update() { return 1; }", "'return' is only allowed in user functions"),
        ("fn update() { time_delta = 1; }", "'time_delta' cannot be assigned to"),
        ("var v : float3\nfn update() { v.xx = {1, 2}; }", "Duplicate component in '.xx'"),
        ("fn update() { let a; }", "Expected ':' or '=' after variable name"),
        ("var a : float\nfn update() { let a = 1; }", "'a' already exists."),
        ("fn update() { emit(nowhere); }", "Unknown emitter 'nowhere'"),
        ("fn update() { 1 + 2; }", "Unexpected '1'"),
        ("in i : float\nfn update() { i = 1; }", "'i' cannot be assigned to"),
    ])
    def test_errors(self, body, message):
        with pytest.raises(ParseError) as info:
            parse(emitter_source(body))
        assert message in info.value.message

    @pytest.mark.parametrize("source", [
        "fn f(x) { return x; let y = 1; }",
        "fn f(x) { if x > 0 { return 1; } else { return 2; } let y = 1; }",
        "fn f(x) { { return x; } result = 1; }",
    ])
    def test_statement_after_return(self, source):
        with pytest.raises(ParseError, match="Unreachable statement after 'return'"):
            parse(source)

    def test_result_is_not_a_parameter_name(self):
        with pytest.raises(ParseError, match="'result' cannot be used as a parameter name"):
            parse("fn f(result) { }")

    def test_result_cannot_be_redeclared(self):
        with pytest.raises(ParseError, match="'result' already exists."):
            parse("fn f(x) { let result = x; }")

    def test_return_inside_emit(self):
        source = (emitter_source("in speed : float", "child")
                  + "\nfn f(x) { emit(child) { return x; } }")
        with pytest.raises(ParseError, match="'return' cannot be used inside emit"):
            parse(source)

    def test_wrong_user_arity(self):
        with pytest.raises(ParseError, match="Function 'f' expects 1 argument"):
            parse("fn f(x) { return x; }\n" + emitter_source("var a : float\nfn update() { a = f(1, 2); }"))

    def test_emitter_is_not_a_value(self):
        source = emitter_source("", "other") + emitter_source("var a : float\nfn update() { a = other; }")
        with pytest.raises(ParseError, match="Emitter 'other' is not a value"):
            parse(source)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
