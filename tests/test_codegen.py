"""
Particle Script Code Generator Tests

Register allocation, lowering of expressions and statements, inlining and
the phase rules.
"""

import pytest
from particle_script import (
    CodeBlob, CompileError, DataStream, OpCode, RegisterAllocator, RegisterError, StreamKind,
)
from particle_script.bytecode import Instruction
from particle_script.model import Phase


def emitter(body, name="e", extra=""):
    return f'emitter {name} {{\nmaterial "m"\n{extra}\n{body}\n}}\n'


ch = DataStream.channel
reg = DataStream.register
out = DataStream.out
lit = DataStream.literal


# =============================================================================
# Register Allocator
# =============================================================================

class TestRegisterAllocator:

    def test_lowest_free_first(self):
        registers = RegisterAllocator()
        assert [registers.alloc() for _ in range(3)] == [0, 1, 2]
        registers.free(1)
        assert registers.alloc() == 1
        assert registers.alloc() == 3

    def test_high_water(self):
        registers = RegisterAllocator()
        a = registers.alloc()
        b = registers.alloc()
        registers.free(a)
        registers.free(b)
        registers.alloc()
        assert registers.high_water == 2
        assert registers.live_count == 1

    def test_exhaustion_is_an_error(self):
        registers = RegisterAllocator()
        for _ in range(32):
            registers.alloc()
        with pytest.raises(RegisterError, match="limit is 32"):
            registers.alloc()

    def test_free_unallocated(self):
        with pytest.raises(ValueError):
            RegisterAllocator().free(5)

    def test_reserve(self):
        registers = RegisterAllocator()
        assert registers.reserve(4) == [0, 1, 2, 3]
        assert registers.is_live(3)
        assert not registers.is_live(4)


# =============================================================================
# Expressions
# =============================================================================

class TestExpressions:

    def test_assignment_retargets_last_instruction(self, phase_code):
        code = phase_code(emitter("var age : float\nfn update() { age = age + time_delta; }"))
        assert len(code) == 1
        instruction = code.instructions[0]
        assert instruction.opcode == OpCode.ADD
        assert instruction.operands == [ch(0), ch(0), DataStream.system_value(0)]

    def test_vector_lanes(self, phase_code):
        code = phase_code(emitter("var p : float3\nfn update() { p = p + {0, 1, 0}; }"))
        assert code.opcodes() == [OpCode.ADD] * 3 + [OpCode.MOV] * 3
        adds = code.instructions[:3]
        assert [i.operands[1] for i in adds] == [ch(0), ch(1), ch(2)]
        assert [i.operands[2] for i in adds] == [lit(0), lit(1), lit(0)]
        movs = code.instructions[3:]
        assert [i.operands[0] for i in movs] == [ch(0), ch(1), ch(2)]

    def test_scalar_broadcast(self, phase_code):
        code = phase_code(emitter("var p : float3\nvar k : float\nfn update() { p = p * k; }"))
        assert [i.operands[2] for i in code.instructions[:3]] == [ch(3)] * 3

    def test_mismatched_lanes(self, phase_code):
        with pytest.raises(CompileError, match="Vector sizes don't match"):
            phase_code(emitter("var p : float3\nvar q : float4\nfn update() { p = p + q; }"))

    def test_assignment_needs_equal_lanes(self, phase_code):
        with pytest.raises(CompileError, match="Cannot assign a 1-lane value to a 3-lane target"):
            phase_code(emitter("var p : float3\nfn update() { p = 1; }"))

    def test_negate_is_multiply(self, phase_code):
        code = phase_code(emitter("var a : float\nfn update() { a = -a; }"))
        assert code.instructions[0].opcode == OpCode.MUL
        assert code.instructions[0].operands == [ch(0), ch(0), lit(-1.0)]

    def test_literal_assignment(self, phase_code):
        code = phase_code(emitter("var a : float\nfn update() { a = 3; }"))
        assert code.instructions[0].opcode == OpCode.MOV
        assert code.instructions[0].operands == [ch(0), lit(3.0)]

    def test_builtins(self, phase_code):
        code = phase_code(emitter(
            "var a : float\nfn update() { a = sin(a) + random(0, 1) + curve(a, 0, 0, 1, 1) + mesh(); }"))
        opcodes = code.opcodes()
        for opcode in (OpCode.SIN, OpCode.RAND, OpCode.GRADIENT, OpCode.MESH):
            assert opcode in opcodes
        gradient = next(i for i in code if i.opcode == OpCode.GRADIENT)
        assert gradient.operands[1:] == [ch(0), lit(0), lit(0), lit(1), lit(1)]

    def test_swizzle(self, phase_code):
        code = phase_code(emitter("var p : float3\nvar a : float\nfn update() { a = p.z; }"))
        assert code.instructions[0].operands == [ch(3), ch(2)]

    def test_system_value_vector(self, phase_code):
        code = phase_code(emitter("var p : float3\nfn update() { p = entity_position; }"))
        assert [i.operands[1] for i in code] == [DataStream.system_value(4 + i) for i in range(3)]

    def test_params(self, phase_code):
        code = phase_code("param wind : float3\n" + emitter("var p : float3\nfn update() { p = p + wind; }"))
        assert [i.operands[2] for i in code.instructions[:3]] == [DataStream.param(i) for i in range(3)]

    def test_comparison_is_not_folded(self, phase_code):
        code = phase_code(emitter("var a : float\nfn update() { a = 1 < 2; }"))
        assert code.instructions[0].opcode == OpCode.LT


class TestAssignmentHazards:

    def test_rotating_swizzle_is_staged(self, phase_code):
        code = phase_code(emitter("var p : float3\nfn update() { p = p.yzx; }"))
        writes = {}
        for index, instruction in enumerate(code):
            writes.setdefault(instruction.operands[0], index)
        for index, instruction in enumerate(code):
            for source in instruction.operands[1:]:
                if source.kind == StreamKind.CHANNEL:
                    assert index < writes.get(source, len(code))

    def test_plain_copy_is_direct(self, phase_code):
        code = phase_code(emitter("var p : float3\nvar q : float3\nfn update() { p = q; }"))
        assert [i.operands for i in code] == [[ch(i), ch(3 + i)] for i in range(3)]

    def test_swizzle_target(self, phase_code):
        code = phase_code(emitter("var p : float3\nfn update() { p.zx = {1, 2}; }"))
        assert [i.operands for i in code] == [[ch(2), lit(1)], [ch(0), lit(2)]]


# =============================================================================
# Statements
# =============================================================================

class TestStatements:

    def test_let_adopts_temporary(self, compile_script):
        compiler = compile_script(emitter(
            "var a : float\nfn update() { let t = a * 2; a = t + t; }"))
        phase = compiler.emitters[0].phase(Phase.UPDATE)
        code = phase.code
        assert code.instructions[0].operands == [reg(0), ch(0), lit(2)]
        assert code.instructions[1].operands == [ch(0), reg(0), reg(0)]
        assert phase.register_count == 2

    def test_let_of_channel_copies(self, phase_code):
        code = phase_code(emitter("var a : float\nfn update() { let t = a; a = t * t; }"))
        assert code.instructions[0].opcode == OpCode.MOV
        assert code.instructions[0].operands == [reg(0), ch(0)]

    def test_let_type_mismatch(self, phase_code):
        with pytest.raises(CompileError, match="Cannot assign a 1-lane value to 't'"):
            phase_code(emitter("var a : float\nfn update() { let t : float3 = a; }"))

    def test_if(self, phase_code):
        code = phase_code(emitter("var a : float\nfn update() { if a > 1 { kill(); } }"))
        assert code.opcodes() == [OpCode.GT, OpCode.CMP, OpCode.KILL]
        cmp = code.instructions[1]
        assert cmp.operands == [reg(0)]
        assert cmp.else_code is None

    def test_if_else(self, phase_code):
        code = phase_code(emitter(
            "var a : float\nfn update() { if a > 1 { a = 0; } else { a = a + 1; } }"))
        cmp = code.instructions[1]
        assert cmp.opcode == OpCode.CMP_ELSE
        assert cmp.then_code.opcodes() == [OpCode.MOV]
        assert cmp.else_code.opcodes() == [OpCode.ADD]

    def test_condition_register_reused_in_block(self, compile_script):
        compiler = compile_script(emitter(
            "var a : float\nfn update() { if a > 1 { a = a * a + 1; } }"))
        assert compiler.emitters[0].phase(Phase.UPDATE).register_count == 2

    def test_emit(self, phase_code):
        source = (emitter("in color : float4\nin speed : float", "child")
                  + emitter("var a : float\nfn update() { emit(child, a > 1) { speed = 2; color = {1, 0, 0, 1}; } }",
                            "parent"))
        code = phase_code(source, emitter=1)
        assert code.opcodes() == [OpCode.GT, OpCode.MOV] + [OpCode.MOV] * 4 + [
            OpCode.BLOCK_END, OpCode.EMIT]
        assert code.instructions[1].operands == [out(4), lit(2)]
        assert [i.operands[0] for i in code.instructions[2:6]] == [out(i) for i in range(4)]
        emit = code.instructions[-1]
        assert emit.emitter_index == 0
        assert emit.operands == [reg(0)]

    def test_emit_without_condition(self, phase_code):
        source = emitter("", "child") + emitter("fn update() { emit(child); }", "parent")
        code = phase_code(source, emitter=1)
        assert code.opcodes() == [OpCode.BLOCK_END, OpCode.EMIT]
        assert code.instructions[-1].operands == [lit(1)]

    def test_missing_phase_is_empty(self, compile_script):
        compiler = compile_script(emitter("var a : float\nfn update() { a = 1; }"))
        output = compiler.emitters[0].phase(Phase.OUTPUT)
        assert len(output.code) == 0
        assert output.register_count == 0


# =============================================================================
# Phase Rules
# =============================================================================

class TestPhases:

    def test_inputs_are_preloaded_registers(self, compile_script):
        compiler = compile_script(emitter(
            "in origin : float3\nin speed : float\nvar v : float\nfn emit() { v = speed; }"))
        phase = compiler.emitters[0].phase(Phase.EMIT)
        assert phase.code.instructions[0].operands == [ch(0), reg(3)]
        assert phase.register_count == 4

    def test_outputs_are_out_streams(self, phase_code):
        code = phase_code(emitter("out size : float\nvar a : float\nfn output() { size = a; }"),
                          phase=Phase.OUTPUT)
        assert code.instructions[0].operands == [out(0), ch(0)]

    @pytest.mark.parametrize("body,message", [
        ("in i : float\nvar a : float\nfn update() { a = i; }",
         "Input 'i' is only accessible in the emit function"),
        ("out o : float\nfn update() { o = 1; }",
         "Output 'o' is only accessible in the output function"),
        ("fn output() { kill(); }", "'kill' can only be used in the update function"),
    ])
    def test_phase_errors(self, phase_code, body, message):
        with pytest.raises(CompileError) as info:
            phase_code(emitter(body))
        assert message in info.value.message

    def test_emit_only_in_update(self, phase_code):
        source = emitter("", "child") + emitter("fn emit() { emit(child); }", "parent")
        with pytest.raises(CompileError, match="'emit' can only be used in the update function"):
            phase_code(source, emitter=1)


# =============================================================================
# Inlining
# =============================================================================

class TestInlining:

    def test_call_is_inlined(self, phase_code):
        code = phase_code("fn double(x) { return x * 2; }\n"
                          + emitter("var a : float\nfn update() { a = double(a); }"))
        assert len(code) == 1
        assert code.instructions[0].operands == [ch(0), ch(0), lit(2)]

    def test_each_call_site_gets_a_copy(self, phase_code):
        code = phase_code("fn double(x) { return x * 2; }\n"
                          + emitter("var a : float\nvar b : float\nfn update() { a = double(a); b = double(b); }"))
        assert [i.operands[0] for i in code] == [ch(0), ch(1)]

    def test_argument_evaluated_once(self, phase_code):
        code = phase_code("fn square(x) { return x * x; }\n"
                          + emitter("var a : float\nfn update() { a = square(a + 1); }"))
        assert code.opcodes() == [OpCode.ADD, OpCode.MUL]
        assert code.instructions[1].operands == [ch(0), reg(0), reg(0)]

    def test_locals_in_function(self, compile_script):
        compiler = compile_script(
            "fn lerp(a, b, t) { let d = b - a; return a + d * t; }\n"
            + emitter("var v : float\nfn update() { v = lerp(v, 10, 0.5); }"))
        phase = compiler.emitters[0].phase(Phase.UPDATE)
        assert phase.code.opcodes() == [OpCode.SUB, OpCode.MUL, OpCode.ADD]
        assert phase.code.instructions[-1].operands[0] == ch(0)

    def test_nested_calls(self, phase_code):
        code = phase_code("fn inc(x) { return x + 1; }\nfn inc2(x) { return inc(inc(x)); }\n"
                          + emitter("var a : float\nfn update() { a = inc2(a); }"))
        assert code.opcodes() == [OpCode.ADD, OpCode.ADD]

    def test_vector_function(self, phase_code):
        code = phase_code("fn scale(v, k) { return v * k; }\n"
                          + emitter("var p : float3\nfn update() { p = scale(p, 2); }"))
        assert code.opcodes() == [OpCode.MUL] * 3 + [OpCode.MOV] * 3

    def test_call_statement(self, phase_code):
        code = phase_code("fn die() { kill(); }\n" + emitter("fn update() { die(); }"))
        assert code.opcodes() == [OpCode.KILL]

    def test_valueless_function_used_as_value(self, phase_code):
        with pytest.raises(CompileError, match="'die' does not return a value"):
            phase_code("fn die() { kill(); }\n" + emitter("var a : float\nfn update() { a = die(); }"))

    def test_result_variable(self, phase_code):
        code = phase_code("fn add(a, b) { result = a + b; }\n"
                          + emitter("var v : float\nfn update() { v = add(v, 1); }"))
        assert code.opcodes() == [OpCode.ADD]
        assert code.instructions[0].operands == [ch(0), ch(0), lit(1)]

    def test_result_component_write(self, phase_code):
        code = phase_code("fn widen(x) { result = {x, x, x}; result.z = 4; }\n"
                          + emitter("var p : float3\nvar a : float\nfn update() { p = widen(a); }"))
        assert code.opcodes() == [OpCode.MOV] * 7
        assert code.instructions[3].operands == [reg(2), lit(4)]
        assert [i.operands for i in code.instructions[4:]] == [
            [ch(0), reg(0)], [ch(1), reg(1)], [ch(2), reg(2)]]

    def test_result_set_in_both_branches(self, phase_code):
        code = phase_code("fn pick(x) { if x > 5 { result = x * 2; } else { result = x + 1; } }\n"
                          + emitter("var a : float\nfn update() { a = pick(a); }"))
        assert code.opcodes() == [OpCode.GT, OpCode.CMP_ELSE, OpCode.MUL, OpCode.ADD, OpCode.MOV]
        branch = code.instructions[1]
        assert branch.then_code.instructions[0].operands == [reg(0), ch(0), lit(2)]
        assert branch.else_code.instructions[0].operands == [reg(0), ch(0), lit(1)]
        assert code.instructions[-1].operands == [ch(0), reg(0)]

    def test_early_return(self, phase_code):
        code = phase_code("fn clamp_low(x) { if x < 0 { return 0; } return x; }\n"
                          + emitter("var a : float\nfn update() { a = clamp_low(a); }"))
        assert code.opcodes() == [OpCode.LT, OpCode.CMP_ELSE, OpCode.MOV, OpCode.MOV, OpCode.MOV]
        branch = code.instructions[1]
        assert branch.then_code.instructions[0].operands == [reg(0), lit(0)]
        assert branch.else_code.instructions[0].operands == [reg(0), ch(0)]

    def test_result_lane_mismatch(self, phase_code):
        source = ("fn bad(x) { if x > 0 { result = {1, 2, 3}; } else { result = {4, 5}; } }\n"
                  + emitter("var v : float3\nvar a : float\nfn update() { v = bad(a); }"))
        with pytest.raises(CompileError, match="Cannot assign a 2-lane value to a 3-lane target"):
            phase_code(source)

    def test_result_component_out_of_range(self, phase_code):
        source = ("fn bad(x) { result = {x, x, x}; result.w = 4; }\n"
                  + emitter("var v : float3\nvar a : float\nfn update() { v = bad(a); }"))
        with pytest.raises(CompileError, match="out of range for a 3-lane value"):
            phase_code(source)

    def test_call_with_literal_arguments_folds(self, phase_code):
        code = phase_code("fn add(a, b) { result = a + b; }\n"
                          + emitter("var v : float\nfn update() { v = add(2, 3); }"))
        assert code.instructions[0].operands == [ch(0), lit(5)]

    def test_recursion_is_rejected(self, phase_code):
        with pytest.raises(CompileError) as info:
            phase_code("fn f(x) { return f(x); }\n" + emitter("var a : float\nfn update() { a = f(a); }"))
        assert info.value.message == "f is called recursively. Recursion is not supported."

    def test_uncalled_function_emits_nothing(self, compile_script):
        compiler = compile_script("fn f(x) { return f(x); }\n" + emitter("var a : float\nfn update() { a = 1; }"))
        assert compiler.emitters[0].phase(Phase.UPDATE).code.opcodes() == [OpCode.MOV]


# =============================================================================
# Unused Locals
# =============================================================================

class TestUnusedLocals:

    def test_unused_local_needs_no_register(self, compile_script):
        with_unused = compile_script(emitter("var result : float\nfn emit() { let unused = 1; result = 2; }"))
        without = compile_script(emitter("var result : float\nfn emit() { result = 2; }"))
        assert with_unused.emitters[0].phase(Phase.EMIT).register_count \
            == without.emitters[0].phase(Phase.EMIT).register_count
        assert with_unused.emitters[0].phase(Phase.EMIT).code.opcodes() == [OpCode.MOV]

    def test_unused_computation_is_dropped(self, compile_script):
        compiler = compile_script(emitter("var a : float\nfn update() { let t = a * 2; t = a; a = 1; }"))
        phase = compiler.emitters[0].phase(Phase.UPDATE)
        assert phase.code.opcodes() == [OpCode.MOV]
        assert phase.register_count == 0

    def test_random_is_kept(self, phase_code):
        code = phase_code(emitter("fn update() { let r = random(0, 1); }"))
        assert code.opcodes() == [OpCode.RAND]

    def test_unused_local_is_still_checked(self, phase_code):
        with pytest.raises(CompileError, match="Cannot assign a 1-lane value to 't'"):
            phase_code(emitter("var a : float\nfn update() { let t : float3 = a; }"))


# =============================================================================
# Register Pressure
# =============================================================================

class TestRegisterPressure:

    def test_temporaries_are_released(self, compile_script):
        terms = " + ".join(["a * a"] * 50)
        compiler = compile_script(emitter(f"var a : float\nfn update() {{ a = {terms}; }}"))
        assert compiler.emitters[0].phase(Phase.UPDATE).register_count <= 3

    def test_too_many_live_registers(self, compile_script):
        expr = "a"
        for _ in range(40):
            expr = f"a * a + ({expr})"
        with pytest.raises(RegisterError, match="Too many live registers"):
            compile_script(emitter(f"var a : float\nfn update() {{ a = {expr}; }}"))


# =============================================================================
# Encoding
# =============================================================================

class TestEncoding:

    def test_stream_sizes(self):
        assert len(lit(1.5).encode()) == 5
        assert len(reg(3).encode()) == 5

    def test_blob_ends_with_end(self):
        blob = CodeBlob()
        blob.emit(OpCode.MOV, ch(0), lit(1))
        data = blob.serialize()
        assert data[0] == OpCode.MOV
        assert data[-1] == OpCode.END
        assert len(data) == 1 + 2 * 5 + 1

    def test_conditional_blocks(self):
        blob = CodeBlob()
        cmp = Instruction(OpCode.CMP_ELSE, [reg(0)], then_code=CodeBlob(), else_code=CodeBlob())
        cmp.then_code.emit(OpCode.KILL)
        cmp.else_code.emit(OpCode.MOV, ch(0), lit(2))
        blob.append(cmp)
        blob.emit(OpCode.MOV, ch(1), lit(3))

        decoded = CodeBlob.deserialize(blob.serialize())
        assert decoded.opcodes() == [OpCode.CMP_ELSE, OpCode.KILL, OpCode.MOV, OpCode.MOV]
        assert decoded.instructions[0].else_code.instructions[0].operands == [ch(0), lit(2)]
        assert decoded.instructions[1].operands == [ch(1), lit(3)]

    def test_operand_count_is_checked(self):
        blob = CodeBlob()
        blob.emit(OpCode.ADD, reg(0), reg(1))
        with pytest.raises(CompileError, match="ADD expects 3 operand"):
            blob.serialize()

    def test_disassemble(self):
        blob = CodeBlob()
        blob.emit(OpCode.ADD, ch(0), ch(0), DataStream.system_value(0))
        assert "ADD" in blob.disassemble()
        assert "ch0, ch0, sys0" in blob.disassemble()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
