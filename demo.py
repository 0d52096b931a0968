"""
Particle Script Demo

Compiles a small fountain effect with a child splash emitter and prints the
resulting resource: vertex layout, lane counts and the disassembled code of
every phase.
"""
import sys
sys.path.insert(0, '.')
from particle_script import ParticleResource, ParticleScriptCompiler, collect_symbols_from_buffer
from particle_script.collector import CollectorOptions

FOUNTAIN = '''
const gravity = {0, -9.8, 0};
param strength : float

fn fade(t, life) {
    return max(1 - t / life, 0);
}

emitter splash {
    material "fx/splash.mat"
    in origin : float3
    var position : float3
    var age : float
    out pos : float3
    out alpha : float

    fn emit() {
        position = origin;
        age = 0;
    }

    fn update() {
        age = age + time_delta;
        if age > 0.5 { kill(); }
    }

    fn output() {
        pos = position;
        alpha = fade(age, 0.5);
    }
}

emitter fountain {
    material "fx/drop.mat"
    init_emit_count 32
    emit_per_second 64
    var position : float3
    var velocity : float3
    var age : float
    out pos : float3
    out color : float4

    fn emit() {
        position = entity_position;
        velocity = {random(-1, 1), 4 + random(0, 2) * strength, random(-1, 1)};
        age = 0;
    }

    fn update() {
        age = age + time_delta;
        velocity = velocity + gravity * time_delta;
        position = position + velocity * time_delta;
        if position.y < 0 {
            emit(splash) { origin = position; }
            kill();
        }
    }

    fn output() {
        pos = position;
        color = {1, 1, 1, fade(age, 3)};
    }
}
'''


def main():
    print('=== Particle Script Demo ===')
    print()

    compiler = ParticleScriptCompiler()
    success, blob = compiler.compile('fountain.ps', FOUNTAIN)
    if not success:
        print(f'Compilation failed: {compiler.error}')
        return 1
    print(f'[1] Compiled {len(compiler.script.emitters)} emitters into {len(blob)} bytes')

    resource = ParticleResource.deserialize(blob)
    print('[2] Resource:')
    print(resource.disassemble())

    cursor = FOUNTAIN.index('kill();')
    result = collect_symbols_from_buffer(FOUNTAIN, cursor, CollectorOptions(stop_at_cursor_only=True))
    visible = ', '.join(s.name for s in result.symbols)
    print(f'[3] Symbols visible at the first kill(): {visible}')
    scope = result.scopes[result.cursor_scope_id]
    print(f'    Cursor scope: {scope.kind.value} [{scope.start}, {scope.end})')
    return 0


if __name__ == '__main__':
    sys.exit(main())
