import os
import subprocess
import sys
import textwrap
import threading
from pathlib import Path

import pytest

from intcode.pool import connect, run_all
from intcode.vm import IntcodeComputer, MachineError

AMPLIFIER = [3, 15, 3, 16, 1002, 16, 10, 16, 1, 16, 15, 15, 4, 15, 99, 0, 0]
FEEDBACK_AMPLIFIER = [
    3, 26, 1001, 26, -4, 26, 3, 27, 1002, 27, 2, 27, 1, 27, 26,
    27, 4, 27, 1001, 28, -1, 28, 1005, 28, 6, 99, 0, 0, 5,
]


def amplifiers(program, phases):
    machines = [IntcodeComputer(program, [phase], name=name)
                for name, phase in zip("ABCDE", phases)]
    machines[0].feed(0)
    return machines


def test_outputs_arrive_in_order_one_for_one():
    producer = IntcodeComputer([104, 1, 104, 2, 104, 3, 99], name="producer")
    consumer = IntcodeComputer([3, 0, 4, 0, 3, 0, 4, 0, 3, 0, 4, 0, 99], name="consumer")
    connect([producer, consumer])
    assert consumer.inputs is producer.outputs

    thread = threading.Thread(target=consumer.run, daemon=True)
    thread.start()
    producer.run()
    thread.join(timeout=5)
    assert not thread.is_alive()
    assert consumer.diagnostic_code == [1, 2, 3]


def test_connect_keeps_queued_inputs_first():
    first = IntcodeComputer([104, 9, 99], name="first")
    second = IntcodeComputer([3, 0, 3, 1, 4, 0, 4, 1, 99], [5], name="second")
    connect([first, second])
    first.run()
    assert second.run() == [5, 9]


def test_run_all_chain():
    machines = connect(amplifiers(AMPLIFIER, [4, 3, 2, 1, 0]))
    results = run_all(machines)
    assert results["E"] == 43210
    assert set(results) == set("ABCDE")


def test_run_all_feedback_loop():
    machines = connect(amplifiers(FEEDBACK_AMPLIFIER, [9, 8, 7, 6, 5]), loop=True)
    assert machines[0].inputs is machines[-1].outputs
    assert run_all(machines)["E"] == 139629729


def test_run_all_independent_machines():
    machines = [IntcodeComputer([3, 0, 1002, 0, 2, 0, 4, 0, 99], [n], name=f"m{n}")
                for n in range(8)]
    assert run_all(machines, max_workers=2) == {f"m{n}": 2 * n for n in range(8)}


def test_run_all_rejects_duplicate_names():
    machines = [IntcodeComputer([104, 1, 99], name="twin"),
                IntcodeComputer([104, 2, 99], name="twin")]
    with pytest.raises(ValueError, match="twin"):
        run_all(machines)


def test_run_all_names_the_failing_machine():
    machines = [IntcodeComputer([104, 1, 99], name="healthy"),
                IntcodeComputer([1101, 1, 1, 0, 42], name="broken")]
    with pytest.raises(MachineError) as excinfo:
        run_all(machines)
    assert excinfo.value.name == "broken"


def test_connect_single_machine_loop():
    machine = IntcodeComputer([3, 0, 101, 1, 0, 0, 4, 0, 3, 1, 4, 1, 99], [5], name="self")
    connect([machine], loop=True)
    assert machine.inputs is machine.outputs
    assert machine.run() == [6, 6]


def test_run_all_failure_lets_interpreter_exit():
    script = textwrap.dedent("""
        from intcode.pool import connect, run_all
        from intcode.vm import IntcodeComputer, MachineError

        broken = IntcodeComputer([42], name="broken")
        waiting = IntcodeComputer([3, 0, 4, 0, 99], name="waiting")
        connect([broken, waiting])
        try:
            run_all([waiting, broken])
        except MachineError as exc:
            print("raised", exc.name)
    """)
    root = Path(__file__).resolve().parents[1]
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(root), env.get("PYTHONPATH")]))
    completed = subprocess.run(
        [sys.executable, "-c", script],
        capture_output=True, text=True, timeout=30, cwd=root, env=env,
    )
    assert completed.returncode == 0, completed.stderr
    assert completed.stdout.split() == ["raised", "broken"]
