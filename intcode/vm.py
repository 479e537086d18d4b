import logging
import queue
import threading
from enum import Enum

from .lookup import Store, UnsupportedCodeError

logger = logging.getLogger(__name__)


class InvalidProgramError(Exception):
    pass


class MachineStopped(Exception):
    pass


# Queued on an input channel to wake a machine blocked in STORE.
STOP = object()


class MachineError(Exception):
    def __init__(self, name, message):
        super().__init__(f"{name}: {message}")
        self.name = name


# -----------------------------------------------------------------------------
# Instruction set
# -----------------------------------------------------------------------------
class Instruction(Enum):
    # (opcode, parameter count, last parameter is a write target)
    ADD = (1, 3, True)
    MULTIPLY = (2, 3, True)
    STORE = (3, 1, True)
    OUTPUT = (4, 1, False)
    JUMP_IF_TRUE = (5, 2, False)
    JUMP_IF_FALSE = (6, 2, False)
    LESS_THAN = (7, 3, True)
    EQUALS = (8, 3, True)
    ADJUST_RELATIVE_BASE = (9, 1, False)
    HALT = (99, 0, False)

    def __init__(self, opcode, parameter_count, writes):
        self.opcode = opcode
        self.parameter_count = parameter_count
        self.writes = writes


class ParameterMode(Enum):
    POSITION = 0
    IMMEDIATE = 1
    RELATIVE = 2


INSTRUCTIONS = Store(Instruction, lambda instruction: instruction.opcode)
PARAMETER_MODES = Store(ParameterMode, lambda mode: mode.value)


class Operation:
    """
    A decoded instruction cell.

    The low two decimal digits select the instruction; the digit at 10^(k+1)
    is the mode of the k-th parameter. Unknown opcodes and mode digits raise
    UnsupportedCodeError.
    """

    def __init__(self, value):
        if value < 0:
            raise UnsupportedCodeError(f"Negative instruction cell {value}")
        self.instruction = INSTRUCTIONS.of(value % 100)
        self.modes = [
            PARAMETER_MODES.of(value // 10 ** (k + 1) % 10)
            for k in range(1, self.instruction.parameter_count + 1)
        ]

    def __repr__(self):
        modes = ", ".join(mode.name for mode in self.modes)
        return f"Operation({self.instruction.name}, [{modes}])"


# -----------------------------------------------------------------------------
# The Virtual Machine
# -----------------------------------------------------------------------------
class IntcodeComputer:
    def __init__(self, memory, inputs=(), name="default-name"):
        # Kept apart from live memory so reset() can restore it.
        self.program = tuple(memory)
        self.memory = list(self.program)
        self.pos = 0
        self.relative_base = 0
        self.name = name
        # Unbounded: get() blocks on empty, put() never blocks.
        self.inputs = queue.Queue()
        self.outputs = queue.Queue()
        self.diagnostic_code = []
        self.halted = False
        self.steps = 0
        self.stop_requested = threading.Event()
        self.feed(*inputs)

    def __repr__(self):
        return f"<IntcodeComputer {self.name!r} pos={self.pos} halted={self.halted}>"

    def reset(self):
        self.memory = list(self.program)
        self.pos = 0
        self.relative_base = 0
        _drain(self.inputs)
        _drain(self.outputs)
        self.diagnostic_code = []
        self.halted = False
        self.steps = 0
        self.stop_requested.clear()
        logger.info("%s: reset", self.name)

    def feed(self, *values):
        """Append values to the input channel."""
        for value in values:
            self.inputs.put(value)

    def read_output(self, timeout=None):
        """Take the next value from the output channel, waiting if needed."""
        return self.outputs.get(timeout=timeout)

    def stop(self):
        """Ask a running machine to give up, waking it if it waits in STORE."""
        self.stop_requested.set()
        self.inputs.put(STOP)

    def address(self, mode, location):
        """Resolve the parameter held at `location` to a memory address."""
        if mode is ParameterMode.POSITION:
            addr = self.memory[location]
        elif mode is ParameterMode.IMMEDIATE:
            addr = location
        else:
            addr = self.relative_base + self.memory[location]
        if addr < 0:
            raise InvalidProgramError(
                f"Negative address {addr} for {mode.name} parameter at {location}"
            )
        if addr >= len(self.memory):
            self.memory.extend([0] * (addr - len(self.memory) + 1))
        return addr

    def value(self, operation, param):
        addr = self.address(operation.modes[param - 1], self.pos + param)
        return self.memory[addr]

    def jump(self, target):
        if target < 0:
            raise InvalidProgramError(f"Jump to negative address {target} from {self.pos}")
        self.pos = target

    def step(self):
        """Execute a single instruction"""
        if not 0 <= self.pos < len(self.memory):
            raise InvalidProgramError(f"Instruction pointer {self.pos} outside memory")
        op = Operation(self.memory[self.pos])
        instruction = op.instruction
        count = instruction.parameter_count
        if self.pos + count >= len(self.memory):
            raise InvalidProgramError(f"Truncated {instruction.name} at {self.pos}")
        logger.debug("%s: %d %r base=%d", self.name, self.pos, op, self.relative_base)

        result = None
        if instruction.writes:
            if op.modes[-1] is ParameterMode.IMMEDIATE:
                raise InvalidProgramError(
                    f"{instruction.name} at {self.pos} writes to an IMMEDIATE parameter"
                )
            result = self.address(op.modes[-1], self.pos + count)

        pos_modified = False
        if instruction is Instruction.ADD:
            self.memory[result] = self.value(op, 1) + self.value(op, 2)
        elif instruction is Instruction.MULTIPLY:
            self.memory[result] = self.value(op, 1) * self.value(op, 2)
        elif instruction is Instruction.STORE:
            value = self.inputs.get()
            if value is STOP or self.stop_requested.is_set():
                raise MachineStopped(f"{self.name} stopped while awaiting input")
            self.memory[result] = value
        elif instruction is Instruction.OUTPUT:
            output = self.value(op, 1)
            self.diagnostic_code.append(output)
            self.outputs.put(output)
        elif instruction is Instruction.JUMP_IF_TRUE:
            if self.value(op, 1) != 0:
                self.jump(self.value(op, 2))
                pos_modified = True
        elif instruction is Instruction.JUMP_IF_FALSE:
            if self.value(op, 1) == 0:
                self.jump(self.value(op, 2))
                pos_modified = True
        elif instruction is Instruction.LESS_THAN:
            self.memory[result] = 1 if self.value(op, 1) < self.value(op, 2) else 0
        elif instruction is Instruction.EQUALS:
            self.memory[result] = 1 if self.value(op, 1) == self.value(op, 2) else 0
        elif instruction is Instruction.ADJUST_RELATIVE_BASE:
            self.relative_base += self.value(op, 1)
        elif instruction is Instruction.HALT:
            self.halted = True

        if not pos_modified:
            self.pos += count + 1
        self.steps += 1
        if self.halted:
            logger.info("%s: halted after %d instructions", self.name, self.steps)

    def run(self):
        """Run the program until HALT and return every value it output."""
        while not self.halted:
            if self.stop_requested.is_set():
                raise MachineStopped(f"{self.name} stopped at {self.pos}")
            self.step()
        return list(self.diagnostic_code)

    def call(self):
        """Run to completion and report (name, last output)."""
        try:
            outputs = self.run()
        except Exception as exc:
            raise MachineError(self.name, f"{type(exc).__name__}: {exc}") from exc
        if not outputs:
            raise MachineError(self.name, "halted without producing any output")
        return self.name, outputs[-1]


def _drain(channel):
    while True:
        try:
            channel.get_nowait()
        except queue.Empty:
            return


# -----------------------------------------------------------------------------
# Program loading
# -----------------------------------------------------------------------------
def parse_program(text):
    """Parse the comma-separated program format, e.g. "1,0,0,0,99"."""
    text = text.strip()
    if not text:
        return []
    return [int(token) for token in text.split(",")]


def load_program(path):
    with open(path, "r") as f:
        return parse_program(f.read())


def configure_logging(verbose):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def main(argv=None):
    import argparse
    parser = argparse.ArgumentParser(description="Run an intcode program.")
    parser.add_argument("program", help="Path to the comma-separated program file")
    parser.add_argument("-i", "--input", type=int, nargs="*", default=[], help="Input values")
    parser.add_argument("-v", "--verbose", action="store_true", help="Trace every instruction")
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    computer = IntcodeComputer(load_program(args.program), args.input, name=args.program)
    for value in computer.run():
        print(value)

if __name__ == '__main__':
    main()
