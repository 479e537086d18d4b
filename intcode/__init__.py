from .lookup import Store, UnsupportedCodeError
from .vm import (
    Instruction,
    IntcodeComputer,
    InvalidProgramError,
    MachineError,
    MachineStopped,
    Operation,
    ParameterMode,
    load_program,
    parse_program,
)
from .pool import connect, run_all
