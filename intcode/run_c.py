from .compiler import compile_source
from .vm import IntcodeComputer, configure_logging

def main(argv=None):
    import argparse
    parser = argparse.ArgumentParser(description="Run C program on the intcode VM")
    parser.add_argument("source_file", help="Path to the C source file")
    parser.add_argument("-i", "--input", type=int, nargs="*", default=[], help="Input values")
    parser.add_argument("-v", "--verbose", action="store_true", help="Trace every instruction")
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    with open(args.source_file, "r") as f:
        source_code = f.read()

    program = compile_source(source_code)

    computer = IntcodeComputer(program, args.input, name=args.source_file)
    for value in computer.run():
        print(value)

if __name__ == '__main__':
    main()
