#!/usr/bin/env python3
"""
A tiny C-to-intcode compiler using pycparser.

Supported features:
  - int variable declarations and assignments (=, +=, -=, *=), ++ and --
  - Arithmetic expressions: +, -, * and relational operators <, >, <=, >=, ==, !=
  - Logical operators: && and || (both sides are always evaluated), unary !, -
  - if/else, while, do/while and for loops, break and continue, ?:
  - printf(expr) or printf("fmt", expr, ...) outputs each value via OUTPUT
  - input() reads the next value from the input channel via STORE
  - return halts the program

Every variable and every intermediate result gets a fixed cell in a data area
placed directly after the code. The instruction set has no division, so / and
% are rejected.
"""

import logging

from pycparser import c_parser, c_ast

from .vm import Instruction, ParameterMode, configure_logging

logger = logging.getLogger(__name__)

# Operand kinds. IMM and LABEL are emitted in immediate mode; LABEL, VAR and
# TMP cells are patched once the code size is known.
IMM = "imm"
LABEL = "label"
VAR = "var"
TMP = "tmp"

CHAR_ESCAPES = {
    "n": 10, "t": 9, "r": 13, "a": 7, "b": 8, "f": 12, "v": 11,
    "\\": 92, "'": 39, '"': 34, "?": 63,
}


def char_value(literal):
    """Value of a C char constant such as 'A', '\\n', '\\0', '\\x41' or '\\101'."""
    text = literal[1:-1]
    if len(text) == 1 and text != "\\":
        return ord(text)
    if text.startswith("\\") and len(text) > 1:
        escape = text[1:]
        if escape in CHAR_ESCAPES:
            return CHAR_ESCAPES[escape]
        if escape[0] in "xX" and len(escape) > 1:
            return int(escape[1:], 16)
        if len(escape) <= 3 and all(ch in "01234567" for ch in escape):
            return int(escape, 8)
    raise RuntimeError(f"Unsupported char constant {literal}")


# -----------------------------------------------------------------------------
# The Code Generator
# -----------------------------------------------------------------------------
class CodeGenerator(c_ast.NodeVisitor):
    def __init__(self):
        # Intcode program cells.
        self.instructions = []
        # Block scopes, innermost last: variable name -> slot in the data area.
        self.scopes = [{}]
        self.variables = 0
        self.temps = 0

        # For generating labels and patching jump targets and data addresses:
        self.labels = {}     # label name -> cell index
        self.fixups = []     # list of (cell index, operand)
        self.label_count = 0

        # Stacks of jump targets for the innermost loop.
        self.break_stack = []
        self.continue_stack = []

    def new_label(self, name_hint="L"):
        label = f"{name_hint}{self.label_count}"
        self.label_count += 1
        return label

    def mark_label(self, label):
        self.labels[label] = len(self.instructions)

    def new_temp(self):
        temp = (TMP, self.temps)
        self.temps += 1
        return temp

    def emit(self, instruction, *operands):
        """Emit one instruction with its operands, encoding their modes."""
        opcode = instruction.opcode
        for k, (kind, _) in enumerate(operands):
            if kind in (IMM, LABEL):
                opcode += ParameterMode.IMMEDIATE.value * 10 ** (k + 2)
        self.instructions.append(opcode)
        for operand in operands:
            kind, value = operand
            if kind == IMM:
                self.instructions.append(value)
            else:
                self.fixups.append((len(self.instructions), operand))
                self.instructions.append(0)  # placeholder

    def emit_jump(self, instruction, cond, label):
        self.emit(instruction, cond, (LABEL, label))

    def emit_goto(self, label):
        self.emit_jump(Instruction.JUMP_IF_TRUE, (IMM, 1), label)

    def emit_copy(self, src, dest):
        self.emit(Instruction.ADD, src, (IMM, 0), dest)

    def emit_truth(self, operand):
        """Normalise a value to 0 or 1 in a fresh temporary."""
        temp = self.new_temp()
        self.emit(Instruction.EQUALS, operand, (IMM, 0), temp)
        self.emit(Instruction.EQUALS, temp, (IMM, 0), temp)
        return temp

    def patch_fixups(self):
        code_size = len(self.instructions)
        temp_base = code_size + self.variables
        for pos, (kind, value) in self.fixups:
            if kind == LABEL:
                if value not in self.labels:
                    raise RuntimeError(f"Undefined label: {value}")
                self.instructions[pos] = self.labels[value]
            elif kind == VAR:
                self.instructions[pos] = code_size + value
            else:
                self.instructions[pos] = temp_base + value
        self.instructions.extend([0] * (self.variables + self.temps))
        logger.debug("compiled %d code cells, %d variables, %d temporaries",
                     code_size, self.variables, self.temps)

    def expr(self, node):
        operand = self.visit(node)
        if operand is None:
            raise RuntimeError(f"{type(node).__name__} has no value")
        return operand

    def lvalue(self, node):
        if not isinstance(node, c_ast.ID):
            raise RuntimeError("Only simple variables can be assigned to")
        return self.visit_ID(node)

    # -------------------------
    # Visitors for top-level nodes
    # -------------------------
    def visit_FileAST(self, node):
        for ext in node.ext:
            self.visit(ext)
        # At the end, if no HALT was emitted by a return, emit HALT.
        self.emit(Instruction.HALT)
        self.patch_fixups()

    def visit_FuncDef(self, node):
        if node.decl.name != "main":
            raise RuntimeError(f"Only main() is supported, got {node.decl.name}()")
        self.visit(node.body)

    def visit_Compound(self, node):
        self.scopes.append({})
        for stmt in node.block_items or []:
            self.visit(stmt)
        self.scopes.pop()

    def visit_DeclList(self, node):
        for decl in node.decls:
            self.visit(decl)

    def visit_ExprList(self, node):
        operand = None
        for expr in node.exprs:
            operand = self.visit(expr)
        return operand

    def visit_EmptyStatement(self, node):
        pass

    # -------------------------
    # Statements
    # -------------------------
    def visit_Decl(self, node):
        # Prototypes such as "int input(void);" need no code.
        if isinstance(node.type, c_ast.FuncDecl):
            return
        if not (isinstance(node.type, c_ast.TypeDecl)
                and isinstance(node.type.type, c_ast.IdentifierType)
                and node.type.type.names == ['int']):
            raise RuntimeError("Only int type is supported")
        var_name = node.name
        scope = self.scopes[-1]
        if var_name in scope:
            raise RuntimeError(f"Variable {var_name} already declared")
        # Shadowing declarations get their own slot.
        scope[var_name] = self.variables
        self.variables += 1
        if node.init is not None:
            self.emit_copy(self.expr(node.init), (VAR, scope[var_name]))

    def visit_Assignment(self, node):
        dest = self.lvalue(node.lvalue)
        value = self.expr(node.rvalue)
        if node.op == "=":
            self.emit_copy(value, dest)
        elif node.op in ("+=", "-=", "*="):
            self.binary(node.op[0], dest, value, dest)
        else:
            raise RuntimeError(f"Unsupported assignment operator {node.op}")
        return dest

    def visit_FuncCall(self, node):
        if not isinstance(node.name, c_ast.ID):
            raise RuntimeError("Only direct function calls are supported")
        name = node.name.name
        args = node.args.exprs if node.args else []
        if name == "printf":
            values = [arg for arg in args
                      if not (isinstance(arg, c_ast.Constant) and arg.type == "string")]
            if not values:
                raise RuntimeError("printf expects a value to print")
            for arg in values:
                self.emit(Instruction.OUTPUT, self.expr(arg))
            return None
        if name == "input":
            if args:
                raise RuntimeError("input() takes no arguments")
            temp = self.new_temp()
            self.emit(Instruction.STORE, temp)
            return temp
        raise RuntimeError(f"Unsupported function {name}")

    def visit_If(self, node):
        cond = self.expr(node.cond)
        else_label = self.new_label("else")
        self.emit_jump(Instruction.JUMP_IF_FALSE, cond, else_label)
        self.visit(node.iftrue)
        if node.iffalse:
            end_label = self.new_label("ifend")
            self.emit_goto(end_label)  # jump over else clause
            self.mark_label(else_label)
            self.visit(node.iffalse)
            self.mark_label(end_label)
        else:
            self.mark_label(else_label)

    def visit_While(self, node):
        loop_label = self.new_label("while")
        end_label = self.new_label("whileend")
        self.mark_label(loop_label)
        self.emit_jump(Instruction.JUMP_IF_FALSE, self.expr(node.cond), end_label)
        self.loop_body(node.stmt, end_label, loop_label)
        self.emit_goto(loop_label)
        self.mark_label(end_label)

    def visit_DoWhile(self, node):
        loop_label = self.new_label("do")
        cond_label = self.new_label("docond")
        end_label = self.new_label("doend")
        self.mark_label(loop_label)
        self.loop_body(node.stmt, end_label, cond_label)
        self.mark_label(cond_label)
        self.emit_jump(Instruction.JUMP_IF_TRUE, self.expr(node.cond), loop_label)
        self.mark_label(end_label)

    def visit_For(self, node):
        # A declaration in the init clause is scoped to the loop.
        self.scopes.append({})
        if node.init is not None:
            self.visit(node.init)
        loop_label = self.new_label("forcond")
        next_label = self.new_label("fornext")
        end_label = self.new_label("forend")
        self.mark_label(loop_label)
        if node.cond is not None:
            self.emit_jump(Instruction.JUMP_IF_FALSE, self.expr(node.cond), end_label)
        self.loop_body(node.stmt, end_label, next_label)
        self.mark_label(next_label)
        if node.next is not None:
            self.visit(node.next)
        self.emit_goto(loop_label)
        self.mark_label(end_label)
        self.scopes.pop()

    def loop_body(self, stmt, break_label, continue_label):
        self.break_stack.append(break_label)
        self.continue_stack.append(continue_label)
        self.visit(stmt)
        self.continue_stack.pop()
        self.break_stack.pop()

    def visit_Break(self, node):
        if not self.break_stack:
            raise RuntimeError("Break statement not within a loop")
        self.emit_goto(self.break_stack[-1])

    def visit_Continue(self, node):
        if not self.continue_stack:
            raise RuntimeError("Continue statement not within a loop")
        self.emit_goto(self.continue_stack[-1])

    def visit_Return(self, node):
        if node.expr is not None:
            self.visit(node.expr)
        self.emit(Instruction.HALT)

    # -------------------------
    # Expressions
    # -------------------------
    def binary(self, op, left, right, dest):
        if op == '+':
            self.emit(Instruction.ADD, left, right, dest)
        elif op == '*':
            self.emit(Instruction.MULTIPLY, left, right, dest)
        elif op == '-':
            negated = self.new_temp()
            self.emit(Instruction.MULTIPLY, right, (IMM, -1), negated)
            self.emit(Instruction.ADD, left, negated, dest)
        elif op == '<':
            self.emit(Instruction.LESS_THAN, left, right, dest)
        elif op == '>':
            self.emit(Instruction.LESS_THAN, right, left, dest)
        elif op == '==':
            self.emit(Instruction.EQUALS, left, right, dest)
        elif op == '!=':
            self.emit(Instruction.EQUALS, left, right, dest)
            self.emit(Instruction.EQUALS, dest, (IMM, 0), dest)
        elif op == '<=':
            self.emit(Instruction.LESS_THAN, right, left, dest)
            self.emit(Instruction.EQUALS, dest, (IMM, 0), dest)
        elif op == '>=':
            self.emit(Instruction.LESS_THAN, left, right, dest)
            self.emit(Instruction.EQUALS, dest, (IMM, 0), dest)
        elif op == '&&':
            # 1*1=1; if either is 0, result is 0.
            self.emit(Instruction.MULTIPLY, self.emit_truth(left), self.emit_truth(right), dest)
        elif op == '||':
            self.emit(Instruction.ADD, self.emit_truth(left), self.emit_truth(right), dest)
            self.emit(Instruction.LESS_THAN, (IMM, 0), dest, dest)
        else:
            raise RuntimeError(f"Unsupported binary operator {op}")
        return dest

    def visit_BinaryOp(self, node):
        left = self.expr(node.left)
        right = self.expr(node.right)
        return self.binary(node.op, left, right, self.new_temp())

    def visit_UnaryOp(self, node):
        if node.op in ('++', '--', 'p++', 'p--'):
            var = self.lvalue(node.expr)
            step = (IMM, 1 if node.op.endswith('++') else -1)
            if node.op.startswith('p'):
                old = self.new_temp()
                self.emit_copy(var, old)
                self.emit(Instruction.ADD, var, step, var)
                return old
            self.emit(Instruction.ADD, var, step, var)
            return var
        value = self.expr(node.expr)
        if node.op == '+':
            return value
        temp = self.new_temp()
        if node.op == '-':
            self.emit(Instruction.MULTIPLY, value, (IMM, -1), temp)
        elif node.op == '!':
            self.emit(Instruction.EQUALS, value, (IMM, 0), temp)
        else:
            raise RuntimeError(f"Unsupported unary operator {node.op}")
        return temp

    def visit_TernaryOp(self, node):
        result = self.new_temp()
        else_label = self.new_label("ternelse")
        end_label = self.new_label("ternend")
        self.emit_jump(Instruction.JUMP_IF_FALSE, self.expr(node.cond), else_label)
        self.emit_copy(self.expr(node.iftrue), result)
        self.emit_goto(end_label)
        self.mark_label(else_label)
        self.emit_copy(self.expr(node.iffalse), result)
        self.mark_label(end_label)
        return result

    def visit_ID(self, node):
        var_name = node.name
        for scope in reversed(self.scopes):
            if var_name in scope:
                return (VAR, scope[var_name])
        raise RuntimeError(f"Undeclared variable {var_name}")

    def visit_Constant(self, node):
        if node.type == "char":
            return (IMM, char_value(node.value))
        if node.type != "int":
            raise RuntimeError("Only int constants are supported")
        text = node.value.rstrip("uUlL")
        if len(text) > 1 and text[0] == "0" and text[1] not in "xXbB":
            return (IMM, int(text, 8))
        return (IMM, int(text, 0))

    def visit_Cast(self, node):
        return self.expr(node.expr)

    def generic_visit(self, node):
        raise RuntimeError(f"Unsupported construct {type(node).__name__}")


def compile_source(source_code):
    """Parse C source and return the intcode program cells."""
    parser = c_parser.CParser()
    ast = parser.parse(source_code)

    codegen = CodeGenerator()
    codegen.visit(ast)
    return codegen.instructions


def main(argv=None):
    import argparse
    parser = argparse.ArgumentParser(description="Compile C source to an intcode program.")
    parser.add_argument("source_file", help="Path to the C source file")
    parser.add_argument("-o", "--output", required=False, default="a.out", help="Output program file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log compiler details")
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    with open(args.source_file, "r") as f:
        source_code = f.read()

    program = compile_source(source_code)

    with open(args.output, "w") as f:
        f.write(",".join(str(cell) for cell in program) + "\n")

if __name__ == '__main__':
    main()
