import inspect
import math
from dataclasses import dataclass, field
from typing import Any, List, Optional, Literal, Dict, TextIO

from prettylisp.pl_interpreter import Evaluator, is_number, type_name, truthy, to_array, values_equal
from prettylisp.pl_datatypes import (
    Node, Program, BuiltinFunction, GLOBAL_SCOPE,
    PrettyLispError, TypeCoercion, ParseError,
)
from prettylisp.pl_printer import Printer
from prettylisp.pl_transformer import parse

# ===================================================================
# 1. Built-in Table
# ===================================================================


class StdLib:
    """Contains Python implementations for all PrettyLisp built-ins.

    Every built-in receives already-evaluated arguments. Numeric operators
    follow IEEE double semantics, so dividing by zero yields inf/ninf/NaN
    rather than failing; handing them a non-number is a TypeCoercion.
    """

    # PrettyLisp name -> method name
    BUILTINS: Dict[str, str] = {
        "+": "_add",
        "-": "_sub",
        "*": "_mul",
        "/": "_div",
        "%": "_mod",
        "**": "_pow",
        ".+": "_concat",
        "==": "_eq",
        "!=": "_neq",
        ".<": "_lt",
        ".>": "_gt",
        ".<=": "_lte",
        ".>=": "_gte",
        "&&": "_and",
        "||": "_or",
        "!": "_not",
        "char": "_char",
        "length": "_length",
        "parse_num": "_parse_num",
        "print": "_print",
        "println": "_println",
        "input": "_input",
        "debug": "_debug",
    }

    CONSTANTS: Dict[str, Any] = {
        "true": True,
        "false": False,
        "null": None,
        "NaN": math.nan,
        "inf": math.inf,
        "ninf": -math.inf,
    }

    def __init__(self, evaluator):
        self.evaluator = evaluator
        self.printer = Printer()
        self.install(evaluator)

    def install(self, evaluator):
        scopes = evaluator.scopes
        for name, value in self.CONSTANTS.items():
            if scopes.variables.get(name, GLOBAL_SCOPE) is None:
                scopes.declare(name, GLOBAL_SCOPE, value, readonly=True)
        for name, attr in self.BUILTINS.items():
            method = getattr(self, attr)
            scopes.define_function(BuiltinFunction(name, method, self._arity_of(method)))

    @staticmethod
    def _arity_of(fn) -> Optional[int]:
        params = inspect.signature(fn).parameters.values()
        if any(p.kind is inspect.Parameter.VAR_POSITIONAL for p in params):
            return None
        return len(params)

    def _numbers(self, op: str, *values):
        for v in values:
            if not is_number(v):
                raise TypeCoercion(f"{op} expects numbers, got {type_name(v)}")
        return [float(v) for v in values]

    # --- Arithmetic ---
    def _add(self, a, b):
        a, b = self._numbers("+", a, b)
        return a + b

    def _sub(self, a, b):
        a, b = self._numbers("-", a, b)
        return a - b

    def _mul(self, a, b):
        a, b = self._numbers("*", a, b)
        return a * b

    def _div(self, a, b):
        a, b = self._numbers("/", a, b)
        if b == 0:
            if a == 0 or math.isnan(a):
                return math.nan
            # The sign of zero decides the direction of the infinity.
            return math.copysign(math.inf, a) * math.copysign(1.0, b)
        return a / b

    def _mod(self, a, b):
        a, b = self._numbers("%", a, b)
        if b == 0 or math.isinf(a):
            return math.nan
        return math.fmod(a, b)

    def _pow(self, a, b):
        a, b = self._numbers("**", a, b)
        try:
            return math.pow(a, b)
        except OverflowError:
            if a < 0 and b.is_integer() and int(b) % 2 == 1:
                return -math.inf
            return math.inf
        except ValueError:
            # 0 to a negative power, or a negative base to a fractional one
            return math.inf if a == 0 else math.nan

    # --- Strings ---
    def _concat(self, a, b):
        return self.printer.display(a) + self.printer.display(b)

    def _char(self, n):
        (n,) = self._numbers("char", n)
        try:
            return chr(int(n))
        except (ValueError, OverflowError) as e:
            raise TypeCoercion(f"char cannot convert {self.printer.display(n)}: {e}")

    def _length(self, v):
        return float(len(to_array(v)))

    def _parse_num(self, text):
        if not isinstance(text, str):
            raise TypeCoercion(f"parse_num expects a string, got {type_name(text)}")
        try:
            return float(text.strip())
        except ValueError:
            raise TypeCoercion(f"parse_num cannot parse {text!r} as a number")

    # --- Comparison and Logic ---
    def _eq(self, a, b): return values_equal(a, b)
    def _neq(self, a, b): return not values_equal(a, b)

    def _lt(self, a, b):
        a, b = self._numbers(".<", a, b)
        return a < b

    def _gt(self, a, b):
        a, b = self._numbers(".>", a, b)
        return a > b

    def _lte(self, a, b):
        a, b = self._numbers(".<=", a, b)
        return a <= b

    def _gte(self, a, b):
        a, b = self._numbers(".>=", a, b)
        return a >= b

    def _and(self, a, b): return truthy(a) and truthy(b)
    def _or(self, a, b): return truthy(a) or truthy(b)
    def _not(self, x): return not truthy(x)

    # --- Console I/O ---
    def _write(self, args):
        out = self.evaluator.stdout
        for obj in args:
            out.write(self.printer.display(obj))

    def _print(self, *args):
        self._write(args)
        return None

    def _println(self, *args):
        self._write(args)
        self.evaluator.stdout.write("\n")
        return None

    def _input(self, *prompt):
        self._write(prompt)
        self.evaluator.stdout.flush()
        line = self.evaluator.stdin.readline()
        if not line:
            return None
        return line.rstrip("\r\n")

    # --- Debugging ---
    def _debug(self, *args):
        """Breakpoint hook: does nothing but show up in the trace."""
        self.evaluator._dbg(self.evaluator.current_scope, "debug breakpoint", *map(repr, args))
        return None


# ===================================================================
# 2. Script Execution
# ===================================================================

@dataclass
class ExecutionResult:
    """The structured result of a script execution."""
    status: Literal['success', 'error']
    value: Any = None
    values: List[Any] = field(default_factory=list)
    error_message: Optional[str] = None
    error_line: Optional[int] = None

    def format_error(self) -> str:
        """Formats an error message with its line number if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.error_line is not None and not msg.startswith("Error on line "):
            return f"Error on line {self.error_line}: {msg}"
        return msg


class ScriptRunner:
    """Parses and executes PrettyLisp source, one top-level statement at a time.

    Bindings persist between calls to `handle_script`, so a runner can back
    a REPL session. `reset()` starts over with a fresh interpreter.
    """

    def __init__(self, stdout: Optional[TextIO] = None, stdin: Optional[TextIO] = None,
                 debug: bool = False):
        self._stdout = stdout
        self._stdin = stdin
        self.evaluator = Evaluator(stdout=stdout, stdin=stdin, debug=debug)
        self.printer = Printer()

    @property
    def debug(self) -> bool:
        return self.evaluator.debug

    @debug.setter
    def debug(self, value: bool):
        self.evaluator.debug = value

    def reset(self):
        self.evaluator = Evaluator(stdout=self._stdout, stdin=self._stdin, debug=self.debug)

    def parse(self, source_code: str) -> Program:
        return parse(source_code)

    def handle_script(self, source_code: str) -> ExecutionResult:
        """Runs every top-level statement in order; the first failure stops the run.

        Side effects of the statements before the failure persist.
        """
        values: List[Any] = []
        self.evaluator.call_stack.clear()
        try:
            program = self.parse(source_code)
        except ParseError as e:
            return ExecutionResult(
                status='error',
                error_message=self._format_runtime_error(e, source_code, None),
                error_line=e.line,
            )

        try:
            for statement in program.nodes:
                values.append(self.evaluator.evaluate(statement))
        except Exception as e:
            node = getattr(e, 'node', None) or self.evaluator.current_node
            return ExecutionResult(
                status='error',
                values=values,
                error_message=self._format_runtime_error(e, source_code, node),
                error_line=getattr(node, 'line', None),
            )
        return ExecutionResult(
            status='success',
            value=values[-1] if values else None,
            values=values,
        )

    def _format_runtime_error(self, e, source: str, node: Optional[Node]) -> str:
        match e:
            case PrettyLispError():
                msg = f"{e.kind}: {e.message}"
            case RecursionError():
                msg = "RecursionError: maximum recursion depth exceeded"
            case _:
                msg = f"InternalError: {e}"

        line = e.line if isinstance(e, ParseError) else getattr(node, 'line', None)
        col = getattr(e, 'column', None)
        context = self._source_context(source, line, col) if line else ""
        if context:
            msg = f"{msg}\n{context}"

        st = self._format_stacktrace()
        if st:
            msg += "\n" + st
        return msg

    def _source_context(self, source: str, line: int, col: Optional[int], radius: int = 2) -> str:
        lines = source.splitlines()
        if not line or line < 1 or line > len(lines):
            return ""
        start = max(1, line - radius)
        end = min(len(lines), line + radius)
        width = len(str(end))
        out = []
        for i in range(start, end + 1):
            prefix = ">" if i == line else " "
            out.append(f"{prefix} {str(i).rjust(width)} | {lines[i - 1]}")
            if i == line and col is not None:
                out.append(f"  {' ' * width} | {' ' * max(col - 1, 0)}^")
        return "\n".join(out)

    def _format_stacktrace(self) -> str:
        stack = self.evaluator.call_stack
        if not stack:
            return ""
        frames = []
        for frame in reversed(stack):
            args = " ".join(self.printer.pformat(a) for a in frame['args'])
            frames.append(f"({frame['name']} {args})" if args else f"({frame['name']})")
        return "PrettyLisp stacktrace: " + " <- ".join(frames)
