"""
A pretty-printer for PrettyLisp values and AST nodes.
"""
import math
import re

from prettylisp.pl_datatypes import (
    Program, Array, Expr, Number, String, Variable, Call,
    UserFunction, BuiltinFunction,
)

_OPERATOR_NAME = re.compile(r"^[:.+\-*/=!%&|][:.<>+\-*/=!%&|]*$")

_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\0": "\\0",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\a": "\\!",
}


def format_number(x) -> str:
    """Integral values print without a fractional part; IEEE specials by name."""
    if math.isnan(x):
        return "NaN"
    if math.isinf(x):
        return "inf" if x > 0 else "-inf"
    if float(x).is_integer() and abs(x) < 1e15:
        return str(int(x))
    return repr(float(x))


class Printer:
    """Formats PrettyLisp objects.

    `display` is the text `print`/`println`/`.+` produce: strings are bare and
    arrays render as `[a, b, c]`. `pformat` produces PrettyLisp source text:
    strings are quoted and escaped, arrays render as `[a b c]`, and AST nodes
    are written back in bracket notation.
    """

    def __init__(self, indent_width=2, max_inline=60):
        self._indent_char = " " * indent_width
        self._max_inline = max_inline
        self._handlers = self._create_handlers()

    # --- Display form ---

    def display(self, obj) -> str:
        if obj is None:
            return "null"
        if isinstance(obj, bool):
            return "true" if obj else "false"
        if isinstance(obj, (int, float)):
            return format_number(obj)
        if isinstance(obj, str):
            return obj
        if isinstance(obj, list):
            return "[" + ", ".join(self.display(item) for item in obj) + "]"
        return self.pformat(obj)

    # --- Source form ---

    def pformat(self, obj, level=0):
        """Public entry point to format an object."""
        handler = self._get_handler(obj)
        return handler(obj, level)

    def _get_handler(self, obj):
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        return lambda o, l: repr(o)

    def _create_handlers(self):
        return {
            str: self._pformat_str,
            int: self._pformat_number,
            float: self._pformat_number,
            bool: self._pformat_bool,
            type(None): self._pformat_none,
            list: self._pformat_list,
            Program: self._pformat_program,
            Array: self._pformat_array,
            Expr: self._pformat_expr,
            Number: self._pformat_number_node,
            String: self._pformat_string_node,
            Variable: self._pformat_variable,
            Call: self._pformat_call,
            UserFunction: self._pformat_user_function,
            BuiltinFunction: self._pformat_builtin,
        }

    def _pformat_str(self, obj, level):
        return '"' + "".join(_ESCAPES.get(ch, ch) for ch in obj) + '"'

    def _pformat_number(self, obj, level):
        text = format_number(obj)
        # -inf has no literal; the built-in constant stands in for it.
        return "ninf" if text == "-inf" else text

    def _pformat_bool(self, obj, level):
        return 'true' if obj else 'false'

    def _pformat_none(self, obj, level):
        return 'null'

    def _pformat_list(self, obj, level):
        return "[" + " ".join(self.pformat(item, level) for item in obj) + "]"

    def _pformat_program(self, obj, level):
        return "\n".join(self.pformat(node, level) for node in obj.nodes)

    def _pformat_array(self, obj, level):
        return self._pformat_block(obj.nodes, level, "[", "]")

    def _pformat_expr(self, obj, level):
        return self._pformat_block(obj.nodes, level, "{", "}")

    def _pformat_block(self, nodes, level, open_char, close_char):
        if not nodes:
            return f"{open_char}{close_char}"

        parts = [self.pformat(node, level + 1) for node in nodes]
        inline = f"{open_char}{' '.join(parts)}{close_char}"
        if len(inline) <= self._max_inline and not any("\n" in p for p in parts):
            return inline

        outer_indent = self._indent_char * level
        inner_indent = self._indent_char * (level + 1)
        # Only the first line of each part needs indenting; nested blocks
        # already indent their own continuation lines.
        lines = [inner_indent + part for part in parts]
        return f"{open_char}\n" + "\n".join(lines) + f"\n{outer_indent}{close_char}"

    def _pformat_number_node(self, obj, level):
        return self._pformat_number(obj.value, level)

    def _pformat_string_node(self, obj, level):
        return self._pformat_str(obj.value, level)

    def _pformat_variable(self, obj, level):
        return obj.name

    def _pformat_call(self, obj, level):
        args = [self.pformat(arg, level) for arg in obj.args]
        if len(args) == 2 and _OPERATOR_NAME.match(obj.name):
            return f"<{args[0]} {obj.name} {args[1]}>"
        return "(" + " ".join([obj.name, *args]) + ")"

    def _pformat_user_function(self, obj, level):
        params = " ".join(obj.params)
        return f"(define {obj.name} [{params}] {self.pformat(obj.body, level)})"

    def _pformat_builtin(self, obj, level):
        return f"<builtin {obj.name}>"
