"""
The core PrettyLisp interpreter, containing the Evaluator.
"""
import math
import os
import sys
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Tuple, TextIO

from prettylisp.pl_datatypes import (
    Node, Program, Array, Expr, Number, String, Variable, Call,
    UserFunction, BuiltinFunction, Returned, is_return, unwrap_return,
    GLOBAL_SCOPE, PrettyLispError, TypeCoercion, ArityMismatch,
    UnexpectedReturn, IndexOutOfRange, ReadonlyViolation,
)
from prettylisp.pl_printer import Printer, format_number
from prettylisp.pl_scope import ScopeManager


# ===================================================================
# Value coercion helpers
# ===================================================================

def is_number(v) -> bool:
    # bool is an int subclass but never a PrettyLisp number
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def type_name(v) -> str:
    match v:
        case None:
            return "null"
        case bool():
            return "boolean"
        case int() | float():
            return "number"
        case str():
            return "string"
        case list():
            return "array"
    return type(v).__name__


def truthy(v) -> bool:
    """Coerces any runtime value to a boolean for conditions and logic operators."""
    match v:
        case bool():
            return v
        case None:
            return False
        case int() | float():
            return v != 0
        case str() | list():
            return len(v) != 0
    return True


def to_array(v) -> list:
    """Views a value as an array.

    Arrays are returned as-is (not copied), strings become the list of their
    character codes, anything else becomes a one-element array.
    """
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        return [float(ord(ch)) for ch in v]
    return [v]


def values_equal(a, b) -> bool:
    """Equality is only defined between values of the same kind."""
    if is_number(a) and is_number(b):
        return a == b
    if isinstance(a, bool) and isinstance(b, bool):
        return a == b
    if isinstance(a, str) and isinstance(b, str):
        return a == b
    return False


def to_index(op: str, value, length: int, node: Optional[Node] = None) -> int:
    """Normalizes a numeric index; negative indexes count from the end."""
    if not is_number(value) or math.isnan(value):
        raise TypeCoercion(f"{op} expects a numeric index, got {type_name(value)}", node)
    if math.isinf(value):
        raise IndexOutOfRange(f"Index {format_number(value)} is out of range for length {length}", node)
    idx = int(value)
    if idx < 0:
        idx += length
    if idx < 0 or idx >= length:
        raise IndexOutOfRange(f"Index {int(value)} is out of range for length {length}", node)
    return idx


# ===================================================================
# Evaluator
# ===================================================================

# name -> (min args, max args, handler method)
KEYWORDS: Dict[str, Tuple[int, int, str]] = {
    "set": (2, 2, "_kw_set"),
    "declare": (1, 2, "_kw_declare"),
    "global": (1, 2, "_kw_global"),
    "readonly": (1, 2, "_kw_readonly"),
    "const": (1, 2, "_kw_const"),
    "destroy": (1, 1, "_kw_destroy"),
    "define": (3, 3, "_kw_define"),
    "return": (0, 1, "_kw_return"),
    "if": (2, 2, "_kw_if"),
    "ifelse": (3, 3, "_kw_ifelse"),
    "while": (2, 2, "_kw_while"),
    "for": (4, 4, "_kw_for"),
    "set_at": (3, 3, "_kw_set_at"),
    "append": (2, 2, "_kw_append"),
    "pop": (1, 1, "_kw_pop"),
    "at": (2, 2, "_kw_at"),
}

# Operator spellings of the variable keywords
KEYWORD_ALIASES: Dict[str, str] = {
    "=": "set",
    ":=": "declare",
    "::=": "global",
    ".=": "readonly",
    "..=": "const",
}

# Leaves never introduce bindings, so there is nothing to prune after them.
_LEAF_NODES = (Number, String, Variable)


class Evaluator:
    """The PrettyLisp execution engine.

    One Evaluator owns one binding store, one function table and one scope
    counter; independent program runs should use independent Evaluators.
    Evaluation is single-threaded and strictly sequential.
    """

    # Python frame limit while evaluating; deep enough for a few thousand nested calls.
    RECURSION_LIMIT = 30000

    def __init__(self, stdout: Optional[TextIO] = None, stdin: Optional[TextIO] = None,
                 debug: bool = False, load_stdlib: bool = True,
                 recursion_limit: Optional[int] = None):
        self._stdout = stdout
        self._stdin = stdin
        self.debug = debug
        self.recursion_limit = recursion_limit or self.RECURSION_LIMIT
        self._load_stdlib = load_stdlib
        self.scopes = ScopeManager(trace=self._dbg)
        self.current_scope = GLOBAL_SCOPE
        self.current_node: Optional[Node] = None
        self.call_stack: List[Dict[str, Any]] = []
        self._depth = 0
        if load_stdlib:
            self._install_stdlib()

    def _install_stdlib(self):
        from prettylisp.pl_runtime import StdLib  # lazy import to avoid cycles
        self.stdlib = StdLib(self)

    def reset(self):
        """Forgets every binding and user function and reinstalls the built-ins."""
        self.scopes.reset()
        self.current_scope = GLOBAL_SCOPE
        self.current_node = None
        self.call_stack.clear()
        self._depth = 0
        if self._load_stdlib:
            self._install_stdlib()

    # Streams are looked up late so a redirected sys.stdout is honoured.
    @property
    def stdout(self) -> TextIO:
        return self._stdout if self._stdout is not None else sys.stdout

    @property
    def stdin(self) -> TextIO:
        return self._stdin if self._stdin is not None else sys.stdin

    def _dbg(self, scope, *parts):
        if self.debug or os.environ.get("PRETTYLISP_DEBUG"):
            try:
                print("[DBG]", "  " * self._depth + f"{scope}:", *parts, file=sys.stderr)
            except Exception:
                pass

    def _push_frame(self, name, args, call_site_node):
        self.call_stack.append({'name': name, 'args': list(args), 'node': call_site_node})

    def _pop_frame(self):
        if self.call_stack:
            self.call_stack.pop()

    @contextmanager
    def _deep_recursion(self):
        # One PrettyLisp call costs about ten Python frames.
        previous = sys.getrecursionlimit()
        if previous < self.recursion_limit:
            sys.setrecursionlimit(self.recursion_limit)
        try:
            yield
        finally:
            sys.setrecursionlimit(previous)

    # --- Public API ---

    def evaluate(self, node: Node) -> Any:
        """Evaluates one top-level node to a value.

        A `return` escaping the node is received here when the node is an
        expression block, and is an UnexpectedReturn otherwise. Frames left on
        `call_stack` by an earlier failure are discarded first; after a
        failure they describe the calls that were active when it happened.
        """
        self.call_stack.clear()
        with self._deep_recursion():
            return self._eval_value(node)

    def run(self, nodes) -> None:
        """Evaluates top-level nodes in order for their side effects.

        Bindings made by one node stay visible to the following ones. The
        first failure propagates.
        """
        if isinstance(nodes, Program):
            nodes = nodes.nodes
        for node in nodes:
            self.evaluate(node)

    def call_function(self, name: str, *args) -> Any:
        """Invokes a built-in or user function by name with already-evaluated arguments."""
        func = self.scopes.lookup_function(name)
        self.call_stack.clear()
        with self._deep_recursion():
            return self.call(func, list(args), None)

    def _eval_value(self, node: Node) -> Any:
        outcome = self._eval(node)
        if is_return(outcome):
            if isinstance(node, Expr):
                return outcome.value
            raise UnexpectedReturn(node)
        return outcome

    # --- Dispatcher ---

    def _eval(self, node: Node) -> Any:
        """Recursive dispatcher; may return a Returned outcome."""
        parent = self.current_scope
        scope = self.scopes.enter()
        self.current_scope = scope
        self.current_node = node
        self._depth += 1
        self._dbg(scope, "evaluating", node.kind, self._describe(node))
        try:
            match node:
                case Number() | String():
                    result = node.value
                case Variable():
                    result = self.scopes.resolve(node.name, scope).value
                case Array():
                    result = [self._eval_value(child) for child in node.nodes]
                case Expr():
                    result = self._eval_block(node.nodes)
                case Program():
                    result = [self._eval_value(child) for child in node.nodes]
                case Call():
                    result = self._eval_call(node, scope)
                case _:
                    raise TypeError(f"Unexpected node type: {type(node).__name__}")
            self._dbg(scope, "evaluated:", repr(result))
            return result
        except PrettyLispError as e:
            if e.node is None:
                e.node = node
            raise
        finally:
            self._depth -= 1
            self.current_scope = parent
            if not isinstance(node, _LEAF_NODES):
                self.scopes.exit(scope)

    def _describe(self, node: Node) -> str:
        match node:
            case Number() | String():
                return repr(node.value)
            case Variable():
                return node.name
            case Call():
                return f"{node.name}({len(node.args)})"
        return f"[{len(node.nodes)}]"

    def _eval_block(self, nodes) -> Any:
        result = None
        for child in nodes:
            result = self._eval(child)
            if is_return(result):
                return result
        return result

    def _eval_call(self, node: Call, scope: int) -> Any:
        name = KEYWORD_ALIASES.get(node.name, node.name)
        keyword = KEYWORDS.get(name)
        if keyword is not None:
            lo, hi, handler = keyword
            argc = len(node.args)
            if argc < lo or argc > hi:
                expected = str(lo) if lo == hi else f"{lo}-{hi}"
                raise ArityMismatch(f"{name} expects {expected} argument(s), got {argc}", node)
            return getattr(self, handler)(node, scope)

        args = [self._eval_value(arg) for arg in node.args]
        func = self.scopes.lookup_function(node.name)
        return self.call(func, args, node)

    def call(self, func, args: List[Any], node: Optional[Node]) -> Any:
        """Invokes a built-in or user function with evaluated arguments."""
        if func.arity is not None and len(args) != func.arity:
            raise ArityMismatch(f"{func.name} expects {func.arity} argument(s), got {len(args)}", node)
        self._push_frame(func.name, args, node)
        match func:
            case BuiltinFunction():
                result = func.fn(*args)
            case UserFunction():
                result = self._invoke_user_function(func, args)
            case _:
                raise TypeError(f"{func!r} is not callable")
        self._pop_frame()
        return result

    def _invoke_user_function(self, func: UserFunction, args: List[Any]) -> Any:
        parent = self.current_scope
        frame = self.scopes.enter()
        self.current_scope = frame
        self._dbg(frame, "calling", f"{func.name}({len(args)})")
        try:
            for param, value in zip(func.params, args):
                self.scopes.declare(param, frame, value)
            outcome = self._eval_block(func.body.nodes)
        finally:
            self.current_scope = parent
            self.scopes.exit(parent)
        return unwrap_return(outcome)

    # --- Keyword helpers ---

    def _name_arg(self, node: Call, index: int = 0) -> str:
        arg = node.args[index]
        if not isinstance(arg, Variable):
            raise TypeCoercion(f"{node.name} expects a name as argument {index + 1}", node)
        return arg.name

    def _param_names(self, node: Node) -> List[str]:
        # A literal list of bare names is taken as written rather than evaluated.
        if isinstance(node, Array) and all(isinstance(n, (Variable, String)) for n in node.nodes):
            return [n.name if isinstance(n, Variable) else n.value for n in node.nodes]
        display = Printer().display
        return [v if isinstance(v, str) else display(v) for v in to_array(self._eval_value(node))]

    def _declare_from(self, node: Call, scope: int, readonly: bool):
        name = self._name_arg(node)
        value = self._eval_value(node.args[1]) if len(node.args) > 1 else None
        self.scopes.declare(name, scope, value, readonly)
        return None

    # --- Variable keywords ---

    def _kw_set(self, node: Call, scope: int):
        name = self._name_arg(node)
        value = self._eval_value(node.args[1])
        self.scopes.assign(name, scope, value)
        return None

    def _kw_declare(self, node: Call, scope: int):
        return self._declare_from(node, scope, readonly=False)

    def _kw_global(self, node: Call, scope: int):
        return self._declare_from(node, GLOBAL_SCOPE, readonly=False)

    def _kw_readonly(self, node: Call, scope: int):
        return self._declare_from(node, scope, readonly=True)

    def _kw_const(self, node: Call, scope: int):
        return self._declare_from(node, GLOBAL_SCOPE, readonly=True)

    def _kw_destroy(self, node: Call, scope: int):
        self.scopes.destroy(self._name_arg(node))
        return None

    # --- Function keywords ---

    def _kw_define(self, node: Call, scope: int):
        name = self._name_arg(node)
        params = self._param_names(node.args[1])
        body = node.args[2]
        if not isinstance(body, Expr):
            raise TypeCoercion(f"define expects an expression block as the body of {name}", node)
        self.scopes.define_function(UserFunction(name, params, body, scope))
        return None

    def _kw_return(self, node: Call, scope: int):
        value = self._eval_value(node.args[0]) if node.args else None
        return Returned(value)

    # --- Flow keywords ---

    def _kw_if(self, node: Call, scope: int):
        if truthy(self._eval_value(node.args[0])):
            return self._eval(node.args[1])
        return None

    def _kw_ifelse(self, node: Call, scope: int):
        if truthy(self._eval_value(node.args[0])):
            return self._eval(node.args[1])
        return self._eval(node.args[2])

    def _kw_while(self, node: Call, scope: int):
        cond, body = node.args
        while truthy(self._eval_value(cond)):
            outcome = self._eval(body)
            if is_return(outcome):
                return outcome
        return None

    def _kw_for(self, node: Call, scope: int):
        init, cond, step, body = node.args
        self._eval_value(init)
        while truthy(self._eval_value(cond)):
            outcome = self._eval(body)
            if is_return(outcome):
                return outcome
            self._eval_value(step)
        return None

    # --- Array keywords ---

    def _kw_append(self, node: Call, scope: int):
        array = to_array(self._eval_value(node.args[0]))
        item = self._eval_value(node.args[1])
        return [*array, item]

    def _kw_pop(self, node: Call, scope: int):
        array = to_array(self._eval_value(node.args[0]))
        if not array:
            raise IndexOutOfRange("Cannot pop from an empty array", node)
        return array[:-1]

    def _kw_at(self, node: Call, scope: int):
        array = to_array(self._eval_value(node.args[0]))
        return array[to_index("at", self._eval_value(node.args[1]), len(array), node)]

    def _kw_set_at(self, node: Call, scope: int):
        name = self._name_arg(node)
        if self.scopes.resolve(name, scope).readonly:
            raise ReadonlyViolation(name, node)
        array = to_array(self._eval_value(node.args[0]))
        idx = to_index("set_at", self._eval_value(node.args[1]), len(array), node)
        value = self._eval_value(node.args[2])
        # In place: every alias of the array sees the change.
        array[idx] = value
        self.scopes.assign(name, scope, array)
        return None
