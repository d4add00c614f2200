"""
Defines the core data types for the PrettyLisp language runtime.

This module provides the AST node classes produced by the parser, the
records the evaluator keeps in its binding store and function table, and
the error taxonomy raised during evaluation.
"""

from typing import List, Any, Optional, Callable
import collections.abc


# =================================================================
# Errors
# =================================================================

class PrettyLispError(Exception):
    """Base class for every failure raised by the PrettyLisp engine.

    `node` is the AST node that was being evaluated when the failure
    happened; the evaluator fills it in while the error unwinds if the
    raising site did not know it.
    """
    kind = "Error"

    def __init__(self, message: str, node: Optional['Node'] = None):
        super().__init__(message)
        self.message = message
        self.node = node

    @property
    def line(self) -> Optional[int]:
        return getattr(self.node, 'line', None)

    def __str__(self) -> str:
        return self.message


class NameNotFound(PrettyLispError, KeyError):
    """A variable or function was referenced before declaration or after pruning."""
    kind = "NameNotFound"

    def __init__(self, key: str, node: Optional['Node'] = None, what: str = "Variable"):
        super().__init__(f"{what} {key} does not exist", node)
        self.key = key


class DuplicateDeclaration(PrettyLispError):
    kind = "DuplicateDeclaration"

    def __init__(self, key: str, scope: int, node: Optional['Node'] = None):
        super().__init__(f"Variable {key} is already declared in scope {scope}", node)
        self.key = key
        self.scope = scope


class ReadonlyViolation(PrettyLispError):
    kind = "ReadonlyViolation"

    def __init__(self, key: str, node: Optional['Node'] = None):
        super().__init__(f"The variable {key} is readonly", node)
        self.key = key


class TypeCoercion(PrettyLispError, TypeError):
    """An operation received a value of the wrong runtime kind."""
    kind = "TypeCoercion"


class ArityMismatch(PrettyLispError, TypeError):
    kind = "ArityMismatch"


class UnexpectedReturn(PrettyLispError):
    kind = "UnexpectedReturn"

    def __init__(self, node: Optional['Node'] = None):
        super().__init__("Unexpected return", node)


class IndexOutOfRange(PrettyLispError, IndexError):
    kind = "IndexOutOfRange"


class ParseError(PrettyLispError):
    """Raised when source text cannot be turned into an AST."""
    kind = "ParseError"

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None):
        super().__init__(message)
        self._line = line
        self.column = column

    @property
    def line(self) -> Optional[int]:
        return self._line


# =================================================================
# AST Nodes
# =================================================================

class Node:
    """Abstract base class for all PrettyLisp AST nodes."""
    kind = "Node"

    def __init__(self, line: int = 0):
        self.line = line


class NodeBlock(Node, collections.abc.Sequence):
    """
    Base class for Program, Array and Expr, the node kinds whose payload is
    an ordered sequence of child nodes. The AST is read-only to the engine,
    so unlike a list the children cannot be reassigned.
    """
    def __init__(self, nodes: List[Node], line: int = 0):
        super().__init__(line)
        self.nodes = tuple(nodes)

    def __getitem__(self, index):
        return self.nodes[index]

    def __len__(self) -> int:
        return len(self.nodes)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({list(self.nodes)!r})"

    def __eq__(self, other):
        # Line numbers are provenance, not structure.
        return type(other) is type(self) and self.nodes == other.nodes

    __hash__ = None


class Program(NodeBlock):
    """The root node: every top-level statement of one source text."""
    kind = "Program"


class Array(NodeBlock):
    """An array literal (`[...]`); evaluates each child into a new array."""
    kind = "Array"


class Expr(NodeBlock):
    """An expression block (`{...}`).

    Evaluates its children in order and stops at the first early return.
    Also the body type of user-defined functions.
    """
    kind = "Expression"


class Number(Node):
    kind = "Number"

    def __init__(self, value: float, line: int = 0):
        super().__init__(line)
        self.value = float(value)

    def __repr__(self) -> str:
        return f"Number({self.value!r})"

    def __eq__(self, other):
        return isinstance(other, Number) and self.value == other.value

    __hash__ = None


class String(Node):
    kind = "String"

    def __init__(self, value: str, line: int = 0):
        super().__init__(line)
        self.value = value

    def __repr__(self) -> str:
        return f"String({self.value!r})"

    def __eq__(self, other):
        return isinstance(other, String) and self.value == other.value

    __hash__ = None


class Variable(Node):
    """A bare identifier; evaluates to the value of the binding it resolves to."""
    kind = "Variable"

    def __init__(self, name: str, line: int = 0):
        super().__init__(line)
        self.name = name

    def __repr__(self) -> str:
        return f"Variable<{self.name!r}>"

    def __eq__(self, other):
        return isinstance(other, Variable) and self.name == other.name

    __hash__ = None


class Call(Node):
    """A function-call node: `(name args...)` or `<a name b>`."""
    kind = "Function"

    def __init__(self, name: str, args: List[Node], line: int = 0):
        super().__init__(line)
        self.name = name
        self.args = tuple(args)

    def __repr__(self) -> str:
        return f"Call({self.name!r}, {list(self.args)!r})"

    def __eq__(self, other):
        return isinstance(other, Call) and self.name == other.name and self.args == other.args

    __hash__ = None


# =================================================================
# Runtime Records
# =================================================================

GLOBAL_SCOPE = 0


def qualified_name(name: str, scope: int) -> str:
    """`name` for globals, `name@scope` for scoped bindings."""
    return name if scope == GLOBAL_SCOPE else f"{name}@{scope}"


class VariableBinding:
    """A name's association with a value, a readonly flag and its owning scope id."""
    __slots__ = ("name", "value", "readonly", "scope")

    def __init__(self, name: str, value: Any, readonly: bool, scope: int):
        self.name = name
        self.value = value
        self.readonly = readonly
        self.scope = scope

    @property
    def qualified_name(self) -> str:
        return qualified_name(self.name, self.scope)

    def __repr__(self) -> str:
        flag = " readonly" if self.readonly else ""
        return f"<VariableBinding {self.qualified_name}={self.value!r}{flag}>"


class UserFunction:
    """A function registered with `define`: parameter names plus an unevaluated body."""

    def __init__(self, name: str, params: List[str], body: Expr, scope: int):
        self.name = name
        self.params = list(params)
        self.body = body
        self.scope = scope

    @property
    def arity(self) -> int:
        return len(self.params)

    def __repr__(self) -> str:
        return f"<UserFunction {qualified_name(self.name, self.scope)}({', '.join(self.params)})>"


class BuiltinFunction:
    """A native operation over already-evaluated arguments. Always lives at scope 0."""

    def __init__(self, name: str, fn: Callable[..., Any], arity: Optional[int] = None):
        self.name = name
        self.fn = fn
        # None means variadic.
        self.arity = arity
        self.scope = GLOBAL_SCOPE

    def __repr__(self) -> str:
        return f"<BuiltinFunction {self.name}>"


class Returned:
    """The outcome of evaluating a `return`: a value travelling to the nearest receiver."""
    __slots__ = ("value",)

    def __init__(self, value: Any):
        self.value = value

    def __repr__(self) -> str:
        return f"Returned({self.value!r})"

    def __eq__(self, other):
        if not isinstance(other, Returned):
            return NotImplemented
        return self.value == other.value

    __hash__ = None


def is_return(x) -> bool:
    return isinstance(x, Returned)


def unwrap_return(x):
    return x.value if isinstance(x, Returned) else x
