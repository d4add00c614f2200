"""
Binding store, function table and scope manager for the PrettyLisp engine.

Scopes are not a chain of nested environments. Every binding lives in one
flat store keyed by `(name, scope id)`, and visibility is computed from the
numeric scope ids: a lookup from scope `s` sees the binding of that name
with the largest id not greater than `s`, falling back to the global scope
(id 0). Scope ids are issued by a counter that only ever increases, so the
ids of nested evaluations are always larger than their ancestors'.

When an evaluation frame exits, every binding whose id is larger than the
scope being returned to is removed in one sweep (pruning). This is only
sound while evaluation is strictly sequential: one frame is entered, it
finishes, and only then can a sibling be entered. The engine never
evaluates two frames concurrently.
"""
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Tuple, Union

from prettylisp.pl_datatypes import (
    VariableBinding, UserFunction, BuiltinFunction, GLOBAL_SCOPE,
    NameNotFound, DuplicateDeclaration, ReadonlyViolation,
)

FunctionBinding = Union[UserFunction, BuiltinFunction]


class BindingStore:
    """An arena of variable bindings keyed by `(name, scope id)`.

    Two side indexes keep lookups and pruning from scanning every binding:
    name -> scope ids it is declared at, and scope id -> names declared there.
    """

    def __init__(self):
        self._bindings: Dict[Tuple[str, int], VariableBinding] = {}
        self._scopes_by_name: Dict[str, Set[int]] = {}
        self._names_by_scope: Dict[int, Set[str]] = {}

    def __len__(self) -> int:
        return len(self._bindings)

    def __iter__(self) -> Iterator[VariableBinding]:
        return iter(list(self._bindings.values()))

    def __contains__(self, key: Tuple[str, int]) -> bool:
        return key in self._bindings

    def get(self, name: str, scope: int) -> Optional[VariableBinding]:
        return self._bindings.get((name, scope))

    def scopes_of(self, name: str) -> Set[int]:
        return self._scopes_by_name.get(name, set())

    def insert(self, binding: VariableBinding):
        key = (binding.name, binding.scope)
        self._bindings[key] = binding
        self._scopes_by_name.setdefault(binding.name, set()).add(binding.scope)
        self._names_by_scope.setdefault(binding.scope, set()).add(binding.name)

    def remove(self, name: str, scope: int) -> VariableBinding:
        binding = self._bindings.pop((name, scope))
        scopes = self._scopes_by_name[name]
        scopes.discard(scope)
        if not scopes:
            del self._scopes_by_name[name]
        names = self._names_by_scope[scope]
        names.discard(name)
        if not names:
            del self._names_by_scope[scope]
        return binding

    def prune(self, scope: int) -> List[VariableBinding]:
        """Removes every binding whose scope id is strictly greater than `scope`."""
        removed = []
        for s in [s for s in self._names_by_scope if s > scope]:
            for name in list(self._names_by_scope.get(s, ())):
                removed.append(self.remove(name, s))
        return removed

    def clear(self):
        self._bindings.clear()
        self._scopes_by_name.clear()
        self._names_by_scope.clear()


class FunctionTable:
    """Maps a function name to its visible definition.

    Redefining a name replaces the visible entry. The replaced entry is kept
    underneath so it becomes visible again once the newer definition's scope
    is pruned; built-ins (scope 0) are never pruned.
    """

    def __init__(self):
        self._functions: Dict[str, List[FunctionBinding]] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._functions

    def __len__(self) -> int:
        return len(self._functions)

    def names(self) -> List[str]:
        return list(self._functions.keys())

    def define(self, func: FunctionBinding):
        stack = self._functions.setdefault(func.name, [])
        if stack and stack[-1].scope == func.scope:
            stack[-1] = func
            return
        stack.append(func)
        stack.sort(key=lambda f: f.scope)

    def lookup(self, name: str) -> FunctionBinding:
        stack = self._functions.get(name)
        if not stack:
            raise NameNotFound(name, what="Function")
        return stack[-1]

    def prune(self, scope: int) -> List[FunctionBinding]:
        removed = []
        for name in list(self._functions):
            stack = self._functions[name]
            while stack and stack[-1].scope > scope:
                removed.append(stack.pop())
            if not stack:
                del self._functions[name]
        return removed

    def clear(self):
        self._functions.clear()


class ScopeManager:
    """Issues scope ids, resolves names through them and prunes dead bindings."""

    def __init__(self, trace: Optional[Callable[..., None]] = None):
        self.variables = BindingStore()
        self.functions = FunctionTable()
        self._last_issued = GLOBAL_SCOPE
        self._trace = trace

    def _dbg(self, scope: int, *parts):
        if self._trace is not None:
            self._trace(scope, *parts)

    @property
    def last_issued(self) -> int:
        return self._last_issued

    def enter(self) -> int:
        """Allocates a scope id strictly greater than any issued before."""
        self._last_issued += 1
        return self._last_issued

    def exit(self, scope: int) -> int:
        """Prunes every variable and function binding with a scope id above `scope`.

        `scope` is the scope evaluation returns to. Returns the number of
        bindings removed.
        """
        removed_vars = self.variables.prune(scope)
        for b in removed_vars:
            self._dbg(scope, "removed variable", b.qualified_name)
        removed_funcs = self.functions.prune(scope)
        for f in removed_funcs:
            self._dbg(scope, "removed function", f.name)
        return len(removed_vars) + len(removed_funcs)

    def find(self, name: str, scope: int) -> Optional[VariableBinding]:
        # Exact scope first, then the closest enclosing id, then globals; since
        # 0 is the smallest id, the largest candidate not above `scope` wins.
        candidates = [s for s in self.variables.scopes_of(name) if s <= scope]
        if not candidates:
            return None
        return self.variables.get(name, max(candidates))

    def resolve(self, name: str, scope: int) -> VariableBinding:
        binding = self.find(name, scope)
        if binding is None:
            raise NameNotFound(name)
        self._dbg(scope, "accessed variable", binding.qualified_name)
        return binding

    def declare(self, name: str, scope: int, value: Any = None, readonly: bool = False) -> VariableBinding:
        if (name, scope) in self.variables:
            raise DuplicateDeclaration(name, scope)
        binding = VariableBinding(name, value, readonly, scope)
        self.variables.insert(binding)
        kind = "readonly variable" if readonly else "variable"
        self._dbg(scope, f"declared {kind}", binding.qualified_name, "as", repr(value))
        return binding

    def assign(self, name: str, scope: int, value: Any) -> VariableBinding:
        binding = self.resolve(name, scope)
        if binding.readonly:
            raise ReadonlyViolation(name)
        binding.value = value
        self._dbg(scope, "set variable", binding.qualified_name, "to", repr(value))
        return binding

    def destroy(self, name: str) -> int:
        """Removes every binding of `name`, whatever its scope. Returns how many were removed."""
        scopes = sorted(self.variables.scopes_of(name))
        for s in scopes:
            self.variables.remove(name, s)
        self._dbg(GLOBAL_SCOPE, "destroyed variable", name, f"({len(scopes)} bindings)")
        return len(scopes)

    def define_function(self, func: FunctionBinding):
        self.functions.define(func)
        self._dbg(func.scope, "defined function", f"{func.name}({getattr(func, 'arity', None)})")

    def lookup_function(self, name: str) -> FunctionBinding:
        return self.functions.lookup(name)

    def reset(self):
        self.variables.clear()
        self.functions.clear()
        self._last_issued = GLOBAL_SCOPE
