import pytest

from prettylisp.pl_scope import ScopeManager, BindingStore
from prettylisp.pl_datatypes import (
    VariableBinding, UserFunction, BuiltinFunction, Expr,
    NameNotFound, DuplicateDeclaration, ReadonlyViolation,
)


@pytest.fixture
def scopes():
    return ScopeManager()


def test_enter_issues_strictly_increasing_ids(scopes):
    a = scopes.enter()
    b = scopes.enter()
    scopes.exit(0)
    c = scopes.enter()
    assert 0 < a < b < c
    assert scopes.last_issued == c


def test_resolve_prefers_closest_enclosing_scope(scopes):
    scopes.declare("x", 0, "global")
    scopes.declare("x", 3, "inner")
    assert scopes.resolve("x", 3).value == "inner"
    assert scopes.resolve("x", 7).value == "inner"
    assert scopes.resolve("x", 2).value == "global"


def test_resolve_missing_name_raises(scopes):
    with pytest.raises(NameNotFound) as exc:
        scopes.resolve("nope", 5)
    assert exc.value.key == "nope"
    assert str(exc.value) == "Variable nope does not exist"
    # also catchable as a plain KeyError
    with pytest.raises(KeyError):
        scopes.resolve("nope", 5)


def test_declare_same_name_and_scope_twice_fails(scopes):
    scopes.declare("x", 2, 1.0)
    with pytest.raises(DuplicateDeclaration):
        scopes.declare("x", 2, 2.0)
    # a different scope is a new binding
    scopes.declare("x", 4, 3.0)
    assert scopes.resolve("x", 4).value == 3.0


def test_assign_overwrites_found_binding(scopes):
    scopes.declare("x", 1, 1.0)
    scopes.assign("x", 6, 2.0)
    assert scopes.variables.get("x", 1).value == 2.0


def test_assign_to_readonly_fails_without_changing_value(scopes):
    scopes.declare("k", 0, 1.0, readonly=True)
    with pytest.raises(ReadonlyViolation):
        scopes.assign("k", 3, 2.0)
    assert scopes.resolve("k", 3).value == 1.0


def test_exit_prunes_bindings_above_scope(scopes):
    scopes.declare("x", 2, "outer")
    scopes.declare("x", 5, "inner")
    scopes.declare("y", 9, "deep")
    removed = scopes.exit(3)
    assert removed == 2
    assert ("x", 5) not in scopes.variables
    assert ("y", 9) not in scopes.variables
    assert scopes.resolve("x", 10).value == "outer"


def test_destroy_removes_every_scope_of_a_name(scopes):
    scopes.declare("x", 0, 1.0)
    scopes.declare("x", 4, 2.0)
    scopes.declare("xy", 4, 3.0)
    assert scopes.destroy("x") == 2
    assert scopes.find("x", 10) is None
    # exact names only
    assert scopes.resolve("xy", 10).value == 3.0
    assert scopes.destroy("missing") == 0


def test_redefined_function_shadows_until_pruned(scopes):
    builtin = BuiltinFunction("f", lambda: "builtin", 0)
    scopes.define_function(builtin)
    user = UserFunction("f", [], Expr([]), 4)
    scopes.define_function(user)
    assert scopes.lookup_function("f") is user
    scopes.exit(3)
    assert scopes.lookup_function("f") is builtin


def test_redefining_at_same_scope_replaces_entry(scopes):
    first = UserFunction("g", [], Expr([]), 2)
    second = UserFunction("g", ["a"], Expr([]), 2)
    scopes.define_function(first)
    scopes.define_function(second)
    assert scopes.lookup_function("g") is second
    scopes.exit(1)
    with pytest.raises(NameNotFound) as exc:
        scopes.lookup_function("g")
    assert str(exc.value) == "Function g does not exist"


def test_trace_callback_sees_declarations_and_prunes():
    events = []
    scopes = ScopeManager(trace=lambda scope, *parts: events.append((scope, parts)))
    scopes.declare("x", 3, 1.0)
    scopes.exit(1)
    messages = [parts[0] for _, parts in events]
    assert "declared variable" in messages
    assert "removed variable" in messages


def test_binding_store_indexes_stay_consistent():
    store = BindingStore()
    store.insert(VariableBinding("a", 1, False, 1))
    store.insert(VariableBinding("a", 2, False, 3))
    store.insert(VariableBinding("b", 3, False, 3))
    assert store.scopes_of("a") == {1, 3}
    removed = store.prune(2)
    assert sorted(b.name for b in removed) == ["a", "b"]
    assert store.scopes_of("a") == {1}
    assert store.scopes_of("b") == set()
    assert len(store) == 1


def test_reset_forgets_everything(scopes):
    scopes.declare("x", 0, 1.0)
    scopes.define_function(BuiltinFunction("f", lambda: None, 0))
    scopes.enter()
    scopes.reset()
    assert len(scopes.variables) == 0
    assert len(scopes.functions) == 0
    assert scopes.last_issued == 0
