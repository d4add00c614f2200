import io
import math

import pytest

from prettylisp.pl_interpreter import Evaluator
from prettylisp.pl_runtime import StdLib
from prettylisp.pl_datatypes import TypeCoercion, ArityMismatch, ReadonlyViolation, Call, Variable, Number


@pytest.fixture
def ev():
    return Evaluator(stdout=io.StringIO(), stdin=io.StringIO())


def call(ev, name, *args):
    return ev.call_function(name, *args)


def test_arithmetic(ev):
    assert call(ev, "+", 1.0, 2.0) == 3.0
    assert call(ev, "-", 1.0, 2.0) == -1.0
    assert call(ev, "*", 3.0, 2.0) == 6.0
    assert call(ev, "/", 7.0, 2.0) == 3.5
    assert call(ev, "**", 2.0, 10.0) == 1024.0


def test_division_by_zero_follows_ieee(ev):
    assert call(ev, "/", 1.0, 0.0) == math.inf
    assert call(ev, "/", -1.0, 0.0) == -math.inf
    assert math.isnan(call(ev, "/", 0.0, 0.0))


def test_remainder_truncates(ev):
    assert call(ev, "%", 7.0, 3.0) == 1.0
    assert call(ev, "%", -7.0, 3.0) == -1.0
    assert math.isnan(call(ev, "%", 1.0, 0.0))


def test_power_overflow_and_domain(ev):
    assert call(ev, "**", 10.0, 400.0) == math.inf
    assert call(ev, "**", -10.0, 401.0) == -math.inf
    assert call(ev, "**", 0.0, -1.0) == math.inf
    assert math.isnan(call(ev, "**", -8.0, 0.5))


@pytest.mark.parametrize("op", ["+", "-", "*", "/", "%", "**", ".<", ".>", ".<=", ".>="])
def test_numeric_operators_reject_non_numbers(ev, op):
    with pytest.raises(TypeCoercion):
        call(ev, op, 1.0, "a")
    with pytest.raises(TypeCoercion):
        call(ev, op, True, 1.0)


def test_comparisons(ev):
    assert call(ev, ".<", 1.0, 2.0) is True
    assert call(ev, ".>", 1.0, 2.0) is False
    assert call(ev, ".<=", 2.0, 2.0) is True
    assert call(ev, ".>=", 1.0, 2.0) is False


def test_equality(ev):
    assert call(ev, "==", 1.0, 1.0) is True
    assert call(ev, "==", "a", "a") is True
    assert call(ev, "==", 1.0, "1") is False
    assert call(ev, "==", None, None) is False
    assert call(ev, "!=", 1.0, "1") is True
    assert call(ev, "!=", False, False) is False


def test_logic_uses_truthiness(ev):
    assert call(ev, "&&", 1.0, "") is False
    assert call(ev, "||", [], "x") is True
    assert call(ev, "!", []) is True
    assert call(ev, "!", 2.0) is False


def test_concat_uses_display_form(ev):
    assert call(ev, ".+", "a", 1.0) == "a1"
    assert call(ev, ".+", [1.0, 2.0], True) == "[1, 2]true"
    assert call(ev, ".+", None, 2.5) == "null2.5"


def test_char_and_length(ev):
    assert call(ev, "char", 65.0) == "A"
    with pytest.raises(TypeCoercion):
        call(ev, "char", "x")
    with pytest.raises(TypeCoercion):
        call(ev, "char", -1.0)
    assert call(ev, "length", [1.0, 2.0]) == 2.0
    assert call(ev, "length", "hi") == 2.0
    assert call(ev, "length", 5.0) == 1.0


def test_parse_num(ev):
    assert call(ev, "parse_num", "3.5") == 3.5
    assert call(ev, "parse_num", " -2 ") == -2.0
    with pytest.raises(TypeCoercion):
        call(ev, "parse_num", "abc")
    with pytest.raises(TypeCoercion):
        call(ev, "parse_num", 1.0)


def test_print_and_println_write_display_form():
    out = io.StringIO()
    ev = Evaluator(stdout=out)
    assert ev.call_function("print", "a", 1.0) is None
    ev.call_function("println", [1.0, "b"], None, True)
    ev.call_function("println")
    assert out.getvalue() == "a1[1, b]nulltrue\n\n"


def test_input_prompts_and_reads_a_line():
    out = io.StringIO()
    ev = Evaluator(stdout=out, stdin=io.StringIO("Ada\nrest\n"))
    assert ev.call_function("input", "name? ") == "Ada"
    assert out.getvalue() == "name? "
    assert ev.call_function("input") == "rest"
    # end of input
    assert ev.call_function("input") is None


def test_debug_builtin_is_a_traced_no_op(capsys):
    ev = Evaluator(stdout=io.StringIO(), debug=True)
    assert ev.call_function("debug", 1.0, "x") is None
    assert "debug breakpoint 1.0 'x'" in capsys.readouterr().err


def test_builtin_arity_is_enforced(ev):
    with pytest.raises(ArityMismatch):
        call(ev, "+", 1.0)
    with pytest.raises(ArityMismatch):
        call(ev, "length", 1.0, 2.0)


def test_constants_are_readonly_globals(ev):
    assert ev.evaluate(Variable("ninf")) == -math.inf
    assert math.isnan(ev.evaluate(Variable("NaN")))
    with pytest.raises(ReadonlyViolation):
        ev.evaluate(Call("set", [Variable("true"), Number(0)]))


def test_stdlib_can_be_installed_on_a_bare_evaluator():
    ev = Evaluator(load_stdlib=False)
    assert "+" not in ev.scopes.functions
    StdLib(ev)
    assert ev.call_function("+", 1.0, 1.0) == 2.0
    assert ev.evaluate(Variable("false")) is False
