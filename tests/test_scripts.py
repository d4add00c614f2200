import io

import pytest

from prettylisp.pl_runtime import ScriptRunner


@pytest.fixture
def out():
    return io.StringIO()


@pytest.fixture
def runner(out):
    return ScriptRunner(stdout=out)


def test_recursive_factorial(runner):
    res = runner.handle_script("""
    (define fact [n] {
      (if <n .<= 1> { (return 1) })
      (return <n * (fact <n - 1>)>)
    })
    (fact 5)
    """)
    assert res.status == "success", res.format_error()
    assert res.value == 120.0


def test_deep_bounded_recursion(runner):
    res = runner.handle_script("""
    (define count [n] {
      (if <n .<= 0> { (return 0) })
      (return <1 + (count <n - 1>)>)
    })
    (count 1000)
    """)
    assert res.status == "success", res.format_error()
    assert res.value == 1000.0


def test_fibonacci_loop_output(runner, out):
    res = runner.handle_script("""
    (declare a 0) (declare b 1)
    (for (declare i 0) <i .< 10> (= i <i + 1>) {
      (print a " ")
      (declare t b)
      (= b <a + b>)
      (= a t)
    })
    """)
    assert res.status == "success", res.format_error()
    assert out.getvalue() == "0 1 1 2 3 5 8 13 21 34 "


def test_operator_aliases(runner):
    res = runner.handle_script("<x := 5> <x = <x 2>> <x -1>")
    assert res.status == "success", res.format_error()
    assert res.values == [None, None, 9.0]


def test_strings_and_characters(runner, out):
    res = runner.handle_script("""
    (println (.+ "len=" (length "hello")))
    (println (char \\A) (char <\\a + 1>))
    (println (at "abc" -1))
    """)
    assert res.status == "success", res.format_error()
    assert out.getvalue() == "len=5\nAb\n99\n"


def test_array_operations(runner, out):
    res = runner.handle_script("""
    (declare xs [1 2 3])
    (set_at xs 0 10)
    (= xs (append xs 4))
    (println xs)
    (println (at xs -1) " " (length (pop xs)))
    """)
    assert res.status == "success", res.format_error()
    assert out.getvalue() == "[10, 2, 3, 4]\n4 3\n"


def test_set_at_on_a_string_variable_turns_it_into_an_array(runner):
    res = runner.handle_script('(declare s "ab") (set_at s 1 \\z) s')
    assert res.value == [97.0, 122.0]


def test_functions_with_string_building(runner, out):
    res = runner.handle_script("""
    (define join [xs sep] {
      (declare acc "")
      (for (declare i 0) <i .< (length xs)> (= i <i + 1>) {
        (if <i .> 0> { (= acc (.+ acc sep)) })
        (= acc (.+ acc (at xs i)))
      })
      acc
    })
    (println (join [1 2 3] ", "))
    """)
    assert res.status == "success", res.format_error()
    assert out.getvalue() == "1, 2, 3\n"


def test_const_cannot_be_reassigned(runner):
    res = runner.handle_script("<limit ..= 3>\n(= limit 4)")
    assert res.status == "error"
    assert "ReadonlyViolation: The variable limit is readonly" in res.error_message
    assert res.error_line == 2


def test_side_effects_before_a_failure_persist(runner, out):
    res = runner.handle_script("(declare a 1)\n(println a)\n(println nope)\n(println 2)")
    assert res.status == "error"
    assert res.error_line == 3
    assert out.getvalue() == "1\n"
    assert res.values == [None, None]

    # the binding made before the failure survives for the next run
    res2 = runner.handle_script("<a + 1>")
    assert res2.status == "success"
    assert res2.value == 2.0


def test_input_reads_from_stdin(out):
    runner = ScriptRunner(stdout=out, stdin=io.StringIO("Ada\n"))
    res = runner.handle_script('(println (.+ "Hi " (input "name? ")))')
    assert res.status == "success", res.format_error()
    assert out.getvalue() == "name? Hi Ada\n"


def test_values_collects_every_statement(runner):
    res = runner.handle_script('<1 + 2>\n(.+ "a" "b")')
    assert res.values == [3.0, "ab"]
    assert res.value == "ab"


def test_comments_are_ignored(runner, out):
    res = runner.handle_script("# heading\n(print 1) # trailing\n# a $ (print 2) # b\n")
    assert res.status == "success"
    assert out.getvalue() == "12"


def test_reset_forgets_definitions(runner):
    runner.handle_script("(define f [] { 1 })")
    assert runner.handle_script("(f)").value == 1.0
    runner.reset()
    res = runner.handle_script("(f)")
    assert res.status == "error"
    assert "Function f does not exist" in res.error_message


def test_empty_script(runner):
    res = runner.handle_script("")
    assert res.status == "success"
    assert res.value is None
    assert res.format_error() == ""
