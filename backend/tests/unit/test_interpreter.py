"""Unit tests for the in-process snippet interpreter."""

import ast
import logging
import time

import pytest

from executor.interpreter import (
    SnippetInterpreter,
    SnippetSecurityError,
    build_snippet_module,
    run_snippet,
)
from executor.models import ErrorKind


def output_of(outcome):
    assert outcome.success, outcome.error
    return outcome.output["output"]


class TestReturnValues:
    """Tests for how a snippet's value is produced."""

    def test_trailing_expression_is_returned(self):
        """Test that the last expression becomes the result."""
        outcome = run_snippet("input['a'] + input['b']", {"a": 2, "b": 3})
        assert output_of(outcome) == 5

    def test_explicit_return(self):
        """Test that a top-level return is honored."""
        code = """
total = 0
for n in input['numbers']:
    total += n
return {'total': total}
"""
        outcome = run_snippet(code, {"numbers": [1, 2, 3]})
        assert output_of(outcome) == {"total": 6}

    def test_no_value_returns_input(self):
        """Test that a snippet producing nothing echoes its input."""
        outcome = run_snippet("x = 1", {"keep": True})
        assert output_of(outcome) == {"keep": True}

    def test_return_inside_nested_function_is_not_toplevel(self):
        """Test that a nested function's return does not suppress the trailing value."""
        code = """
def double(n):
    return n * 2
double(input['n'])
"""
        outcome = run_snippet(code, {"n": 21})
        assert output_of(outcome) == 42

    def test_class_definitions_work(self):
        """Test that snippets can define and use classes."""
        code = """
class Point:
    def __init__(self, x, y):
        self.x = x
        self.y = y

p = Point(1, 2)
[p.x, p.y]
"""
        outcome = run_snippet(code, {})
        assert output_of(outcome) == [1, 2]

    def test_whitelisted_import(self):
        """Test that pure computational modules can be imported."""
        outcome = run_snippet("import math\nmath.floor(2.7)", {})
        assert output_of(outcome) == 2

    def test_non_json_value_is_stringified(self):
        """Test that values without a JSON form still produce an output."""
        outcome = run_snippet("class Opaque:\n    pass\nOpaque()", {})
        value = output_of(outcome)
        assert isinstance(value, str)
        assert "Opaque" in value


class TestInputIsolation:
    """Tests for input handling."""

    def test_caller_input_not_mutated(self):
        """Test that the snippet works on a copy of the input."""
        data = {"items": [1, 2]}
        outcome = run_snippet("input['items'].append(3)\ninput['items']", data)
        assert output_of(outcome) == [1, 2, 3]
        assert data == {"items": [1, 2]}


class TestRestrictedScope:
    """Tests for what snippets cannot reach."""

    def test_blocked_import(self):
        """Test that modules outside the whitelist cannot be imported."""
        outcome = run_snippet("import os\nos.getcwd()", {})
        assert not outcome.success
        assert outcome.error.kind == ErrorKind.RUNTIME_FAULT
        assert "ImportError" in outcome.error.message

    def test_open_unavailable(self):
        """Test that file access builtins are not in scope."""
        outcome = run_snippet("open('/etc/passwd').read()", {})
        assert not outcome.success
        assert outcome.error.message.startswith("NameError")

    def test_dunder_attribute_rejected(self):
        """Test that dunder attribute escapes are rejected before running."""
        outcome = run_snippet("().__class__.__bases__", {})
        assert not outcome.success
        assert "is not allowed" in outcome.error.message

    def test_dunder_name_rejected(self):
        """Test that dunder names are rejected."""
        outcome = run_snippet("__builtins__", {})
        assert not outcome.success
        assert "__builtins__" in outcome.error.message

    def test_global_statement_rejected(self):
        """Test that the global statement is rejected."""
        outcome = run_snippet("global x\nx = 1", {})
        assert not outcome.success
        assert "global" in outcome.error.message

    def test_bare_except_rejected(self):
        """Test that bare except is rejected."""
        code = """
try:
    x = 1
except:
    pass
"""
        with pytest.raises(SnippetSecurityError):
            build_snippet_module(code)

    def test_generator_frame_escape_rejected(self):
        """Test that a generator frame cannot be walked back to host globals."""
        code = """
def g():
    yield gen.gi_frame.f_back
gen = g()
fr = next(gen)
fr.f_back.f_globals['sys'].modules['os'].popen('id -un').read()
"""
        outcome = run_snippet(code, {})
        assert not outcome.success
        assert outcome.error.message == "Line 3: access to 'f_back' is not allowed"

    @pytest.mark.parametrize(
        "code",
        [
            "frame = None\nframe.f_globals",
            "frame = None\nframe.f_builtins",
            "frame = None\nframe.f_locals",
            "tb = None\ntb.tb_frame",
            "async def f():\n    pass\nf().cr_frame",
        ],
    )
    def test_frame_attributes_rejected(self, code):
        """Test that frame and traceback introspection is rejected before running."""
        outcome = run_snippet(code, {})
        assert not outcome.success
        assert "is not allowed" in outcome.error.message

    def test_mro_rejected(self):
        """Test that walking the class hierarchy to BaseException is rejected."""
        code = """
try:
    while True:
        pass
except Exception.mro()[1]:
    pass
"""
        outcome = run_snippet(code, {})
        assert not outcome.success
        assert "'mro'" in outcome.error.message

    def test_log_goes_to_logger(self, caplog):
        """Test that log() and print() are routed to the snippet logger."""
        with caplog.at_level(logging.INFO, logger="executor.snippet"):
            outcome = run_snippet("log('hello', 1)\nprint('world')", {})
        assert outcome.success
        assert "hello 1" in caplog.text
        assert "world" in caplog.text


class TestFaults:
    """Tests for errors raised by snippets."""

    def test_syntax_error(self):
        """Test that unparsable source reports a syntax fault."""
        outcome = run_snippet("def broken(:", {})
        assert not outcome.success
        assert outcome.error.kind == ErrorKind.RUNTIME_FAULT
        assert outcome.error.message.startswith("SyntaxError: line 1")

    def test_runtime_exception(self):
        """Test that exceptions are reported with their type."""
        outcome = run_snippet("1 / 0", {})
        assert not outcome.success
        assert outcome.error.message == "ZeroDivisionError: division by zero"

    def test_snippet_can_catch_its_own_errors(self):
        """Test that try/except with an exception type works."""
        code = """
try:
    value = input['missing']
except KeyError:
    value = 'default'
value
"""
        assert output_of(run_snippet(code, {})) == "default"


class TestDeadline:
    """Tests for snippet timeouts."""

    def test_infinite_loop_times_out(self):
        """Test that a runaway snippet is stopped and the interpreter discarded."""
        interpreter = SnippetInterpreter(timeout_ms=100)
        outcome = interpreter.run("while True:\n    pass", {})
        assert not outcome.success
        assert outcome.error.kind == ErrorKind.RUNTIME_FAULT
        assert outcome.error.message == "Snippet execution timed out after 100ms"
        assert interpreter.discarded

    def test_timeout_cannot_be_swallowed(self):
        """Test that except Exception inside the snippet does not catch the deadline."""
        code = """
while True:
    try:
        while True:
            pass
    except Exception:
        pass
"""
        outcome = SnippetInterpreter(timeout_ms=100).run(code, {})
        assert not outcome.success
        assert "timed out" in outcome.error.message

    def test_builtin_loop_is_stopped_on_time(self):
        """Test that a long-running builtin call cannot outlive the deadline."""
        started = time.monotonic()
        outcome = run_snippet("sum(range(10**9))", {}, timeout_ms=500)
        elapsed = time.monotonic() - started
        assert not outcome.success
        assert outcome.error.message == "Snippet execution timed out after 500ms"
        assert elapsed < 3.0

    def test_discarded_interpreter_refuses_to_run(self):
        """Test that a discarded instance cannot be reused."""
        interpreter = SnippetInterpreter(timeout_ms=50)
        interpreter.run("while True:\n    pass", {})
        with pytest.raises(RuntimeError):
            interpreter.run("1", {})

    def test_fresh_instance_after_timeout(self):
        """Test that run_snippet uses a fresh interpreter each call."""
        run_snippet("while True:\n    pass", {}, timeout_ms=50)
        assert output_of(run_snippet("1 + 1", {})) == 2


def test_build_snippet_module_wraps_in_function():
    """Test that the source is grafted into a generated function body."""
    module = build_snippet_module("x = 1\nx + 1")
    func = module.body[0]
    assert isinstance(func, ast.FunctionDef)
    assert isinstance(func.body[-1], ast.Return)
