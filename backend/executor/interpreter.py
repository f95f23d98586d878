"""Snippet interpreter with a restricted global scope.

Snippets get an explicit whitelist instead of a denylist: the ``input``
payload, a ``log`` function and a small set of safe builtins. The source is
parsed with ``ast`` and grafted into a generated function, never spliced as
text. Each run happens in its own child process, which is killed when the
deadline passes.
"""

import ast
import builtins
import copy
import multiprocessing
from multiprocessing.connection import Connection, wait
from typing import Any

from pydantic_core import to_jsonable_python

from common.config import settings
from common.logging import get_logger
from executor.models import ErrorKind, ExecutionOutcome

logger = get_logger(__name__)
snippet_logger = get_logger("executor.snippet")

SNIPPET_FUNCTION_NAME = "__snippet__"

# Time allowed for a killed child to be reaped before escalating
TERMINATE_GRACE_SECONDS = 1.0

# Snippets are started from worker threads; fork would copy their held locks
_MP_CONTEXT = multiprocessing.get_context("spawn")

# Pure computational modules with no filesystem, network or process access
SNIPPET_ALLOWED_MODULES: frozenset[str] = frozenset(
    {"math", "cmath", "itertools", "operator", "heapq", "bisect", "string"}
)

# Frame, code and type introspection: each is a route back to real globals
BLOCKED_ATTRIBUTES: frozenset[str] = frozenset(
    {
        "gi_frame",
        "gi_code",
        "gi_yieldfrom",
        "cr_frame",
        "cr_code",
        "cr_await",
        "ag_frame",
        "ag_code",
        "ag_await",
        "f_back",
        "f_globals",
        "f_locals",
        "f_builtins",
        "f_code",
        "f_trace",
        "tb_frame",
        "tb_next",
        "mro",
    }
)


class SnippetError(Exception):
    """Base class for interpreter failures."""


class SnippetSecurityError(SnippetError):
    """Raised when a snippet uses a construct the interpreter refuses to run."""


# Safe builtins whitelist - no I/O, no introspection, no dynamic code
SAFE_BUILTINS: dict[str, Any] = {
    # Basic types
    "True": True,
    "False": False,
    "None": None,
    # Type constructors
    "bool": bool,
    "int": int,
    "float": float,
    "complex": complex,
    "str": str,
    "list": list,
    "dict": dict,
    "tuple": tuple,
    "set": set,
    "frozenset": frozenset,
    "bytes": bytes,
    "bytearray": bytearray,
    # Built-in functions (safe subset)
    "abs": abs,
    "all": all,
    "any": any,
    "ascii": ascii,
    "bin": bin,
    "callable": callable,
    "chr": chr,
    "divmod": divmod,
    "enumerate": enumerate,
    "filter": filter,
    "format": format,
    "hash": hash,
    "hex": hex,
    "isinstance": isinstance,
    "iter": iter,
    "len": len,
    "map": map,
    "max": max,
    "min": min,
    "next": next,
    "oct": oct,
    "ord": ord,
    "pow": pow,
    "range": range,
    "repr": repr,
    "reversed": reversed,
    "round": round,
    "slice": slice,
    "sorted": sorted,
    "sum": sum,
    "zip": zip,
    # Exceptions (for try/except)
    "Exception": Exception,
    "ArithmeticError": ArithmeticError,
    "LookupError": LookupError,
    "TypeError": TypeError,
    "ValueError": ValueError,
    "KeyError": KeyError,
    "IndexError": IndexError,
    "AttributeError": AttributeError,
    "RuntimeError": RuntimeError,
    "StopIteration": StopIteration,
    "ZeroDivisionError": ZeroDivisionError,
    "OverflowError": OverflowError,
    "NotImplementedError": NotImplementedError,
    "AssertionError": AssertionError,
}

_real_import = builtins.__import__


def _safe_import(
    name: str,
    globals_dict: dict | None = None,
    locals_dict: dict | None = None,
    fromlist: tuple = (),
    level: int = 0,
):
    """Restricted import function that only allows whitelisted modules."""
    if level != 0 or name.split(".")[0] not in SNIPPET_ALLOWED_MODULES:
        raise ImportError(f"Import of '{name}' is not available in snippets")
    return _real_import(name, globals_dict, locals_dict, fromlist, level)


class _ScopeChecker(ast.NodeVisitor):
    """Rejects constructs that could reach outside the restricted scope."""

    def visit_Attribute(self, node: ast.Attribute) -> None:
        # Covers dunder escapes (__class__, __globals__) and private module handles
        if node.attr.startswith("_") or node.attr in BLOCKED_ATTRIBUTES:
            raise SnippetSecurityError(
                f"Line {node.lineno}: access to '{node.attr}' is not allowed"
            )
        self.generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("__") and node.id.endswith("__"):
            raise SnippetSecurityError(f"Line {node.lineno}: use of '{node.id}' is not allowed")
        self.generic_visit(node)

    def visit_Global(self, node: ast.Global) -> None:
        raise SnippetSecurityError(f"Line {node.lineno}: 'global' is not allowed")

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:
        if node.type is None:
            raise SnippetSecurityError(f"Line {node.lineno}: bare 'except:' is not allowed")
        self.generic_visit(node)


_NESTED_SCOPES = (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef, ast.Lambda)


def _has_toplevel_return(node: ast.AST) -> bool:
    """Whether a `return` exists outside any nested function or class."""
    for child in ast.iter_child_nodes(node):
        if isinstance(child, ast.Return):
            return True
        if isinstance(child, _NESTED_SCOPES):
            continue
        if _has_toplevel_return(child):
            return True
    return False


def build_snippet_module(code: str) -> ast.Module:
    """Graft snippet source into the body of a generated function.

    Without a top-level ``return``, a trailing expression statement becomes
    the return value. Line numbers of the original source are preserved.

    Raises:
        SyntaxError: If the snippet cannot be parsed.
        SnippetSecurityError: If the snippet uses a forbidden construct.
    """
    tree = ast.parse(code, filename="<snippet>", mode="exec")
    _ScopeChecker().visit(tree)

    body = list(tree.body) or [ast.Pass()]
    if not _has_toplevel_return(tree) and isinstance(body[-1], ast.Expr):
        last = body[-1]
        body[-1] = ast.copy_location(ast.Return(value=last.value), last)

    module = ast.parse(f"def {SNIPPET_FUNCTION_NAME}():\n    pass\n", filename="<snippet>")
    module.body[0].body = body
    return ast.fix_missing_locations(module)


def _build_globals(input_data: dict[str, Any], log_lines: list[str]) -> dict[str, Any]:
    def log(*args: Any) -> None:
        log_lines.append(" ".join(str(arg) for arg in args))

    scope_builtins = dict(SAFE_BUILTINS)
    scope_builtins["__import__"] = _safe_import
    scope_builtins["__build_class__"] = builtins.__build_class__
    scope_builtins["print"] = log
    return {
        "__builtins__": scope_builtins,
        "__name__": "__snippet__",
        "input": input_data,
        "log": log,
    }


def _execute_in_sandbox(code: str, input_data: dict[str, Any], conn: Connection) -> None:
    """Child process entry point: run the snippet and send back a plain dict."""
    log_lines: list[str] = []
    result: dict[str, Any] = {"value": None, "error": None, "logs": log_lines}
    try:
        byte_code = compile(build_snippet_module(code), "<snippet>", "exec")
        scope = _build_globals(input_data, log_lines)
        exec(byte_code, scope)  # noqa: S102
        value = scope[SNIPPET_FUNCTION_NAME]()
        if value is None:
            value = input_data
        try:
            result["value"] = to_jsonable_python(value, fallback=str)
        except ValueError:
            result["value"] = str(value)
    except Exception as e:
        result["error"] = f"{type(e).__name__}: {e}"

    conn.send(result)
    conn.close()


class SnippetInterpreter:
    """One restricted interpreter instance.

    An instance whose deadline fired is discarded and refuses to run again.
    """

    def __init__(self, timeout_ms: int | None = None) -> None:
        self.timeout_seconds = (timeout_ms or settings.snippet_timeout_ms) / 1000
        self.discarded = False

    def _stop(self, process: multiprocessing.process.BaseProcess) -> None:
        """Terminate the child, force kill if it lingers, always reap."""
        process.terminate()
        process.join(timeout=TERMINATE_GRACE_SECONDS)
        if process.is_alive():
            process.kill()
            process.join()

    def run(self, code: str, input_data: dict[str, Any]) -> ExecutionOutcome:
        """Execute a snippet and return its value wrapped in an outcome.

        Args:
            code: Snippet source.
            input_data: Input payload, exposed to the snippet as ``input``.

        Returns:
            ExecutionOutcome with the returned value (or the input when the
            snippet returns nothing), or a RUNTIME_FAULT.
        """
        if self.discarded:
            raise RuntimeError("Interpreter was discarded after a timeout")

        # Reject bad source before paying for a child process
        try:
            build_snippet_module(code)
        except SyntaxError as e:
            return ExecutionOutcome.failure(
                ErrorKind.RUNTIME_FAULT,
                f"SyntaxError: line {e.lineno}: {e.msg}",
            )
        except SnippetSecurityError as e:
            return ExecutionOutcome.failure(ErrorKind.RUNTIME_FAULT, str(e))

        parent_conn, child_conn = _MP_CONTEXT.Pipe(duplex=False)
        process = _MP_CONTEXT.Process(
            target=_execute_in_sandbox,
            args=(code, copy.deepcopy(input_data), child_conn),
            name="snippet-interpreter",
            daemon=True,
        )
        process.start()
        child_conn.close()

        try:
            ready = wait([parent_conn, process.sentinel], timeout=self.timeout_seconds)
            result = parent_conn.recv() if parent_conn in ready else None
        except EOFError:
            result = None
        finally:
            parent_conn.close()

        if not ready:
            self._stop(process)
            self.discarded = True
            timeout_ms = int(self.timeout_seconds * 1000)
            logger.warning(f"Snippet exceeded its {timeout_ms}ms deadline; interpreter discarded")
            return ExecutionOutcome.failure(
                ErrorKind.RUNTIME_FAULT,
                f"Snippet execution timed out after {timeout_ms}ms",
            )

        process.join(timeout=TERMINATE_GRACE_SECONDS)
        if process.is_alive():
            self._stop(process)

        if result is None:
            return ExecutionOutcome.failure(
                ErrorKind.RUNTIME_FAULT,
                f"Snippet process exited unexpectedly with code {process.exitcode}",
            )

        for line in result["logs"]:
            snippet_logger.info(f"[snippet] {line}")

        if result["error"] is not None:
            return ExecutionOutcome.failure(ErrorKind.RUNTIME_FAULT, result["error"])
        return ExecutionOutcome.ok(result["value"])


def run_snippet(
    code: str,
    input_data: dict[str, Any],
    timeout_ms: int | None = None,
) -> ExecutionOutcome:
    """Run a snippet on a fresh interpreter instance."""
    return SnippetInterpreter(timeout_ms=timeout_ms).run(code, input_data)
