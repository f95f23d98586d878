"""Child-process code runner with staged artifacts and timeout supervision.

Each invocation is a strict pipeline with a single artifact owner:

    Staging -> (optional) DependencyInstall -> Spawn -> Supervision
    -> Parsing -> Cleanup

The staging directory is created after validation has passed and is removed
on every exit path by the ``staged_artifact`` context manager.
"""

import asyncio
import json
import os
import shlex
import shutil
import signal
import uuid
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import Any

from common.config import Settings, settings
from common.logging import get_logger
from executor.models import ErrorKind, ExecutionArtifact, ExecutionOutcome, Language

logger = get_logger(__name__)

ARTIFACT_PREFIX = "sandbox-exec"
ERROR_MARKER = "__error__"

# =============================================================================
# WRAPPER SCRIPTS - user code travels as an escaped literal, never as text
# spliced into an indented block
# =============================================================================
PYTHON_WRAPPER = Template(
    """\
import contextlib
import json
import sys
import traceback

USER_CODE = $code_literal
input_data = json.loads($input_literal)

namespace = {"__name__": "__main__", "input_data": input_data}
try:
    with contextlib.redirect_stdout(sys.stderr):
        exec(compile(USER_CODE, "<user_code>", "exec"), namespace)
    result = namespace.get("result", input_data)
    payload = json.dumps(result, default=str)
except Exception as exc:
    error_info = {
        "error": str(exc),
        "type": type(exc).__name__,
        "traceback": traceback.format_exc(),
    }
    print(json.dumps({"$error_marker": error_info}), file=sys.stderr)
    sys.exit(1)

print(payload)
"""
)

BASH_WRAPPER = Template(
    """\
set -o pipefail
INPUT_JSON=$input_literal
export INPUT_JSON

$code
"""
)


@dataclass(frozen=True)
class ScriptRuntime:
    """How one external language is staged and launched."""

    language: Language
    suffix: str
    supports_packages: bool

    def executable(self, config: Settings) -> str:
        if self.language is Language.BASH:
            return config.bash_executable
        return config.python_executable

    def render(self, code: str, input_json: str) -> str:
        if self.language is Language.BASH:
            return BASH_WRAPPER.substitute(input_literal=shlex.quote(input_json), code=code)
        return PYTHON_WRAPPER.substitute(
            code_literal=repr(code),
            input_literal=repr(input_json),
            error_marker=ERROR_MARKER,
        )


RUNTIMES: dict[Language, ScriptRuntime] = {
    Language.PYTHON: ScriptRuntime(Language.PYTHON, ".py", supports_packages=True),
    Language.BASH: ScriptRuntime(Language.BASH, ".sh", supports_packages=False),
}


def _sandbox_env(workdir: Path) -> dict[str, str]:
    """Minimal environment for the child: nothing inherited but PATH."""
    return {
        "PATH": os.environ.get("PATH", os.defpath),
        "HOME": str(workdir),
        "LANG": "C.UTF-8",
        "PYTHONPATH": "",  # Prevent importing from attacker-controlled paths
        "PYTHONUNBUFFERED": "1",
        "PYTHONDONTWRITEBYTECODE": "1",
    }


def _remove_artifact(artifact: ExecutionArtifact) -> None:
    """Best-effort removal of every staged file; errors are logged, not raised."""
    for path in (artifact.script_path, artifact.manifest_path):
        if path is None:
            continue
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to delete {path}: {e}")
    try:
        shutil.rmtree(artifact.workdir)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to delete {artifact.workdir}: {e}")


@asynccontextmanager
async def staged_artifact(
    runtime: ScriptRuntime,
    code: str,
    input_data: dict[str, Any],
    packages: Iterable[str],
    config: Settings,
) -> AsyncIterator[ExecutionArtifact]:
    """Stage the wrapper script (and manifest) in a private directory.

    The directory is removed when the block exits, whichever way it exits.
    """
    execution_id = uuid.uuid4().hex
    workdir = Path(config.sandbox_temp_dir) / f"{ARTIFACT_PREFIX}-{execution_id}"
    workdir.mkdir(mode=0o700, parents=True)
    artifact = ExecutionArtifact(
        execution_id=execution_id,
        workdir=workdir,
        script_path=workdir / f"main{runtime.suffix}",
    )
    try:
        input_json = json.dumps(input_data, default=str)
        artifact.script_path.write_text(runtime.render(code, input_json), encoding="utf-8")

        requirements = sorted({p.strip() for p in packages if p.strip()})
        if requirements and runtime.supports_packages:
            artifact.manifest_path = workdir / "requirements.txt"
            artifact.manifest_path.write_text("\n".join(requirements) + "\n", encoding="utf-8")

        yield artifact
    finally:
        _remove_artifact(artifact)


def _signal_group(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
    """Signal the child and everything it spawned (it leads its own session)."""
    try:
        os.killpg(process.pid, sig)
    except (ProcessLookupError, PermissionError):
        pass


async def _terminate(process: asyncio.subprocess.Process, grace_seconds: float) -> None:
    """SIGTERM the process group, SIGKILL whatever is left after the grace period, reap."""
    _signal_group(process, signal.SIGTERM)
    try:
        await asyncio.wait_for(process.wait(), timeout=grace_seconds)
    except asyncio.TimeoutError:
        pass
    # Grandchildren may ignore SIGTERM or outlive the leader
    _signal_group(process, signal.SIGKILL)
    await process.wait()


def _extract_error(stderr: str) -> dict[str, Any] | None:
    """Find the structured error line the wrapper writes to stderr."""
    for line in reversed(stderr.strip().splitlines()):
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict) and isinstance(data.get(ERROR_MARKER), dict):
            return data[ERROR_MARKER]
    return None


def parse_completed(
    exit_code: int,
    stdout: str,
    stderr: str,
    input_data: dict[str, Any],
) -> ExecutionOutcome:
    """Turn a finished process into an outcome.

    Exit code 0 is always a success: stdout is parsed as JSON, and anything
    that is not JSON is returned as the raw trimmed text.
    """
    if exit_code == 0:
        output = stdout.strip()
        if not output:
            return ExecutionOutcome.ok(input_data)
        try:
            return ExecutionOutcome.ok(json.loads(output))
        except json.JSONDecodeError:
            return ExecutionOutcome.ok(output)

    error = _extract_error(stderr)
    if error is not None:
        message = f"{error.get('type', 'Error')}: {error.get('error', '')}"
        return ExecutionOutcome.failure(ErrorKind.RUNTIME_FAULT, message, details=error)

    return ExecutionOutcome.failure(
        ErrorKind.RUNTIME_FAULT,
        stderr.strip() or f"Process exited with code {exit_code}",
        details={"exit_code": exit_code, "stderr": stderr, "stdout": stdout},
    )


class ProcessRunner:
    """Execute external-language code in a supervised child process."""

    def __init__(self, config: Settings | None = None) -> None:
        self.config = config or settings

    async def install_packages(self, artifact: ExecutionArtifact) -> bool:
        """Install the manifest with pip, bounded by its own short timeout.

        Failure is logged and tolerated: the packages may already be present.

        Returns:
            True when pip exited cleanly.
        """
        if artifact.manifest_path is None:
            return True

        cmd = [
            self.config.python_executable,
            "-m",
            "pip",
            "install",
            "--quiet",
            "--disable-pip-version-check",
            "-r",
            str(artifact.manifest_path),
        ]
        process = None
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                cwd=artifact.workdir,
                start_new_session=True,
            )
            _, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=self.config.pip_install_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Package installation for {artifact.execution_id} timed out after "
                f"{self.config.pip_install_timeout_seconds}s; continuing without it"
            )
            if process is not None:
                await _terminate(process, self.config.kill_grace_seconds)
            return False
        except OSError as e:
            logger.warning(f"Package installation for {artifact.execution_id} failed: {e}")
            return False

        if process.returncode != 0:
            logger.warning(
                f"Package installation for {artifact.execution_id} exited with "
                f"{process.returncode}: {stderr.decode(errors='replace').strip()[:500]}"
            )
            return False
        return True

    async def run(
        self,
        code: str,
        input_data: dict[str, Any],
        packages: Iterable[str] = (),
        timeout_ms: int | None = None,
        language: Language = Language.PYTHON,
    ) -> ExecutionOutcome:
        """Execute code in a child process.

        Args:
            code: Source code to execute.
            input_data: Input payload, embedded in the wrapper as a literal.
            packages: Packages to install before running (python only).
            timeout_ms: Wall-clock deadline for the child process.
            language: Which external runtime to use.

        Returns:
            ExecutionOutcome for the run.
        """
        runtime = RUNTIMES[language]
        timeout_ms = timeout_ms or self.config.execution_timeout_ms
        executable = runtime.executable(self.config)

        async with staged_artifact(runtime, code, input_data, packages, self.config) as artifact:
            logger.info(
                f"Staged {language.value} execution {artifact.execution_id} in {artifact.workdir}"
            )
            if artifact.manifest_path is not None:
                await self.install_packages(artifact)

            try:
                process = await asyncio.create_subprocess_exec(
                    executable,
                    str(artifact.script_path),
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=artifact.workdir,
                    start_new_session=True,
                    env=_sandbox_env(artifact.workdir),
                )
            except FileNotFoundError:
                return ExecutionOutcome.failure(
                    ErrorKind.PROCESS_NOT_FOUND,
                    f"Interpreter '{executable}' is not installed or not in PATH. "
                    "Set PYTHON_SERVICE_URL to use an external execution service.",
                )

            try:
                stdout, stderr = await asyncio.wait_for(
                    process.communicate(),
                    timeout=timeout_ms / 1000,
                )
            except asyncio.TimeoutError:
                await _terminate(process, self.config.kill_grace_seconds)
                logger.warning(f"Execution {artifact.execution_id} timed out after {timeout_ms}ms")
                return ExecutionOutcome.failure(
                    ErrorKind.TIMEOUT,
                    f"Execution timed out after {timeout_ms}ms",
                )
            except BaseException:
                # Caller cancelled us: do not leave the child running
                await _terminate(process, self.config.kill_grace_seconds)
                raise

            return parse_completed(
                process.returncode,
                stdout.decode("utf-8", errors="replace"),
                stderr.decode("utf-8", errors="replace"),
                input_data,
            )
