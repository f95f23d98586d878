"""Static security gate for code that runs outside the in-process interpreter.

This is a best-effort text scan, not a sound analysis: string concatenation,
encodings or indirection can bypass it. Real isolation must come from the
operating system (restricted user, filesystem namespace, network denial).
"""

import re
from collections.abc import Iterable, Iterator

from executor.models import Language, ValidationVerdict
from executor.policy import PolicySet

# =============================================================================
# IMPORT STATEMENTS - `import a, b.c as d` and `from x.y import z`
# =============================================================================
_IMPORT_LINE = re.compile(r"^\s*import\s+(?P<names>[\w.]+(?:\s+as\s+\w+)?(?:\s*,\s*[\w.]+(?:\s+as\s+\w+)?)*)")
_FROM_LINE = re.compile(r"^\s*from\s+(?P<module>[\w.]+)\s+import\b")

# =============================================================================
# DANGEROUS PATTERNS - Flagged even when no matching import line exists
# =============================================================================
# A leading `(?<![\w.])` keeps method calls such as `re.compile(` or
# `cursor.execute(` from matching the builtin names.
DANGEROUS_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("__import__", re.compile(r"__import__\s*\(")),
    ("eval", re.compile(r"(?<![\w.])eval\s*\(")),
    ("exec", re.compile(r"(?<![\w.])exec\s*\(")),
    ("compile", re.compile(r"(?<![\w.])compile\s*\(")),
    ("input", re.compile(r"(?<![\w.])(?:raw_)?input\s*\(")),
    (
        "open",
        re.compile(r"(?<![\w.])open\s*\([^)]*(?:,|mode\s*=)\s*['\"][rbt]*[wax+][rbtwax+]*['\"]"),
    ),
    ("subprocess", re.compile(r"\bsubprocess\.")),
    ("os.system", re.compile(r"\bos\.system\b")),
    ("os.popen", re.compile(r"\bos\.popen\b")),
    ("socket", re.compile(r"\bsocket\.")),
)

# =============================================================================
# BASH PATTERNS - Shell commands that reach the network, other processes,
# privileged files or another interpreter
# =============================================================================
_COMMAND = r"(?<![\w.\-/])"

BASH_DANGEROUS_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    # Network
    ("curl", re.compile(_COMMAND + r"curl\b")),
    ("wget", re.compile(_COMMAND + r"wget\b")),
    ("nc", re.compile(_COMMAND + r"(?:nc|ncat|netcat|socat)\b")),
    ("ssh", re.compile(_COMMAND + r"(?:ssh|scp|sftp|telnet|ftp)\b")),
    ("/dev/tcp", re.compile(r"/dev/(?:tcp|udp)/")),
    # Process control and code evaluation
    ("eval", re.compile(_COMMAND + r"eval\b")),
    ("exec", re.compile(_COMMAND + r"exec\b")),
    ("kill", re.compile(_COMMAND + r"(?:kill|pkill|killall)\b")),
    ("nohup", re.compile(_COMMAND + r"(?:nohup|disown|setsid)\b")),
    ("sudo", re.compile(_COMMAND + r"(?:sudo|su|chroot|mount|umount)\b")),
    ("interpreter", re.compile(_COMMAND + r"(?:python[\d.]*|perl|ruby|node|php|lua)\b")),
    # Filesystem
    ("rm -r", re.compile(_COMMAND + r"rm\s+(?:-\w+\s+)*-\w*[rR]")),
    ("../../", re.compile(r"\.\./\.\./")),
    ("/etc", re.compile(r"/etc/(?:passwd|shadow|sudoers)\b")),
    ("/proc", re.compile(r"/proc/(?:self|\d+)/")),
)

PATTERNS_BY_LANGUAGE: dict[Language, tuple[tuple[str, re.Pattern[str]], ...]] = {
    Language.PYTHON: DANGEROUS_PATTERNS,
    Language.BASH: BASH_DANGEROUS_PATTERNS,
}

_PACKAGE_NAME = re.compile(r"^\s*([A-Za-z0-9_.\-]+)")


def _iter_imported_modules(code: str) -> Iterator[tuple[int, str]]:
    """Yield (line number, top-level module name) for each import-like line."""
    for lineno, line in enumerate(code.splitlines(), start=1):
        match = _FROM_LINE.match(line)
        if match:
            module = match.group("module")
            # Relative imports (`from . import x`) have no top-level name
            if not module.startswith("."):
                yield lineno, module.split(".")[0]
            continue

        match = _IMPORT_LINE.match(line)
        if match:
            for part in match.group("names").split(","):
                name = part.strip().split()[0]
                yield lineno, name.split(".")[0]


def normalize_package_name(requirement: str) -> str:
    """Reduce a requirement string to a comparable name.

    ``"Requests>=2.0"`` becomes ``"requests"``.
    """
    match = _PACKAGE_NAME.match(requirement)
    name = match.group(1) if match else requirement.strip()
    return name.lower()


def _describe(kind: str, name: str, reason: str) -> str:
    if reason == "blocked":
        return f"{kind} '{name}' is blocked for security reasons"
    return f"{kind} '{name}' is not in the allowed packages list"


def validate(
    code: str,
    packages: Iterable[str],
    policy: PolicySet,
    language: Language = Language.PYTHON,
) -> ValidationVerdict:
    """Validate source text and requested packages against the policy.

    Checks run in a fixed order: import lines, then dangerous call patterns,
    then requested packages. Only the first violation is reported. Bash
    source has no import lines and is scanned with the shell catalogue.

    Args:
        code: The source code to inspect.
        packages: Packages requested for installation.
        policy: The active deny/allow policy.
        language: Selects the pattern catalogue.

    Returns:
        ValidationVerdict with ``allowed`` set, or the first violation found.
    """
    imports = _iter_imported_modules(code) if language == Language.PYTHON else ()
    for lineno, module in imports:
        reason = policy.check(module)
        if reason:
            return ValidationVerdict.reject(
                module,
                f"Line {lineno}: " + _describe("Module", module, reason),
            )

    for symbol, pattern in PATTERNS_BY_LANGUAGE[language]:
        if pattern.search(code):
            return ValidationVerdict.reject(
                symbol,
                f"Code contains a potentially dangerous operation: '{symbol}'",
            )

    for package in sorted(packages):
        name = normalize_package_name(package)
        reason = policy.check(name)
        if reason:
            return ValidationVerdict.reject(name, _describe("Package", name, reason))

    return ValidationVerdict.accept()


def is_code_safe(
    code: str,
    packages: Iterable[str],
    policy: PolicySet,
    language: Language = Language.PYTHON,
) -> bool:
    """Check if code and packages pass validation."""
    return validate(code, packages, policy, language).allowed
