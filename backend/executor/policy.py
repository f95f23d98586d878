"""Policy store: denylisted capabilities and optional allow-list."""

from dataclasses import dataclass, field
from functools import lru_cache

from common.config import Settings, get_settings

# =============================================================================
# BLOCKED PACKAGES - Modules/packages that are never allowed for child-process code
# =============================================================================
DEFAULT_BLOCKED_PACKAGES: frozenset[str] = frozenset(
    {
        # Process and interpreter control
        "os",
        "sys",
        "subprocess",
        "shutil",
        "importlib",
        "builtins",
        "ctypes",
        "multiprocessing",
        "pty",
        "signal",
        # Networking
        "socket",
        "urllib",
        "requests",
        "http",
        "ftplib",
        "smtplib",
        "telnetlib",
        # Unsafe deserialization
        "pickle",
        "marshal",
    }
)


@dataclass(frozen=True)
class PolicySet:
    """Denylist plus optional strict allow-list.

    An empty allow-list means "everything except the denylist".
    """

    denylist: frozenset[str] = DEFAULT_BLOCKED_PACKAGES
    allowlist: frozenset[str] = field(default_factory=frozenset)

    def check(self, name: str) -> str | None:
        """Return a rejection reason for ``name``, or None when permitted.

        Denylist membership is checked first and always wins.
        """
        if name in self.denylist:
            return "blocked"
        if self.allowlist and name not in self.allowlist:
            return "not_allowed"
        return None


def load_policy(settings: Settings) -> PolicySet:
    """Build the policy from configuration.

    Args:
        settings: Application settings.

    Returns:
        PolicySet combining the built-in denylist with configured names.
    """
    return PolicySet(
        denylist=DEFAULT_BLOCKED_PACKAGES | frozenset(settings.blocked_packages_set),
        allowlist=frozenset(settings.allowed_packages_set),
    )


@lru_cache
def get_policy() -> PolicySet:
    """Get the process-wide policy, loaded once at first use."""
    return load_policy(get_settings())
