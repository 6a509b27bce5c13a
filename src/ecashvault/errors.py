"""Exception hierarchy for wallet state operations."""

from __future__ import annotations

from pathlib import Path


class EcashVaultError(Exception):
    """Base exception for ecashvault."""


class SecretUnavailable(EcashVaultError):
    """No recovery phrase is configured or obtainable.

    Not fatal: callers fall back to non-deterministic operation.
    """


class LockTimeout(EcashVaultError):
    """A store lock could not be acquired within the timeout (retryable)."""

    def __init__(
        self, path: str | Path, timeout: float, holder_pid: int | None = None,
    ) -> None:
        holder = f" (held by pid {holder_pid})" if holder_pid else ""
        super().__init__(f"Timed out after {timeout:.1f}s waiting for lock {path}{holder}")
        self.path = Path(path)
        self.timeout = timeout
        self.holder_pid = holder_pid


class MalformedStore(EcashVaultError):
    """A persisted store file could not be parsed.

    Raised internally and recovered by treating the store as empty.
    """

    def __init__(self, path: str | Path, reason: str) -> None:
        super().__init__(f"Malformed store file {path}: {reason}")
        self.path = Path(path)
        self.reason = reason


class InvalidLockSpec(EcashVaultError):
    """A spending condition failed threshold, locktime or key validation."""


class ResolverError(EcashVaultError):
    """Base exception for identity resolution."""


class ResolverUnavailable(ResolverError):
    """No identity resolver is configured."""


class ResolverNotFound(ResolverError):
    """The recipient could not be resolved to a public key."""
