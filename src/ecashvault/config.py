"""ecashvault configuration — plain frozen dataclass.

The host application (CLI, agent runtime) constructs this from its own
settings and passes it to ``WalletStateEngine``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from ecashvault.constants import (
    COUNTERS_FILENAME,
    DEFAULT_DOMAIN_TAG,
    DEFAULT_LOCK_POLL_SECS,
    DEFAULT_LOCK_TIMEOUT_SECS,
    PROOFS_FILENAME,
)


def default_data_dir() -> Path:
    return Path.home() / ".config" / "ecashvault"


@dataclass(frozen=True)
class WalletConfig:
    data_dir: Path = field(default_factory=default_data_dir)
    proofs_filename: str = PROOFS_FILENAME
    counters_filename: str = COUNTERS_FILENAME
    lock_timeout_secs: float = DEFAULT_LOCK_TIMEOUT_SECS
    lock_poll_secs: float = DEFAULT_LOCK_POLL_SECS
    domain_tag: bytes = DEFAULT_DOMAIN_TAG
    bip39_passphrase: str = ""
    default_mint: str | None = None

    @property
    def proofs_path(self) -> Path:
        return Path(self.data_dir) / self.proofs_filename

    @property
    def counters_path(self) -> Path:
        return Path(self.data_dir) / self.counters_filename
