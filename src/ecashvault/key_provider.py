"""Recovery-phrase providers (the secret-management seam).

Defines the KeyProvider Protocol that WalletStateEngine depends on.
A provider hands out the phrase on demand and returns None when it is
not configured or not authorized; it never raises for "no phrase".
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Mapping, Protocol, runtime_checkable

from ecashvault.seed import parse_phrase

logger = logging.getLogger(__name__)

DEFAULT_PHRASE_VAR = "ECASHVAULT_MNEMONIC"
DEFAULT_AUTHORIZATION_VAR = "ECASHVAULT_UNLOCK"


@runtime_checkable
class KeyProvider(Protocol):
    """Source of the wallet's recovery phrase."""

    def get_phrase(self) -> str | None: ...


class NoKeyProvider:
    """Deterministic mode not configured."""

    def get_phrase(self) -> str | None:
        return None


class StaticKeyProvider:
    """Phrase supplied directly by the host application."""

    def __init__(self, phrase: str) -> None:
        self._phrase = phrase

    def get_phrase(self) -> str | None:
        return parse_phrase(self._phrase)

    def __repr__(self) -> str:
        return "StaticKeyProvider(<redacted>)"


class _AuthorizedProvider(ABC):
    """Releases the phrase only while the authorization variable is set."""

    def __init__(
        self,
        authorization_var: str = DEFAULT_AUTHORIZATION_VAR,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._authorization_var = authorization_var
        self._environ = environ

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    def authorized(self) -> bool:
        return bool(self.environ.get(self._authorization_var))

    def get_phrase(self) -> str | None:
        if not self.authorized():
            logger.debug("%s not set; deterministic mode unavailable.", self._authorization_var)
            return None
        return parse_phrase(self._read())

    @abstractmethod
    def _read(self) -> str | None:
        """Fetch the raw phrase, or None if there is none."""


class EnvKeyProvider(_AuthorizedProvider):
    """Phrase taken from an environment variable."""

    def __init__(
        self,
        phrase_var: str = DEFAULT_PHRASE_VAR,
        authorization_var: str = DEFAULT_AUTHORIZATION_VAR,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(authorization_var, environ)
        self._phrase_var = phrase_var

    def _read(self) -> str | None:
        return self.environ.get(self._phrase_var)


class FileKeyProvider(_AuthorizedProvider):
    """Phrase read from a file (e.g. exported by an identity wallet)."""

    def __init__(
        self,
        path: str | Path,
        authorization_var: str = DEFAULT_AUTHORIZATION_VAR,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(authorization_var, environ)
        self._path = Path(path)

    def _read(self) -> str | None:
        try:
            return self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.warning("Recovery phrase file %s does not exist.", self._path)
        except OSError as e:
            logger.warning("Could not read recovery phrase file %s: %s", self._path, e.strerror)
        return None
