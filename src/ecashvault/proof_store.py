"""Proof ledger persisted as a single owner-only JSON file.

File layout::

    {"proofs": {"<mint url>": [{"amount": 8, "mintKeysetId": ..., ...}]}}

Reads are lock-free (the file is always replaced atomically). Every
mutation takes the store lock and rewrites the whole document, so a
second writer always sees the first writer's completed update.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator

from ecashvault.constants import DEFAULT_LOCK_POLL_SECS, DEFAULT_LOCK_TIMEOUT_SECS
from ecashvault.errors import MalformedStore
from ecashvault.lockfile import with_lock
from ecashvault.proof import Proof, coerce_proofs, total_amount
from ecashvault.storage import atomic_write_json, preserve_corrupt, read_json

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# In-memory document
# ---------------------------------------------------------------------------


class _WalletDocument:
    """Parsed wallet file.

    Unknown top-level keys and entries that do not parse as proofs are
    carried through unchanged, so a rewrite never discards them.
    ``corrupt`` marks a file that must be backed up before the rewrite.
    """

    def __init__(
        self,
        proofs: dict[str, list[Proof]] | None = None,
        other: dict[str, Any] | None = None,
        corrupt: bool = False,
        unreadable: dict[str, Any] | None = None,
    ) -> None:
        self.proofs = proofs or {}
        self.other = other or {}
        self.corrupt = corrupt
        # mint url -> raw list of unparsed entries, or the raw non-list value
        self.unreadable = unreadable or {}

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.other)
        out: dict[str, Any] = {
            mint: [p.to_dict() for p in proofs] for mint, proofs in self.proofs.items()
        }
        for mint, raw in self.unreadable.items():
            if isinstance(raw, list):
                out.setdefault(mint, []).extend(raw)
            elif mint not in out:
                out[mint] = raw
        data["proofs"] = out
        return data

    @classmethod
    def from_dict(cls, obj: dict[str, Any], path: Path) -> _WalletDocument:
        raw_proofs = obj.get("proofs", {})
        if not isinstance(raw_proofs, dict):
            raise MalformedStore(path, "'proofs' is not an object")

        proofs: dict[str, list[Proof]] = {}
        unreadable: dict[str, Any] = {}
        for mint_url, items in raw_proofs.items():
            if not isinstance(items, list):
                logger.warning("Skipping mint %s in %s: proofs is not a list.", mint_url, path)
                unreadable[mint_url] = items
                continue
            parsed: list[Proof] = []
            for item in items:
                try:
                    parsed.append(Proof.from_dict(item))
                except (ValueError, TypeError, AttributeError) as e:
                    logger.warning("Skipping unreadable proof for %s in %s: %s", mint_url, path, e)
                    unreadable.setdefault(mint_url, []).append(item)
            proofs[mint_url] = parsed

        other = {k: v for k, v in obj.items() if k != "proofs"}
        return cls(proofs=proofs, other=other, corrupt=bool(unreadable), unreadable=unreadable)


def _dedupe(proofs: Iterable[Proof]) -> list[Proof]:
    """Collapse duplicate secrets: last write wins, first position kept."""
    by_secret: dict[str, Proof] = {}
    for proof in proofs:
        by_secret[proof.secret] = proof
    return list(by_secret.values())


def _secret_of(target: Proof | dict[str, Any]) -> str:
    if isinstance(target, Proof):
        return target.secret
    try:
        secret = target["secret"]
    except (KeyError, TypeError) as e:
        raise ValueError(f"Cannot remove proof without a secret: {target!r}") from e
    if not secret:
        raise ValueError("Cannot remove proof with an empty secret")
    return str(secret)


# ---------------------------------------------------------------------------
# ProofStore
# ---------------------------------------------------------------------------


class ProofStore:
    """Proofs held per mint, safe across cooperating processes."""

    def __init__(
        self,
        path: str | Path,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECS,
        lock_poll: float = DEFAULT_LOCK_POLL_SECS,
    ) -> None:
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self._lock_timeout = lock_timeout
        self._lock_poll = lock_poll

    def _load(self) -> _WalletDocument:
        try:
            raw = read_json(self.path)
            if raw is None:
                return _WalletDocument()
            return _WalletDocument.from_dict(raw, self.path)
        except MalformedStore as e:
            logger.warning("%s; treating proof store as empty.", e)
            return _WalletDocument(corrupt=True)

    @contextmanager
    def _transaction(self) -> Iterator[_WalletDocument]:
        """Locked read-modify-write of the whole document."""
        with with_lock(self.lock_path, self._lock_timeout, self._lock_poll):
            doc = self._load()
            yield doc
            if doc.corrupt:
                preserve_corrupt(self.path)
            atomic_write_json(self.path, doc.to_dict())

    # -- queries ------------------------------------------------------------

    def proofs_for(self, mint_url: str) -> list[Proof]:
        return list(self._load().proofs.get(mint_url, []))

    def balance(self, mint_url: str) -> int:
        return total_amount(self.proofs_for(mint_url))

    def mints(self) -> list[str]:
        return list(self._load().proofs)

    def balances(self) -> dict[str, int]:
        return {mint: total_amount(proofs) for mint, proofs in self._load().proofs.items()}

    def total_balance(self) -> int:
        return sum(self.balances().values())

    # -- mutations ----------------------------------------------------------

    def replace(self, mint_url: str, proofs: Iterable[Proof | dict[str, Any]]) -> None:
        """Overwrite the mint's entire proof list."""
        new = _dedupe(coerce_proofs(proofs))
        with self._transaction() as doc:
            doc.proofs[mint_url] = new
        logger.debug("Replaced proofs for %s (%d proofs).", mint_url, len(new))

    def add(self, mint_url: str, new_proofs: Iterable[Proof | dict[str, Any]]) -> None:
        """Append proofs, collapsing any duplicate secrets."""
        incoming = coerce_proofs(new_proofs)
        with self._transaction() as doc:
            existing = doc.proofs.get(mint_url, [])
            merged = _dedupe([*existing, *incoming])
            if len(merged) < len(existing) + len(incoming):
                logger.warning(
                    "Collapsed %d duplicate proof(s) for %s.",
                    len(existing) + len(incoming) - len(merged), mint_url,
                )
            doc.proofs[mint_url] = merged
        logger.debug("Added %d proof(s) for %s.", len(incoming), mint_url)

    def remove(self, mint_url: str, proofs_to_remove: Iterable[Proof | dict[str, Any]]) -> int:
        """Drop every stored proof whose secret matches a target. Returns count removed."""
        secrets = {_secret_of(p) for p in proofs_to_remove}
        with self._transaction() as doc:
            existing = doc.proofs.get(mint_url, [])
            remaining = [p for p in existing if p.secret not in secrets]
            if mint_url in doc.proofs:
                doc.proofs[mint_url] = remaining
        removed = len(existing) - len(remaining)
        logger.debug("Removed %d proof(s) for %s.", removed, mint_url)
        return removed
