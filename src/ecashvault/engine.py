"""WalletStateEngine — the state surface the orchestration layer calls.

Composes seed derivation, the counter store, the proof store and the
lock builder. The counter file and the proof file are separate stores
with separate locks; there is no transaction spanning both. Callers
reserve derivation indices *before* asking the mint to sign, so a crash
between the two updates can only leave unused indices behind, never
reuse one. Proofs lost in that window are recovered by a restore scan
followed by ``record_counter_advance``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from ecashvault.conditions import LockSpec, RefundSpec, build_lock
from ecashvault.config import WalletConfig
from ecashvault.counters import CounterStore
from ecashvault.errors import SecretUnavailable
from ecashvault.key_provider import KeyProvider, NoKeyProvider
from ecashvault.proof import Proof, coerce_proofs, total_amount
from ecashvault.proof_store import ProofStore
from ecashvault.resolver import IdentityResolver, NoIdentityResolver
from ecashvault.seed import SeedMaterial, derive_seed

logger = logging.getLogger(__name__)


@dataclass
class SessionContext:
    """Per-session state threaded through the engine instead of globals."""

    deterministic_announced: bool = False
    seed_fingerprint: str | None = None


@dataclass
class MintState:
    mint_url: str
    proofs: list[Proof] = field(default_factory=list)
    balance: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "mint_url": self.mint_url,
            "proof_count": len(self.proofs),
            "balance": self.balance,
        }


class WalletStateEngine:
    """One coherent view of the wallet's private state.

    - ``session_seed()`` returns None when no phrase is available, so
      callers fall back to random (non-recoverable) secrets.
    - Store mutations propagate ``LockTimeout``; validation errors
      propagate ``InvalidLockSpec``.
    """

    def __init__(
        self,
        config: WalletConfig | None = None,
        key_provider: KeyProvider | None = None,
        resolver: IdentityResolver | None = None,
        *,
        counters: CounterStore | None = None,
        proofs: ProofStore | None = None,
        session: SessionContext | None = None,
    ) -> None:
        self.config = config or WalletConfig()
        self._key_provider = key_provider or NoKeyProvider()
        self._resolver = resolver or NoIdentityResolver()
        self.counters = counters or CounterStore(
            self.config.counters_path,
            lock_timeout=self.config.lock_timeout_secs,
            lock_poll=self.config.lock_poll_secs,
        )
        self.proofs = proofs or ProofStore(
            self.config.proofs_path,
            lock_timeout=self.config.lock_timeout_secs,
            lock_poll=self.config.lock_poll_secs,
        )
        self.session = session or SessionContext()

    # -- deterministic secrets ----------------------------------------------

    def session_seed(self) -> SeedMaterial | None:
        """Derive this wallet's seed, or None if no phrase is available.

        The caller owns the returned SeedMaterial and should wipe it
        (``with seed: ...``) once the token library has consumed it.
        """
        seed = derive_seed(
            self._key_provider.get_phrase(),
            self.config.bip39_passphrase,
            self.config.domain_tag,
        )
        if seed is None:
            return None
        if not self.session.deterministic_announced:
            logger.info("Deterministic mode active (seed %s...).", seed.fingerprint())
            self.session.deterministic_announced = True
        self.session.seed_fingerprint = seed.fingerprint()
        return seed

    def require_seed(self) -> SeedMaterial:
        """Like ``session_seed()`` but raises when unavailable (e.g. for restore)."""
        seed = self.session_seed()
        if seed is None:
            raise SecretUnavailable("No recovery phrase is configured or authorized")
        return seed

    def deterministic_available(self) -> bool:
        seed = self.session_seed()
        if seed is None:
            return False
        seed.wipe()
        return True

    # -- counters -----------------------------------------------------------

    def reserve_derivation_range(self, keyset_id: str, count: int) -> range:
        return self.counters.reserve(keyset_id, count)

    def record_counter_advance(self, keyset_id: str, next_index: int) -> int:
        return self.counters.advance(keyset_id, next_index)

    def counter_snapshot(self) -> dict[str, int]:
        """Initial counters to hand to the token library."""
        return self.counters.load()

    # -- proofs -------------------------------------------------------------

    def mint_state(self, mint_url: str) -> MintState:
        proofs = self.proofs.proofs_for(mint_url)
        return MintState(mint_url=mint_url, proofs=proofs, balance=total_amount(proofs))

    def apply_outgoing(
        self,
        mint_url: str,
        kept_proofs: Iterable[Proof | dict[str, Any]],
        sent_proofs: Iterable[Proof | dict[str, Any]],
    ) -> MintState:
        """Record a send: the mint's proofs become ``kept_proofs``.

        Sent proofs leave the wallet entirely and are not stored.
        """
        kept = coerce_proofs(kept_proofs)
        sent = coerce_proofs(sent_proofs)
        overlap = {p.secret for p in kept} & {p.secret for p in sent}
        if overlap:
            raise ValueError(f"{len(overlap)} proof(s) are both kept and sent")
        self.proofs.replace(mint_url, kept)
        logger.info(
            "Sent %d from %s; %d kept in %d proof(s).",
            total_amount(sent), mint_url, total_amount(kept), len(kept),
        )
        return MintState(mint_url=mint_url, proofs=kept, balance=total_amount(kept))

    def apply_incoming(
        self, mint_url: str, new_proofs: Iterable[Proof | dict[str, Any]],
    ) -> None:
        incoming = coerce_proofs(new_proofs)
        self.proofs.add(mint_url, incoming)
        logger.info("Received %d at %s.", total_amount(incoming), mint_url)

    # -- spending conditions ------------------------------------------------

    def build_lock(
        self,
        pubkeys: Iterable[str],
        threshold: int | None = None,
        refund: RefundSpec | None = None,
    ) -> LockSpec:
        return build_lock(pubkeys, threshold, refund)

    async def resolve_recipient_lock(
        self,
        recipients: Iterable[str],
        threshold: int | None = None,
        refund: RefundSpec | None = None,
    ) -> LockSpec:
        """Resolve recipients (keys, aliases, DIDs) and build their lock.

        Raises:
            ResolverError: A recipient could not be resolved.
            InvalidLockSpec: The resolved keys do not satisfy the lock.
        """
        keys: list[str] = []
        for recipient in recipients:
            keys.extend(await self._resolver.resolve(recipient))
        return build_lock(keys, threshold, refund)

    # -- reporting ----------------------------------------------------------

    def wallet_summary(self) -> dict[str, Any]:
        balances = self.proofs.balances()
        return {
            "mints": balances,
            "total_balance": sum(balances.values()),
            "default_mint": self.config.default_mint,
            "deterministic": self.deterministic_available(),
            "counters": self.counters.load(),
        }
