"""Spending-condition (P2PK lock) construction — NUT-11 style.

Builds ``LockSpec`` descriptors: one key, N-of-M keys, optionally with a
refund branch that opens after a locktime. The token library embeds the
rendered secret into newly minted outgoing proofs; this module never
touches amounts or proofs.

Known limitation: an x-only (32-byte) key carries no y parity, so
``normalize_key`` assumes the even (``02``) form. That is the wrong key
for about half of all x-only inputs. Use ``jwk_to_compressed_key`` or a
full compressed key whenever the source offers one.
"""

from __future__ import annotations

import base64
import json
import logging
import math
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Sequence

from cryptography.hazmat.primitives.asymmetric import ec

from ecashvault.constants import LockMode, SigFlag
from ecashvault.errors import InvalidLockSpec

logger = logging.getLogger(__name__)

_HEX_CHARS = frozenset("0123456789abcdef")


# ---------------------------------------------------------------------------
# Key normalization
# ---------------------------------------------------------------------------


def _validate_point(compressed_hex: str) -> None:
    try:
        ec.EllipticCurvePublicKey.from_encoded_point(
            ec.SECP256K1(), bytes.fromhex(compressed_hex)
        )
    except ValueError as e:
        raise InvalidLockSpec(f"Not a valid secp256k1 public key: {compressed_hex[:16]}...") from e


def normalize_key(raw: str) -> str:
    """Return a 33-byte compressed public key as lower-case hex.

    Compressed keys pass through unchanged. x-only keys get an assumed
    ``02`` prefix (see module docstring).

    Raises:
        InvalidLockSpec: Not hex, wrong length, or not a curve point.
    """
    key = raw.strip().lower()
    if not key or not set(key) <= _HEX_CHARS:
        raise InvalidLockSpec(f"Public key is not hex: {raw!r}")

    if len(key) == 66 and key[:2] in ("02", "03"):
        compressed = key
    elif len(key) == 64:
        logger.debug("Assuming even y parity for x-only key %s...", key[:16])
        compressed = "02" + key
    else:
        raise InvalidLockSpec(
            f"Public key must be 33-byte compressed or 32-byte x-only hex, got {len(key) // 2} bytes"
        )

    _validate_point(compressed)
    return compressed


def _b64url_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def jwk_to_compressed_key(jwk: dict[str, Any]) -> str:
    """Compress a secp256k1 JWK using its real y parity."""
    try:
        x = _b64url_decode(jwk["x"])
        y = _b64url_decode(jwk["y"])
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidLockSpec(f"JWK is missing usable x/y coordinates: {e}") from e
    if len(x) != 32 or len(y) != 32:
        raise InvalidLockSpec("JWK coordinates must be 32 bytes each")
    prefix = "03" if y[-1] & 1 else "02"
    compressed = prefix + x.hex()
    _validate_point(compressed)
    return compressed


def _normalize_set(pubkeys: Iterable[str], label: str) -> tuple[str, ...]:
    keys: list[str] = []
    for raw in pubkeys:
        key = normalize_key(raw)
        if key not in keys:
            keys.append(key)
    if not keys:
        raise InvalidLockSpec(f"{label} must contain at least one public key")
    return tuple(keys)


def _check_threshold(threshold: int, count: int, label: str) -> None:
    if isinstance(threshold, bool) or not isinstance(threshold, int):
        raise InvalidLockSpec(f"{label} must be an integer, got {threshold!r}")
    if threshold < 1 or threshold > count:
        raise InvalidLockSpec(f"{label} must be between 1 and {count}, got {threshold}")


# ---------------------------------------------------------------------------
# LockSpec
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RefundSpec:
    """Caller's request for a refund branch (unvalidated).

    ``locktime`` is unix seconds (int or float, fractions dropped) or an
    aware ``datetime``.
    """

    pubkeys: Sequence[str]
    locktime: int | float | datetime
    threshold: int | None = None


@dataclass(frozen=True)
class RefundBranch:
    pubkeys: tuple[str, ...]
    threshold: int
    locktime: int


@dataclass(frozen=True)
class LockSpec:
    """Validated spending condition ready to embed in outgoing proofs."""

    mode: LockMode
    pubkeys: tuple[str, ...]
    threshold: int
    refund: RefundBranch | None = None
    sigflag: SigFlag = field(default=SigFlag.SIG_INPUTS)

    def tags(self) -> list[list[str]]:
        """NUT-11 tags, in the order wallets conventionally emit them."""
        tags: list[list[str]] = [["sigflag", self.sigflag.value]]
        if len(self.pubkeys) > 1:
            tags.append(["pubkeys", *self.pubkeys[1:]])
            tags.append(["n_sigs", str(self.threshold)])
        if self.refund is not None:
            tags.append(["locktime", str(self.refund.locktime)])
            tags.append(["refund", *self.refund.pubkeys])
            if len(self.refund.pubkeys) > 1:
                tags.append(["n_sigs_refund", str(self.refund.threshold)])
        return tags

    def to_secret(self, nonce: str | None = None) -> str:
        """Render the ``["P2PK", {...}]`` well-known secret string."""
        body = {
            "nonce": nonce or secrets.token_hex(32),
            "data": self.pubkeys[0],
            "tags": self.tags(),
        }
        return json.dumps(["P2PK", body], separators=(",", ":"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "pubkeys": list(self.pubkeys),
            "threshold": self.threshold,
            "refund": None if self.refund is None else {
                "pubkeys": list(self.refund.pubkeys),
                "threshold": self.refund.threshold,
                "locktime": self.refund.locktime,
            },
            "sigflag": self.sigflag.value,
        }


def build_lock(
    pubkeys: Iterable[str],
    threshold: int | None = None,
    refund: RefundSpec | None = None,
    *,
    now: float | None = None,
    sigflag: SigFlag = SigFlag.SIG_INPUTS,
) -> LockSpec:
    """Validate inputs and build a LockSpec.

    ``threshold`` defaults to all keys. A refund branch needs a locktime
    strictly after ``now`` (default: current time); its threshold
    defaults to 1.

    Raises:
        InvalidLockSpec: Any validation failure. Nothing is auto-corrected.
    """
    keys = _normalize_set(pubkeys, "pubkeys")
    n_sigs = len(keys) if threshold is None else threshold
    _check_threshold(n_sigs, len(keys), "threshold")

    branch: RefundBranch | None = None
    if refund is not None:
        locktime = refund.locktime
        if isinstance(locktime, datetime):
            locktime = int(locktime.timestamp())
        elif isinstance(locktime, float) and math.isfinite(locktime):
            locktime = int(locktime)
        if isinstance(locktime, bool) or not isinstance(locktime, int):
            raise InvalidLockSpec(f"locktime must be a unix timestamp, got {locktime!r}")
        current = time.time() if now is None else now
        if locktime <= current:
            raise InvalidLockSpec(
                f"Refund locktime {locktime} is not in the future (now {int(current)})"
            )
        refund_keys = _normalize_set(refund.pubkeys, "refund pubkeys")
        refund_n = 1 if refund.threshold is None else refund.threshold
        _check_threshold(refund_n, len(refund_keys), "refund threshold")
        branch = RefundBranch(pubkeys=refund_keys, threshold=refund_n, locktime=locktime)

    mode = LockMode.SINGLE if len(keys) == 1 and branch is None else LockMode.MULTI
    return LockSpec(mode=mode, pubkeys=keys, threshold=n_sigs, refund=branch, sigflag=sigflag)
