"""Bearer proof record — pure data model, no I/O.

Serialized keys follow the wallet file format (``mintKeysetId``,
``unblindedSignature``). The Cashu wire names ``id`` and ``C`` are
accepted on input so proofs from the token library can be stored as-is.
Unknown fields (``dleq``, ``witness``, ...) are carried through untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

_KNOWN_KEYS = frozenset({"amount", "mintKeysetId", "id", "secret", "unblindedSignature", "C"})


def is_power_of_two(n: int) -> bool:
    return n > 0 and n & (n - 1) == 0


@dataclass
class Proof:
    """One fixed-denomination unit of redeemable value."""

    mint_keyset_id: str
    amount: int
    secret: str
    unblinded_signature: str
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise ValueError(f"proof amount must be an integer, got {self.amount!r}")
        if self.amount <= 0:
            raise ValueError(f"proof amount must be positive, got {self.amount}")
        if not self.secret:
            raise ValueError("proof secret must not be empty")

    @property
    def is_standard_denomination(self) -> bool:
        return is_power_of_two(self.amount)

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data.update({
            "amount": self.amount,
            "mintKeysetId": self.mint_keyset_id,
            "secret": self.secret,
            "unblindedSignature": self.unblinded_signature,
        })
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Proof:
        """Build a Proof from either the store format or Cashu wire format.

        Raises:
            ValueError: Required fields are missing or invalid.
        """
        try:
            amount = data["amount"]
            secret = data["secret"]
        except KeyError as e:
            raise ValueError(f"proof is missing {e.args[0]!r}") from e
        return cls(
            mint_keyset_id=str(data.get("mintKeysetId", data.get("id", ""))),
            amount=amount,
            secret=str(secret),
            unblinded_signature=str(data.get("unblindedSignature", data.get("C", ""))),
            extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
        )


def coerce_proofs(proofs: Iterable[Proof | dict[str, Any]]) -> list[Proof]:
    """Accept Proof objects or raw dicts, as callers hold either."""
    return [p if isinstance(p, Proof) else Proof.from_dict(p) for p in proofs]


def total_amount(proofs: Iterable[Proof]) -> int:
    return sum(p.amount for p in proofs)
