"""Deterministic wallet seed derivation from a BIP-39 recovery phrase.

seed = HMAC-SHA512(key=domain_tag, msg=BIP39(phrase, passphrase))

The BIP-39 step keeps the phrase interoperable with other wallets that
consume the same words. The HMAC step separates this wallet's secrets
from anything else derived from the same phrase.

Nothing here logs or persists the phrase or either seed.
"""

from __future__ import annotations

import logging
import unicodedata
from hmac import compare_digest

from cryptography.hazmat.primitives import hashes, hmac
from mnemonic import Mnemonic

from ecashvault.constants import DEFAULT_DOMAIN_TAG, VALID_WORD_COUNTS

logger = logging.getLogger(__name__)

SEED_LENGTH = 64

_WORDLIST = Mnemonic("english")


class SeedMaterial:
    """64 bytes of derived seed, wiped on ``wipe()`` or context exit.

    ``repr()`` never shows the bytes; use ``fingerprint()`` for display.
    """

    __slots__ = ("_buf",)

    def __init__(self, data: bytes | bytearray) -> None:
        if len(data) != SEED_LENGTH:
            raise ValueError(f"seed must be {SEED_LENGTH} bytes, got {len(data)}")
        self._buf = bytearray(data)

    @property
    def wiped(self) -> bool:
        return not any(self._buf)

    def __bytes__(self) -> bytes:
        if self.wiped:
            raise ValueError("seed material has been wiped")
        return bytes(self._buf)

    def __len__(self) -> int:
        return len(self._buf)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SeedMaterial):
            return compare_digest(bytes(self._buf), bytes(other._buf))
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"SeedMaterial(fingerprint={self.fingerprint()!r})"

    def fingerprint(self) -> str:
        """First 4 bytes as hex; identifies a seed without revealing it."""
        return self._buf[:4].hex()

    def wipe(self) -> None:
        for i in range(len(self._buf)):
            self._buf[i] = 0

    def __enter__(self) -> SeedMaterial:
        return self

    def __exit__(self, *args: object) -> None:
        self.wipe()


# ---------------------------------------------------------------------------
# Phrase handling
# ---------------------------------------------------------------------------


def normalize_phrase(text: str) -> str:
    """NFKD-normalize, lower-case and collapse whitespace."""
    return " ".join(unicodedata.normalize("NFKD", text).lower().split())


def is_valid_phrase(phrase: str) -> bool:
    """True for a 12/24-word phrase with a valid BIP-39 checksum."""
    words = normalize_phrase(phrase).split(" ")
    if len(words) not in VALID_WORD_COUNTS:
        return False
    try:
        return _WORDLIST.check(" ".join(words))
    except (ValueError, LookupError):
        return False


def parse_phrase(text: str | None) -> str | None:
    """Extract a usable phrase from raw text, or None.

    Accepts exactly 12 or 24 words; anything else (including a valid
    word count with a bad checksum) is not a phrase.
    """
    if not text:
        return None
    phrase = normalize_phrase(text)
    if not is_valid_phrase(phrase):
        logger.warning(
            "Recovery phrase rejected (%d words; need a valid 12 or 24 word phrase).",
            len(phrase.split()),
        )
        return None
    return phrase


# ---------------------------------------------------------------------------
# Derivation
# ---------------------------------------------------------------------------


def derive_seed(
    phrase: str | None,
    passphrase: str = "",
    domain_tag: bytes = DEFAULT_DOMAIN_TAG,
) -> SeedMaterial | None:
    """Derive the wallet seed. Returns None when the phrase is unusable."""
    normalized = parse_phrase(phrase)
    if normalized is None:
        return None

    base = bytearray(Mnemonic.to_seed(normalized, passphrase))
    del normalized
    try:
        mac = hmac.HMAC(domain_tag, hashes.SHA512())
        mac.update(bytes(base))
        return SeedMaterial(mac.finalize())
    finally:
        for i in range(len(base)):
            base[i] = 0
