"""Tests for P2PK spending-condition construction."""

import base64
import json
import time
from datetime import datetime, timedelta, timezone

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from ecashvault.conditions import (
    LockSpec,
    RefundSpec,
    build_lock,
    jwk_to_compressed_key,
    normalize_key,
)
from ecashvault.constants import LockMode, SigFlag
from ecashvault.errors import InvalidLockSpec

NOW = 1_700_000_000


def _key() -> str:
    """Fresh compressed secp256k1 public key as hex."""
    pub = ec.generate_private_key(ec.SECP256K1()).public_key()
    return pub.public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.CompressedPoint,
    ).hex()


def _b64url(n: int) -> str:
    return base64.urlsafe_b64encode(n.to_bytes(32, "big")).rstrip(b"=").decode()


@pytest.fixture()
def keys() -> list[str]:
    return [_key() for _ in range(4)]


# ---------------------------------------------------------------------------
# normalize_key
# ---------------------------------------------------------------------------


class TestNormalizeKey:
    def test_compressed_passthrough(self, keys) -> None:
        assert normalize_key(keys[0]) == keys[0]

    def test_uppercase_and_whitespace(self, keys) -> None:
        assert normalize_key(f"  {keys[0].upper()}\n") == keys[0]

    def test_x_only_gets_even_prefix(self, keys) -> None:
        x_only = keys[0][2:]
        assert normalize_key(x_only) == "02" + x_only

    def test_rejects_wrong_length(self) -> None:
        with pytest.raises(InvalidLockSpec, match="bytes"):
            normalize_key("02" + "ab" * 20)

    def test_rejects_bad_prefix(self, keys) -> None:
        with pytest.raises(InvalidLockSpec):
            normalize_key("04" + keys[0][2:])

    def test_rejects_non_hex(self) -> None:
        with pytest.raises(InvalidLockSpec, match="not hex"):
            normalize_key("npub1" + "q" * 58)

    def test_rejects_empty(self) -> None:
        with pytest.raises(InvalidLockSpec):
            normalize_key("")

    def test_rejects_point_off_curve(self) -> None:
        # x >= field prime is never a valid coordinate
        with pytest.raises(InvalidLockSpec, match="secp256k1"):
            normalize_key("02" + "ff" * 32)


class TestJwkToCompressedKey:
    def test_uses_real_parity(self) -> None:
        for _ in range(6):
            pub = ec.generate_private_key(ec.SECP256K1()).public_key()
            nums = pub.public_numbers()
            expected = pub.public_bytes(
                serialization.Encoding.X962, serialization.PublicFormat.CompressedPoint,
            ).hex()
            jwk = {"kty": "EC", "crv": "secp256k1", "x": _b64url(nums.x), "y": _b64url(nums.y)}
            assert jwk_to_compressed_key(jwk) == expected

    def test_missing_coordinate(self) -> None:
        with pytest.raises(InvalidLockSpec):
            jwk_to_compressed_key({"x": _b64url(5)})


# ---------------------------------------------------------------------------
# build_lock — thresholds and modes
# ---------------------------------------------------------------------------


class TestBuildLock:
    def test_single_key(self, keys) -> None:
        spec = build_lock([keys[0]])
        assert spec.mode is LockMode.SINGLE
        assert spec.pubkeys == (keys[0],)
        assert spec.threshold == 1
        assert spec.refund is None

    def test_two_of_three(self, keys) -> None:
        spec = build_lock(keys[:3], threshold=2)
        assert spec.mode is LockMode.MULTI
        assert spec.threshold == 2
        assert spec.pubkeys == tuple(keys[:3])

    def test_threshold_defaults_to_all(self, keys) -> None:
        assert build_lock(keys[:3]).threshold == 3

    def test_threshold_above_key_count(self, keys) -> None:
        with pytest.raises(InvalidLockSpec, match="between 1 and 2"):
            build_lock(keys[:2], threshold=3)

    @pytest.mark.parametrize("threshold", [0, -1])
    def test_threshold_below_one(self, keys, threshold) -> None:
        with pytest.raises(InvalidLockSpec):
            build_lock(keys[:2], threshold=threshold)

    def test_threshold_must_be_int(self, keys) -> None:
        with pytest.raises(InvalidLockSpec, match="integer"):
            build_lock(keys[:2], threshold=True)

    def test_empty_keys(self) -> None:
        with pytest.raises(InvalidLockSpec, match="at least one"):
            build_lock([])

    def test_duplicate_keys_collapsed_before_threshold(self, keys) -> None:
        with pytest.raises(InvalidLockSpec):
            build_lock([keys[0], keys[0]], threshold=2)
        spec = build_lock([keys[0], keys[0].upper()])
        assert spec.pubkeys == (keys[0],)
        assert spec.mode is LockMode.SINGLE

    def test_invalid_key_in_set(self, keys) -> None:
        with pytest.raises(InvalidLockSpec):
            build_lock([keys[0], "deadbeef"])


# ---------------------------------------------------------------------------
# build_lock — refund branch
# ---------------------------------------------------------------------------


class TestRefundBranch:
    def test_refund_in_future(self, keys) -> None:
        spec = build_lock(
            [keys[0]], refund=RefundSpec(pubkeys=[keys[1]], locktime=NOW + 3600), now=NOW,
        )
        assert spec.mode is LockMode.MULTI
        assert spec.refund.pubkeys == (keys[1],)
        assert spec.refund.threshold == 1
        assert spec.refund.locktime == NOW + 3600

    def test_refund_in_past_rejected(self, keys) -> None:
        with pytest.raises(InvalidLockSpec, match="not in the future"):
            build_lock([keys[0]], refund=RefundSpec(pubkeys=[keys[1]], locktime=NOW - 1), now=NOW)

    def test_refund_locktime_equal_to_now_rejected(self, keys) -> None:
        with pytest.raises(InvalidLockSpec):
            build_lock([keys[0]], refund=RefundSpec(pubkeys=[keys[1]], locktime=NOW), now=NOW)

    def test_refund_uses_wall_clock_by_default(self, keys) -> None:
        with pytest.raises(InvalidLockSpec):
            build_lock([keys[0]], refund=RefundSpec(pubkeys=[keys[1]], locktime=int(time.time()) - 10))

    def test_refund_accepts_datetime(self, keys) -> None:
        when = datetime.now(timezone.utc) + timedelta(days=1)
        spec = build_lock([keys[0]], refund=RefundSpec(pubkeys=[keys[1]], locktime=when))
        assert spec.refund.locktime == int(when.timestamp())

    def test_refund_threshold_validated(self, keys) -> None:
        with pytest.raises(InvalidLockSpec, match="refund threshold"):
            build_lock(
                [keys[0]],
                refund=RefundSpec(pubkeys=keys[1:3], locktime=NOW + 10, threshold=3),
                now=NOW,
            )

    def test_refund_threshold_explicit(self, keys) -> None:
        spec = build_lock(
            keys[:2], threshold=1,
            refund=RefundSpec(pubkeys=keys[2:4], locktime=NOW + 10, threshold=2),
            now=NOW,
        )
        assert spec.refund.threshold == 2

    def test_refund_needs_keys(self, keys) -> None:
        with pytest.raises(InvalidLockSpec, match="refund pubkeys"):
            build_lock([keys[0]], refund=RefundSpec(pubkeys=[], locktime=NOW + 10), now=NOW)

    def test_refund_accepts_float_locktime(self, keys) -> None:
        spec = build_lock(
            [keys[0]], refund=RefundSpec(pubkeys=[keys[1]], locktime=NOW + 3600.75), now=NOW,
        )
        assert spec.refund.locktime == NOW + 3600
        assert ["locktime", str(NOW + 3600)] in spec.tags()

    def test_refund_rejects_non_finite_locktime(self, keys) -> None:
        with pytest.raises(InvalidLockSpec, match="unix timestamp"):
            build_lock([keys[0]], refund=RefundSpec(pubkeys=[keys[1]], locktime=float("inf")), now=NOW)

    def test_refund_locktime_type(self, keys) -> None:
        with pytest.raises(InvalidLockSpec, match="unix timestamp"):
            build_lock([keys[0]], refund=RefundSpec(pubkeys=[keys[1]], locktime="tomorrow"), now=NOW)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


class TestRendering:
    def test_single_key_tags(self, keys) -> None:
        assert build_lock([keys[0]]).tags() == [["sigflag", "SIG_INPUTS"]]

    def test_multisig_tags(self, keys) -> None:
        tags = build_lock(keys[:3], threshold=2).tags()
        assert ["pubkeys", keys[1], keys[2]] in tags
        assert ["n_sigs", "2"] in tags

    def test_require_all_still_emits_n_sigs(self, keys) -> None:
        assert ["n_sigs", "2"] in build_lock(keys[:2]).tags()

    def test_refund_tags(self, keys) -> None:
        spec = build_lock(
            [keys[0]],
            refund=RefundSpec(pubkeys=keys[1:3], locktime=NOW + 60, threshold=2),
            now=NOW,
        )
        tags = spec.tags()
        assert ["locktime", str(NOW + 60)] in tags
        assert ["refund", keys[1], keys[2]] in tags
        assert ["n_sigs_refund", "2"] in tags

    def test_to_secret(self, keys) -> None:
        spec = build_lock(keys[:2], threshold=1)
        kind, body = json.loads(spec.to_secret(nonce="ab" * 32))
        assert kind == "P2PK"
        assert body["nonce"] == "ab" * 32
        assert body["data"] == keys[0]
        assert body["tags"] == spec.tags()

    def test_random_nonce(self, keys) -> None:
        spec = build_lock([keys[0]])
        assert spec.to_secret() != spec.to_secret()

    def test_sigflag_all(self, keys) -> None:
        spec = build_lock([keys[0]], sigflag=SigFlag.SIG_ALL)
        assert spec.tags()[0] == ["sigflag", "SIG_ALL"]

    def test_to_dict(self, keys) -> None:
        spec = build_lock([keys[0]])
        assert spec.to_dict() == {
            "mode": "single",
            "pubkeys": [keys[0]],
            "threshold": 1,
            "refund": None,
            "sigflag": "SIG_INPUTS",
        }

    def test_spec_is_frozen(self, keys) -> None:
        spec = build_lock([keys[0]])
        assert isinstance(spec, LockSpec)
        with pytest.raises(AttributeError):
            spec.threshold = 5
