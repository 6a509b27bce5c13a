"""Constants for ecashvault state stores and spending conditions."""

from enum import Enum


DEFAULT_LOCK_TIMEOUT_SECS = 5.0
DEFAULT_LOCK_POLL_SECS = 0.05  # 50 ms between lock retries
STALE_EMPTY_MARKER_SECS = 2.0  # marker with no readable pid after this is stale

# Domain-separation key for the wallet seed. Changing it changes every
# secret derived from an existing recovery phrase.
DEFAULT_DOMAIN_TAG = b"HexNuts/Cashu/v1"

VALID_WORD_COUNTS = (12, 24)

PROOFS_FILENAME = "cashu-wallet.json"
COUNTERS_FILENAME = "cashu-counters.json"

STORE_FILE_MODE = 0o600
STORE_DIR_MODE = 0o700


class LockMode(str, Enum):
    """Shape of a spending condition."""

    SINGLE = "single"
    MULTI = "multi"


class SigFlag(str, Enum):
    """NUT-11 signature flag carried in lock tags."""

    SIG_INPUTS = "SIG_INPUTS"
    SIG_ALL = "SIG_ALL"
