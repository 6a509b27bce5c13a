"""ecashvault — private state for a Cashu-style ecash wallet.

Deterministic seed derivation, lock-guarded counter and proof stores,
and P2PK spending-condition construction.
"""

__version__ = "0.1.0"

from ecashvault.conditions import LockSpec, RefundBranch, RefundSpec, build_lock, normalize_key, jwk_to_compressed_key
from ecashvault.config import WalletConfig
from ecashvault.constants import LockMode, SigFlag, DEFAULT_DOMAIN_TAG
from ecashvault.counters import CounterStore
from ecashvault.engine import MintState, SessionContext, WalletStateEngine
from ecashvault.errors import (
    EcashVaultError,
    InvalidLockSpec,
    LockTimeout,
    MalformedStore,
    ResolverError,
    ResolverNotFound,
    ResolverUnavailable,
    SecretUnavailable,
)
from ecashvault.key_provider import EnvKeyProvider, FileKeyProvider, KeyProvider, NoKeyProvider, StaticKeyProvider
from ecashvault.lockfile import FileLock, LockHandle, with_lock
from ecashvault.proof import Proof
from ecashvault.proof_store import ProofStore
from ecashvault.resolver import HttpIdentityResolver, IdentityResolver, NoIdentityResolver, StaticIdentityResolver
from ecashvault.seed import SeedMaterial, derive_seed

__all__ = [
    "LockSpec",
    "RefundBranch",
    "RefundSpec",
    "build_lock",
    "normalize_key",
    "jwk_to_compressed_key",
    "WalletConfig",
    "LockMode",
    "SigFlag",
    "DEFAULT_DOMAIN_TAG",
    "CounterStore",
    "MintState",
    "SessionContext",
    "WalletStateEngine",
    "EcashVaultError",
    "InvalidLockSpec",
    "LockTimeout",
    "MalformedStore",
    "ResolverError",
    "ResolverNotFound",
    "ResolverUnavailable",
    "SecretUnavailable",
    "EnvKeyProvider",
    "FileKeyProvider",
    "KeyProvider",
    "NoKeyProvider",
    "StaticKeyProvider",
    "FileLock",
    "LockHandle",
    "with_lock",
    "Proof",
    "ProofStore",
    "HttpIdentityResolver",
    "IdentityResolver",
    "NoIdentityResolver",
    "StaticIdentityResolver",
    "SeedMaterial",
    "derive_seed",
]
