"""Identity resolution: recipients, aliases and DIDs to compressed keys.

Defines the IdentityResolver Protocol consumed by callers of
``build_lock``. Implementations:

- ``NoIdentityResolver`` — not configured; always raises.
- ``StaticIdentityResolver`` — alias table from the host application.
- ``HttpIdentityResolver`` — async httpx client for a DID resolver
  (``GET /1.0/identifiers/{did}``), reading the secp256k1 JWK.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Protocol, runtime_checkable

import httpx

from ecashvault.conditions import jwk_to_compressed_key, normalize_key
from ecashvault.errors import InvalidLockSpec, ResolverError, ResolverNotFound, ResolverUnavailable

logger = logging.getLogger(__name__)

SECP256K1_VERIFICATION_TYPES = frozenset({
    "EcdsaSecp256k1VerificationKey2019",
    "JsonWebKey2020",
})


@runtime_checkable
class IdentityResolver(Protocol):
    """Async resolver from a recipient reference to compressed pubkeys."""

    async def resolve(self, recipient: str) -> list[str]: ...


def _looks_like_key(value: str) -> bool:
    try:
        normalize_key(value)
    except InvalidLockSpec:
        return False
    return True


class NoIdentityResolver:
    async def resolve(self, recipient: str) -> list[str]:
        raise ResolverUnavailable("No identity resolver configured")


class StaticIdentityResolver:
    """Alias table; raw hex keys resolve to themselves."""

    def __init__(self, aliases: Mapping[str, str | Iterable[str]] | None = None) -> None:
        self._aliases: dict[str, list[str]] = {}
        for name, value in (aliases or {}).items():
            keys = [value] if isinstance(value, str) else list(value)
            self._aliases[name] = [normalize_key(k) for k in keys]

    async def resolve(self, recipient: str) -> list[str]:
        if recipient in self._aliases:
            return list(self._aliases[recipient])
        if _looks_like_key(recipient):
            return [normalize_key(recipient)]
        raise ResolverNotFound(f"Unknown recipient: {recipient}")


# ---------------------------------------------------------------------------
# DID documents
# ---------------------------------------------------------------------------


def key_from_did_document(doc: dict[str, Any]) -> str:
    """Pick the secp256k1 verification method out of a DID document.

    Accepts a bare document or a resolver envelope with ``didDocument``.

    Raises:
        ResolverNotFound: No usable secp256k1 key in the document.
    """
    document = doc.get("didDocument", doc)
    methods = document.get("verificationMethod") or []
    for method in methods:
        if not isinstance(method, dict):
            continue
        jwk = method.get("publicKeyJwk")
        if method.get("type") not in SECP256K1_VERIFICATION_TYPES or not isinstance(jwk, dict):
            continue
        if jwk.get("crv") not in (None, "secp256k1"):
            continue
        try:
            return jwk_to_compressed_key(jwk)
        except InvalidLockSpec as e:
            logger.warning("Skipping unusable key %s: %s", method.get("id", "?"), e)
    raise ResolverNotFound("No secp256k1 key found in DID document")


class HttpIdentityResolver:
    """Resolve DIDs through a universal-resolver style HTTP endpoint."""

    def __init__(self, base_url: str, timeout: float = 15.0) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Accept": "application/did+ld+json, application/json"},
            timeout=timeout,
        )

    async def _fetch_document(self, did: str) -> dict[str, Any]:
        try:
            response = await self._client.get(f"/1.0/identifiers/{did}")
        except httpx.HTTPError as exc:
            raise ResolverError(f"Failed to reach DID resolver for {did}: {exc}") from exc
        if response.status_code == 404:
            raise ResolverNotFound(f"DID not found: {did}")
        if response.status_code >= 400:
            raise ResolverError(
                f"DID resolver returned HTTP {response.status_code} for {did}"
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise ResolverError(f"DID resolver returned invalid JSON for {did}") from exc
        if not isinstance(data, dict):
            raise ResolverError(f"DID resolver returned a non-object for {did}")
        return data

    async def resolve(self, recipient: str) -> list[str]:
        if _looks_like_key(recipient):
            return [normalize_key(recipient)]
        if not recipient.startswith("did:"):
            raise ResolverNotFound(f"Not a DID or public key: {recipient}")
        doc = await self._fetch_document(recipient)
        return [key_from_did_document(doc)]

    async def resolve_group(self, members: Iterable[str]) -> dict[str, str]:
        """Resolve each member DID; members that fail are logged and skipped.

        Returns ``{did: compressed_key}`` in member order.
        """
        resolved: dict[str, str] = {}
        for did in members:
            try:
                keys = await self.resolve(did)
            except ResolverError as e:
                logger.warning("Could not resolve group member %s: %s", did, e)
                continue
            resolved[did] = keys[0]
        return resolved

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> HttpIdentityResolver:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
