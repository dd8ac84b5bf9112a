# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

"""
Key resolution for JWT signature verification.

RSA and EC signatures are verified with the provider's published JWKS; HMAC signatures with the
client secret. Key selectors are cached per (algorithm, connect timeout, read timeout, JWKS URI, secret).
"""

import threading
import time
from typing import Any

import httpx
from authlib.jose import JsonWebKey, KeySet

from coreason_oidc.exceptions import ConfigurationError, SignatureVerificationError, TransportError
from coreason_oidc.transport import build_timeout, safe_json_fetch
from coreason_oidc.utils.logger import logger

RSA_ALGORITHMS = frozenset({"RS256", "RS384", "RS512", "PS256", "PS384", "PS512"})
EC_ALGORITHMS = frozenset({"ES256", "ES384", "ES512", "ES256K"})
HMAC_ALGORITHMS = frozenset({"HS256", "HS384", "HS512"})

_KEY_TYPES = {"RS": "RSA", "PS": "RSA", "ES": "EC"}


class RemoteJwkSet:
    """
    The provider's JSON Web Key Set, fetched lazily and cached.

    A `kid` that is not in the cached set triggers one refetch, at most once per `refresh_cooldown`
    seconds, so a flood of tokens with unknown key ids cannot hammer the provider.

    Attributes:
        jwks_uri (str): Location of the key set.
        cache_ttl (int): Seconds after which the key set is refetched.
        refresh_cooldown (float): Minimum seconds between forced refetches.
    """

    def __init__(
        self,
        client: httpx.Client,
        jwks_uri: str,
        connect_timeout: int,
        read_timeout: int,
        cache_ttl: int = 3600,
        refresh_cooldown: float = 30.0,
    ) -> None:
        """
        Initialize the RemoteJwkSet.

        Args:
            client: The HTTP client used to fetch the key set.
            jwks_uri: Location of the key set.
            connect_timeout: Connect timeout in milliseconds.
            read_timeout: Read timeout in milliseconds.
            cache_ttl: Time-to-live for the cache in seconds. Defaults to 3600.
            refresh_cooldown: Minimum time in seconds between forced refreshes. Defaults to 30.0.
        """
        self.client = client
        self.jwks_uri = jwks_uri
        self.timeout = build_timeout(connect_timeout, read_timeout)
        self.cache_ttl = cache_ttl
        self.refresh_cooldown = refresh_cooldown
        self._key_set: KeySet | None = None
        self._last_update: float = 0.0
        self._lock = threading.Lock()

    def get_key_set(self, force_refresh: bool = False) -> KeySet:
        """
        Returns the key set, fetching it when missing, stale or when a refresh is forced.

        Raises:
            SignatureVerificationError: If the key set cannot be fetched or parsed.
        """
        with self._lock:
            now = time.time()
            if self._key_set is not None:
                age = now - self._last_update
                if not force_refresh and age < self.cache_ttl:
                    return self._key_set
                if force_refresh and age < self.refresh_cooldown:
                    logger.warning("JWKS refresh cooldown active. Returning cached keys despite force_refresh request.")
                    return self._key_set

            logger.debug(f"Fetching JWKS from {self.jwks_uri}")
            try:
                document = safe_json_fetch(self.client, self.jwks_uri, timeout=self.timeout)
                key_set = JsonWebKey.import_key_set(document)
            except TransportError as e:
                raise SignatureVerificationError(f"Couldn't retrieve remote JWK set: {e}") from e
            except (ValueError, KeyError) as e:
                raise SignatureVerificationError(f"Invalid JSON Web Key Set from {self.jwks_uri}: {e}") from e

            self._key_set = key_set
            self._last_update = now
            return key_set

    def find_key(self, header: dict[str, Any], kty: str) -> Any:
        """
        Selects the verification key for a JWS header.

        Args:
            header: The protected header of the token.
            kty: The key type expected for the header's algorithm ("RSA" or "EC").

        Raises:
            SignatureVerificationError: If no suitable key exists, even after a refresh.
        """
        kid = header.get("kid")
        key = self._match(self.get_key_set(), kid, kty)
        if key is None and kid:
            logger.info(f"Key {kid} not found in cached JWKS, refreshing")
            key = self._match(self.get_key_set(force_refresh=True), kid, kty)
        if key is None:
            raise SignatureVerificationError(f"No matching {kty} key found in JWKS for kid {kid!r}")
        return key

    @staticmethod
    def _match(key_set: KeySet, kid: str | None, kty: str) -> Any:
        for key in key_set.keys:
            if key.kty != kty:
                continue
            if kid is None or key.kid == kid:
                return key
        return None


class KeySelector:
    """
    Resolves the verification key for one signing algorithm.

    Instances are callables usable as authlib's `key` argument: `selector(header, payload)`.
    """

    def __init__(self, alg: str, jwk_set: RemoteJwkSet | None = None, secret: bytes | None = None) -> None:
        self.alg = alg
        self.jwk_set = jwk_set
        self.secret = secret

    @classmethod
    def create(
        cls,
        alg: str,
        client: httpx.Client,
        jwks_uri: str,
        connect_timeout: int,
        read_timeout: int,
        secret: str,
    ) -> "KeySelector":
        """
        Builds the selector for an algorithm family.

        Raises:
            ConfigurationError: For "none" and unsupported algorithms.
        """
        if alg in RSA_ALGORITHMS or alg in EC_ALGORITHMS:
            return cls(alg, jwk_set=RemoteJwkSet(client, jwks_uri, connect_timeout, read_timeout))
        if alg in HMAC_ALGORITHMS:
            if not secret:
                raise ConfigurationError("Missing client secret")
            return cls(alg, secret=secret.encode("utf-8"))
        raise ConfigurationError(f"Unsupported JWS algorithm: {alg}")

    def __call__(self, header: dict[str, Any], payload: Any) -> Any:
        if self.secret is not None:
            return self.secret
        if self.jwk_set is None:
            raise ConfigurationError(f"No key source configured for {self.alg}")
        return self.jwk_set.find_key(header, _KEY_TYPES[self.alg[:2]])


class KeySelectorCache:
    """
    Process-wide cache of key selectors.

    Concurrent misses on the same key may build two selectors; the first stored one wins.
    """

    def __init__(self, client: httpx.Client) -> None:
        self.client = client
        self._selectors: dict[tuple[str, int, int, str, str], KeySelector] = {}
        self._lock = threading.Lock()

    def get(self, alg: str, connect_timeout: int, read_timeout: int, jwks_uri: str, secret: str) -> KeySelector:
        cache_key = (alg, connect_timeout, read_timeout, jwks_uri, secret)
        selector = self._selectors.get(cache_key)
        if selector is not None:
            return selector

        selector = KeySelector.create(alg, self.client, jwks_uri, connect_timeout, read_timeout, secret)
        with self._lock:
            return self._selectors.setdefault(cache_key, selector)

    def __len__(self) -> int:
        return len(self._selectors)

    def clear(self) -> None:
        with self._lock:
            self._selectors.clear()
