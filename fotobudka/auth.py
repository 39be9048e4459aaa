"""Backend session bootstrap: identity → register → authorize.

The backend issues a non-expiring bearer token in exchange for a user id,
and a user id in exchange for an external identity (the purchase/analytics
SDK's user id). Every failure is terminal for the current launch: it is
logged and the session stays unauthenticated until the next bootstrap.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

from fotobudka.credentials import CredentialStore
from fotobudka.errors import DecodingError, FotobudkaError, HttpStatusError
from fotobudka.gateway import HttpGateway
from fotobudka.models import CurrentUser

logger = logging.getLogger(__name__)

# Attribute/key names an SDK profile may carry its user id under, in order.
PROFILE_ID_FIELDS = ("profile_id", "customer_user_id", "user_id")


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    REGISTERING = "registering"
    AUTHORIZING = "authorizing"
    AUTHENTICATED = "authenticated"


def extract_profile_id(profile: Any, fields: tuple[str, ...] = PROFILE_ID_FIELDS) -> str | None:
    """Read the user id from a loosely typed SDK profile.

    Only the names in ``fields`` are consulted; the first non-blank string
    wins. Works with mappings and plain objects.
    """
    if profile is None:
        return None
    for name in fields:
        if isinstance(profile, Mapping):
            value = profile.get(name)
        else:
            value = getattr(profile, name, None)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class IdentityProvider(Protocol):
    name: str

    async def resolve_external_id(self) -> str | None: ...


class StaticIdentityProvider:
    """Serves an external id known up front (from configuration)."""

    def __init__(self, name: str, external_id: str | None) -> None:
        self.name = name
        self.external_id = external_id

    async def resolve_external_id(self) -> str | None:
        return self.external_id or None


class ProfileIdentityProvider:
    """Resolves the external id from an SDK profile object."""

    def __init__(
        self,
        name: str,
        fetch_profile: Callable[[], Awaitable[Any]],
        fields: tuple[str, ...] = PROFILE_ID_FIELDS,
    ) -> None:
        self.name = name
        self.fetch_profile = fetch_profile
        self.fields = fields

    async def resolve_external_id(self) -> str | None:
        profile = await self.fetch_profile()
        return extract_profile_id(profile, self.fields)


class AuthSession:
    """Owns the backend session for one app launch."""

    def __init__(
        self,
        gateway: HttpGateway,
        credentials: CredentialStore,
        identity: IdentityProvider | None = None,
        alternate_identity: IdentityProvider | None = None,
        use_alternate_identity: bool = False,
    ) -> None:
        self.gateway = gateway
        self.credentials = credentials
        self.identity = identity
        self.alternate_identity = alternate_identity
        self.use_alternate_identity = use_alternate_identity
        self.state = (
            AuthState.AUTHENTICATED if credentials.get_token() else AuthState.UNAUTHENTICATED
        )

    @property
    def is_authorized(self) -> bool:
        return self.state is AuthState.AUTHENTICATED

    @property
    def token(self) -> str | None:
        return self.credentials.get_token()

    def _identity_provider(self) -> IdentityProvider | None:
        # No automatic fallback: identities from two providers must not mix.
        if self.use_alternate_identity:
            return self.alternate_identity
        return self.identity

    async def bootstrap(self) -> AuthState:
        """Bring the session to AUTHENTICATED if possible.

        Never raises; failures leave the session UNAUTHENTICATED.
        """
        if self.credentials.get_token():
            self.state = AuthState.AUTHENTICATED
            return self.state

        user_id = self.credentials.get_user_id()
        if user_id:
            await self.authorize(user_id)
            return self.state

        provider = self._identity_provider()
        if provider is None:
            logger.warning("No identity provider configured; staying unauthenticated")
            return self.state

        try:
            external_id = await provider.resolve_external_id()
        except Exception as exc:
            logger.warning("Identity provider %s failed: %s", provider.name, exc)
            return self.state

        if not external_id:
            logger.warning("Identity provider %s returned an empty id", provider.name)
            return self.state

        await self.register(external_id)
        return self.state

    async def register(self, external_id: str) -> bool:
        """Create the backend user for ``external_id`` and authorize it."""
        self.state = AuthState.REGISTERING
        try:
            data = await self.gateway.request(
                "/api/users", "POST", {"external_id": external_id}, use_auth=False,
            )
        except HttpStatusError as exc:
            if exc.status_code == 422:
                # Already registered: only a stored user id can be authorized.
                user_id = self.credentials.get_user_id()
                if user_id:
                    return await self.authorize(user_id)
                logger.error("422 on register and no stored user id. Body: %s", exc.body)
            else:
                logger.error("Register failed: %s", exc)
            self.state = AuthState.UNAUTHENTICATED
            return False
        except FotobudkaError as exc:
            logger.error("Register failed: %s", exc)
            self.state = AuthState.UNAUTHENTICATED
            return False

        user_id = data.get("id") if isinstance(data, dict) else None
        if not user_id:
            logger.error("Register response has no user id: %s", data)
            self.state = AuthState.UNAUTHENTICATED
            return False

        try:
            self.credentials.save_user_id(str(user_id), external_id)
        except OSError as exc:
            logger.error("Failed to store user id %s: %s", user_id, exc)
            self.state = AuthState.UNAUTHENTICATED
            return False
        logger.info("Registered user %s", user_id)
        return await self.authorize(str(user_id))

    async def authorize(self, user_id: str) -> bool:
        """Exchange ``user_id`` for a bearer token and store it."""
        self.state = AuthState.AUTHORIZING
        try:
            data = await self.gateway.request(
                "/api/users/authorize", "POST", {"user_id": user_id}, use_auth=False,
            )
        except FotobudkaError as exc:
            logger.error("Authorize failed for user %s: %s", user_id, exc)
            self.state = AuthState.UNAUTHENTICATED
            return False

        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            logger.error("Authorize response has no access_token: %s", data)
            self.state = AuthState.UNAUTHENTICATED
            return False

        try:
            self.credentials.save_token(token)
        except OSError as exc:
            logger.error("Failed to store access token: %s", exc)
            self.state = AuthState.UNAUTHENTICATED
            return False
        self.state = AuthState.AUTHENTICATED
        logger.info("Authorized user %s", user_id)
        return True

    async def fetch_current_user(self) -> CurrentUser:
        """GET /api/users/me.

        Raises:
            FotobudkaError: On transport, status or decoding errors.
        """
        data = await self.gateway.request("/api/users/me")
        if not isinstance(data, dict):
            raise DecodingError(f"Unexpected /api/users/me payload: {data!r}")
        try:
            return CurrentUser(
                id=str(data.get("id", "")),
                tokens=int(data.get("tokens") or 0),
                avatar_tokens=int(data.get("avatar_tokens") or 0),
            )
        except (TypeError, ValueError) as exc:
            raise DecodingError(f"Unexpected /api/users/me payload: {data!r}") from exc

    def sign_out(self) -> None:
        self.credentials.clear()
        self.state = AuthState.UNAUTHENTICATED
