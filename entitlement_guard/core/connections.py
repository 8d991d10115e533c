"""
Connection registry for external posting platforms.

Every platform is described by one entry in a credential schema table;
connect and disconnect are the same operation for all of them.

State rules:
- connect overwrites any earlier credential and marks the platform live
- disconnect clears the credential and is a no-op when already disconnected
- the account's connected-platforms set is rebuilt on every change
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

from .errors import InvalidCredentials, PlatformNotConnected, UnsupportedPlatform
from .periods import utc_now
from entitlement_guard.storage.models import (
    Account,
    CredentialBundle,
    Platform,
    PlatformConnection,
)
from entitlement_guard.storage.repository import AccountStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialSchema:
    """Shape of the token bundle a platform hands back on connect."""
    identifier_field: str
    tracks_expiry: bool = False


PLATFORM_CREDENTIAL_SCHEMAS: Mapping[Platform, CredentialSchema] = {
    Platform.LINKEDIN: CredentialSchema(identifier_field="profile_id", tracks_expiry=True),
    Platform.TIKTOK: CredentialSchema(identifier_field="user_id", tracks_expiry=True),
    Platform.FACEBOOK: CredentialSchema(identifier_field="page_id"),
    Platform.INSTAGRAM: CredentialSchema(identifier_field="business_id"),
    Platform.TWITTER: CredentialSchema(identifier_field="user_id"),
    Platform.THREADS: CredentialSchema(identifier_field="user_id"),
}


def coerce_platform(platform: Union[Platform, str]) -> Platform:
    """Resolve a platform identifier (case-insensitive)."""
    if isinstance(platform, Platform):
        return platform
    try:
        return Platform(str(platform).lower())
    except ValueError:
        raise UnsupportedPlatform(platform) from None


def build_credential(schema: CredentialSchema, bundle: Mapping[str, Any]) -> CredentialBundle:
    """Validate a raw token bundle against a platform schema.

    Raises:
        InvalidCredentials: If the access token or platform identifier is missing
    """
    if not isinstance(bundle, Mapping):
        raise InvalidCredentials("credential bundle must be a dictionary")

    access_token = bundle.get("access_token")
    if not isinstance(access_token, str) or not access_token.strip():
        raise InvalidCredentials("'access_token' is required")

    identifier = bundle.get(schema.identifier_field)
    if not isinstance(identifier, str) or not identifier.strip():
        raise InvalidCredentials(f"'{schema.identifier_field}' is required")

    expiry = None
    if schema.tracks_expiry and bundle.get("expiry") is not None:
        expiry = bundle["expiry"]
        if isinstance(expiry, str):
            try:
                expiry = datetime.fromisoformat(expiry)
            except ValueError:
                raise InvalidCredentials(f"'expiry' is not an ISO timestamp: {expiry}")
        elif not isinstance(expiry, datetime):
            raise InvalidCredentials("'expiry' must be a datetime or ISO timestamp")

    return CredentialBundle(
        access_token=access_token,
        identifiers={schema.identifier_field: identifier},
        expiry=expiry,
        refresh_token=bundle.get("refresh_token"),
    )


class ConnectionRegistry:
    """Per-account, per-platform connection state."""

    def __init__(
        self,
        store: AccountStore,
        schemas: Mapping[Platform, CredentialSchema] = PLATFORM_CREDENTIAL_SCHEMAS,
        clock: Callable[[], datetime] = utc_now
    ):
        self.store = store
        self.schemas = dict(schemas)
        self.clock = clock

    def _schema(self, platform: Union[Platform, str]) -> Tuple[Platform, CredentialSchema]:
        platform = coerce_platform(platform)
        if platform not in self.schemas:
            raise UnsupportedPlatform(platform.value)
        return platform, self.schemas[platform]

    def is_connected(self, account_id: str, platform: Union[Platform, str]) -> bool:
        platform, _ = self._schema(platform)
        connection = self.store.load(account_id).connections.get(platform.value)
        return bool(connection and connection.connected)

    def connect(
        self,
        account_id: str,
        platform: Union[Platform, str],
        bundle: Mapping[str, Any]
    ) -> None:
        """Store a fresh credential and mark the platform connected.

        Raises:
            UnsupportedPlatform: If the platform is unknown
            InvalidCredentials: If the bundle does not match the platform schema
        """
        platform, schema = self._schema(platform)
        credential = build_credential(schema, bundle)
        if bundle.get("expiry") is not None and not schema.tracks_expiry:
            logger.debug("Ignoring expiry for %s, platform does not track it", platform.value)
        connection = PlatformConnection(platform=platform.value, connected=True, credential=credential)

        self.store.update(account_id, lambda account: account.with_connection(connection))
        logger.info("Connected %s for %s", platform.value, account_id)

    def disconnect(self, account_id: str, platform: Union[Platform, str]) -> None:
        """Clear the credential and mark the platform disconnected.

        Safe to call when the platform is already disconnected.
        """
        platform, _ = self._schema(platform)
        connection = PlatformConnection(platform=platform.value)

        def _mutate(account: Account) -> Account:
            current = account.connections.get(platform.value)
            if current == connection and platform.value not in account.connected_platforms:
                return account
            return account.with_connection(connection)

        self.store.update(account_id, _mutate)
        logger.info("Disconnected %s for %s", platform.value, account_id)

    def connected_platforms(self, account_id: str) -> Tuple[str, ...]:
        return self.store.load(account_id).connected_platforms

    def connection_status(self, account_id: str) -> Dict[str, bool]:
        """Connected flag for every supported platform."""
        connections = self.store.load(account_id).connections
        return {
            platform.value: bool(
                connections.get(platform.value) and connections[platform.value].connected
            )
            for platform in self.schemas
        }

    def require_credentials(
        self,
        account_id: str,
        platform: Union[Platform, str]
    ) -> CredentialBundle:
        """Fresh read of a live credential, for use immediately before posting.

        Raises:
            PlatformNotConnected: If the platform is disconnected or its token expired
        """
        platform, _ = self._schema(platform)
        connection = self.store.load(account_id).connections.get(platform.value)
        if connection is None or not connection.connected:
            raise PlatformNotConnected(platform.value)

        credential = connection.credential
        expiry: Optional[datetime] = credential.expiry
        if expiry is not None:
            now = self.clock()
            if expiry.tzinfo is None:
                now = now.replace(tzinfo=None)
            if expiry <= now:
                raise PlatformNotConnected(
                    platform.value,
                    f"Credential for {platform.value} expired at {expiry.isoformat()}",
                )
        return credential
