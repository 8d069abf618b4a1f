"""Canonical Pydantic models shared across all dashauth modules.

Every other module imports its data shapes from here. The models fall into
three groups:

**Configuration models** -- serialised as JSON (or YAML) in the user's
config directory: :class:`ProviderConfig`, :class:`NativeConfig`,
:class:`BackendConfig`, :class:`ServiceConfig`, :class:`CacheConfig` and
:class:`AppConfig`.

**Authentication models** -- produced by providers and the coordinator:
:class:`PlatformSignals`, :class:`Classification`, :class:`Identity`,
:class:`StoredSession`, :class:`ProviderTokenSet`,
:class:`ProviderDescriptor`, :class:`AuthResult` and :class:`QueuedTokens`.

**Credential models** -- owned by the credential service:
:class:`ServiceCredential`, :class:`CacheEntry`, :class:`ValidToken`,
:class:`TokenAccount`, :class:`DrainResult` and :class:`ServiceStatus`.
"""

from __future__ import annotations

import enum
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Enumerations ---


class Platform(str, enum.Enum):
    """Host platform categories recognised by :mod:`dashauth.platform`."""

    BROWSER = "browser"
    ANDROID_WEBVIEW = "android_webview"
    ANDROID_NATIVE = "android_native"
    IOS_WEBVIEW = "ios_webview"
    FIRE_TV = "fire_tv"
    CHROME_TV = "chrome_tv"
    SAMSUNG_TV = "samsung_tv"
    LG_TV = "lg_tv"
    UNKNOWN = "unknown"


class DeviceCategory(str, enum.Enum):
    """Physical device categories."""

    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"
    TV = "tv"
    UNKNOWN = "unknown"


class Strategy(str, enum.Enum):
    """Authentication strategies, one per provider plus the degraded case."""

    NATIVE = "native"
    DEVICE_FLOW = "device_flow"
    WEB_OAUTH = "web_oauth"
    UNSUPPORTED = "unsupported"


class AuthStatus(str, enum.Enum):
    """Outcome of a sign-in attempt."""

    SUCCESS = "success"
    REDIRECTED = "redirected"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ServiceState(str, enum.Enum):
    """Lifecycle states of :class:`~dashauth.credentials.core.CredentialServiceCore`."""

    UNINITIALIZED = "uninitialized"
    WAITING_FOR_AUTH = "waiting_for_auth"
    CONFIGURING = "configuring"
    CHECKING_REQUIREMENTS = "checking_requirements"
    READY = "ready"
    NOT_READY = "not_ready"


# --- Configuration ---


class ProviderConfig(BaseModel):
    """OAuth endpoints and client credentials for one provider.

    Secrets are never stored literally: ``client_id_source`` and
    ``client_secret_source`` are credential source descriptors resolved by
    :func:`~dashauth.config.resolve_credential` (``env:VAR``,
    ``file:/path``, or ``prompt``).

    Example::

        ProviderConfig(
            client_id_source="env:DASHAUTH_CLIENT_ID",
            client_secret_source="file:~/.secrets/client_secret",
            redirect_uri="https://dashboard.example.com/",
        )
    """

    client_id_source: Optional[str] = None
    client_secret_source: Optional[str] = None
    redirect_uri: Optional[str] = None
    authorization_url: str = "https://accounts.google.com/o/oauth2/v2/auth"
    token_url: str = "https://oauth2.googleapis.com/token"
    device_authorization_url: str = "https://oauth2.googleapis.com/device/code"
    userinfo_url: str = "https://www.googleapis.com/oauth2/v2/userinfo"
    scopes: list[str] = Field(
        default_factory=lambda: [
            "profile",
            "email",
            "https://www.googleapis.com/auth/calendar.readonly",
            "https://www.googleapis.com/auth/photoslibrary.readonly",
        ]
    )
    timeout: float = Field(default=30.0, description="HTTP timeout in seconds")


class NativeConfig(BaseModel):
    """Settings for the native-bridge provider."""

    timeout_seconds: float = Field(
        default=30.0, description="Deadline for a native bridge answer"
    )


class BackendConfig(BaseModel):
    """Location and access key of the credential-issuing backend endpoint."""

    enabled: bool = True
    url: Optional[str] = Field(default=None, description="Backend base URL")
    function_path: str = Field(
        default="/functions/v1/jwt-auth",
        description="Path of the credential endpoint below the base URL",
    )
    anon_key_source: Optional[str] = Field(
        default=None, description="Credential source for the anonymous service key"
    )
    timeout: float = 30.0
    max_retries: int = 2


class ServiceConfig(BaseModel):
    """Timing knobs for the credential service."""

    auth_wait_timeout: float = Field(
        default=15.0, description="Seconds to wait for a signed-in identity"
    )
    auth_poll_interval: float = Field(
        default=0.2, description="Seconds between identity polls"
    )
    expiry_buffer_seconds: int = Field(
        default=300, description="Tokens this close to expiry count as expired"
    )
    proactive_refresh: bool = True
    refresh_threshold_seconds: int = Field(
        default=24 * 3600,
        description="Refresh the service credential this long before expiry",
    )
    refresh_retry_seconds: int = Field(
        default=300, description="Delay before retrying a failed proactive refresh"
    )


class CacheConfig(BaseModel):
    """Persistence of the service credential between runs."""

    enabled: bool = True


class AppConfig(BaseModel):
    """Top-level configuration stored in ``config.json`` (or ``config.yaml``).

    Example::

        AppConfig(backend=BackendConfig(url="https://abc.supabase.co",
                                        anon_key_source="env:DASHAUTH_ANON_KEY"))
    """

    web_oauth: ProviderConfig = Field(default_factory=ProviderConfig)
    device_flow: ProviderConfig = Field(default_factory=ProviderConfig)
    native: NativeConfig = Field(default_factory=NativeConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    session_max_age_days: int = Field(
        default=7, description="Saved sessions older than this are discarded"
    )


# --- Platform ---


class PlatformSignals(BaseModel):
    """Structured environment probe fed to :mod:`dashauth.platform`.

    Produced by the host (or by
    :func:`~dashauth.platform.signals_from_user_agent`); the classifier never
    reads the environment itself.
    """

    model_config = ConfigDict(frozen=True)

    platform: Platform = Platform.UNKNOWN
    device: DeviceCategory = DeviceCategory.UNKNOWN
    native_bridge: bool = False
    user_agent: Optional[str] = None


class Classification(BaseModel):
    """Platform and device category of the current host."""

    model_config = ConfigDict(frozen=True)

    platform: Platform
    device: DeviceCategory


# --- Identity and provider tokens ---


class Identity(BaseModel):
    """The signed-in user, owned by the coordinator while live."""

    id: str
    email: str
    name: str
    picture: Optional[str] = None
    auth_method: str
    provider_access_token: Optional[str] = None
    signed_in_at: datetime = Field(default_factory=_utcnow)


class StoredSession(BaseModel):
    """Identity snapshot persisted by a :class:`~dashauth.auth.token_store.TokenStore`."""

    identity: Identity
    saved_at: datetime = Field(default_factory=_utcnow)


class ProviderTokenSet(BaseModel):
    """Tokens returned by an OAuth token endpoint."""

    model_config = ConfigDict(extra="allow")

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    expires_at: Optional[datetime] = None
    scope: Optional[str] = None
    token_type: Optional[str] = None
    issued_at: datetime = Field(default_factory=_utcnow)

    def expiry(self) -> datetime:
        """Absolute expiry, defaulting to one hour after issue."""
        if self.expires_at is not None:
            return self.expires_at
        return self.issued_at + timedelta(seconds=self.expires_in or 3600)


class ProviderDescriptor(BaseModel):
    """Read-only capability metadata of a provider."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: str
    supports_refresh_tokens: bool
    available: bool
    details: dict[str, Any] = Field(default_factory=dict)


class AuthResult(BaseModel):
    """Normalised outcome of ``initialize()`` or ``sign_in()``."""

    status: AuthStatus
    identity: Optional[Identity] = None
    tokens: Optional[ProviderTokenSet] = None
    error: Optional[str] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == AuthStatus.SUCCESS

    @classmethod
    def success(
        cls, identity: Identity, tokens: Optional[ProviderTokenSet] = None
    ) -> AuthResult:
        return cls(status=AuthStatus.SUCCESS, identity=identity, tokens=tokens)

    @classmethod
    def redirected(cls, message: Optional[str] = None) -> AuthResult:
        return cls(status=AuthStatus.REDIRECTED, message=message)

    @classmethod
    def cancelled(cls, message: Optional[str] = None) -> AuthResult:
        return cls(status=AuthStatus.CANCELLED, message=message)

    @classmethod
    def failed(cls, error: str) -> AuthResult:
        return cls(status=AuthStatus.FAILED, error=error)


class QueuedTokens(BaseModel):
    """A long-lived token waiting for the credential service to become ready."""

    provider: str = "google"
    account_type: str = "personal"
    token_data: dict[str, Any]
    queued_at: datetime = Field(default_factory=_utcnow)


# --- Service credential and token cache ---


class ServiceCredential(BaseModel):
    """Backend-issued JWT and its expiry in epoch milliseconds."""

    token: str
    expires_at_ms: int
    user_email: Optional[str] = None

    def remaining_ms(self, now_ms: Optional[int] = None) -> int:
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        return self.expires_at_ms - now_ms


class CacheEntry(BaseModel):
    """A provider access token cached per ``(provider, account_type)``."""

    access_token: str
    expires_at: datetime
    scopes: list[str] = Field(default_factory=list)
    cached_at: datetime = Field(default_factory=_utcnow)

    def is_fresh(self, buffer_seconds: int, now: Optional[datetime] = None) -> bool:
        now = now or _utcnow()
        return now < self.expires_at - timedelta(seconds=buffer_seconds)


class ValidToken(BaseModel):
    """Result of :meth:`~dashauth.credentials.operations.CredentialOperations.get_valid_token`."""

    access_token: str
    expires_at: datetime
    scopes: list[str] = Field(default_factory=list)
    refreshed: bool = False
    cached: bool = False


class TokenAccount(BaseModel):
    """One ``(provider, account_type)`` token set held by the backend."""

    provider: str
    account_type: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    expires_at: Optional[Any] = Field(
        default=None, description="Access token expiry as the backend reports it"
    )
    scopes: list[str] = Field(default_factory=list)
    is_active: Optional[bool] = None
    created_at: Optional[Any] = None

    @property
    def key(self) -> str:
        return f"{self.provider}:{self.account_type}"


class DrainResult(BaseModel):
    """Outcome of storing one queued token during a pending-queue drain."""

    provider: str
    account_type: str
    success: bool
    error: Optional[str] = None


class ServiceStatus(BaseModel):
    """Diagnostic snapshot of the credential service."""

    state: ServiceState
    enabled: bool
    ready: bool
    endpoint: Optional[str] = None
    has_credential: bool = False
    credential_expires_at_ms: Optional[int] = None
    credential_expired: Optional[bool] = None
    last_error: Optional[str] = None
    cached_keys: list[str] = Field(default_factory=list)
    in_flight_keys: list[str] = Field(default_factory=list)
