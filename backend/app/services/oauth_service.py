from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from importlib import import_module
from pathlib import Path
from typing import Any, cast

from backend.app.errors import AuthError, ConfigurationError

LOGGER = logging.getLogger("playlist_autofill.oauth")

YOUTUBE_OAUTH_SCOPES: tuple[str, ...] = (
    "https://www.googleapis.com/auth/youtube.readonly",
    "https://www.googleapis.com/auth/youtube.force-ssl",
)
REAUTH_REMEDY = (
    "Store a new refresh token with `playlist-autofill-oauth-setup --refresh-token <token>` "
    "or replace PLAYLIST_AUTOFILL_YOUTUBE_REFRESH_TOKEN."
)


@dataclass(frozen=True)
class RefreshedCredential:
    access_token: str
    refresh_token: str
    expires_at: datetime | None = None
    rotated: bool = False


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    refresh_token: str | None
    expires_in: int | None


class OAuthService:
    def __init__(
        self,
        *,
        client_id: str | None,
        client_secret: str | None,
        redirect_uri: str | None = None,
        token_uri: str = "https://oauth2.googleapis.com/token",
        auth_uri: str = "https://accounts.google.com/o/oauth2/v2/auth",
        scopes: tuple[str, ...] = YOUTUBE_OAUTH_SCOPES,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._token_uri = token_uri
        self._auth_uri = auth_uri
        self._scopes = scopes

    def build_authorization_url(self) -> str:
        if not self._client_id or not self._redirect_uri:
            raise ConfigurationError(
                "Server configuration error: Missing Google Client ID or Redirect URI."
            )
        flow = self._build_flow()
        authorization_url, _state = flow.authorization_url(
            access_type="offline",
            include_granted_scopes="true",
        )
        LOGGER.info("oauth authorization url generated redirect_uri=%s", self._redirect_uri)
        return str(authorization_url)

    def exchange_code(self, code: str) -> TokenGrant:
        if not self._client_id or not self._client_secret or not self._redirect_uri:
            raise ConfigurationError(
                "Server configuration error: Missing Google credentials or Redirect URI."
            )
        flow = self._build_flow()
        oauth2_error_cls: Any = import_module("oauthlib.oauth2.rfc6749.errors").OAuth2Error
        try:
            token = cast(dict[str, Any], flow.fetch_token(code=code))
        except oauth2_error_cls as exc:
            status = getattr(exc, "status_code", None)
            LOGGER.warning("oauth code exchange rejected status=%s", status, exc_info=True)
            raise AuthError(
                "Failed to exchange code for token.",
                status=status if isinstance(status, int) else 400,
                details={"error": getattr(exc, "error", None) or str(exc)},
            ) from exc
        except Exception as exc:
            LOGGER.error("oauth code exchange failed", exc_info=True)
            raise AuthError("Internal server error during token exchange.", status=500) from exc

        access_token = token.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise AuthError("Token response did not include an access token.", status=502)
        refresh_token = token.get("refresh_token")
        expires_in = token.get("expires_in")
        return TokenGrant(
            access_token=access_token,
            refresh_token=refresh_token if isinstance(refresh_token, str) else None,
            expires_in=int(expires_in) if isinstance(expires_in, int | float) else None,
        )

    def refresh_access_token(self, refresh_token: str | None) -> RefreshedCredential:
        if not refresh_token:
            raise ConfigurationError("Refresh token is missing for scheduled task. Cannot proceed.")
        if not self._client_id or not self._client_secret:
            raise ConfigurationError(
                "Client ID or Secret is missing for token refresh. Cannot proceed."
            )

        try:
            requests_module = import_module("google.auth.transport.requests")
            credentials_module = import_module("google.oauth2.credentials")
        except ImportError as exc:  # pragma: no cover - dependency controlled at runtime
            raise ConfigurationError("Token refresh requires the google-auth dependency") from exc

        request_cls: Any = requests_module.Request
        credentials_cls: Any = credentials_module.Credentials
        credentials = credentials_cls(
            token=None,
            refresh_token=refresh_token,
            token_uri=self._token_uri,
            client_id=self._client_id,
            client_secret=self._client_secret,
        )

        LOGGER.info("oauth access token refresh started")
        try:
            credentials.refresh(request_cls())
        except Exception as exc:
            requires_reauth = _oauth_refresh_requires_reauth(exc)
            message = f"Failed to refresh token: {exc}"
            if requires_reauth:
                message += f" {REAUTH_REMEDY}"
                LOGGER.error("oauth refresh token invalid or revoked; %s", REAUTH_REMEDY)
            else:
                LOGGER.warning("oauth access token refresh failed", exc_info=True)
            raise AuthError(message, requires_reauth=requires_reauth) from exc

        access_token = credentials.token
        if not isinstance(access_token, str) or not access_token:
            raise AuthError("Token refresh did not return an access token.")

        returned_refresh_token = credentials.refresh_token
        effective_refresh_token = (
            returned_refresh_token
            if isinstance(returned_refresh_token, str) and returned_refresh_token
            else refresh_token
        )
        rotated = effective_refresh_token != refresh_token
        LOGGER.info("oauth access token refreshed rotated_refresh_token=%s", rotated)
        return RefreshedCredential(
            access_token=access_token,
            refresh_token=effective_refresh_token,
            expires_at=_as_utc(credentials.expiry),
            rotated=rotated,
        )

    def _build_flow(self) -> Any:
        try:
            flow_module = import_module("google_auth_oauthlib.flow")
        except ImportError as exc:  # pragma: no cover - dependency controlled at runtime
            raise ConfigurationError("OAuth flow requires the google-auth-oauthlib dependency") from exc

        flow_cls: Any = flow_module.Flow
        client_config = {
            "web": {
                "client_id": self._client_id,
                "client_secret": self._client_secret or "",
                "auth_uri": self._auth_uri,
                "token_uri": self._token_uri,
                "redirect_uris": [self._redirect_uri],
            }
        }
        # The callback runs in a separate request, so there is no PKCE verifier to carry over.
        return flow_cls.from_client_config(
            client_config,
            scopes=list(self._scopes),
            redirect_uri=self._redirect_uri,
            autogenerate_code_verifier=False,
        )


class TokenStore:
    """
    Latest refresh token, persisted so a rotated token survives the run that received it.

    Each save records a fingerprint of the environment refresh token in effect at
    the time. A stored token is only returned while that environment token is
    unchanged, so replacing the environment value takes over from a stored token.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load_refresh_token(self, *, env_refresh_token: str | None = None) -> str | None:
        if not self._path.is_file():
            return None
        try:
            parsed = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            LOGGER.warning("oauth token store unreadable path=%s", self._path, exc_info=True)
            return None
        if not isinstance(parsed, dict):
            return None
        payload = cast(dict[str, object], parsed)
        refresh_token = payload.get("refresh_token")
        if not isinstance(refresh_token, str) or not refresh_token.strip():
            return None

        if "env_token_sha256" in payload and payload["env_token_sha256"] != _fingerprint(
            env_refresh_token
        ):
            LOGGER.info(
                "oauth stored refresh token ignored; environment refresh token changed path=%s",
                self._path,
            )
            return None
        return refresh_token.strip()

    def save_refresh_token(
        self,
        refresh_token: str,
        *,
        env_refresh_token: str | None = None,
    ) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "refresh_token": refresh_token,
            "env_token_sha256": _fingerprint(env_refresh_token),
            "updated_at": datetime.now(UTC).isoformat(),
        }
        self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        LOGGER.info("oauth refresh token persisted path=%s", self._path)


def _fingerprint(token: str | None) -> str | None:
    if not token:
        return None
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _oauth_refresh_requires_reauth(exc: Exception) -> bool:
    normalized = str(exc).lower()
    return "invalid_grant" in normalized or "expired or revoked" in normalized


def _as_utc(value: object) -> datetime | None:
    if not isinstance(value, datetime):
        return None
    # google-auth reports expiry as naive UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
