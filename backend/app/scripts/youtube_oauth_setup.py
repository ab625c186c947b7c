from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence

from backend.app.config import AppSettings, load_settings
from backend.app.errors import AuthError, ConfigurationError
from backend.app.services.oauth_service import OAuthService, TokenStore


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Bootstrap the refresh token used by scheduled playlist runs. Without "
            "arguments, prints the consent URL."
        ),
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--code",
        type=str,
        default=None,
        help="Authorization code from the consent redirect; exchanged and stored.",
    )
    source.add_argument(
        "--refresh-token",
        type=str,
        default=None,
        help="Store an existing refresh token, e.g. to replace a revoked one.",
    )
    return parser.parse_args(argv)


def build_oauth_service(settings: AppSettings) -> tuple[OAuthService, TokenStore]:
    service = OAuthService(
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        redirect_uri=settings.redirect_uri,
        token_uri=settings.oauth_token_uri,
        auth_uri=settings.oauth_auth_uri,
    )
    return service, TokenStore(settings.youtube_token_path)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = load_settings()
    service, token_store = build_oauth_service(settings)

    if args.refresh_token is not None:
        token = args.refresh_token.strip()
        if not token:
            print("Refusing to store an empty refresh token.", file=sys.stderr)
            return 2
        token_store.save_refresh_token(token, env_refresh_token=settings.youtube_refresh_token)
        print(f"Refresh token stored at: {token_store.path}")
        return 0

    try:
        if args.code is None:
            print("Open this URL, grant access, then rerun with --code <code>:")
            print(service.build_authorization_url())
            return 0

        grant = service.exchange_code(args.code)
    except (ConfigurationError, AuthError) as exc:
        print(f"OAuth setup failed: {exc}", file=sys.stderr)
        return 1

    if grant.refresh_token is None:
        print(
            "The provider did not issue a refresh token. Revoke the app's access and retry "
            "so consent is granted again.",
            file=sys.stderr,
        )
        return 1

    token_store.save_refresh_token(
        grant.refresh_token,
        env_refresh_token=settings.youtube_refresh_token,
    )
    print(f"OAuth success. Refresh token stored at: {token_store.path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
