from __future__ import annotations


class PlaylistAutofillError(Exception):
    pass


class ConfigurationError(PlaylistAutofillError):
    """A required setting or secret is missing. Never retried."""


class AuthError(PlaylistAutofillError):
    def __init__(
        self,
        message: str,
        *,
        requires_reauth: bool = False,
        status: int | None = None,
        details: object = None,
    ) -> None:
        super().__init__(message)
        self.requires_reauth = requires_reauth
        self.status = status
        self.details = details


class ApiError(PlaylistAutofillError):
    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"{message} (status={status})")
        self.status = status
        self.message = message


class ParseError(PlaylistAutofillError):
    pass
