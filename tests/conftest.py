from __future__ import annotations

import json
import os
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest
from fastapi.testclient import TestClient

from backend.app.dependencies import reset_cached_dependencies
from backend.app.main import create_app

_LEGACY_ENV_NAMES: tuple[str, ...] = (
    "YOUTUBE_API_KEY",
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "REDIRECT_URI",
    "FRONTEND_APP_URL",
    "SCHEDULED_USER_YOUTUBE_REFRESH_TOKEN",
    "SCHEDULED_USER_TARGET_PLAYLIST_ID",
    "SCHEDULED_USER_CHANNELS_CONFIG",
)


@pytest.fixture(autouse=True)
def _isolated_settings_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:  # pyright: ignore[reportUnusedFunction]
    for name in list(os.environ):
        if name.startswith("PLAYLIST_AUTOFILL_"):
            monkeypatch.delenv(name)
    for name in _LEGACY_ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    reset_cached_dependencies()
    yield
    reset_cached_dependencies()


@dataclass(frozen=True)
class RecordedCall:
    resource: str
    method: str
    params: dict[str, Any]
    body: dict[str, Any] | None
    developer_key: str | None
    access_token: str | None


class FakeHttpError(Exception):
    """Shaped like `googleapiclient.errors.HttpError`."""

    def __init__(self, status: int, content: bytes, reason: str) -> None:
        super().__init__(f"<HttpError {status} {reason}>")
        self.resp = SimpleNamespace(status=status, reason=reason)
        self.content = content
        self.reason = reason
        self.status_code = status


class FakeTransportError(Exception):
    pass


class _FakeCredentials:
    def __init__(self, token: str | None = None, **kwargs: Any) -> None:
        _ = kwargs
        self.token = token


class _FakeHttp:
    def __init__(self, timeout: float | None = None) -> None:
        self.timeout = timeout


class _FakeAuthorizedHttp:
    def __init__(self, credentials: _FakeCredentials, http: _FakeHttp, **kwargs: Any) -> None:
        self.credentials = credentials
        self.http = http
        self.options = kwargs


class _FakeRequest:
    def __init__(
        self,
        api: FakeYouTubeApi,
        service: _FakeService,
        resource: str,
        method: str,
        kwargs: dict[str, Any],
    ) -> None:
        self._api = api
        self._service = service
        self.resource = resource
        self.method = method
        self.params = {key: value for key, value in kwargs.items() if key != "body"}
        self.body: dict[str, Any] | None = kwargs.get("body")

    def execute(self, num_retries: int = 0) -> dict[str, Any]:
        _ = num_retries
        return self._api.respond(
            RecordedCall(
                resource=self.resource,
                method=self.method,
                params=dict(self.params),
                body=self.body,
                developer_key=self._service.developer_key,
                access_token=self._service.access_token,
            )
        )


class _FakeCollection:
    def __init__(self, api: FakeYouTubeApi, service: _FakeService, resource: str) -> None:
        self._api = api
        self._service = service
        self._resource = resource

    def list(self, **kwargs: Any) -> _FakeRequest:
        return _FakeRequest(self._api, self._service, self._resource, "list", kwargs)

    def insert(self, **kwargs: Any) -> _FakeRequest:
        return _FakeRequest(self._api, self._service, self._resource, "insert", kwargs)

    def list_next(
        self,
        previous_request: _FakeRequest,
        previous_response: dict[str, Any],
    ) -> _FakeRequest | None:
        page_token = previous_response.get("nextPageToken")
        if not page_token:
            return None
        params = {**previous_request.params, "pageToken": page_token}
        return _FakeRequest(self._api, self._service, self._resource, "list", params)


class _FakeService:
    def __init__(
        self,
        api: FakeYouTubeApi,
        *,
        developer_key: str | None,
        access_token: str | None,
    ) -> None:
        self._api = api
        self.developer_key = developer_key
        self.access_token = access_token

    def __getattr__(self, resource: str) -> Callable[[], _FakeCollection]:
        return lambda: _FakeCollection(self._api, self, resource)


class FakeYouTubeApi:
    """Stands in for the discovery client; responses are served per (resource, method) in order."""

    transport_error = FakeTransportError

    def __init__(self) -> None:
        self.calls: list[RecordedCall] = []
        self.builds: list[dict[str, Any]] = []
        self._routes: dict[tuple[str, str], list[dict[str, Any] | Exception]] = {}

    def add(
        self,
        resource: str,
        method: str,
        payload: dict[str, Any],
        *,
        status: int = 200,
    ) -> None:
        response: dict[str, Any] | Exception = payload
        if status >= 400:
            response = FakeHttpError(status, json.dumps(payload).encode("utf-8"), "Bad Request")
        self._routes.setdefault((resource, method), []).append(response)

    def fail(self, resource: str, method: str, error: Exception) -> None:
        self._routes.setdefault((resource, method), []).append(error)

    def calls_to(self, resource: str, method: str) -> list[RecordedCall]:
        return [call for call in self.calls if call.resource == resource and call.method == method]

    def respond(self, call: RecordedCall) -> dict[str, Any]:
        self.calls.append(call)
        responses = self._routes.get((call.resource, call.method))
        if not responses:
            raise FakeHttpError(404, b"", "Not Found")
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def build(self, service_name: str, version: str, **kwargs: Any) -> _FakeService:
        self.builds.append({"service_name": service_name, "version": version, **kwargs})
        http = kwargs.get("http")
        credentials = getattr(http, "credentials", None)
        return _FakeService(
            self,
            developer_key=kwargs.get("developerKey"),
            access_token=getattr(credentials, "token", None),
        )

    def import_module(self, name: str) -> object:
        modules: dict[str, object] = {
            "googleapiclient.discovery": SimpleNamespace(build=self.build),
            "googleapiclient.errors": SimpleNamespace(HttpError=FakeHttpError),
            "httplib2": SimpleNamespace(Http=_FakeHttp, HttpLib2Error=FakeTransportError),
            "google.oauth2.credentials": SimpleNamespace(Credentials=_FakeCredentials),
            "google_auth_httplib2": SimpleNamespace(AuthorizedHttp=_FakeAuthorizedHttp),
        }
        return modules[name]


@pytest.fixture
def youtube_api(monkeypatch: pytest.MonkeyPatch) -> FakeYouTubeApi:
    api = FakeYouTubeApi()
    monkeypatch.setattr("backend.app.services.youtube_client.import_module", api.import_module)
    return api


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    runtime_dir = tmp_path / "runtime-data"
    runtime_dir.mkdir(parents=True, exist_ok=True)
    return runtime_dir


@pytest.fixture
def configured_env(data_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("PLAYLIST_AUTOFILL_DATA_DIR", str(data_dir))
    monkeypatch.setenv("PLAYLIST_AUTOFILL_ENABLE_SCHEDULER", "0")
    monkeypatch.setenv("PLAYLIST_AUTOFILL_TELEMETRY_SINK", "none")
    monkeypatch.setenv("YOUTUBE_API_KEY", "test-api-key")
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "test-client-id")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "test-client-secret")
    monkeypatch.setenv("REDIRECT_URI", "http://testserver/auth/callback")
    monkeypatch.setenv("FRONTEND_APP_URL", "http://testserver/app")
    monkeypatch.setenv("SCHEDULED_USER_TARGET_PLAYLIST_ID", "PL_target")
    monkeypatch.setenv("SCHEDULED_USER_YOUTUBE_REFRESH_TOKEN", "test-refresh-token")
    reset_cached_dependencies()
    return data_dir


@pytest.fixture
def client(configured_env: Path) -> Iterator[TestClient]:
    _ = configured_env
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client
