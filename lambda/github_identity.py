from __future__ import annotations

import http.client
import json
from dataclasses import dataclass
from typing import Any, Callable
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from vendor_errors import IdentityResolutionError, InputValidationError, UpstreamAuthError

HttpRequest = Callable[..., tuple[int, dict[str, str], bytes]]


@dataclass(frozen=True)
class GitHubIdentity:
    login: str
    name: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.login


def _http_request(
    *,
    method: str,
    url: str,
    headers: dict[str, str],
    body: bytes | None = None,
    timeout_seconds: int = 10,
) -> tuple[int, dict[str, str], bytes]:
    req = Request(url, data=body, method=str(method).upper())
    for k, v in headers.items():
        req.add_header(k, v)
    try:
        with urlopen(req, timeout=timeout_seconds) as resp:
            status = getattr(resp, "status", 200)
            hdrs = {k.lower(): v for k, v in dict(resp.headers).items()}
            data = resp.read()
            return int(status), hdrs, data
    except HTTPError as e:
        hdrs = {k.lower(): v for k, v in dict(e.headers or {}).items()}
        data = e.read() if hasattr(e, "read") else b""
        return int(getattr(e, "code", 0) or 0), hdrs, data
    except (URLError, http.client.HTTPException, TimeoutError, ConnectionError) as e:
        raise UpstreamAuthError(f"request to {url} failed: {e}") from e


def _json_object(data: bytes) -> dict[str, Any] | None:
    try:
        parsed = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


class GitHubIdentityClient:
    """Exchanges an OAuth authorization code for the GitHub user behind it."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        token_url: str,
        user_url: str,
        user_agent: str,
        timeout_seconds: int = 10,
        redirect_uri: str = "",
        http_request: HttpRequest = _http_request,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url
        self._user_url = user_url
        self._user_agent = user_agent
        self._timeout_seconds = timeout_seconds
        self._redirect_uri = redirect_uri
        self._http_request = http_request

    def exchange(self, code: str, state: str) -> GitHubIdentity:
        if not (code or "").strip():
            raise InputValidationError("authorization code is required")
        if not (state or "").strip():
            raise InputValidationError("state is required")
        token = self._access_token(code.strip(), state.strip())
        return self._identity(token)

    def _access_token(self, code: str, state: str) -> str:
        form = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "code": code,
            "state": state,
        }
        if self._redirect_uri:
            form["redirect_uri"] = self._redirect_uri
        status, _, data = self._http_request(
            method="POST",
            url=self._token_url,
            headers={
                "Accept": "application/json",
                "Content-Type": "application/x-www-form-urlencoded",
                "User-Agent": self._user_agent,
            },
            body=urlencode(form).encode("utf-8"),
            timeout_seconds=self._timeout_seconds,
        )
        if not 200 <= status < 300:
            raise UpstreamAuthError(f"token exchange returned HTTP {status}")
        doc = _json_object(data)
        if doc is None:
            raise UpstreamAuthError("token exchange returned a non-JSON body")
        # GitHub reports a bad or reused code as 200 with an error field.
        if doc.get("error"):
            raise UpstreamAuthError(f"token exchange rejected: {doc.get('error')}")
        token = str(doc.get("access_token") or "").strip()
        if not token:
            raise UpstreamAuthError("token exchange returned no access_token")
        return token

    def _identity(self, token: str) -> GitHubIdentity:
        status, _, data = self._http_request(
            method="GET",
            url=self._user_url,
            headers={
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {token}",
                "User-Agent": self._user_agent,
            },
            timeout_seconds=self._timeout_seconds,
        )
        if not 200 <= status < 300:
            raise UpstreamAuthError(f"profile fetch returned HTTP {status}")
        profile = _json_object(data)
        if profile is None:
            raise IdentityResolutionError("profile response is not a JSON object")
        login = str(profile.get("login") or "").strip()
        if not login:
            raise IdentityResolutionError("profile has no login")
        name = str(profile.get("name") or "").strip()
        return GitHubIdentity(login=login, name=name)
