"""
GitHub OAuth callback that vends a single-object S3 upload grant.

The browser lands here after the user authorizes the app. The `state` query
parameter is the WebSocket connection id of the CLI that started the flow;
the grant is pushed to that connection and the browser only gets a greeting.
Nothing is stored between invocations.
"""

import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any, Callable

from channel_notifier import ChannelNotifier
from federation import FederatedCredentialIssuer, sts_client_for_base_identity
from github_identity import GitHubIdentityClient
from upload_policy import build_upload_grant
from vendor_config import load_config
from vendor_errors import CredentialIssuanceError, InputValidationError, VendorError

# Missing secrets fail the cold start, not individual requests.
CONFIG = load_config()

_services = None


@dataclass(frozen=True)
class VendorServices:
    identity: Any
    issuer: Any
    notifier: Any
    bucket: str
    prefix: str = "reports/"
    duration_seconds: int = 3600


def _default_services() -> VendorServices:
    global _services
    if _services is None:
        _services = VendorServices(
            identity=GitHubIdentityClient(
                client_id=CONFIG.oauth_client_id,
                client_secret=CONFIG.oauth_client_secret,
                token_url=CONFIG.oauth_token_url,
                user_url=CONFIG.oauth_user_url,
                user_agent=CONFIG.user_agent,
                timeout_seconds=CONFIG.http_timeout_seconds,
                redirect_uri=CONFIG.oauth_redirect_uri,
            ),
            issuer=FederatedCredentialIssuer(
                sts_client_for_base_identity(
                    CONFIG.sts_access_key_id,
                    CONFIG.sts_secret_access_key,
                    CONFIG.aws_region,
                ),
            ),
            notifier=ChannelNotifier.for_endpoint(CONFIG.channel_endpoint_url, CONFIG.aws_region),
            bucket=CONFIG.upload_bucket,
            prefix=CONFIG.upload_prefix,
            duration_seconds=CONFIG.grant_ttl_seconds,
        )
    return _services


def _response(status_code: int, body: str = "") -> dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {
            "content-type": "text/plain; charset=utf-8",
            "cache-control": "no-store",
        },
        "body": body or HTTPStatus(status_code).phrase,
    }


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _get_request_id(event: dict[str, Any]) -> str:
    return str((event.get("requestContext") or {}).get("requestId") or "")


def _query_param(event: dict[str, Any], name: str) -> str:
    # API Gateway sends null rather than {} when there is no query string.
    params = event.get("queryStringParameters") or {}
    if not isinstance(params, dict):
        return ""
    return str(params.get(name) or "").strip()


def _step(
    name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any
) -> tuple[Any, tuple[str, Exception] | None]:
    # Unexpected exceptions still carry the step they escaped from.
    try:
        return fn(*args, **kwargs), None
    except Exception as e:
        return None, (name, e)


def _validate(event: dict[str, Any]) -> tuple[str, str]:
    code = _query_param(event, "code")
    state = _query_param(event, "state")
    if not code or not state:
        raise InputValidationError("code and state query parameters are required")
    return code, state


def _derive(services: VendorServices, login: str, now: datetime):
    try:
        return build_upload_grant(login, now, bucket=services.bucket, prefix=services.prefix)
    except ValueError as e:
        raise CredentialIssuanceError(f"cannot scope upload: {e}") from e


def _greeting(display_name: str) -> str:
    return f"Hello {display_name}, your upload has been authorized and will begin automatically."


def handle_callback(
    event: dict[str, Any],
    services: VendorServices,
    *,
    now: datetime | None = None,
    schema_version: str = "",
) -> dict[str, Any]:
    start = time.time()
    request_id = _get_request_id(event)

    wide_event: dict[str, Any] = {
        "event": "trace_upload_vend_credentials",
        "schema_version": schema_version,
        "request_id": request_id,
        "ts": _now_iso(),
    }
    status_code = 500

    def fail(failure: tuple[str, Exception]) -> dict[str, Any]:
        nonlocal status_code
        step, exc = failure
        status_code = exc.status_code if isinstance(exc, VendorError) else 500
        wide_event["outcome"] = "invalid_request" if status_code < 500 else "error"
        wide_event["failed_step"] = step
        wide_event["error"] = {"type": type(exc).__name__, "message": str(exc)}
        if getattr(exc, "gone", False):
            wide_event["connection_gone"] = True
        return _response(status_code)

    try:
        params, err = _step("validate", _validate, event)
        if err:
            return fail(err)
        code, state = params
        wide_event["connection_id"] = state

        identity, err = _step("exchange", services.identity.exchange, code, state)
        if err:
            return fail(err)
        wide_event["login"] = identity.login

        grant, err = _step(
            "derive", _derive, services, identity.login, now or datetime.now(timezone.utc)
        )
        if err:
            return fail(err)
        wide_event["upload_path"] = grant.path

        creds, err = _step(
            "issue",
            services.issuer.issue,
            grant.policy_json(),
            identity.login,
            services.duration_seconds,
        )
        if err:
            return fail(err)
        wide_event["credentials_expiration"] = creds.expiration

        payload = {
            "uploadPath": grant.path,
            "accessKeyId": creds.access_key_id,
            "secretAccessKey": creds.secret_access_key,
            "sessionToken": creds.session_token,
        }
        _, err = _step("notify", services.notifier.notify, state, payload)
        if err:
            # Credentials are discarded; they only cover one object and expire on their own.
            return fail(err)

        status_code = 200
        wide_event["outcome"] = "success"
        return _response(status_code, _greeting(identity.display_name))
    except Exception as exc:
        status_code = 500
        wide_event["outcome"] = "error"
        wide_event["failed_step"] = "handler"
        wide_event["error"] = {"type": type(exc).__name__, "message": str(exc)}
        return _response(status_code)
    finally:
        wide_event["status_code"] = status_code
        wide_event["duration_ms"] = int((time.time() - start) * 1000)
        # Never log the code, the OAuth token or credential material.
        print(json.dumps(wide_event, separators=(",", ":"), sort_keys=True))


def handler(event: dict[str, Any], _context: Any) -> dict[str, Any]:
    return handle_callback(event, _default_services(), schema_version=CONFIG.schema_version)
