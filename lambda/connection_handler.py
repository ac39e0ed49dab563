import json
import os
import time
from datetime import datetime, timezone
from typing import Any

from channel_notifier import ChannelNotifier, management_endpoint
from vendor_errors import DeliveryError

SCHEMA_VERSION = os.environ.get("SCHEMA_VERSION", "2026-10-01")
CHANNEL_ENDPOINT_URL = os.environ.get("CHANNEL_ENDPOINT_URL", "")

_notifiers: dict[str, ChannelNotifier] = {}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _aws_region() -> str | None:
    return os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION")


def _response(status_code: int) -> dict[str, Any]:
    return {"statusCode": status_code}


def _endpoint(rc: dict[str, Any]) -> str:
    if CHANNEL_ENDPOINT_URL:
        return CHANNEL_ENDPOINT_URL
    return management_endpoint(str(rc.get("domainName") or ""), str(rc.get("stage") or ""))


def _notifier(endpoint_url: str) -> ChannelNotifier:
    notifier = _notifiers.get(endpoint_url)
    if notifier is None:
        notifier = ChannelNotifier.for_endpoint(endpoint_url, _aws_region())
        _notifiers[endpoint_url] = notifier
    return notifier


def handler(event: dict[str, Any], _context: Any, notifier: ChannelNotifier | None = None) -> dict[str, Any]:
    start = time.time()
    rc = event.get("requestContext") or {}
    route_key = str(rc.get("routeKey") or "")
    connection_id = str(rc.get("connectionId") or "")

    wide_event: dict[str, Any] = {
        "event": "trace_upload_channel_handshake",
        "schema_version": SCHEMA_VERSION,
        "request_id": str(rc.get("requestId") or ""),
        "route_key": route_key,
        "connection_id": connection_id,
        "ts": _now_iso(),
    }
    status_code = 500

    try:
        if route_key in ("$connect", "$disconnect"):
            status_code = 200
            wide_event["outcome"] = "success"
            return _response(status_code)

        if not connection_id:
            status_code = 400
            wide_event["outcome"] = "invalid_request"
            return _response(status_code)

        endpoint_url = _endpoint(rc)
        if notifier is None:
            if not endpoint_url:
                wide_event["outcome"] = "misconfigured"
                return _response(status_code)
            notifier = _notifier(endpoint_url)

        # The CLI uses its own connection id as the OAuth state parameter.
        notifier.notify(connection_id, {"connectionId": connection_id})
        status_code = 200
        wide_event["outcome"] = "success"
        return _response(status_code)
    except DeliveryError as exc:
        status_code = 500
        wide_event["outcome"] = "error"
        wide_event["connection_gone"] = exc.gone
        wide_event["error"] = {"type": type(exc).__name__, "message": str(exc)}
        return _response(status_code)
    except Exception as exc:
        status_code = 500
        wide_event["outcome"] = "error"
        wide_event["error"] = {"type": type(exc).__name__, "message": str(exc)}
        return _response(status_code)
    finally:
        wide_event["status_code"] = status_code
        wide_event["duration_ms"] = int((time.time() - start) * 1000)
        print(json.dumps(wide_event, separators=(",", ":"), sort_keys=True))
