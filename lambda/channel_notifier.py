from __future__ import annotations

import json
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from vendor_errors import DeliveryError

_NO_RETRY = Config(retries={"total_max_attempts": 1, "mode": "standard"})


def management_endpoint(domain_name: str, stage: str) -> str:
    domain = (domain_name or "").strip().rstrip("/")
    stage = (stage or "").strip().strip("/")
    if not domain:
        return ""
    return f"https://{domain}/{stage}" if stage else f"https://{domain}"


class ChannelNotifier:
    """Posts one JSON message to an open API Gateway WebSocket connection."""

    def __init__(self, management_client: Any) -> None:
        self._client = management_client

    @classmethod
    def for_endpoint(cls, endpoint_url: str, region: str | None = None) -> "ChannelNotifier":
        client = boto3.client(
            "apigatewaymanagementapi",
            endpoint_url=endpoint_url,
            region_name=region,
            config=_NO_RETRY,
        )
        return cls(client)

    def notify(self, connection_id: str, payload: dict[str, Any]) -> None:
        connection_id = (connection_id or "").strip()
        if not connection_id:
            raise DeliveryError("connection id is required")
        data = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        try:
            self._client.post_to_connection(ConnectionId=connection_id, Data=data)
        except ClientError as e:
            error = e.response.get("Error", {})
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            if error.get("Code") == "GoneException" or status == 410:
                raise DeliveryError("connection is gone", gone=True) from e
            raise DeliveryError(f"post to connection failed: {error.get('Code') or e}") from e
        except BotoCoreError as e:
            raise DeliveryError(f"post to connection failed: {e}") from e
