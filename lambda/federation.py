from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from vendor_config import MAX_GRANT_TTL_SECONDS, MIN_GRANT_TTL_SECONDS
from vendor_errors import CredentialIssuanceError, UpstreamAuthError

_NO_RETRY = Config(retries={"total_max_attempts": 1, "mode": "standard"})


@dataclass(frozen=True)
class FederatedCredentials:
    access_key_id: str
    secret_access_key: str
    session_token: str
    expiration: str

    def __repr__(self) -> str:
        return f"FederatedCredentials(access_key_id={self.access_key_id!r}, expiration={self.expiration!r})"


def federation_name(principal_name: str) -> str:
    # GetFederationToken Name: 2-32 chars of [\w+=,.@-].
    sanitized = re.sub(r"[^a-zA-Z0-9+=,.@_-]", "", principal_name or "")[:32]
    return sanitized if len(sanitized) >= 2 else "trace-upload"


def sts_client_for_base_identity(
    access_key_id: str, secret_access_key: str, region: str | None = None
):
    # Dedicated IAM user keys; never the Lambda role, never the caller.
    return boto3.client(
        "sts",
        region_name=region,
        aws_access_key_id=access_key_id,
        aws_secret_access_key=secret_access_key,
        config=_NO_RETRY,
    )


class FederatedCredentialIssuer:
    def __init__(self, sts_client: Any) -> None:
        self._sts = sts_client

    def issue(
        self, policy_document: str, principal_name: str, duration_seconds: int
    ) -> FederatedCredentials:
        if not MIN_GRANT_TTL_SECONDS <= duration_seconds <= MAX_GRANT_TTL_SECONDS:
            raise CredentialIssuanceError(
                f"duration {duration_seconds}s outside {MIN_GRANT_TTL_SECONDS}..{MAX_GRANT_TTL_SECONDS}"
            )
        if not policy_document:
            raise CredentialIssuanceError("refusing to issue credentials without a policy")

        # The inline policy is the only session policy. Any PolicyArns would be
        # unioned with it and widen the token past its single object.
        try:
            out = self._sts.get_federation_token(
                Name=federation_name(principal_name),
                DurationSeconds=duration_seconds,
                Policy=policy_document,
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            raise CredentialIssuanceError(f"GetFederationToken rejected: {code or e}") from e
        except BotoCoreError as e:
            raise UpstreamAuthError(f"GetFederationToken unavailable: {e}") from e

        creds = out.get("Credentials") or {}
        access_key_id = str(creds.get("AccessKeyId") or "")
        secret_access_key = str(creds.get("SecretAccessKey") or "")
        session_token = str(creds.get("SessionToken") or "")
        if not (access_key_id and secret_access_key and session_token):
            raise CredentialIssuanceError("GetFederationToken returned incomplete credentials")

        expiration = creds.get("Expiration")
        if hasattr(expiration, "isoformat"):
            expiration_iso = expiration.isoformat()
        else:
            expiration_iso = str(expiration or "")

        return FederatedCredentials(
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            session_token=session_token,
            expiration=expiration_iso,
        )
