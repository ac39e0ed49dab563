from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

UPLOAD_ACTION = "s3:PutObject"
PATH_TIMESTAMP_FORMAT = "%Y-%m-%dT%H-%M-%S"
ARCHIVE_SUFFIX = ".tar.gz"

# Anything that could widen an IAM resource match or escape the prefix.
_UNSAFE = re.compile(r"[*?/\s]")


@dataclass(frozen=True)
class UploadGrant:
    path: str
    bucket: str
    policy: dict[str, Any]

    @property
    def object_arn(self) -> str:
        return _object_arn(self.bucket, self.path)

    def policy_json(self) -> str:
        return json.dumps(self.policy, separators=(",", ":"))


def _object_arn(bucket: str, path: str) -> str:
    return f"arn:aws:s3:::{bucket}/{path}"


def _normalize_prefix(prefix: str) -> str:
    stripped = (prefix or "").strip().strip("/")
    return f"{stripped}/" if stripped else ""


def _utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _require_safe(label: str, value: str) -> str:
    if not value:
        raise ValueError(f"{label} is required")
    if _UNSAFE.search(value):
        raise ValueError(f"{label} contains characters not allowed in an object key")
    return value


def upload_path(login: str, timestamp: datetime, prefix: str = "reports/") -> str:
    login = _require_safe("login", login)
    stamp = _utc(timestamp).strftime(PATH_TIMESTAMP_FORMAT)
    return f"{_normalize_prefix(prefix)}{stamp}-{login}{ARCHIVE_SUFFIX}"


def upload_policy(bucket: str, path: str) -> dict[str, Any]:
    # One statement, one action, one object. No lists, no wildcards.
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Action": UPLOAD_ACTION,
                "Resource": _object_arn(bucket, path),
            }
        ],
    }


def build_upload_grant(
    login: str,
    timestamp: datetime,
    *,
    bucket: str,
    prefix: str = "reports/",
) -> UploadGrant:
    bucket = _require_safe("bucket", bucket)
    path = upload_path(login, timestamp, prefix)
    if "*" in path:
        raise ValueError("upload path must not contain wildcards")
    return UploadGrant(path=path, bucket=bucket, policy=upload_policy(bucket, path))
