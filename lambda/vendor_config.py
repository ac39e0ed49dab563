from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from vendor_errors import ConfigError

DEFAULT_OAUTH_CLIENT_ID = "Iv1.c29a629771fe63c4"
DEFAULT_OAUTH_TOKEN_URL = "https://github.com/login/oauth/access_token"
DEFAULT_OAUTH_USER_URL = "https://api.github.com/user"
DEFAULT_USER_AGENT = "TraceUploadVendor/0.1"
DEFAULT_SCHEMA_VERSION = "2026-10-01"

# GetFederationToken accepts up to 129600s; keep grants well below that.
MIN_GRANT_TTL_SECONDS = 900
MAX_GRANT_TTL_SECONDS = 43200

REQUIRED_ENV = (
    "OAUTH_CLIENT_SECRET",
    "STS_AWS_ACCESS_KEY_ID",
    "STS_AWS_SECRET_ACCESS_KEY",
    "UPLOAD_BUCKET",
    "CHANNEL_ENDPOINT_URL",
)


@dataclass(frozen=True)
class VendorConfig:
    oauth_client_id: str
    oauth_client_secret: str
    oauth_token_url: str
    oauth_user_url: str
    oauth_redirect_uri: str
    sts_access_key_id: str
    sts_secret_access_key: str
    upload_bucket: str
    upload_prefix: str
    channel_endpoint_url: str
    grant_ttl_seconds: int
    http_timeout_seconds: int
    user_agent: str
    schema_version: str
    aws_region: str | None

    def __repr__(self) -> str:
        # Keep secrets out of tracebacks and debug prints.
        return (
            f"VendorConfig(upload_bucket={self.upload_bucket!r}, "
            f"upload_prefix={self.upload_prefix!r}, "
            f"channel_endpoint_url={self.channel_endpoint_url!r}, "
            f"grant_ttl_seconds={self.grant_ttl_seconds})"
        )


def _env(environ: Mapping[str, str], name: str, default: str = "") -> str:
    return str(environ.get(name) or default).strip()


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = _env(environ, name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer") from e


def load_config(environ: Mapping[str, str] | None = None) -> VendorConfig:
    env = os.environ if environ is None else environ

    missing = [name for name in REQUIRED_ENV if not _env(env, name)]
    if missing:
        raise ConfigError(f"missing required env vars: {', '.join(missing)}")

    ttl = _env_int(env, "GRANT_TTL_SECONDS", 3600)
    if not MIN_GRANT_TTL_SECONDS <= ttl <= MAX_GRANT_TTL_SECONDS:
        raise ConfigError(
            f"GRANT_TTL_SECONDS must be between {MIN_GRANT_TTL_SECONDS} and {MAX_GRANT_TTL_SECONDS}"
        )
    timeout = _env_int(env, "HTTP_TIMEOUT_SECONDS", 10)
    if timeout <= 0:
        raise ConfigError("HTTP_TIMEOUT_SECONDS must be positive")

    prefix = _env(env, "UPLOAD_PREFIX", "reports/")

    return VendorConfig(
        oauth_client_id=_env(env, "OAUTH_CLIENT_ID", DEFAULT_OAUTH_CLIENT_ID),
        oauth_client_secret=_env(env, "OAUTH_CLIENT_SECRET"),
        oauth_token_url=_env(env, "OAUTH_TOKEN_URL", DEFAULT_OAUTH_TOKEN_URL),
        oauth_user_url=_env(env, "OAUTH_USER_URL", DEFAULT_OAUTH_USER_URL),
        oauth_redirect_uri=_env(env, "OAUTH_REDIRECT_URI"),
        sts_access_key_id=_env(env, "STS_AWS_ACCESS_KEY_ID"),
        sts_secret_access_key=_env(env, "STS_AWS_SECRET_ACCESS_KEY"),
        upload_bucket=_env(env, "UPLOAD_BUCKET"),
        upload_prefix=prefix,
        channel_endpoint_url=_env(env, "CHANNEL_ENDPOINT_URL"),
        grant_ttl_seconds=ttl,
        http_timeout_seconds=timeout,
        user_agent=_env(env, "USER_AGENT", DEFAULT_USER_AGENT),
        schema_version=_env(env, "SCHEMA_VERSION", DEFAULT_SCHEMA_VERSION),
        aws_region=_env(env, "AWS_REGION") or _env(env, "AWS_DEFAULT_REGION") or None,
    )
