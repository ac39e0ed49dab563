import sys

import pytest

if "lambda" not in sys.path:
    sys.path.insert(0, "lambda")

import vendor_config
from vendor_errors import ConfigError


def _env(**overrides):
    env = {
        "OAUTH_CLIENT_SECRET": "shh",
        "STS_AWS_ACCESS_KEY_ID": "AKIABASE",
        "STS_AWS_SECRET_ACCESS_KEY": "base-secret",
        "UPLOAD_BUCKET": "trace-bucket",
        "CHANNEL_ENDPOINT_URL": "https://abc.execute-api.us-east-1.amazonaws.com/prod",
    }
    env.update(overrides)
    return env


def test_defaults_applied_when_optional_values_absent():
    cfg = vendor_config.load_config(_env())
    assert cfg.oauth_client_id == vendor_config.DEFAULT_OAUTH_CLIENT_ID
    assert cfg.oauth_token_url == "https://github.com/login/oauth/access_token"
    assert cfg.oauth_user_url == "https://api.github.com/user"
    assert cfg.upload_prefix == "reports/"
    assert cfg.grant_ttl_seconds == 3600
    assert cfg.http_timeout_seconds == 10
    assert cfg.aws_region is None


def test_missing_required_values_are_all_named():
    env = _env(OAUTH_CLIENT_SECRET="", UPLOAD_BUCKET="  ")
    with pytest.raises(ConfigError) as exc:
        vendor_config.load_config(env)
    msg = str(exc.value)
    assert "OAUTH_CLIENT_SECRET" in msg
    assert "UPLOAD_BUCKET" in msg
    assert "STS_AWS_ACCESS_KEY_ID" not in msg


@pytest.mark.parametrize("ttl", ["60", "43201", "abc"])
def test_grant_ttl_outside_federation_bounds_is_rejected(ttl):
    with pytest.raises(ConfigError):
        vendor_config.load_config(_env(GRANT_TTL_SECONDS=ttl))


def test_region_falls_back_to_default_region():
    cfg = vendor_config.load_config(_env(AWS_DEFAULT_REGION="eu-west-1"))
    assert cfg.aws_region == "eu-west-1"


def test_repr_does_not_expose_secrets():
    cfg = vendor_config.load_config(_env())
    text = repr(cfg)
    assert "shh" not in text
    assert "base-secret" not in text
    assert "trace-bucket" in text
