import json
import sys
from pathlib import Path

from aws_cdk import App
from aws_cdk import assertions

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from stacks.trace_upload_stack import TraceUploadStack


def _synth_template(monkeypatch) -> dict:
    monkeypatch.setenv("STAGE", "test")
    monkeypatch.delenv("DATA_RETENTION_MODE", raising=False)
    monkeypatch.delenv("UPLOAD_PREFIX", raising=False)
    monkeypatch.delenv("OAUTH_CLIENT_ID", raising=False)
    app = App()
    stack = TraceUploadStack(app, "IamGuardrailsTestStack")
    return assertions.Template.from_stack(
        stack, skip_cyclical_dependencies_check=True
    ).to_json()


def _find_resource(template: dict, resource_type: str, logical_id_contains: str) -> dict:
    for logical_id, resource in template["Resources"].items():
        if (
            resource.get("Type") == resource_type
            and logical_id_contains in logical_id
        ):
            return resource
    raise AssertionError(f"{resource_type} containing {logical_id_contains} not found")


def _statement_actions(stmt: dict) -> list[str]:
    actions = stmt.get("Action", [])
    if isinstance(actions, str):
        return [actions]
    return actions


def _policy_statements(template: dict, logical_id_contains: str) -> list[dict]:
    policy = _find_resource(template, "AWS::IAM::Policy", logical_id_contains)
    doc = (policy.get("Properties") or {}).get("PolicyDocument") or {}
    return doc.get("Statement") or []


def test_outputs_include_callback_and_channel_urls(monkeypatch):
    template = _synth_template(monkeypatch)
    outputs = template["Outputs"]

    assert "CallbackUrl" in outputs
    assert "ChannelUrl" in outputs
    assert "TraceBucketName" in outputs
    assert "UploadPolicyArn" in outputs
    assert "FederationUserName" in outputs
    assert "OAuthClientSecretArn" in outputs


def test_vendor_handler_receives_required_configuration(monkeypatch):
    template = _synth_template(monkeypatch)
    fn = _find_resource(template, "AWS::Lambda::Function", "VendorHandler")
    env_vars = fn["Properties"]["Environment"]["Variables"]

    for name in (
        "OAUTH_CLIENT_SECRET",
        "STS_AWS_ACCESS_KEY_ID",
        "STS_AWS_SECRET_ACCESS_KEY",
        "UPLOAD_BUCKET",
        "CHANNEL_ENDPOINT_URL",
    ):
        assert name in env_vars
    assert env_vars["UPLOAD_PREFIX"] == "reports/"
    assert env_vars["GRANT_TTL_SECONDS"] == "3600"
    assert "OAUTH_CLIENT_ID" not in env_vars
    assert "UPLOAD_POLICY_ARN" not in env_vars


def test_upload_policy_ceiling_is_put_object_under_prefix_only(monkeypatch):
    template = _synth_template(monkeypatch)
    policy = _find_resource(template, "AWS::IAM::ManagedPolicy", "TraceUploadPolicy")
    statements = policy["Properties"]["PolicyDocument"]["Statement"]

    assert len(statements) == 1
    assert _statement_actions(statements[0]) == ["s3:PutObject"]
    assert "/reports/*" in json.dumps(statements[0]["Resource"])


def test_federation_user_can_only_get_federation_tokens(monkeypatch):
    template = _synth_template(monkeypatch)
    statements = _policy_statements(template, "FederationUserDefaultPolicy")

    actions = sorted(a for stmt in statements for a in _statement_actions(stmt))
    assert actions == ["sts:GetFederationToken"]
    assert "federated-user/*" in json.dumps(statements[0]["Resource"])


def test_channel_management_is_scoped_to_stage_connections(monkeypatch):
    template = _synth_template(monkeypatch)
    for fn_id in ("VendorHandlerServiceRoleDefaultPolicy", "ConnectionHandlerServiceRoleDefaultPolicy"):
        statements = _policy_statements(template, fn_id)
        manage = [s for s in statements if "execute-api:ManageConnections" in _statement_actions(s)]
        assert len(manage) == 1
        assert "test/POST/@connections/*" in json.dumps(manage[0]["Resource"])


def test_callback_route_is_a_get_and_channel_has_default_route(monkeypatch):
    template = _synth_template(monkeypatch)
    resources = template["Resources"].values()

    methods = [
        r["Properties"]["HttpMethod"]
        for r in resources
        if r.get("Type") == "AWS::ApiGateway::Method"
    ]
    assert methods == ["GET"]
    route_keys = [
        r["Properties"]["RouteKey"]
        for r in resources
        if r.get("Type") == "AWS::ApiGatewayV2::Route"
    ]
    assert route_keys == ["$default"]


def test_error_alarm_watches_wide_event_outcome(monkeypatch):
    template = _synth_template(monkeypatch)
    metric_filter = _find_resource(template, "AWS::Logs::MetricFilter", "VendorErrorMetricFilter")
    assert "$.outcome" in metric_filter["Properties"]["FilterPattern"]
    _find_resource(template, "AWS::CloudWatch::Alarm", "VendorErrorsAlarm")
