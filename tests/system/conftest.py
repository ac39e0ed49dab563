import os
from dataclasses import dataclass

import boto3
import pytest


def _require_env(name: str) -> str:
    val = os.environ.get(name)
    if not val:
        raise RuntimeError(f"missing required env var: {name}")
    return val


def pytest_collection_modifyitems(config, items):
    if os.environ.get("RUN_SYSTEM") == "1":
        return
    skip = pytest.mark.skip(reason="system tests require RUN_SYSTEM=1")
    for item in items:
        if item.nodeid.startswith("tests/system/"):
            item.add_marker(skip)


@dataclass(frozen=True)
class SystemStackOutputs:
    stack_name: str
    callback_url: str
    channel_url: str
    trace_bucket: str


@pytest.fixture(scope="session")
def stack_outputs() -> SystemStackOutputs:
    stack_name = os.environ.get("CDK_STACK_NAME", "TraceUploadStack")
    region = _require_env("AWS_REGION")
    cfn = boto3.client("cloudformation", region_name=region)
    stacks = cfn.describe_stacks(StackName=stack_name)["Stacks"]
    outputs = {o["OutputKey"]: o["OutputValue"] for o in stacks[0].get("Outputs", [])}
    return SystemStackOutputs(
        stack_name=stack_name,
        callback_url=outputs["CallbackUrl"],
        channel_url=outputs["ChannelUrl"],
        trace_bucket=outputs["TraceBucketName"],
    )
