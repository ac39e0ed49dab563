import os

from aws_cdk import (
    CfnOutput,
    Duration,
    RemovalPolicy,
    Stack,
    aws_apigateway as apigw,
    aws_apigatewayv2 as apigwv2,
    aws_apigatewayv2_integrations as apigwv2_integrations,
    aws_cloudwatch as cloudwatch,
    aws_iam as iam,
    aws_lambda as _lambda,
    aws_logs as logs,
    aws_s3 as s3,
    aws_secretsmanager as secretsmanager,
)
from constructs import Construct


class TraceUploadStack(Stack):
    def __init__(self, scope: Construct, construct_id: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        stage_name = os.getenv("STAGE", "prod")
        data_retention_mode = os.getenv("DATA_RETENTION_MODE", "destroy").strip().lower()
        if data_retention_mode not in {"destroy", "retain"}:
            raise ValueError(
                "DATA_RETENTION_MODE must be 'destroy' or 'retain' (case-insensitive)"
            )
        stateful_removal_policy = (
            RemovalPolicy.DESTROY
            if data_retention_mode == "destroy"
            else RemovalPolicy.RETAIN
        )
        upload_prefix = (os.getenv("UPLOAD_PREFIX") or "reports/").strip().strip("/") + "/"
        oauth_client_id = (os.getenv("OAUTH_CLIENT_ID") or "").strip()
        grant_ttl_seconds = 3600
        schema_version = "2026-10-01"

        trace_bucket = s3.Bucket(
            self,
            "TraceBucket",
            removal_policy=stateful_removal_policy,
            auto_delete_objects=data_retention_mode == "destroy",
            enforce_ssl=True,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            lifecycle_rules=[
                s3.LifecycleRule(
                    enabled=True,
                    abort_incomplete_multipart_upload_after=Duration.days(1),
                )
            ],
        )

        # Ceiling for every vended token; each request narrows it to one object.
        upload_policy = iam.ManagedPolicy(
            self,
            "TraceUploadPolicy",
            description="Upper bound for federated trace upload tokens.",
            statements=[
                iam.PolicyStatement(
                    actions=["s3:PutObject"],
                    resources=[trace_bucket.arn_for_objects(f"{upload_prefix}*")],
                )
            ],
        )

        # GetFederationToken must be called with long-term IAM user keys.
        federation_user = iam.User(
            self,
            "FederationUser",
            managed_policies=[upload_policy],
        )
        federation_user.add_to_policy(
            iam.PolicyStatement(
                actions=["sts:GetFederationToken"],
                resources=[
                    self.format_arn(
                        service="sts",
                        region="",
                        resource="federated-user",
                        resource_name="*",
                    )
                ],
            )
        )
        federation_access_key = iam.AccessKey(
            self,
            "FederationUserAccessKey",
            user=federation_user,
        )

        # Operators overwrite the generated value with the GitHub app secret, then redeploy.
        oauth_client_secret = secretsmanager.Secret(
            self,
            "OAuthClientSecret",
            description="GitHub OAuth app client secret for the trace upload callback.",
            removal_policy=stateful_removal_policy,
        )

        connection_fn = _lambda.Function(
            self,
            "ConnectionHandler",
            runtime=_lambda.Runtime.PYTHON_3_12,
            handler="connection_handler.handler",
            code=_lambda.Code.from_asset("lambda"),
            timeout=Duration.seconds(10),
            environment={
                "SCHEMA_VERSION": schema_version,
            },
        )

        channel_api = apigwv2.WebSocketApi(
            self,
            "TraceChannelApi",
            api_name=f"{construct_id}-{stage_name}-channel",
            default_route_options=apigwv2.WebSocketRouteOptions(
                integration=apigwv2_integrations.WebSocketLambdaIntegration(
                    "ChannelDefaultIntegration", connection_fn
                ),
            ),
        )
        channel_stage = apigwv2.WebSocketStage(
            self,
            "TraceChannelStage",
            web_socket_api=channel_api,
            stage_name=stage_name,
            auto_deploy=True,
        )
        manage_connections = iam.PolicyStatement(
            actions=["execute-api:ManageConnections"],
            resources=[
                self.format_arn(
                    service="execute-api",
                    resource=channel_api.api_id,
                    resource_name=f"{stage_name}/POST/@connections/*",
                )
            ],
        )
        connection_fn.add_to_role_policy(manage_connections)

        vendor_env = {
            "OAUTH_CLIENT_SECRET": oauth_client_secret.secret_value.unsafe_unwrap(),
            "STS_AWS_ACCESS_KEY_ID": federation_access_key.access_key_id,
            "STS_AWS_SECRET_ACCESS_KEY": federation_access_key.secret_access_key.unsafe_unwrap(),
            "UPLOAD_BUCKET": trace_bucket.bucket_name,
            "UPLOAD_PREFIX": upload_prefix,
            "CHANNEL_ENDPOINT_URL": channel_stage.callback_url,
            "GRANT_TTL_SECONDS": str(grant_ttl_seconds),
            "HTTP_TIMEOUT_SECONDS": "10",
            "SCHEMA_VERSION": schema_version,
            **({"OAUTH_CLIENT_ID": oauth_client_id} if oauth_client_id else {}),
        }

        vendor_fn = _lambda.Function(
            self,
            "VendorHandler",
            runtime=_lambda.Runtime.PYTHON_3_12,
            handler="vendor_handler.handler",
            code=_lambda.Code.from_asset("lambda"),
            timeout=Duration.seconds(30),
            environment=vendor_env,
        )
        vendor_fn.add_to_role_policy(manage_connections)

        callback_api = apigw.RestApi(
            self,
            "TraceCallbackApi",
            rest_api_name=f"{construct_id}-{stage_name}-callback",
            deploy_options=apigw.StageOptions(stage_name=stage_name),
            cloud_watch_role=False,
        )
        callback = callback_api.root.add_resource("callback")
        callback.add_method("GET", apigw.LambdaIntegration(vendor_fn))

        # Reference by name so the metric filter does not own the log group.
        vendor_log_group = logs.LogGroup.from_log_group_name(
            self,
            "VendorLogGroup",
            f"/aws/lambda/{vendor_fn.function_name}",
        )

        logs.MetricFilter(
            self,
            "VendorErrorMetricFilter",
            log_group=vendor_log_group,
            metric_namespace="TraceUpload",
            metric_name="VendorErrors",
            filter_pattern=logs.FilterPattern.string_value("$.outcome", "=", "error"),
            metric_value="1",
        )

        cloudwatch.Alarm(
            self,
            "VendorErrorsAlarm",
            metric=cloudwatch.Metric(
                namespace="TraceUpload",
                metric_name="VendorErrors",
                statistic="Sum",
                period=Duration.minutes(5),
            ),
            threshold=1,
            evaluation_periods=1,
            datapoints_to_alarm=1,
        )

        CfnOutput(
            self,
            "CallbackUrl",
            value=f"{callback_api.url}callback",
            description="Authorization callback URL to register with the GitHub app.",
        )

        CfnOutput(
            self,
            "ChannelUrl",
            value=channel_stage.url,
            description="WebSocket URL the CLI connects to before authorizing.",
        )

        CfnOutput(
            self,
            "TraceBucketName",
            value=trace_bucket.bucket_name,
        )

        CfnOutput(
            self,
            "UploadPolicyArn",
            value=upload_policy.managed_policy_arn,
        )

        CfnOutput(
            self,
            "FederationUserName",
            value=federation_user.user_name,
        )

        CfnOutput(
            self,
            "OAuthClientSecretArn",
            value=oauth_client_secret.secret_arn,
        )

        CfnOutput(
            self,
            "SchemaVersion",
            value=schema_version,
        )
