import pytest
from aws_cdk.assertions import Template, Match
from aws_cdk import App, Environment
from stack_test_helpers import (
    ResourceCountCase,
    build_stack,
    build_template,
    find_resources_by_type,
    dev_template,
    staging_template,
    prod_template,
)
from governance_checks import (
    assert_kms_compliance,
    assert_launch_templates_hardened,
    assert_listeners_secure,
    assert_log_groups_governed,
    assert_no_public_ssh,
)

from common import constants
from common.config import load_config
from environments.infra_stack import InfraStack, stack_environment

ACCOUNT = "123456789012"

# ----------------------------- Per environment counts ------------------------

RESOURCE_COUNT_CASES = (
    ResourceCountCase(id="dev-nat", environment="dev", resource_type="AWS::EC2::NatGateway", expected=1),
    ResourceCountCase(id="dev-kms", environment="dev", resource_type="AWS::KMS::Key", expected=1),
    ResourceCountCase(id="dev-alb", environment="dev", resource_type="AWS::ElasticLoadBalancingV2::LoadBalancer", expected=1),
    ResourceCountCase(id="dev-listener", environment="dev", resource_type="AWS::ElasticLoadBalancingV2::Listener", expected=1),
    ResourceCountCase(id="dev-instances", environment="dev", resource_type="AWS::EC2::Instance", expected=3),
    ResourceCountCase(id="dev-alarms", environment="dev", resource_type="AWS::CloudWatch::Alarm", expected=8),
    ResourceCountCase(id="dev-flow-logs", environment="dev", resource_type="AWS::EC2::FlowLog", expected=0),
    ResourceCountCase(id="staging-asg", environment="staging", resource_type="AWS::AutoScaling::AutoScalingGroup", expected=2),
    ResourceCountCase(id="staging-scaling", environment="staging", resource_type="AWS::AutoScaling::ScalingPolicy", expected=2),
    ResourceCountCase(id="staging-instances", environment="staging", resource_type="AWS::EC2::Instance", expected=0),
    ResourceCountCase(id="staging-flow-logs", environment="staging", resource_type="AWS::EC2::FlowLog", expected=1),
    ResourceCountCase(id="staging-alarms", environment="staging", resource_type="AWS::CloudWatch::Alarm", expected=4),
    ResourceCountCase(id="prod-nat", environment="prod", resource_type="AWS::EC2::NatGateway", expected=3),
    ResourceCountCase(id="prod-subnets", environment="prod", resource_type="AWS::EC2::Subnet", expected=6),
    ResourceCountCase(id="prod-eips", environment="prod", resource_type="AWS::EC2::EIP", expected=3),
    ResourceCountCase(id="prod-asg", environment="prod", resource_type="AWS::AutoScaling::AutoScalingGroup", expected=2),
    ResourceCountCase(id="prod-instances", environment="prod", resource_type="AWS::EC2::Instance", expected=0),
    ResourceCountCase(id="prod-flow-logs", environment="prod", resource_type="AWS::EC2::FlowLog", expected=1),
    ResourceCountCase(id="prod-kms", environment="prod", resource_type="AWS::KMS::Key", expected=1),
)


@pytest.mark.parametrize("case", RESOURCE_COUNT_CASES, ids=lambda test: test.id)
def test_environment_resource_count(
    dev_template: Template,
    staging_template: Template,
    prod_template: Template,
    case: ResourceCountCase,
):
    template = {"dev": dev_template, "staging": staging_template, "prod": prod_template}[
        case.environment
    ]
    template.resource_count_is(case.resource_type, case.expected)


# ------------------- Governance -------------------
@pytest.mark.parametrize("environment", ["dev", "staging", "prod"])
def test_environment_governance(
    dev_template: Template,
    staging_template: Template,
    prod_template: Template,
    environment: str,
):
    template = {"dev": dev_template, "staging": staging_template, "prod": prod_template}[
        environment
    ]
    assert_no_public_ssh(template)
    assert_launch_templates_hardened(template)
    assert_kms_compliance(template)
    assert_log_groups_governed(template)
    assert_listeners_secure(template)


# ------------------- Network -------------------
def test_private_subnets_route_through_nat(dev_template: Template):
    dev_template.has_resource_properties(
        "AWS::EC2::Route",
        {
            "DestinationCidrBlock": "0.0.0.0/0",
            "NatGatewayId": {"Ref": Match.string_like_regexp(r".*NATGateway.*")},
        },
    )


def test_flow_logs_capture_all_traffic(staging_template: Template):
    staging_template.has_resource_properties(
        "AWS::EC2::FlowLog",
        {"ResourceType": "VPC", "TrafficType": "ALL", "LogDestinationType": "cloud-watch-logs"},
    )
    staging_template.has_resource_properties(
        "AWS::Logs::LogGroup",
        {"LogGroupName": "/infra-demo/staging/vpc-flow-logs", "RetentionInDays": 14},
    )


def test_prod_spreads_subnets_and_nat_across_three_zones(prod_template: Template):
    for zone in ("us-east-1a", "us-east-1b", "us-east-1c"):
        subnets = find_resources_by_type(
            prod_template, "AWS::EC2::Subnet", {"Properties": {"AvailabilityZone": zone}}
        )
        assert len(subnets) == 2
    prod_template.has_resource_properties(
        "AWS::AutoScaling::AutoScalingGroup",
        {
            "AutoScalingGroupName": "infra-demo-prod-web-asg",
            "MinSize": "2",
            "MaxSize": "6",
            "DesiredCapacity": "2",
        },
    )
    prod_template.has_resource_properties(
        "AWS::Logs::LogGroup",
        {"LogGroupName": "/infra-demo/prod/vpc-flow-logs", "RetentionInDays": 30},
    )


def test_zones_come_from_account_lookup():
    stack = build_stack(
        "prod",
        env=Environment(account=ACCOUNT, region="us-east-1"),
        app_context={
            f"availability-zones:account={ACCOUNT}:region=us-east-1": [
                "us-east-1b",
                "us-east-1d",
                "us-east-1f",
            ]
        },
    )
    assert stack.network.availability_zones == ["us-east-1b", "us-east-1d", "us-east-1f"]
    Template.from_stack(stack).resource_count_is("AWS::EC2::NatGateway", 3)


def test_az_count_beyond_region_zones_fails():
    with pytest.raises(ValueError, match="az_count"):
        build_stack(
            "prod",
            env=Environment(account=ACCOUNT, region="us-east-1"),
            app_context={
                f"availability-zones:account={ACCOUNT}:region=us-east-1": [
                    "us-east-1a",
                    "us-east-1b",
                ]
            },
        )


# ------------------- Region -------------------
def test_stack_environment_uses_configured_region():
    config = load_config("dev", context={"region": "eu-west-1"}, environ={})
    env = stack_environment(
        config, environ={"CDK_DEFAULT_ACCOUNT": ACCOUNT, "CDK_DEFAULT_REGION": "us-east-1"}
    )
    assert env.region == "eu-west-1"
    assert env.account == ACCOUNT


def test_localstack_synthesizes_outside_default_region():
    config = load_config("localstack", context={"region": "eu-west-1"}, environ={})
    stack = InfraStack(
        App(),
        "TestEuWestInfraStack",
        config=config,
        env=stack_environment(config, environ={"CDK_DEFAULT_ACCOUNT": ACCOUNT}),
    )
    template = Template.from_stack(stack)
    template.has_resource_properties(
        "AWS::EC2::LaunchTemplate",
        {"LaunchTemplateData": Match.object_like({"ImageId": constants.LOCALSTACK_AMI_ID})},
    )


# ------------------- KMS -------------------
def test_kms_key_rotates(dev_template: Template):
    dev_template.has_resource_properties("AWS::KMS::Key", {"EnableKeyRotation": True})
    dev_template.has_resource_properties("AWS::KMS::Alias", {"AliasName": "alias/infra-demo-dev-key"})


def test_kms_key_allows_cloudwatch_logs(dev_template: Template):
    dev_template.has_resource_properties(
        "AWS::KMS::Key",
        {
            "KeyPolicy": {
                "Statement": Match.array_with(
                    [Match.object_like({"Sid": "AllowCloudWatchLogs"})]
                )
            }
        },
    )


def test_log_groups_encrypted_with_kms(dev_template: Template):
    dev_template.has_resource_properties(
        "AWS::Logs::LogGroup",
        {
            "LogGroupName": "/infra-demo/dev/web",
            "KmsKeyId": {"Fn::GetAtt": [Match.string_like_regexp(r".*KmsKey.*"), "Arn"]},
        },
    )


def test_alarm_topic_encrypted_with_kms(dev_template: Template):
    dev_template.has_resource_properties(
        "AWS::SNS::Topic",
        {"KmsMasterKeyId": {"Fn::GetAtt": [Match.string_like_regexp(r".*KmsKey.*"), "Arn"]}},
    )


# ------------------- Load balancer -------------------
def test_alb_is_internet_facing(dev_template: Template):
    dev_template.has_resource_properties(
        "AWS::ElasticLoadBalancingV2::LoadBalancer",
        {
            "Scheme": "internet-facing",
            "Type": "application",
            "SecurityGroups": [
                {"Fn::GetAtt": [Match.string_like_regexp(r".*WebSG.*"), "GroupId"]}
            ],
        },
    )


def test_target_group_health_check(dev_template: Template):
    dev_template.has_resource_properties(
        "AWS::ElasticLoadBalancingV2::TargetGroup",
        {
            "Port": 80,
            "Protocol": "HTTP",
            "TargetType": "instance",
            "HealthCheckPath": "/health",
            "Matcher": {"HttpCode": "200,301"},
            "Targets": Match.array_with(
                [Match.object_like({"Id": {"Ref": Match.string_like_regexp(r".*WebInstance1.*")}, "Port": 80})]
            ),
        },
    )


def test_http_listener_forwards(dev_template: Template):
    dev_template.has_resource_properties(
        "AWS::ElasticLoadBalancingV2::Listener",
        {
            "Port": 80,
            "Protocol": "HTTP",
            "DefaultActions": [Match.object_like({"Type": "forward"})],
        },
    )


def test_https_listener_with_certificate():
    certificate_arn = "arn:aws:acm:us-east-1:123456789012:certificate/abc"
    template = build_template("dev", certificate_arn=certificate_arn)
    template.resource_count_is("AWS::ElasticLoadBalancingV2::Listener", 2)
    template.has_resource_properties(
        "AWS::ElasticLoadBalancingV2::Listener",
        {
            "Port": 443,
            "Protocol": "HTTPS",
            "Certificates": [{"CertificateArn": certificate_arn}],
        },
    )
    template.has_resource_properties(
        "AWS::ElasticLoadBalancingV2::Listener",
        {
            "Port": 80,
            "DefaultActions": [
                Match.object_like(
                    {
                        "Type": "redirect",
                        "RedirectConfig": Match.object_like(
                            {"Protocol": "HTTPS", "Port": "443", "StatusCode": "HTTP_301"}
                        ),
                    }
                )
            ],
        },
    )
    assert template.find_outputs("WebUrl")
    assert_listeners_secure(template)


@pytest.mark.parametrize(
    "alarm_name",
    ["infra-demo-dev-alb-5xx", "infra-demo-dev-alb-unhealthy-hosts"],
)
def test_load_balancer_alarms(dev_template: Template, alarm_name: str):
    dev_template.has_resource_properties(
        "AWS::CloudWatch::Alarm",
        {
            "AlarmName": alarm_name,
            "Namespace": "AWS/ApplicationELB",
            "AlarmActions": [{"Ref": Match.string_like_regexp(r".*AlarmTopic.*")}],
        },
    )


@pytest.mark.parametrize("output", ["LoadBalancerDnsName", "WebUrl", "KmsKeyArn"])
def test_enabled_layer_outputs_present(dev_template: Template, output: str):
    assert dev_template.find_outputs(output)


# ------------------- Autoscaling -------------------
def test_web_asg_uses_elb_health_check(staging_template: Template):
    staging_template.has_resource_properties(
        "AWS::AutoScaling::AutoScalingGroup",
        {
            "AutoScalingGroupName": "infra-demo-staging-web-asg",
            "MinSize": "1",
            "MaxSize": "3",
            "DesiredCapacity": "2",
            "HealthCheckType": "ELB",
            "HealthCheckGracePeriod": 300,
            "LaunchTemplate": Match.object_like(
                {"LaunchTemplateId": {"Ref": Match.string_like_regexp(r".*WebLaunchTemplate.*")}}
            ),
        },
    )


def test_app_asg_uses_ec2_health_check(staging_template: Template):
    staging_template.has_resource_properties(
        "AWS::AutoScaling::AutoScalingGroup",
        {"AutoScalingGroupName": "infra-demo-staging-app-asg", "HealthCheckType": "EC2"},
    )


def test_asg_scales_on_cpu(staging_template: Template):
    staging_template.has_resource_properties(
        "AWS::AutoScaling::ScalingPolicy",
        {
            "PolicyType": "TargetTrackingScaling",
            "TargetTrackingConfiguration": {
                "PredefinedMetricSpecification": {
                    "PredefinedMetricType": "ASGAverageCPUUtilization"
                },
                "TargetValue": 70,
            },
        },
    )


def test_asg_cpu_alarm_dimension(staging_template: Template):
    staging_template.has_resource_properties(
        "AWS::CloudWatch::Alarm",
        {
            "AlarmName": "infra-demo-staging-web-asg-high-cpu",
            "Dimensions": [
                {"Name": "AutoScalingGroupName", "Value": {"Ref": Match.string_like_regexp(r".*WebAutoScalingGroup.*")}}
            ],
        },
    )


# ------------------- Overrides -------------------
def test_ssh_cidr_override_opens_ssh_for_that_block_only():
    template = build_template("localstack", allowed_ssh_cidrs="203.0.113.0/24")
    template.has_resource_properties(
        "AWS::EC2::SecurityGroup",
        {
            "GroupName": "infra-demo-localstack-web-sg",
            "SecurityGroupIngress": Match.array_with(
                [Match.object_like({"CidrIp": "203.0.113.0/24", "FromPort": 22, "ToPort": 22})]
            ),
        },
    )
    assert_no_public_ssh(template)


def test_alarm_email_subscribes_to_topic():
    template = build_template("localstack", alarm_email="ops@example.com")
    template.has_resource_properties(
        "AWS::SNS::Subscription",
        {"Protocol": "email", "Endpoint": "ops@example.com"},
    )


def test_monitoring_can_be_disabled():
    template = build_template("localstack", enable_monitoring="false")
    template.resource_count_is("AWS::SNS::Topic", 0)
    template.resource_count_is("AWS::CloudWatch::Alarm", 0)
    template.resource_count_is("AWS::CloudWatch::Dashboard", 0)
    assert template.find_outputs("AlarmTopicArn") == {}


def test_instance_counts_follow_config():
    template = build_template("localstack", web_instance_count=3, app_instance_count=0)
    web = find_resources_by_type(
        template,
        "AWS::EC2::Instance",
        {"Properties": {"Tags": Match.array_with([{"Key": "Tier", "Value": "web"}])}},
    )
    assert len(web) == 3
    template.resource_count_is("AWS::EC2::Instance", 3)
    assert template.find_outputs("AppInstanceIds") == {}


def test_extra_tags_are_applied():
    template = build_template("localstack", tags="CostCenter=platform")
    template.all_resources_properties(
        "AWS::EC2::VPC",
        {"Tags": Match.array_with([{"Key": "CostCenter", "Value": "platform"}])},
    )
