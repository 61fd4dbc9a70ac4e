import os
from typing import Mapping, Optional

from aws_cdk import CfnOutput, Environment, Fn, Stack
from constructs import Construct

from common.config import InfraConfig
from common.stack_context import StackContext
from compute.compute_construct import ComputeConstruct
from loadbalancer.loadbalancer_construct import LoadBalancerConstruct
from monitoring.monitoring_construct import MonitoringConstruct
from networking.vpc_construct import VpcConstruct
from security.security_construct import SecurityConstruct


def stack_environment(
    config: InfraConfig, environ: Optional[Mapping[str, str]] = None
) -> Environment:
    """Deployment target: the CLI account and the configured region.

    The region always comes from ``config`` because AMI mappings and zone
    names are keyed on it.
    """
    environ = os.environ if environ is None else environ
    return Environment(account=environ.get("CDK_DEFAULT_ACCOUNT"), region=config.region)


class InfraStack(Stack):
    """Root configuration of one environment.

    Layers are composed in dependency order: network, security, compute,
    load balancer and monitoring. The load balancer and monitoring layers
    are optional and stay ``None`` when disabled in the configuration.
    """

    def __init__(
        self, scope: Construct, construct_id: str, config: InfraConfig, **kwargs
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)
        self.config = config
        self.context = StackContext(scope=self, config=config)
        self.context.apply_tags()

        self.network = VpcConstruct(self, "Network", context=self.context, config=config)
        self.security = SecurityConstruct(
            self, "Security", context=self.context, config=config, vpc=self.network.vpc
        )
        self.compute = ComputeConstruct(
            self,
            "Compute",
            context=self.context,
            config=config,
            network=self.network,
            security=self.security,
        )

        self.load_balancer: Optional[LoadBalancerConstruct] = None
        if config.enable_load_balancer:
            self.load_balancer = LoadBalancerConstruct(
                self,
                "LoadBalancer",
                context=self.context,
                config=config,
                network=self.network,
                security=self.security,
                compute=self.compute,
            )

        self.monitoring: Optional[MonitoringConstruct] = None
        if config.enable_monitoring:
            self.monitoring = MonitoringConstruct(
                self,
                "Monitoring",
                context=self.context,
                config=config,
                compute=self.compute,
                load_balancer=self.load_balancer,
                encryption_key=self.security.kms_key,
            )

        self.create_outputs()

    def create_outputs(self) -> None:
        vpc = self.network.vpc
        CfnOutput(self, "VpcId", value=vpc.vpc_id)
        CfnOutput(
            self,
            "PublicSubnetIds",
            value=Fn.join(",", [subnet.subnet_id for subnet in self.network.public_subnets]),
        )
        CfnOutput(
            self,
            "PrivateSubnetIds",
            value=Fn.join(",", [subnet.subnet_id for subnet in self.network.private_subnets]),
        )
        CfnOutput(self, "WebSecurityGroupId", value=self.security.web_security_group.security_group_id)
        CfnOutput(self, "AppSecurityGroupId", value=self.security.app_security_group.security_group_id)
        CfnOutput(self, "DataSecurityGroupId", value=self.security.data_security_group.security_group_id)
        CfnOutput(
            self,
            "InstanceProfileName",
            value=self.security.instance_profile.instance_profile_name,
        )
        if self.compute.web_instances:
            CfnOutput(self, "WebInstanceIds", value=Fn.join(",", self.compute.web_instance_ids))
        if self.compute.app_instances:
            CfnOutput(self, "AppInstanceIds", value=Fn.join(",", self.compute.app_instance_ids))
        if self.security.kms_key is not None:
            CfnOutput(self, "KmsKeyArn", value=self.security.kms_key.key_arn)
        if self.load_balancer is not None:
            CfnOutput(self, "LoadBalancerDnsName", value=self.load_balancer.dns_name)
            CfnOutput(self, "WebUrl", value=self.load_balancer.url)
        if self.monitoring is not None:
            CfnOutput(self, "AlarmTopicArn", value=self.monitoring.alarm_topic.topic_arn)
            CfnOutput(
                self,
                "DashboardName",
                value=self.monitoring.dashboard.dashboard_name,
            )
