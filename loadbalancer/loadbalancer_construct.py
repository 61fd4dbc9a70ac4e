from typing import Optional

from aws_cdk import (
    Duration,
    aws_ec2 as ec2,
    aws_elasticloadbalancingv2 as elbv2,
    aws_elasticloadbalancingv2_targets as elbv2_targets,
)
from constructs import Construct

from common import constants
from common.config import InfraConfig
from common.stack_context import StackContext
from compute.compute_construct import ComputeConstruct
from networking.vpc_construct import VpcConstruct
from security.security_construct import SecurityConstruct


class LoadBalancerConstruct(Construct):
    """Internet-facing ALB in front of the web tier."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        context: StackContext,
        config: InfraConfig,
        network: VpcConstruct,
        security: SecurityConstruct,
        compute: ComputeConstruct,
    ) -> None:
        super().__init__(scope, construct_id)
        self.context = context
        self.config = config

        self.alb = elbv2.ApplicationLoadBalancer(
            self,
            id="ApplicationLoadBalancer",
            vpc=network.vpc,
            internet_facing=True,
            security_group=security.web_security_group,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PUBLIC),
        )
        self.target_group = self.create_target_group(network.vpc, compute)

        self.https_listener: Optional[elbv2.ApplicationListener] = None
        if config.certificate_arn:
            self.https_listener = self.alb.add_listener(
                "HTTPSListener",
                port=constants.HTTPS_PORT,
                protocol=elbv2.ApplicationProtocol.HTTPS,
                certificates=[elbv2.ListenerCertificate.from_arn(config.certificate_arn)],
                ssl_policy=elbv2.SslPolicy.RECOMMENDED_TLS,
                default_target_groups=[self.target_group],
                open=False,
            )
            self.http_listener = self.alb.add_listener(
                "HTTPListener",
                port=constants.HTTP_PORT,
                default_action=elbv2.ListenerAction.redirect(
                    protocol="HTTPS", port=str(constants.HTTPS_PORT), permanent=True
                ),
                open=False,
            )
        else:
            self.http_listener = self.alb.add_listener(
                "HTTPListener",
                port=constants.HTTP_PORT,
                default_target_groups=[self.target_group],
                open=False,
            )

    @property
    def dns_name(self) -> str:
        return self.alb.load_balancer_dns_name

    @property
    def url(self) -> str:
        scheme = "https" if self.https_listener else "http"
        return f"{scheme}://{self.alb.load_balancer_dns_name}"

    def create_target_group(
        self, vpc: ec2.IVpc, compute: ComputeConstruct
    ) -> elbv2.ApplicationTargetGroup:
        if compute.web_asg is not None:
            targets = [compute.web_asg]
        else:
            targets = [
                elbv2_targets.InstanceIdTarget(instance_id, port=constants.HTTP_PORT)
                for instance_id in compute.web_instance_ids
            ]
        target_group = elbv2.ApplicationTargetGroup(
            self,
            "WebTargetGroup",
            vpc=vpc,
            port=constants.HTTP_PORT,
            protocol=elbv2.ApplicationProtocol.HTTP,
            target_type=elbv2.TargetType.INSTANCE,
            targets=targets,
            deregistration_delay=Duration.seconds(30),
        )
        target_group.configure_health_check(
            path=self.config.health_check_path,
            healthy_http_codes=constants.HEALTHY_HTTP_CODES,
            interval=Duration.seconds(30),
            healthy_threshold_count=2,
            unhealthy_threshold_count=3,
        )
        return target_group
