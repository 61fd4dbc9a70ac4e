from typing import Optional

from aws_cdk import (
    ArnFormat,
    Duration,
    RemovalPolicy,
    Stack,
    aws_ec2 as ec2,
    aws_iam as iam,
    aws_kms as kms,
)
from constructs import Construct

from common import constants
from common.config import InfraConfig
from common.stack_context import StackContext


class SecurityConstruct(Construct):
    """Security layer: tiered security groups, instance role and KMS key."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        context: StackContext,
        config: InfraConfig,
        vpc: ec2.IVpc,
    ) -> None:
        super().__init__(scope, construct_id)
        self.context = context
        self.config = config

        self.web_security_group = self.create_web_sg(vpc)
        self.app_security_group = self.create_app_sg(vpc, self.web_security_group)
        self.data_security_group = self.create_data_sg(vpc, self.app_security_group)

        self.instance_role = self.create_instance_role()
        self.instance_profile = iam.InstanceProfile(
            self,
            "InstanceProfile",
            role=self.instance_role,
            instance_profile_name=self.context.build_resource_name("instance-profile"),
        )

        self.kms_key: Optional[kms.Key] = None
        if config.enable_kms:
            self.kms_key = self.create_kms_key()
            self.kms_key.grant_encrypt_decrypt(self.instance_role)

    def create_web_sg(self, vpc: ec2.IVpc) -> ec2.SecurityGroup:
        web_sg = ec2.SecurityGroup(
            self,
            "WebSG",
            vpc=vpc,
            security_group_name=self.context.build_resource_name("web-sg"),
            description="Web tier: HTTP/HTTPS from the internet",
            allow_all_outbound=True,
        )
        web_sg.add_ingress_rule(
            peer=ec2.Peer.any_ipv4(),
            connection=ec2.Port.tcp(constants.HTTP_PORT),
            description="Allow inbound HTTP (TCP/80) from anywhere",
        )
        web_sg.add_ingress_rule(
            peer=ec2.Peer.any_ipv4(),
            connection=ec2.Port.tcp(constants.HTTPS_PORT),
            description="Allow inbound HTTPS (TCP/443) from anywhere",
        )
        for cidr in self.config.allowed_ssh_cidrs:
            web_sg.add_ingress_rule(
                peer=ec2.Peer.ipv4(cidr),
                connection=ec2.Port.tcp(constants.SSH_PORT),
                description=f"Allow inbound SSH (TCP/22) from {cidr}",
            )
        return web_sg

    def create_app_sg(
        self, vpc: ec2.IVpc, web_sg: ec2.ISecurityGroup
    ) -> ec2.SecurityGroup:
        app_sg = ec2.SecurityGroup(
            self,
            "AppSG",
            vpc=vpc,
            security_group_name=self.context.build_resource_name("app-sg"),
            description="App tier: application traffic from the web tier",
            allow_all_outbound=True,
        )
        app_sg.add_ingress_rule(
            peer=web_sg,
            connection=ec2.Port.tcp(constants.APP_PORT),
            description="Allow application traffic (TCP/8080) from the web tier",
        )
        app_sg.add_ingress_rule(
            peer=web_sg,
            connection=ec2.Port.tcp(constants.SSH_PORT),
            description="Allow SSH (TCP/22) from the web tier",
        )
        return app_sg

    def create_data_sg(
        self, vpc: ec2.IVpc, app_sg: ec2.ISecurityGroup
    ) -> ec2.SecurityGroup:
        data_sg = ec2.SecurityGroup(
            self,
            "DataSG",
            vpc=vpc,
            security_group_name=self.context.build_resource_name("data-sg"),
            description="Data tier: database traffic from the app tier",
            allow_all_outbound=False,
        )
        data_sg.add_ingress_rule(
            peer=app_sg,
            connection=ec2.Port.tcp(constants.POSTGRES_PORT),
            description="Allow PostgreSQL (TCP/5432) from the app tier",
        )
        data_sg.add_ingress_rule(
            peer=app_sg,
            connection=ec2.Port.tcp(constants.MYSQL_PORT),
            description="Allow MySQL (TCP/3306) from the app tier",
        )
        return data_sg

    def create_instance_role(self) -> iam.Role:
        role = iam.Role(
            self,
            "InstanceRole",
            role_name=self.context.build_resource_name("instance-role"),
            assumed_by=iam.ServicePrincipal("ec2.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(name)
                for name in constants.INSTANCE_MANAGED_POLICIES
            ],
        )
        stack = Stack.of(self)
        role.add_to_policy(
            iam.PolicyStatement(
                sid="WriteApplicationLogs",
                actions=[
                    "logs:CreateLogStream",
                    "logs:DescribeLogStreams",
                    "logs:PutLogEvents",
                ],
                resources=[
                    stack.format_arn(
                        service="logs",
                        resource="log-group",
                        resource_name=f"{self.context.build_log_group_name('')}*",
                        arn_format=ArnFormat.COLON_RESOURCE_NAME,
                    )
                ],
            )
        )
        return role

    def create_kms_key(self) -> kms.Key:
        key = kms.Key(
            self,
            "KmsKey",
            alias=f"alias/{self.context.build_resource_name('key')}",
            description=f"Encryption key for {self.context.project} {self.context.env}",
            enable_key_rotation=True,
            rotation_period=Duration.days(365),
            pending_window=Duration.days(7),
            removal_policy=RemovalPolicy.DESTROY,
        )
        stack = Stack.of(self)
        key.add_to_resource_policy(
            iam.PolicyStatement(
                sid="AllowCloudWatchLogs",
                principals=[iam.ServicePrincipal(f"logs.{stack.region}.amazonaws.com")],
                actions=[
                    "kms:Encrypt*",
                    "kms:Decrypt*",
                    "kms:ReEncrypt*",
                    "kms:GenerateDataKey*",
                    "kms:Describe*",
                ],
                resources=["*"],
            )
        )
        return key
