from typing import Optional

from aws_cdk import Stack, Token, aws_ec2 as ec2, aws_logs as logs, aws_ssm as ssm
from constructs import Construct

from common import constants
from common.config import InfraConfig
from common.stack_context import StackContext

AZ_SUFFIXES = "abc"


class VpcConstruct(Construct):
    """Network layer: VPC, public and private subnets, NAT and flow logs."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        context: StackContext,
        config: InfraConfig,
    ) -> None:
        super().__init__(scope, construct_id)
        self.context = context
        self.config = config

        # Without a NAT gateway the private subnets have no default route
        self.private_subnet_type = (
            constants.PRIVATE_SUBNET_WITH_NAT
            if config.nat_gateway_count
            else constants.PRIVATE_SUBNET_WITHOUT_NAT
        )
        self.availability_zones = self.select_availability_zones()
        self.vpc = self.create_vpc()
        self.public_subnets = self.vpc.public_subnets
        self.private_subnets = self.vpc.select_subnets(
            subnet_type=self.private_subnet_type
        ).subnets

        self.flow_log_group: Optional[logs.LogGroup] = None
        self.flow_log: Optional[ec2.FlowLog] = None
        if config.enable_flow_logs:
            self.flow_log_group, self.flow_log = self.create_flow_log()

        self.vpc_id_parameter = self.create_vpc_id_ssm_parameter()

    def select_availability_zones(self) -> list[str]:
        """Pick ``az_count`` zones.

        An environment-agnostic stack reports two unresolved zones, so the
        zones are then named after the configured region. A resolved stack
        with fewer zones than requested is a configuration error.
        """
        az_count = self.config.az_count
        stack_azs = Stack.of(self).availability_zones
        if not any(Token.is_unresolved(az) for az in stack_azs):
            if len(stack_azs) < az_count:
                raise ValueError(
                    f"az_count: {az_count} zones requested but {self.config.region} "
                    f"only offers {len(stack_azs)}"
                )
            return list(stack_azs[:az_count])
        return [f"{self.config.region}{suffix}" for suffix in AZ_SUFFIXES[:az_count]]

    def create_vpc(self) -> ec2.Vpc:
        return ec2.Vpc(
            self,
            self.context.build_resource_id("vpc"),
            vpc_name=self.context.build_resource_name("vpc"),
            ip_addresses=ec2.IpAddresses.cidr(self.config.vpc_cidr),
            availability_zones=self.availability_zones,
            nat_gateways=self.config.nat_gateway_count,
            enable_dns_hostnames=True,
            enable_dns_support=True,
            subnet_configuration=[
                ec2.SubnetConfiguration(
                    name="Public-Subnet",
                    subnet_type=ec2.SubnetType.PUBLIC,
                    cidr_mask=self.config.subnet_cidr_mask,
                ),
                ec2.SubnetConfiguration(
                    name="Private-Subnet",
                    subnet_type=self.private_subnet_type,
                    cidr_mask=self.config.subnet_cidr_mask,
                ),
            ],
        )

    def create_flow_log(self) -> tuple[logs.LogGroup, ec2.FlowLog]:
        log_group = self.context.build_log_group(self, "vpc-flow-logs")
        flow_log = self.vpc.add_flow_log(
            "FlowLog",
            destination=ec2.FlowLogDestination.to_cloud_watch_logs(log_group),
            traffic_type=ec2.FlowLogTrafficType.ALL,
        )
        return log_group, flow_log

    def create_vpc_id_ssm_parameter(self) -> ssm.StringParameter:
        """Persist the vpc id in SSM for inventory tooling."""
        return ssm.StringParameter(
            self,
            "VpcIdParameter",
            description=f"VPC id of the {self.context.project} {self.context.env} environment",
            parameter_name=f"/{self.context.project}/{self.context.env}/vpc-id",
            string_value=self.vpc.vpc_id,
        )
