from pathlib import Path
from typing import Optional, Sequence

from aws_cdk import (
    CfnTag,
    Duration,
    aws_autoscaling as autoscaling,
    aws_ec2 as ec2,
)
from constructs import Construct

from common import constants
from common.config import InfraConfig
from common.stack_context import StackContext
from networking.vpc_construct import VpcConstruct
from security.security_construct import SecurityConstruct

USER_DATA_PATH = Path(__file__).resolve().parent.parent / constants.USER_DATA_DIR


class ComputeConstruct(Construct):
    """Compute layer: launch templates plus either ASGs or individual instances.

    The web tier runs in the public subnets and the app tier in the private
    subnets. Individual instances are built from the launch templates so both
    modes share one definition of AMI, user data, profile and disks.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        context: StackContext,
        config: InfraConfig,
        network: VpcConstruct,
        security: SecurityConstruct,
    ) -> None:
        super().__init__(scope, construct_id)
        self.context = context
        self.config = config
        self.network = network
        self.security = security

        self.machine_image = self.get_machine_image()
        self.web_launch_template = self.create_launch_template(
            constants.TIER_WEB, constants.WEB_USER_DATA, security.web_security_group
        )
        self.app_launch_template = self.create_launch_template(
            constants.TIER_APP, constants.APP_USER_DATA, security.app_security_group
        )

        self.web_asg: Optional[autoscaling.AutoScalingGroup] = None
        self.app_asg: Optional[autoscaling.AutoScalingGroup] = None
        self.web_instances: list[ec2.CfnInstance] = []
        self.app_instances: list[ec2.CfnInstance] = []

        if config.use_autoscaling:
            self.web_asg = self.create_auto_scaling_group(
                constants.TIER_WEB,
                self.web_launch_template,
                ec2.SubnetSelection(subnet_type=ec2.SubnetType.PUBLIC),
                elb_health_check=config.enable_load_balancer,
            )
            self.app_asg = self.create_auto_scaling_group(
                constants.TIER_APP,
                self.app_launch_template,
                ec2.SubnetSelection(subnet_type=network.private_subnet_type),
                elb_health_check=False,
            )
        else:
            self.web_instances = self.create_instances(
                constants.TIER_WEB,
                self.web_launch_template,
                network.public_subnets,
                config.web_instance_count,
            )
            self.app_instances = self.create_instances(
                constants.TIER_APP,
                self.app_launch_template,
                network.private_subnets,
                config.app_instance_count,
            )

    @property
    def web_instance_ids(self) -> list[str]:
        return [instance.ref for instance in self.web_instances]

    @property
    def app_instance_ids(self) -> list[str]:
        return [instance.ref for instance in self.app_instances]

    @staticmethod
    def get_user_data(filename: str) -> str:
        with open(USER_DATA_PATH / filename) as file:
            user_data = file.read()
        return user_data

    def get_machine_image(self) -> ec2.IMachineImage:
        if self.config.ami_id:
            return ec2.MachineImage.generic_linux({self.config.region: self.config.ami_id})
        return ec2.MachineImage.latest_amazon_linux2023()

    def create_launch_template(
        self, tier: str, user_data_file: str, security_group: ec2.ISecurityGroup
    ) -> ec2.LaunchTemplate:
        return ec2.LaunchTemplate(
            self,
            f"{tier.capitalize()}LaunchTemplate",
            launch_template_name=self.context.build_resource_name(f"{tier}-lt"),
            machine_image=self.machine_image,
            instance_type=ec2.InstanceType(self.config.instance_type),
            user_data=ec2.UserData.custom(self.get_user_data(user_data_file)),
            security_group=security_group,
            instance_profile=self.security.instance_profile,
            require_imdsv2=True,
            detailed_monitoring=self.config.enable_monitoring,
            block_devices=[
                ec2.BlockDevice(
                    device_name=constants.ROOT_DEVICE_NAME,
                    volume=ec2.BlockDeviceVolume.ebs(
                        self.config.root_volume_size,
                        encrypted=True,
                        volume_type=ec2.EbsDeviceVolumeType.GP3,
                        delete_on_termination=True,
                    ),
                )
            ],
        )

    def create_auto_scaling_group(
        self,
        tier: str,
        launch_template: ec2.ILaunchTemplate,
        vpc_subnets: ec2.SubnetSelection,
        elb_health_check: bool,
    ) -> autoscaling.AutoScalingGroup:
        grace = Duration.seconds(constants.ASG_HEALTH_CHECK_GRACE_SECONDS)
        asg = autoscaling.AutoScalingGroup(
            self,
            f"{tier.capitalize()}AutoScalingGroup",
            auto_scaling_group_name=self.context.build_resource_name(f"{tier}-asg"),
            vpc=self.network.vpc,
            launch_template=launch_template,
            vpc_subnets=vpc_subnets,
            min_capacity=self.config.asg_min_size,
            max_capacity=self.config.asg_max_size,
            desired_capacity=self.config.asg_desired_capacity,
            health_check=(
                autoscaling.HealthCheck.elb(grace=grace)
                if elb_health_check
                else autoscaling.HealthCheck.ec2(grace=grace)
            ),
        )
        asg.scale_on_cpu_utilization(
            "CpuScaling",
            target_utilization_percent=constants.CPU_TARGET_UTILIZATION,
        )
        return asg

    def create_instances(
        self,
        tier: str,
        launch_template: ec2.LaunchTemplate,
        subnets: Sequence[ec2.ISubnet],
        count: int,
    ) -> list[ec2.CfnInstance]:
        instances = []
        for index in range(count):
            # Round-robin across availability zones
            subnet = subnets[index % len(subnets)]
            instances.append(
                ec2.CfnInstance(
                    self,
                    f"{tier.capitalize()}Instance{index + 1}",
                    launch_template=ec2.CfnInstance.LaunchTemplateSpecificationProperty(
                        launch_template_id=launch_template.launch_template_id,
                        version=launch_template.latest_version_number,
                    ),
                    subnet_id=subnet.subnet_id,
                    tags=[
                        CfnTag(
                            key="Name",
                            value=self.context.build_resource_name(f"{tier}-{index + 1}"),
                        ),
                        CfnTag(key="Tier", value=tier),
                    ],
                )
            )
        return instances
