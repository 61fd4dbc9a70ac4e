"""Tear down a deployed environment on LocalStack.

Resources are found through the ``Project`` and ``Environment`` tags that
every stack applies. Instances go first because they pin the security
groups and subnets of their VPC. Buckets carry no environment tag, so every
bucket whose name contains the project name is removed, except the state
bucket.
"""
import os
from typing import Any, Callable, Optional

from attrs import define, field
from aws_lambda_powertools import Logger

from localstack_ops.settings import LocalStackSettings, build_client
from localstack_ops.smoke import _tag_filters

logger = Logger(service="localstack-ops", level=os.getenv("LOG_LEVEL", "INFO").upper())

LIVE_INSTANCE_STATES = ["pending", "running", "stopping", "stopped"]
WAITER_CONFIG = {"Delay": 5, "MaxAttempts": 60}


@define(slots=True, frozen=True)
class CleanupReport:
    instances: list[str] = field(factory=list)
    vpcs: list[str] = field(factory=list)
    buckets: list[str] = field(factory=list)


def terminate_instances(ec2: Any, filters: list[dict[str, Any]]) -> list[str]:
    """Terminate the tagged instances and wait until they are gone."""
    response = ec2.describe_instances(
        Filters=[*filters, {"Name": "instance-state-name", "Values": LIVE_INSTANCE_STATES}]
    )
    instance_ids = [
        instance["InstanceId"]
        for reservation in response["Reservations"]
        for instance in reservation["Instances"]
    ]
    if not instance_ids:
        logger.info("No tagged instances to terminate")
        return []
    ec2.terminate_instances(InstanceIds=instance_ids)
    logger.info("Terminating instances", instance_ids=instance_ids)
    ec2.get_waiter("instance_terminated").wait(
        InstanceIds=instance_ids, WaiterConfig=WAITER_CONFIG
    )
    return instance_ids


def delete_vpc(ec2: Any, vpc_id: str) -> None:
    """Delete ``vpc_id`` after its security groups, subnets, route tables and gateways."""
    vpc_filter = [{"Name": "vpc-id", "Values": [vpc_id]}]

    groups = [
        group
        for group in ec2.describe_security_groups(Filters=vpc_filter)["SecurityGroups"]
        if group["GroupName"] != "default"
    ]
    # Groups reference each other, so every rule goes before any group
    for group in groups:
        if group.get("IpPermissions"):
            ec2.revoke_security_group_ingress(
                GroupId=group["GroupId"], IpPermissions=group["IpPermissions"]
            )
    for group in groups:
        ec2.delete_security_group(GroupId=group["GroupId"])

    for subnet in ec2.describe_subnets(Filters=vpc_filter)["Subnets"]:
        ec2.delete_subnet(SubnetId=subnet["SubnetId"])

    for table in ec2.describe_route_tables(Filters=vpc_filter)["RouteTables"]:
        if any(association.get("Main") for association in table.get("Associations", [])):
            continue
        ec2.delete_route_table(RouteTableId=table["RouteTableId"])

    gateways = ec2.describe_internet_gateways(
        Filters=[{"Name": "attachment.vpc-id", "Values": [vpc_id]}]
    )["InternetGateways"]
    for gateway in gateways:
        ec2.detach_internet_gateway(InternetGatewayId=gateway["InternetGatewayId"], VpcId=vpc_id)
        ec2.delete_internet_gateway(InternetGatewayId=gateway["InternetGatewayId"])

    ec2.delete_vpc(VpcId=vpc_id)
    logger.info("Deleted VPC", vpc_id=vpc_id)


def delete_vpcs(ec2: Any, filters: list[dict[str, Any]]) -> list[str]:
    vpc_ids = [vpc["VpcId"] for vpc in ec2.describe_vpcs(Filters=filters)["Vpcs"]]
    if not vpc_ids:
        logger.info("No tagged VPC to delete")
    for vpc_id in vpc_ids:
        delete_vpc(ec2, vpc_id)
    return vpc_ids


def empty_bucket(s3: Any, bucket: str) -> None:
    """Delete every object version and delete marker in ``bucket``."""
    paginator = s3.get_paginator("list_object_versions")
    for page in paginator.paginate(Bucket=bucket):
        objects = [
            {"Key": item["Key"], "VersionId": item["VersionId"]}
            for item in [*page.get("Versions", []), *page.get("DeleteMarkers", [])]
        ]
        if objects:
            s3.delete_objects(Bucket=bucket, Delete={"Objects": objects, "Quiet": True})


def delete_buckets(s3: Any, project_name: str, keep: tuple[str, ...] = ()) -> list[str]:
    buckets = [
        bucket["Name"]
        for bucket in s3.list_buckets()["Buckets"]
        if project_name in bucket["Name"] and bucket["Name"] not in keep
    ]
    for bucket in buckets:
        empty_bucket(s3, bucket)
        s3.delete_bucket(Bucket=bucket)
        logger.info("Deleted bucket", bucket=bucket)
    return buckets


def run_cleanup(
    settings: LocalStackSettings,
    project_name: str,
    environment: str,
    client_factory: Optional[Callable[[str, LocalStackSettings], Any]] = None,
) -> CleanupReport:
    client_factory = client_factory or build_client
    ec2 = client_factory("ec2", settings)
    s3 = client_factory("s3", settings)
    filters = _tag_filters(project_name, environment)

    logger.info("Cleaning up environment", project=project_name, environment=environment)
    instances = terminate_instances(ec2, filters)
    vpcs = delete_vpcs(ec2, filters)
    buckets = delete_buckets(s3, project_name, keep=(settings.state_bucket,))
    return CleanupReport(instances=instances, vpcs=vpcs, buckets=buckets)
