import os
from typing import Any, Callable, Optional

from attrs import define, field
from aws_lambda_powertools import Logger
from botocore.exceptions import ClientError

from localstack_ops.settings import LocalStackSettings, build_client

logger = Logger(service="localstack-ops", level=os.getenv("LOG_LEVEL", "INFO").upper())

MIN_SECURITY_GROUPS = 3


@define(slots=True, frozen=True)
class CheckResult:
    name: str
    passed: bool
    detail: str = field(default="")


def _tag_filters(project_name: str, environment: str) -> list[dict[str, Any]]:
    return [
        {"Name": "tag:Project", "Values": [project_name]},
        {"Name": "tag:Environment", "Values": [environment]},
    ]


def check_state_bucket(s3: Any, bucket: str) -> CheckResult:
    try:
        s3.head_bucket(Bucket=bucket)
    except ClientError as e:
        return CheckResult("state-bucket", False, f"{bucket}: {e.response['Error'].get('Code')}")
    return CheckResult("state-bucket", True, bucket)


def check_lock_table(dynamodb: Any, table: str) -> CheckResult:
    try:
        status = dynamodb.describe_table(TableName=table)["Table"].get("TableStatus", "UNKNOWN")
    except ClientError as e:
        return CheckResult("lock-table", False, f"{table}: {e.response['Error'].get('Code')}")
    return CheckResult("lock-table", status == "ACTIVE", f"{table} is {status}")


def check_vpc(ec2: Any, filters: list[dict[str, Any]]) -> CheckResult:
    vpcs = ec2.describe_vpcs(Filters=filters)["Vpcs"]
    if not vpcs:
        return CheckResult("vpc", False, "no tagged VPC found")
    return CheckResult("vpc", True, ",".join(vpc["VpcId"] for vpc in vpcs))


def check_security_groups(ec2: Any, filters: list[dict[str, Any]]) -> CheckResult:
    groups = ec2.describe_security_groups(Filters=filters)["SecurityGroups"]
    return CheckResult(
        "security-groups",
        len(groups) >= MIN_SECURITY_GROUPS,
        f"{len(groups)} tagged security groups (expected at least {MIN_SECURITY_GROUPS})",
    )


def check_instances(ec2: Any, filters: list[dict[str, Any]]) -> CheckResult:
    response = ec2.describe_instances(
        Filters=[*filters, {"Name": "instance-state-name", "Values": ["pending", "running"]}]
    )
    instance_ids = [
        instance["InstanceId"]
        for reservation in response["Reservations"]
        for instance in reservation["Instances"]
    ]
    if not instance_ids:
        return CheckResult("instances", False, "no running tagged instances")
    return CheckResult("instances", True, ",".join(instance_ids))


def run_smoke_checks(
    settings: LocalStackSettings,
    project_name: str,
    environment: str,
    client_factory: Optional[Callable[[str, LocalStackSettings], Any]] = None,
) -> list[CheckResult]:
    """Verify the state backend and the deployed environment on LocalStack."""
    client_factory = client_factory or build_client
    s3 = client_factory("s3", settings)
    dynamodb = client_factory("dynamodb", settings)
    ec2 = client_factory("ec2", settings)
    filters = _tag_filters(project_name, environment)

    results = [
        check_state_bucket(s3, settings.state_bucket),
        check_lock_table(dynamodb, settings.lock_table),
        check_vpc(ec2, filters),
        check_security_groups(ec2, filters),
        check_instances(ec2, filters),
    ]
    for result in results:
        if result.passed:
            logger.info("Smoke check passed", check=result.name, detail=result.detail)
        else:
            logger.warning("Smoke check failed", check=result.name, detail=result.detail)
    return results
