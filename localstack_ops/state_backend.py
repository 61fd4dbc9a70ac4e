"""Idempotent bootstrap of the remote state backend on LocalStack.

Creates the versioned S3 bucket that holds state files and the DynamoDB
table used for state locking. Running it twice is harmless: "already exists"
errors for resources this account already owns are logged and skipped,
anything else is re-raised.
"""
import os
from typing import Any

from aws_lambda_powertools import Logger
from botocore.exceptions import ClientError

from localstack_ops.settings import LocalStackSettings, build_client

logger = Logger(service="localstack-ops", level=os.getenv("LOG_LEVEL", "INFO").upper())

BUCKET_OWNED_CODE = "BucketAlreadyOwnedByYou"
TABLE_EXISTS_CODE = "ResourceInUseException"
LOCK_KEY = "LockID"


def _error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "Unknown")


def ensure_state_bucket(s3: Any, bucket: str) -> bool:
    """Create ``bucket`` with versioning and public access blocked.

    Returns True when the bucket was created, False when it already existed.
    """
    created = True
    region = s3.meta.region_name
    params: dict[str, Any] = {"Bucket": bucket}
    if region and region != "us-east-1":
        params["CreateBucketConfiguration"] = {"LocationConstraint": region}
    try:
        s3.create_bucket(**params)
        logger.info("Created state bucket", bucket=bucket)
    except ClientError as e:
        if _error_code(e) != BUCKET_OWNED_CODE:
            logger.exception("Creating state bucket failed", bucket=bucket)
            raise
        created = False
        logger.info("State bucket already exists", bucket=bucket)

    s3.put_bucket_versioning(
        Bucket=bucket, VersioningConfiguration={"Status": "Enabled"}
    )
    s3.put_public_access_block(
        Bucket=bucket,
        PublicAccessBlockConfiguration={
            "BlockPublicAcls": True,
            "IgnorePublicAcls": True,
            "BlockPublicPolicy": True,
            "RestrictPublicBuckets": True,
        },
    )
    return created


def ensure_lock_table(dynamodb: Any, table: str) -> bool:
    """Create the state lock table. Returns False when it already existed."""
    try:
        dynamodb.create_table(
            TableName=table,
            AttributeDefinitions=[{"AttributeName": LOCK_KEY, "AttributeType": "S"}],
            KeySchema=[{"AttributeName": LOCK_KEY, "KeyType": "HASH"}],
            BillingMode="PAY_PER_REQUEST",
        )
    except ClientError as e:
        if _error_code(e) != TABLE_EXISTS_CODE:
            logger.exception("Creating lock table failed", table=table)
            raise
        logger.info("Lock table already exists", table=table)
        return False
    logger.info("Created lock table", table=table)
    return True


def bootstrap_state_backend(settings: LocalStackSettings) -> dict[str, bool]:
    bucket_created = ensure_state_bucket(build_client("s3", settings), settings.state_bucket)
    table_created = ensure_lock_table(build_client("dynamodb", settings), settings.lock_table)
    return {"bucket_created": bucket_created, "table_created": table_created}
