import os
from typing import Any, Mapping, Optional

import boto3
from attrs import define, field
from attrs.validators import instance_of, matches_re

DEFAULT_ENDPOINT = "http://localhost:4566"
DEFAULT_REGION = "us-east-1"
# LocalStack accepts any credentials; these are the conventional dummies
DEFAULT_ACCESS_KEY = "test"
DEFAULT_SECRET_KEY = "test"
DEFAULT_STATE_BUCKET = "terraform-state-localstack"
DEFAULT_LOCK_TABLE = "terraform-state-lock"
HEALTH_PATH = "/_localstack/health"


@define(slots=True, kw_only=True, frozen=True)
class LocalStackSettings:
    endpoint_url: str = field(
        default=DEFAULT_ENDPOINT, validator=matches_re(r"https?://.+")
    )
    region: str = field(default=DEFAULT_REGION, validator=instance_of(str))
    access_key_id: str = field(default=DEFAULT_ACCESS_KEY, validator=instance_of(str))
    secret_access_key: str = field(
        default=DEFAULT_SECRET_KEY, validator=instance_of(str), repr=False
    )
    state_bucket: str = field(default=DEFAULT_STATE_BUCKET, validator=instance_of(str))
    lock_table: str = field(default=DEFAULT_LOCK_TABLE, validator=instance_of(str))

    @property
    def health_url(self) -> str:
        return self.endpoint_url.rstrip("/") + HEALTH_PATH

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "LocalStackSettings":
        environ = os.environ if environ is None else environ
        return cls(
            endpoint_url=environ.get("LOCALSTACK_ENDPOINT", DEFAULT_ENDPOINT),
            region=environ.get("AWS_DEFAULT_REGION", DEFAULT_REGION),
            access_key_id=environ.get("AWS_ACCESS_KEY_ID", DEFAULT_ACCESS_KEY),
            secret_access_key=environ.get("AWS_SECRET_ACCESS_KEY", DEFAULT_SECRET_KEY),
            state_bucket=environ.get("STATE_BUCKET", DEFAULT_STATE_BUCKET),
            lock_table=environ.get("LOCK_TABLE", DEFAULT_LOCK_TABLE),
        )


def build_client(service: str, settings: LocalStackSettings) -> Any:
    """boto3 client with every request redirected to the LocalStack endpoint."""
    session = boto3.session.Session(
        aws_access_key_id=settings.access_key_id,
        aws_secret_access_key=settings.secret_access_key,
        region_name=settings.region,
    )
    return session.client(service, endpoint_url=settings.endpoint_url)
