"""Environment configuration for the infrastructure stacks.

A configuration is resolved in layers, lowest precedence first:

1. field defaults on :class:`InfraConfig`
2. the preset for the target environment (``ENVIRONMENT_PRESETS``)
3. CDK context values (``cdk.json`` or ``cdk synth -c key=value``)
4. ``INFRA_<FIELD>`` environment variables

Context and environment values arrive as strings, so every field carries an
attrs converter that accepts both the native type and its string form.
"""
import ipaddress
import os
from typing import Any, Mapping, Optional

from attrs import define, field, fields
from attrs import validators as v

import common.constants as constants

TRUE_VALUES = frozenset({"true", "1", "yes", "on"})
FALSE_VALUES = frozenset({"false", "0", "no", "off", ""})


# ---------- converters ----------
def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return bool(value)
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise ValueError(f"cannot interpret {value!r} as a boolean")


def to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"expected an integer, got {value!r}")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"expected an integer, got {value!r}")
    return int(value)


def to_optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def to_str_tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(item.strip() for item in value.split(",") if item.strip())
    return tuple(str(item) for item in value)


def to_tags(value: Any) -> dict[str, str]:
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return {str(key): str(val) for key, val in value.items()}
    tags = {}
    for pair in to_str_tuple(value):
        key, sep, val = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"tag {pair!r} is not in key=value form")
        tags[key.strip()] = val.strip()
    return tags


# ---------- validators ----------
def _ipv4_network(instance, attribute, value) -> None:
    try:
        ipaddress.IPv4Network(value)
    except ValueError as exc:
        raise ValueError(f"{attribute.name}: {value!r} is not an IPv4 CIDR block") from exc


def _ipv4_networks(instance, attribute, value) -> None:
    for cidr in value:
        _ipv4_network(instance, attribute, cidr)


@define(slots=True, frozen=True, kw_only=True)
class InfraConfig:
    environment: str = field(validator=v.in_(constants.ENVIRONMENTS))
    project_name: str = field(
        default=constants.DEFAULT_PROJECT_NAME,
        validator=v.matches_re(r"^[a-z][a-z0-9-]{1,30}$"),
    )
    region: str = field(default=constants.DEFAULT_REGION)

    # ---------- network ----------
    vpc_cidr: str = field(default=constants.VPC_CIDR, validator=_ipv4_network)
    az_count: int = field(
        default=constants.DEFAULT_AZ_COUNT,
        converter=to_int,
        validator=[v.ge(1), v.le(3)],
    )
    subnet_cidr_mask: int = field(
        default=constants.CIDR_MASK, converter=to_int, validator=[v.ge(16), v.le(28)]
    )
    enable_nat_gateway: bool = field(default=False, converter=to_bool)
    single_nat_gateway: bool = field(default=True, converter=to_bool)
    enable_flow_logs: bool = field(default=False, converter=to_bool)

    # ---------- optional layers ----------
    enable_kms: bool = field(default=False, converter=to_bool)
    enable_load_balancer: bool = field(default=False, converter=to_bool)
    enable_monitoring: bool = field(default=True, converter=to_bool)
    use_autoscaling: bool = field(default=False, converter=to_bool)

    # ---------- compute ----------
    web_instance_count: int = field(default=2, converter=to_int, validator=[v.ge(0), v.le(10)])
    app_instance_count: int = field(default=1, converter=to_int, validator=[v.ge(0), v.le(10)])
    asg_min_size: int = field(default=1, converter=to_int, validator=v.ge(0))
    asg_max_size: int = field(default=3, converter=to_int, validator=v.ge(1))
    asg_desired_capacity: int = field(default=2, converter=to_int, validator=v.ge(0))
    instance_type: str = field(default=constants.DEFAULT_INSTANCE_TYPE)
    ami_id: Optional[str] = field(default=None, converter=to_optional_str)
    root_volume_size: int = field(default=20, converter=to_int, validator=[v.ge(8), v.le(100)])
    allowed_ssh_cidrs: tuple[str, ...] = field(
        default=(), converter=to_str_tuple, validator=_ipv4_networks
    )

    # ---------- monitoring ----------
    alarm_email: Optional[str] = field(default=None, converter=to_optional_str)
    cpu_alarm_threshold: int = field(default=80, converter=to_int, validator=[v.ge(1), v.le(100)])
    log_retention_days: int = field(
        default=7, converter=to_int, validator=v.in_(tuple(constants.LOG_RETENTION))
    )

    # ---------- load balancer ----------
    health_check_path: str = field(default="/health", validator=v.matches_re(r"/.*"))
    certificate_arn: Optional[str] = field(default=None, converter=to_optional_str)

    tags: dict[str, str] = field(factory=dict, converter=to_tags)

    def __attrs_post_init__(self) -> None:
        vpc_prefix = ipaddress.IPv4Network(self.vpc_cidr).prefixlen
        if not 16 <= vpc_prefix <= 24:
            raise ValueError(f"vpc_cidr: prefix /{vpc_prefix} must be between /16 and /24")
        if self.subnet_cidr_mask <= vpc_prefix:
            raise ValueError(
                f"subnet_cidr_mask: /{self.subnet_cidr_mask} must be smaller than the VPC block /{vpc_prefix}"
            )
        if not self.asg_min_size <= self.asg_desired_capacity <= self.asg_max_size:
            raise ValueError(
                "asg_desired_capacity: must satisfy asg_min_size <= asg_desired_capacity <= asg_max_size"
            )
        if self.alarm_email is not None and "@" not in self.alarm_email:
            raise ValueError(f"alarm_email: {self.alarm_email!r} is not an email address")

    @property
    def nat_gateway_count(self) -> int:
        if not self.enable_nat_gateway:
            return 0
        return 1 if self.single_nat_gateway else self.az_count


ENVIRONMENT_PRESETS: Mapping[str, Mapping[str, Any]] = {
    # LocalStack lacks NAT gateways and KMS-backed log encryption in the
    # community edition, and its ELBv2 support is partial.
    "localstack": {
        "enable_nat_gateway": False,
        "enable_kms": False,
        "enable_flow_logs": False,
        "enable_load_balancer": False,
        "enable_monitoring": True,
        "use_autoscaling": False,
        "ami_id": constants.LOCALSTACK_AMI_ID,
        "web_instance_count": 1,
        "app_instance_count": 1,
        "log_retention_days": 1,
    },
    "dev": {
        "enable_nat_gateway": True,
        "single_nat_gateway": True,
        "enable_kms": True,
        "enable_flow_logs": False,
        "enable_load_balancer": True,
        "enable_monitoring": True,
        "use_autoscaling": False,
    },
    "staging": {
        "enable_nat_gateway": True,
        "single_nat_gateway": True,
        "enable_kms": True,
        "enable_flow_logs": True,
        "enable_load_balancer": True,
        "enable_monitoring": True,
        "use_autoscaling": True,
        "log_retention_days": 14,
    },
    "prod": {
        "az_count": 3,
        "enable_nat_gateway": True,
        "single_nat_gateway": False,
        "enable_kms": True,
        "enable_flow_logs": True,
        "enable_load_balancer": True,
        "enable_monitoring": True,
        "use_autoscaling": True,
        "asg_min_size": 2,
        "asg_desired_capacity": 2,
        "asg_max_size": 6,
        "log_retention_days": 30,
    },
}


def _coerce(name: str, value: Any) -> Any:
    attribute = getattr(fields(InfraConfig), name)
    if attribute.converter is None:
        return value if value is None else str(value)
    try:
        return attribute.converter(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name}: {exc}") from exc


def load_config(
    environment: str,
    context: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> InfraConfig:
    """Resolve the configuration for ``environment``.

    ``context`` is usually the CDK app context; ``environ`` defaults to
    ``os.environ``. Keys that are not configuration fields are ignored.
    """
    if environment not in ENVIRONMENT_PRESETS:
        raise ValueError(
            f"environment: {environment!r} is not one of {', '.join(constants.ENVIRONMENTS)}"
        )
    environ = os.environ if environ is None else environ
    names = {attribute.name for attribute in fields(InfraConfig)} - {"environment"}

    values: dict[str, Any] = dict(ENVIRONMENT_PRESETS[environment])
    for key, value in (context or {}).items():
        if key in names and value is not None:
            values[key] = value
    for name in names:
        env_key = f"{constants.CONFIG_ENV_PREFIX}{name.upper()}"
        if env_key in environ:
            values[name] = environ[env_key]

    coerced = {name: _coerce(name, value) for name, value in values.items()}
    return InfraConfig(environment=environment, **coerced)
