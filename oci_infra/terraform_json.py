"""Terraform configuration for the Oracle Cloud variant of the environment.

OCI is not covered by the CDK, so the same layers (network, compute, load
balancer, database and monitoring) are rendered as Terraform JSON syntax
(``main.tf.json``) and applied with the Terraform CLI. Optional layers are
simply left out of the document when disabled.
"""
import base64
import ipaddress
import json
from pathlib import Path
from typing import Any, Optional

from attrs import define, field
from attrs import validators as v

from common.config import to_bool, to_int, to_optional_str, to_tags

USER_DATA_PATH = Path(__file__).resolve().parent.parent / "user_data"
CONFIG_FILENAME = "main.tf.json"

ANY_IPV4_CIDR = "0.0.0.0/0"
TCP = "6"
ALL_PROTOCOLS = "all"
WEB_PORT = 80
HTTPS_PORT = 443
SSH_PORT = 22
APP_PORT = 8080


def _ipv4_network(instance, attribute, value) -> None:
    try:
        ipaddress.IPv4Network(value)
    except ValueError as exc:
        raise ValueError(f"{attribute.name}: {value!r} is not an IPv4 CIDR block") from exc


@define(slots=True, frozen=True, kw_only=True)
class OciConfig:
    project_name: str = field(
        default="infra-demo", validator=v.matches_re(r"^[a-z][a-z0-9-]{1,30}$")
    )
    environment: str = field(default="dev", validator=v.in_(("dev", "staging", "prod")))
    region: str = field(default="us-ashburn-1")
    vcn_cidr: str = field(default="10.1.0.0/16", validator=_ipv4_network)
    public_subnet_cidr: str = field(default="10.1.1.0/24", validator=_ipv4_network)
    private_subnet_cidr: str = field(default="10.1.2.0/24", validator=_ipv4_network)
    instance_count: int = field(default=2, converter=to_int, validator=[v.ge(0), v.le(10)])
    instance_shape: str = field(default="VM.Standard.E2.1.Micro")
    enable_nat_gateway: bool = field(default=False, converter=to_bool)
    enable_load_balancer: bool = field(default=True, converter=to_bool)
    enable_database: bool = field(default=False, converter=to_bool)
    enable_monitoring: bool = field(default=True, converter=to_bool)
    alarm_email: Optional[str] = field(default=None, converter=to_optional_str)
    cpu_alarm_threshold: int = field(default=80, converter=to_int, validator=[v.ge(1), v.le(100)])
    allowed_ssh_cidr: Optional[str] = field(
        default=None, converter=to_optional_str, validator=v.optional(_ipv4_network)
    )
    state_bucket: Optional[str] = field(default=None, converter=to_optional_str)
    lock_table: Optional[str] = field(default=None, converter=to_optional_str)
    state_region: str = field(default="us-east-1")
    state_endpoint: Optional[str] = field(default=None, converter=to_optional_str)
    tags: dict[str, str] = field(factory=dict, converter=to_tags)

    def __attrs_post_init__(self) -> None:
        vcn = ipaddress.IPv4Network(self.vcn_cidr)
        for name in ("public_subnet_cidr", "private_subnet_cidr"):
            subnet = ipaddress.IPv4Network(getattr(self, name))
            if not subnet.subnet_of(vcn):
                raise ValueError(f"{name}: {subnet} is not inside vcn_cidr {vcn}")
        if ipaddress.IPv4Network(self.public_subnet_cidr).overlaps(
            ipaddress.IPv4Network(self.private_subnet_cidr)
        ):
            raise ValueError("private_subnet_cidr: overlaps public_subnet_cidr")
        if self.lock_table and not self.state_bucket:
            raise ValueError("lock_table: requires state_bucket")

    @property
    def name_prefix(self) -> str:
        return f"{self.project_name}-{self.environment}"

    @property
    def dns_label(self) -> str:
        # OCI DNS labels are alphanumeric, at most 15 characters, starting with a letter
        return "".join(ch for ch in self.project_name if ch.isalnum())[:15]

    @property
    def freeform_tags(self) -> dict[str, str]:
        return {
            "Project": self.project_name,
            "Environment": self.environment,
            "ManagedBy": "terraform",
            **self.tags,
        }


def _ref(expression: str) -> str:
    return "${" + expression + "}"


def _compartment() -> str:
    return _ref("var.compartment_ocid")


def _tcp_rule(source: str, port: int, description: str) -> dict[str, Any]:
    return {
        "protocol": TCP,
        "source": source,
        "description": description,
        "tcp_options": {"min": port, "max": port},
    }


def render_terraform_block(config: OciConfig) -> dict[str, Any]:
    block: dict[str, Any] = {
        "required_version": ">= 1.6.0",
        "required_providers": {"oci": {"source": "oracle/oci", "version": "~> 5.0"}},
    }
    if config.state_bucket:
        backend: dict[str, Any] = {
            "bucket": config.state_bucket,
            "key": f"oci/{config.environment}/terraform.tfstate",
            "region": config.state_region,
            "encrypt": True,
        }
        if config.lock_table:
            backend["dynamodb_table"] = config.lock_table
        if config.state_endpoint:
            # S3-compatible endpoint such as LocalStack
            backend.update(
                {
                    "endpoints": {
                        "s3": config.state_endpoint,
                        "dynamodb": config.state_endpoint,
                    },
                    "use_path_style": True,
                    "skip_credentials_validation": True,
                    "skip_metadata_api_check": True,
                    "skip_requesting_account_id": True,
                }
            )
        block["backend"] = {"s3": backend}
    return block


def render_variables(config: OciConfig) -> dict[str, Any]:
    variables: dict[str, Any] = {
        "tenancy_ocid": {"type": "string", "description": "OCI tenancy OCID"},
        "compartment_ocid": {
            "type": "string",
            "description": "Compartment the resources are created in",
        },
        "region": {"type": "string", "default": config.region},
        "ssh_public_key": {
            "type": "string",
            "description": "Public key installed on the instances",
        },
        "image_ocid": {
            "type": "string",
            "description": "Image used for the web instances",
        },
    }
    if config.enable_database:
        variables["db_admin_password"] = {
            "type": "string",
            "sensitive": True,
            "description": "Autonomous Database ADMIN password",
        }
    return variables


def render_network(config: OciConfig) -> dict[str, Any]:
    tags = config.freeform_tags
    resources: dict[str, Any] = {
        "oci_core_vcn": {
            "main": {
                "compartment_id": _compartment(),
                "cidr_blocks": [config.vcn_cidr],
                "display_name": f"{config.name_prefix}-vcn",
                "dns_label": config.dns_label,
                "freeform_tags": tags,
            }
        },
        "oci_core_internet_gateway": {
            "main": {
                "compartment_id": _compartment(),
                "vcn_id": _ref("oci_core_vcn.main.id"),
                "display_name": f"{config.name_prefix}-igw",
                "enabled": True,
                "freeform_tags": tags,
            }
        },
    }

    private_routes = []
    if config.enable_nat_gateway:
        resources["oci_core_nat_gateway"] = {
            "main": {
                "compartment_id": _compartment(),
                "vcn_id": _ref("oci_core_vcn.main.id"),
                "display_name": f"{config.name_prefix}-nat",
                "freeform_tags": tags,
            }
        }
        private_routes.append(
            {
                "destination": ANY_IPV4_CIDR,
                "destination_type": "CIDR_BLOCK",
                "network_entity_id": _ref("oci_core_nat_gateway.main.id"),
            }
        )

    resources["oci_core_route_table"] = {
        "public": {
            "compartment_id": _compartment(),
            "vcn_id": _ref("oci_core_vcn.main.id"),
            "display_name": f"{config.name_prefix}-public-rt",
            "route_rules": [
                {
                    "destination": ANY_IPV4_CIDR,
                    "destination_type": "CIDR_BLOCK",
                    "network_entity_id": _ref("oci_core_internet_gateway.main.id"),
                }
            ],
            "freeform_tags": tags,
        },
        "private": {
            "compartment_id": _compartment(),
            "vcn_id": _ref("oci_core_vcn.main.id"),
            "display_name": f"{config.name_prefix}-private-rt",
            "route_rules": private_routes,
            "freeform_tags": tags,
        },
    }

    public_ingress = [
        _tcp_rule(ANY_IPV4_CIDR, WEB_PORT, "HTTP from anywhere"),
        _tcp_rule(ANY_IPV4_CIDR, HTTPS_PORT, "HTTPS from anywhere"),
    ]
    if config.allowed_ssh_cidr:
        public_ingress.append(
            _tcp_rule(config.allowed_ssh_cidr, SSH_PORT, f"SSH from {config.allowed_ssh_cidr}")
        )
    egress = [{"protocol": ALL_PROTOCOLS, "destination": ANY_IPV4_CIDR}]
    resources["oci_core_security_list"] = {
        "public": {
            "compartment_id": _compartment(),
            "vcn_id": _ref("oci_core_vcn.main.id"),
            "display_name": f"{config.name_prefix}-public-sl",
            "ingress_security_rules": public_ingress,
            "egress_security_rules": egress,
            "freeform_tags": tags,
        },
        "private": {
            "compartment_id": _compartment(),
            "vcn_id": _ref("oci_core_vcn.main.id"),
            "display_name": f"{config.name_prefix}-private-sl",
            "ingress_security_rules": [
                _tcp_rule(config.public_subnet_cidr, APP_PORT, "Application traffic from the public subnet"),
                _tcp_rule(config.vcn_cidr, SSH_PORT, "SSH from inside the VCN"),
                _tcp_rule(config.private_subnet_cidr, 1522, "Database traffic from the private subnet"),
            ],
            "egress_security_rules": egress,
            "freeform_tags": tags,
        },
    }

    resources["oci_core_subnet"] = {
        tier: {
            "compartment_id": _compartment(),
            "vcn_id": _ref("oci_core_vcn.main.id"),
            "cidr_block": cidr,
            "display_name": f"{config.name_prefix}-{tier}-subnet",
            "dns_label": tier[:3] + "sub",
            "route_table_id": _ref(f"oci_core_route_table.{tier}.id"),
            "security_list_ids": [_ref(f"oci_core_security_list.{tier}.id")],
            "prohibit_public_ip_on_vnic": tier == "private",
            "freeform_tags": tags,
        }
        for tier, cidr in (
            ("public", config.public_subnet_cidr),
            ("private", config.private_subnet_cidr),
        )
    }
    return resources


def render_compute(config: OciConfig) -> dict[str, Any]:
    user_data = (USER_DATA_PATH / "web_server.sh").read_bytes()
    return {
        "oci_core_instance": {
            "web": {
                "count": config.instance_count,
                "compartment_id": _compartment(),
                "availability_domain": _ref(
                    "data.oci_identity_availability_domains.ads.availability_domains["
                    "count.index % length(data.oci_identity_availability_domains.ads.availability_domains)"
                    "].name"
                ),
                "shape": config.instance_shape,
                "display_name": f"{config.name_prefix}-web-" + _ref("count.index + 1"),
                "create_vnic_details": {
                    "subnet_id": _ref("oci_core_subnet.public.id"),
                    "assign_public_ip": True,
                },
                "source_details": {
                    "source_type": "image",
                    "source_id": _ref("var.image_ocid"),
                },
                "metadata": {
                    "ssh_authorized_keys": _ref("var.ssh_public_key"),
                    "user_data": base64.b64encode(user_data).decode("ascii"),
                },
                "freeform_tags": {**config.freeform_tags, "Tier": "web"},
            }
        }
    }


def render_load_balancer(config: OciConfig) -> dict[str, Any]:
    backend_set = "web"
    return {
        "oci_load_balancer_load_balancer": {
            "main": {
                "compartment_id": _compartment(),
                "display_name": f"{config.name_prefix}-lb",
                "shape": "flexible",
                "shape_details": {
                    "minimum_bandwidth_in_mbps": 10,
                    "maximum_bandwidth_in_mbps": 10,
                },
                "subnet_ids": [_ref("oci_core_subnet.public.id")],
                "is_private": False,
                "freeform_tags": config.freeform_tags,
            }
        },
        "oci_load_balancer_backend_set": {
            "web": {
                "name": backend_set,
                "load_balancer_id": _ref("oci_load_balancer_load_balancer.main.id"),
                "policy": "ROUND_ROBIN",
                "health_checker": {
                    "protocol": "HTTP",
                    "port": WEB_PORT,
                    "url_path": "/health",
                    "return_code": 200,
                },
            }
        },
        "oci_load_balancer_backend": {
            "web": {
                "count": config.instance_count,
                "load_balancer_id": _ref("oci_load_balancer_load_balancer.main.id"),
                "backendset_name": _ref("oci_load_balancer_backend_set.web.name"),
                "ip_address": _ref("oci_core_instance.web[count.index].private_ip"),
                "port": WEB_PORT,
            }
        },
        "oci_load_balancer_listener": {
            "http": {
                "load_balancer_id": _ref("oci_load_balancer_load_balancer.main.id"),
                "name": "http",
                "default_backend_set_name": _ref("oci_load_balancer_backend_set.web.name"),
                "port": WEB_PORT,
                "protocol": "HTTP",
            }
        },
    }


def render_database(config: OciConfig) -> dict[str, Any]:
    return {
        "oci_database_autonomous_database": {
            "main": {
                "compartment_id": _compartment(),
                "db_name": (config.dns_label + config.environment)[:14],
                "display_name": f"{config.name_prefix}-adb",
                "admin_password": _ref("var.db_admin_password"),
                "db_workload": "OLTP",
                "compute_model": "ECPU",
                "compute_count": 2,
                "data_storage_size_in_tbs": 1,
                "is_auto_scaling_enabled": False,
                "subnet_id": _ref("oci_core_subnet.private.id"),
                "freeform_tags": config.freeform_tags,
            }
        }
    }


def render_monitoring(config: OciConfig) -> dict[str, Any]:
    resources: dict[str, Any] = {
        "oci_ons_notification_topic": {
            "alerts": {
                "compartment_id": _compartment(),
                "name": f"{config.name_prefix}-alerts",
                "description": f"Alarm notifications for {config.name_prefix}",
                "freeform_tags": config.freeform_tags,
            }
        },
        "oci_monitoring_alarm": {
            "high_cpu": {
                "compartment_id": _compartment(),
                "metric_compartment_id": _compartment(),
                "display_name": f"{config.name_prefix}-high-cpu",
                "namespace": "oci_computeagent",
                "query": f"CpuUtilization[5m].mean() > {config.cpu_alarm_threshold}",
                "severity": "CRITICAL",
                "pending_duration": "PT10M",
                "is_enabled": True,
                "destinations": [_ref("oci_ons_notification_topic.alerts.id")],
                "freeform_tags": config.freeform_tags,
            }
        },
    }
    if config.alarm_email:
        resources["oci_ons_subscription"] = {
            "email": {
                "compartment_id": _compartment(),
                "topic_id": _ref("oci_ons_notification_topic.alerts.id"),
                "protocol": "EMAIL",
                "endpoint": config.alarm_email,
            }
        }
    return resources


def render_outputs(config: OciConfig) -> dict[str, Any]:
    outputs: dict[str, Any] = {
        "vcn_id": {"value": _ref("oci_core_vcn.main.id")},
        "public_subnet_id": {"value": _ref("oci_core_subnet.public.id")},
        "private_subnet_id": {"value": _ref("oci_core_subnet.private.id")},
        "web_public_ips": {"value": _ref("oci_core_instance.web[*].public_ip")},
    }
    if config.enable_load_balancer:
        outputs["load_balancer_ip"] = {
            "value": _ref("oci_load_balancer_load_balancer.main.ip_address_details[0].ip_address")
        }
    if config.enable_database:
        outputs["database_id"] = {"value": _ref("oci_database_autonomous_database.main.id")}
    if config.enable_monitoring:
        outputs["alarm_topic_id"] = {"value": _ref("oci_ons_notification_topic.alerts.id")}
    return outputs


def render_configuration(config: OciConfig) -> dict[str, Any]:
    """Build the complete Terraform JSON document for ``config``."""
    resources = render_network(config)
    resources.update(render_compute(config))
    if config.enable_load_balancer:
        resources.update(render_load_balancer(config))
    if config.enable_database:
        resources.update(render_database(config))
    if config.enable_monitoring:
        resources.update(render_monitoring(config))

    return {
        "terraform": render_terraform_block(config),
        "provider": {
            "oci": {
                "region": _ref("var.region"),
                "tenancy_ocid": _ref("var.tenancy_ocid"),
            }
        },
        "variable": render_variables(config),
        "data": {
            "oci_identity_availability_domains": {
                "ads": {"compartment_id": _ref("var.tenancy_ocid")}
            }
        },
        "resource": resources,
        "output": render_outputs(config),
    }


def write_configuration(config: OciConfig, directory: Path) -> Path:
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / CONFIG_FILENAME
    with open(path, "w") as file:
        json.dump(render_configuration(config), file, indent=2)
        file.write("\n")
    return path
