import base64
import json

import pytest

from oci_infra.terraform_json import (
    CONFIG_FILENAME,
    USER_DATA_PATH,
    OciConfig,
    render_configuration,
    write_configuration,
)


@pytest.fixture(scope="module")
def document():
    return render_configuration(OciConfig())


def test_top_level_blocks(document):
    assert set(document) == {"terraform", "provider", "variable", "data", "resource", "output"}
    assert document["terraform"]["required_providers"]["oci"]["source"] == "oracle/oci"
    assert document["provider"]["oci"]["region"] == "${var.region}"


def test_default_layers(document):
    resources = document["resource"]
    for resource_type in (
        "oci_core_vcn",
        "oci_core_internet_gateway",
        "oci_core_route_table",
        "oci_core_security_list",
        "oci_core_subnet",
        "oci_core_instance",
        "oci_load_balancer_load_balancer",
        "oci_load_balancer_backend_set",
        "oci_load_balancer_backend",
        "oci_load_balancer_listener",
        "oci_ons_notification_topic",
        "oci_monitoring_alarm",
    ):
        assert resource_type in resources, resource_type
    for resource_type in (
        "oci_core_nat_gateway",
        "oci_database_autonomous_database",
        "oci_ons_subscription",
    ):
        assert resource_type not in resources, resource_type


def test_vcn_naming_and_tags(document):
    vcn = document["resource"]["oci_core_vcn"]["main"]
    assert vcn["display_name"] == "infra-demo-dev-vcn"
    assert vcn["dns_label"] == "infrademo"
    assert vcn["cidr_blocks"] == ["10.1.0.0/16"]
    assert vcn["freeform_tags"] == {
        "Project": "infra-demo",
        "Environment": "dev",
        "ManagedBy": "terraform",
    }


def test_private_subnet_blocks_public_ips(document):
    subnets = document["resource"]["oci_core_subnet"]
    assert subnets["public"]["prohibit_public_ip_on_vnic"] is False
    assert subnets["private"]["prohibit_public_ip_on_vnic"] is True
    assert subnets["private"]["route_table_id"] == "${oci_core_route_table.private.id}"


def test_public_security_list_has_no_ssh_by_default(document):
    rules = document["resource"]["oci_core_security_list"]["public"]["ingress_security_rules"]
    assert [rule["tcp_options"]["min"] for rule in rules] == [80, 443]


def test_ssh_rule_uses_allowed_cidr():
    document = render_configuration(OciConfig(allowed_ssh_cidr="198.51.100.0/24"))
    rules = document["resource"]["oci_core_security_list"]["public"]["ingress_security_rules"]
    ssh = [rule for rule in rules if rule["tcp_options"]["min"] == 22]
    assert len(ssh) == 1
    assert ssh[0]["source"] == "198.51.100.0/24"


def test_nat_gateway_routes_private_subnet():
    document = render_configuration(OciConfig(enable_nat_gateway=True))
    resources = document["resource"]
    assert "main" in resources["oci_core_nat_gateway"]
    assert resources["oci_core_route_table"]["private"]["route_rules"] == [
        {
            "destination": "0.0.0.0/0",
            "destination_type": "CIDR_BLOCK",
            "network_entity_id": "${oci_core_nat_gateway.main.id}",
        }
    ]


def test_instances_carry_web_user_data(document):
    instance = document["resource"]["oci_core_instance"]["web"]
    assert instance["count"] == 2
    user_data = base64.b64decode(instance["metadata"]["user_data"])
    assert user_data == (USER_DATA_PATH / "web_server.sh").read_bytes()
    assert instance["freeform_tags"]["Tier"] == "web"


def test_load_balancer_health_check(document):
    backend_set = document["resource"]["oci_load_balancer_backend_set"]["web"]
    assert backend_set["health_checker"]["url_path"] == "/health"
    assert document["resource"]["oci_load_balancer_backend"]["web"]["count"] == 2
    assert "load_balancer_ip" in document["output"]


def test_load_balancer_can_be_disabled():
    document = render_configuration(OciConfig(enable_load_balancer=False))
    assert not any(key.startswith("oci_load_balancer") for key in document["resource"])
    assert "load_balancer_ip" not in document["output"]


def test_database_adds_password_variable():
    document = render_configuration(OciConfig(enable_database=True, environment="prod"))
    database = document["resource"]["oci_database_autonomous_database"]["main"]
    assert database["db_name"] == "infrademoprod"
    assert database["subnet_id"] == "${oci_core_subnet.private.id}"
    assert document["variable"]["db_admin_password"]["sensitive"] is True
    assert "database_id" in document["output"]


def test_monitoring_alarm_query_and_email():
    document = render_configuration(OciConfig(cpu_alarm_threshold=90, alarm_email="ops@example.com"))
    alarm = document["resource"]["oci_monitoring_alarm"]["high_cpu"]
    assert alarm["query"] == "CpuUtilization[5m].mean() > 90"
    subscription = document["resource"]["oci_ons_subscription"]["email"]
    assert subscription["endpoint"] == "ops@example.com"


def test_monitoring_can_be_disabled():
    document = render_configuration(OciConfig(enable_monitoring=False))
    assert "oci_monitoring_alarm" not in document["resource"]
    assert "alarm_topic_id" not in document["output"]


# ------------------- Backend -------------------
def test_no_backend_without_state_bucket(document):
    assert "backend" not in document["terraform"]


def test_s3_backend_with_lock_table():
    config = OciConfig(environment="staging", state_bucket="tf-state", lock_table="tf-lock")
    backend = render_configuration(config)["terraform"]["backend"]["s3"]
    assert backend == {
        "bucket": "tf-state",
        "key": "oci/staging/terraform.tfstate",
        "region": "us-east-1",
        "encrypt": True,
        "dynamodb_table": "tf-lock",
    }


def test_s3_backend_with_local_endpoint():
    config = OciConfig(
        state_bucket="terraform-state-localstack",
        lock_table="terraform-state-lock",
        state_endpoint="http://localhost:4566",
    )
    backend = render_configuration(config)["terraform"]["backend"]["s3"]
    assert backend["endpoints"] == {
        "s3": "http://localhost:4566",
        "dynamodb": "http://localhost:4566",
    }
    assert backend["use_path_style"] is True
    assert backend["skip_credentials_validation"] is True
    assert render_configuration(config)["terraform"]["required_version"] == ">= 1.6.0"


# ------------------- Validation -------------------
@pytest.mark.parametrize(
    "kwargs,message",
    [
        ({"public_subnet_cidr": "10.2.1.0/24"}, "public_subnet_cidr"),
        ({"private_subnet_cidr": "10.1.1.128/25"}, "private_subnet_cidr"),
        ({"allowed_ssh_cidr": "0.0.0.0/33"}, "allowed_ssh_cidr"),
        ({"lock_table": "tf-lock"}, "lock_table"),
        ({"instance_count": "eleven"}, "eleven"),
    ],
)
def test_invalid_config(kwargs, message):
    with pytest.raises(ValueError, match=message):
        OciConfig(**kwargs)


def test_environment_must_be_known():
    with pytest.raises(ValueError):
        OciConfig(environment="localstack")


# ------------------- Writing -------------------
def test_write_configuration(tmp_path):
    path = write_configuration(OciConfig(), tmp_path / "oci")
    assert path == tmp_path / "oci" / CONFIG_FILENAME
    text = path.read_text()
    assert text.endswith("\n")
    assert json.loads(text) == render_configuration(OciConfig())
