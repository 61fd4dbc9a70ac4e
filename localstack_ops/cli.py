"""Command line helpers for the local development environment."""
from pathlib import Path

import click
from botocore.exceptions import BotoCoreError, ClientError

from localstack_ops.cleanup import run_cleanup
from localstack_ops.health import DEFAULT_SERVICES, LocalStackUnavailableError, wait_for_localstack
from localstack_ops.settings import LocalStackSettings
from localstack_ops.smoke import run_smoke_checks
from localstack_ops.state_backend import bootstrap_state_backend
from oci_infra.terraform_json import OciConfig, write_configuration


@click.group()
@click.option("--endpoint", envvar="LOCALSTACK_ENDPOINT", default=None, help="LocalStack endpoint URL")
@click.pass_context
def cli(ctx: click.Context, endpoint: str | None) -> None:
    """Bootstrap and verify the LocalStack environment."""
    settings = LocalStackSettings.from_env()
    if endpoint:
        settings = LocalStackSettings(
            endpoint_url=endpoint,
            region=settings.region,
            access_key_id=settings.access_key_id,
            secret_access_key=settings.secret_access_key,
            state_bucket=settings.state_bucket,
            lock_table=settings.lock_table,
        )
    ctx.obj = settings


@cli.command()
@click.option("--timeout", default=60, show_default=True, help="Seconds to wait")
@click.option("--interval", default=2.0, show_default=True, help="Seconds between polls")
@click.option("--service", "services", multiple=True, default=DEFAULT_SERVICES, show_default=True)
@click.pass_obj
def wait(settings: LocalStackSettings, timeout: int, interval: float, services: tuple[str, ...]) -> None:
    """Wait until LocalStack reports the services ready."""
    try:
        wait_for_localstack(settings, services=services, timeout=timeout, interval=interval)
    except LocalStackUnavailableError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"LocalStack ready at {settings.endpoint_url}")


@cli.command()
@click.pass_obj
def bootstrap(settings: LocalStackSettings) -> None:
    """Create the state bucket and the state lock table."""
    try:
        result = bootstrap_state_backend(settings)
    except (ClientError, BotoCoreError) as e:
        raise click.ClickException(f"state backend bootstrap failed: {e}") from e
    bucket_state = "created" if result["bucket_created"] else "already exists"
    table_state = "created" if result["table_created"] else "already exists"
    click.echo(f"State bucket {settings.state_bucket}: {bucket_state}")
    click.echo(f"Lock table {settings.lock_table}: {table_state}")


@cli.command()
@click.option("--project", default="infra-demo", show_default=True)
@click.option("--environment", default="localstack", show_default=True)
@click.pass_obj
def verify(settings: LocalStackSettings, project: str, environment: str) -> None:
    """Run smoke checks against the deployed environment."""
    try:
        results = run_smoke_checks(settings, project, environment)
    except (ClientError, BotoCoreError) as e:
        raise click.ClickException(f"smoke checks could not run: {e}") from e
    for result in results:
        status = "PASS" if result.passed else "FAIL"
        click.echo(f"[{status}] {result.name}: {result.detail}")
    failed = [result for result in results if not result.passed]
    if failed:
        raise click.exceptions.Exit(1)


@cli.command()
@click.option("--project", default="infra-demo", show_default=True)
@click.option("--environment", default="localstack", show_default=True)
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_obj
def cleanup(settings: LocalStackSettings, project: str, environment: str, yes: bool) -> None:
    """Delete the tagged instances and VPC and the project buckets."""
    if not yes:
        click.confirm(
            f"Delete every {project}/{environment} resource at {settings.endpoint_url}?",
            abort=True,
        )
    try:
        report = run_cleanup(settings, project, environment)
    except (ClientError, BotoCoreError) as e:
        raise click.ClickException(f"cleanup failed: {e}") from e
    click.echo(f"Terminated instances: {', '.join(report.instances) or 'none'}")
    click.echo(f"Deleted VPCs: {', '.join(report.vpcs) or 'none'}")
    click.echo(f"Deleted buckets: {', '.join(report.buckets) or 'none'}")


@cli.command("render-oci")
@click.option("--output-dir", type=click.Path(file_okay=False, path_type=Path), default=Path("oci"), show_default=True)
@click.option("--project", default="infra-demo", show_default=True)
@click.option("--environment", type=click.Choice(["dev", "staging", "prod"]), default="dev", show_default=True)
@click.option("--region", default="us-ashburn-1", show_default=True)
@click.option("--instance-count", default=2, show_default=True)
@click.option("--nat-gateway/--no-nat-gateway", default=False, show_default=True)
@click.option("--load-balancer/--no-load-balancer", default=True, show_default=True)
@click.option("--database/--no-database", default=False, show_default=True)
@click.option("--monitoring/--no-monitoring", default=True, show_default=True)
@click.option("--alarm-email", default=None)
@click.option("--ssh-cidr", default=None, help="CIDR allowed to reach SSH")
@click.option("--local-state", is_flag=True, help="Keep Terraform state in the LocalStack backend")
@click.pass_obj
def render_oci(
    settings: LocalStackSettings,
    output_dir: Path,
    project: str,
    environment: str,
    region: str,
    instance_count: int,
    nat_gateway: bool,
    load_balancer: bool,
    database: bool,
    monitoring: bool,
    alarm_email: str | None,
    ssh_cidr: str | None,
    local_state: bool,
) -> None:
    """Write the OCI Terraform configuration as main.tf.json."""
    try:
        config = OciConfig(
            project_name=project,
            environment=environment,
            region=region,
            instance_count=instance_count,
            enable_nat_gateway=nat_gateway,
            enable_load_balancer=load_balancer,
            enable_database=database,
            enable_monitoring=monitoring,
            alarm_email=alarm_email,
            allowed_ssh_cidr=ssh_cidr,
            state_bucket=settings.state_bucket if local_state else None,
            lock_table=settings.lock_table if local_state else None,
            state_region=settings.region,
            state_endpoint=settings.endpoint_url if local_state else None,
        )
    except ValueError as e:
        raise click.BadParameter(str(e)) from e
    path = write_configuration(config, output_dir)
    click.echo(f"Wrote {path}")


if __name__ == "__main__":
    cli()
