import asyncio
import json
import click
from app.core.database import SessionLocal
from app.core.exceptions import N8NClientError
from app.services.instance_service import InstanceService
from app.services.scan_service import ScanService
from app.services.aggregation_service import AggregationService
import logging

logger = logging.getLogger(__name__)

SEVERITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}


def _echo_findings(findings):
    for finding in sorted(findings, key=lambda f: (SEVERITY_ORDER.get(f.severity.value, 9), f.id)):
        location = finding.workflow_name or finding.credential_id or "-"
        click.echo(f"  [{finding.severity.value.upper():8}] {finding.title} - {location}")
        click.echo(f"             {finding.description}")


def _echo_stats(stats):
    workflows = stats.workflows
    click.echo(
        f"  Workflows: {workflows.total} total, {workflows.active} active, "
        f"{workflows.inactive} inactive, {workflows.archived} archived"
    )
    click.echo(f"  Credentials: {stats.total_credentials}")
    click.echo(
        f"  Findings: {stats.active_findings} active "
        f"({stats.critical_findings} critical, {stats.high_findings} high, "
        f"{stats.medium_findings} medium, {stats.low_findings} low)"
    )


@click.group()
def cli():
    """FlowLedger CLI commands"""
    pass


@cli.command()
@click.option('--user', 'user_id', required=False, help='Only instances of this user (Firebase UID)')
def instances(user_id):
    """List registered n8n instances"""
    db = SessionLocal()
    try:
        registered = InstanceService().list_instances(db, user_id)
        if not registered:
            click.echo("No instances found")
            return

        click.echo(f"\nFound {len(registered)} instances:\n")
        for instance in registered:
            state = "active" if instance.is_active else "inactive"
            last_scan = instance.last_scanned_at.isoformat() if instance.last_scanned_at else "never"
            click.echo(
                f"  - {instance.name} (ID: {instance.id}, {instance.environment}, {state}, "
                f"version: {instance.version or 'unknown'}, last scan: {last_scan})"
            )
            click.echo(f"    {instance.url}")
    except Exception as e:
        logger.error(f"CLI error: {e}")
        click.echo(f"❌ Error: {e}", err=True)
    finally:
        db.close()


@cli.command()
@click.option('--id', 'instance_id', required=False, help='Instance id to scan')
@click.option('--all', 'scan_all', is_flag=True, help='Scan every active instance')
@click.option('--json', 'as_json', is_flag=True, help='Print the raw scan result as JSON')
def scan(instance_id, scan_all, as_json):
    """Run a security scan of one or all instances"""
    if bool(instance_id) == bool(scan_all):
        click.echo("❌ Please provide exactly one of --id or --all", err=True)
        raise SystemExit(2)

    db = SessionLocal()
    service = InstanceService()
    try:
        if instance_id:
            instance = service.get_instance_by_id(db, instance_id)
            result = asyncio.run(ScanService().scan_instance(service.to_connection(instance), refresh=True))
            service.record_scan(db, instance, result.scan_date)

            if as_json:
                click.echo(json.dumps(result.to_dict(), indent=2))
                return
            click.echo(f"\n✓ Scanned {instance.name}\n")
            _echo_stats(result.stats)
            click.echo("")
            _echo_findings(result.findings)
            return

        registered = service.list_instances(db, active_only=True)
        by_id = {instance.id: instance for instance in registered}
        connections, failed = service.to_connections(registered)
        aggregated = asyncio.run(
            AggregationService().scan_instances(connections, refresh=True, failed=failed)
        )
        for outcome in aggregated.instances:
            if outcome.success and outcome.result:
                service.record_scan(db, by_id[outcome.instance_id], outcome.result.scan_date)

        if as_json:
            click.echo(json.dumps(aggregated.to_dict(), indent=2))
            return

        click.echo(
            f"\nScanned {aggregated.stats.scanned_instances}/{aggregated.stats.total_instances} instances\n"
        )
        for outcome in aggregated.instances:
            if outcome.success:
                click.echo(f"✓ {outcome.instance_name}")
                _echo_stats(outcome.result.stats)
            else:
                click.echo(f"❌ {outcome.instance_name}: {outcome.error_type} - {outcome.error}")
        click.echo("")
        _echo_findings(aggregated.findings)
    except N8NClientError as e:
        logger.error(f"CLI scan error: {e}")
        click.echo(f"❌ Scan failed ({e.error_type}): {e}", err=True)
        raise SystemExit(1)
    except Exception as e:
        logger.error(f"CLI error: {e}")
        click.echo(f"❌ Error: {e}", err=True)
        raise SystemExit(1)
    finally:
        db.close()


if __name__ == '__main__':
    cli()
