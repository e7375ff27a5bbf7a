import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click

import odoo_sync.logging_filters  # noqa: F401  (installs log filters)
from odoo_sync.config import settings, validate_settings
from odoo_sync.models.jobs import STATUSES
from odoo_sync.services import Services, build_services

T = TypeVar("T")


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def run_with_services(ctx: click.Context, action: Callable[[Services], Awaitable[T]]) -> T:
    """Build the service graph, run one async action against it, tear it down."""
    factory: Callable[[], Services] = ctx.obj["build"]

    async def runner() -> T:
        services = factory()
        await services.init()
        try:
            return await action(services)
        finally:
            await services.close()

    return asyncio.run(runner())


def format_job_line(job: dict[str, Any]) -> str:
    error = job.get("error_message") or ""
    if len(error) > 60:
        error = error[:57] + "..."
    return (
        f"{job['id']:>6}  {job['status']:<10} {job['module']}/{job['entity_type']:<16} "
        f"{job['direction']:<10} {job['action']:<6} wp={job['wp_id']} odoo={job['odoo_id']} "
        f"try={job['attempts']}/{job['max_attempts']}  {error}"
    ).rstrip()


@click.group()
@click.option("--verbose", is_flag=True, help="Enable debug logging")
@click.option("--database", "dsn", envvar="DATABASE_URL", help="SQLAlchemy async DSN")
@click.pass_context
def main(ctx: click.Context, verbose: bool, dsn: str | None) -> None:
    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj.setdefault("build", lambda: build_services(settings, dsn=dsn))


# ---------------------------
# queue
# ---------------------------

@main.group("queue")
def queue_group() -> None:
    """Inspect and manage the sync queue."""


@queue_group.command("stats")
@click.pass_context
def queue_stats_command(ctx: click.Context) -> None:
    stats = run_with_services(ctx, lambda s: s.queue.stats())
    for status in STATUSES:
        click.echo(f"{status:<11} {stats[status]}")
    click.echo(f"{'total':<11} {stats['total']}")
    click.echo(f"last completed: {stats['last_completed_at'] or 'never'}")


@queue_group.command("list")
@click.option("--status", type=click.Choice(STATUSES))
@click.option("--page", type=int, default=1, show_default=True)
@click.option("--per-page", type=int, default=30, show_default=True)
@click.pass_context
def queue_list_command(ctx: click.Context, status: str | None, page: int, per_page: int) -> None:
    from odoo_sync.queue.repository import job_to_dict

    async def action(services: Services) -> dict[str, Any]:
        result = await services.queue_repo.list_jobs(page, per_page, status)
        result["items"] = [job_to_dict(j) for j in result["items"]]
        return result

    result = run_with_services(ctx, action)
    if not result["items"]:
        click.echo("No jobs.")
        return
    for job in result["items"]:
        click.echo(format_job_line(job))
    click.echo(f"page {result['page']}/{result['pages']} ({result['total']} jobs)")


@queue_group.command("retry")
@click.pass_context
def queue_retry_command(ctx: click.Context) -> None:
    count = run_with_services(ctx, lambda s: s.queue.retry_failed())
    click.echo(f"{count} failed job(s) reset to pending.")


@queue_group.command("cleanup")
@click.option("--days", type=click.IntRange(min=0), default=settings.SYNC_CLEANUP_DAYS, show_default=True)
@click.pass_context
def queue_cleanup_command(ctx: click.Context, days: int) -> None:
    count = run_with_services(ctx, lambda s: s.queue.cleanup(days))
    click.echo(f"{count} job(s) older than {days} day(s) deleted.")


@queue_group.command("cancel")
@click.argument("job_id", type=int)
@click.pass_context
def queue_cancel_command(ctx: click.Context, job_id: int) -> None:
    if not run_with_services(ctx, lambda s: s.queue.cancel(job_id)):
        raise click.ClickException(f"job {job_id} not found or no longer pending")
    click.echo(f"Job {job_id} cancelled.")


# ---------------------------
# sync
# ---------------------------

@main.group("sync")
def sync_group() -> None:
    """Run the queue processor."""


@sync_group.command("run")
@click.option("--dry-run", is_flag=True, help="Log due jobs and mark them done without calling Odoo")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def sync_run_command(ctx: click.Context, dry_run: bool, yes: bool) -> None:
    if not dry_run and not yes:
        click.confirm("Process due jobs against Odoo now?", abort=True)
    report = run_with_services(ctx, lambda s: s.sync_engine.process_queue(dry_run=dry_run))
    if report.circuit_open:
        click.echo("Circuit breaker is open; Odoo calls are suspended, nothing done.")
        return
    if report.skipped:
        click.echo("Another processor is running; nothing done.")
        return
    for o in report.outcomes:
        line = f"job {o.job_id}: {o.status}"
        if o.error:
            line += f" [{o.error_type}] {o.error}"
        click.echo(line)
    prefix = "[dry-run] " if report.dry_run else ""
    click.echo(f"{prefix}{report.processed} completed, {report.failed} failed, {report.deferred} deferred.")


# ---------------------------
# reconcile
# ---------------------------

@main.command("reconcile")
@click.argument("module_id")
@click.argument("entity_type", required=False)
@click.option("--fix", is_flag=True, help="Delete orphaned mappings")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def reconcile_command(ctx: click.Context, module_id: str, entity_type: str | None, fix: bool, yes: bool) -> None:
    if fix and not yes:
        click.confirm("Delete orphaned mappings?", abort=True)

    async def action(services: Services) -> dict[str, Any]:
        module = services.registry.get(module_id)
        if module is None:
            raise click.ClickException(f"unknown module {module_id!r}")
        models = module.get_odoo_models()
        if entity_type is not None:
            if entity_type not in models:
                raise click.ClickException(f"module {module_id!r} has no entity type {entity_type!r}")
            models = {entity_type: models[entity_type]}
        return await services.reconciler.reconcile_module(module_id, models, fix=fix)

    results = run_with_services(ctx, action)
    for etype, report in results.items():
        click.echo(f"{module_id}/{etype}: {report['checked']} checked, "
                   f"{len(report['orphaned'])} orphaned, {report['fixed']} fixed")
        for orphan in report["orphaned"]:
            click.echo(f"  orphan wp_id={orphan['wp_id']} odoo_id={orphan['odoo_id']}")


# ---------------------------
# module / status
# ---------------------------

@main.group("module")
def module_group() -> None:
    """Registered module adapters."""


@module_group.command("list")
@click.pass_context
def module_list_command(ctx: click.Context) -> None:
    async def action(services: Services) -> list[tuple[str, dict[str, str]]]:
        return [(m.module_id, m.get_odoo_models()) for m in services.registry.all()]

    modules = run_with_services(ctx, action)
    if not modules:
        click.echo("No modules registered (set MODULE_MODELS).")
        return
    for module_id, models in modules:
        click.echo(module_id)
        for etype, model in sorted(models.items()):
            click.echo(f"  {etype:<20} -> {model}")


@main.command("status")
@click.pass_context
def status_command(ctx: click.Context) -> None:
    async def action(services: Services) -> tuple[list[str], dict[str, Any], dict[str, Any]]:
        return validate_settings(services.settings), services.breaker.snapshot(), await services.queue.stats()

    problems, circuit, stats = run_with_services(ctx, action)
    click.echo(f"circuit: {circuit['state']} (failures={circuit['failure_count']})")
    click.echo("queue: " + ", ".join(f"{s}={stats[s]}" for s in STATUSES))
    if problems:
        click.echo("configuration problems:")
        for p in problems:
            click.echo(f"  - {p}")
    else:
        click.echo("configuration: ok")


if __name__ == "__main__":
    main()
