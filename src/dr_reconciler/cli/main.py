"""Main CLI entry point."""

import sys
from typing import Optional

import click

from ..config.models import ReconcilerConfig
from ..config.parser import Config, ConfigValidationError
from ..engine.cancellation import CancellationToken, install_signal_handlers
from ..jobs import JOBS
from ..runner import run as run_job
from ..utils.errors import ReconcileError
from ..utils.logging import get_logger, setup_logging
from .output import RichReporter, console, jobs_table
from .validate import validate

logger = get_logger(__name__)


@click.group()
@click.option('--config', 'config_path', envvar='DR_RECONCILE_CONFIG', help='Path to configuration file')
@click.option('--log-level', type=click.Choice(['debug', 'info', 'warning', 'error']),
              help='Overrides the configured log level')
@click.option('--log-dir', help='Directory for JSON-lines log files')
@click.option('--json-logs', is_flag=True, help='Emit JSON log lines on the console')
@click.pass_context
def cli(ctx, config_path, log_level, log_dir, json_logs):
    """Multi-cluster OpenShift DR reconciliation."""
    ctx.ensure_object(dict)
    ctx.obj['config'] = config_path
    ctx.obj['log_level'] = log_level
    ctx.obj['log_dir'] = log_dir
    ctx.obj['json_logs'] = json_logs


cli.add_command(validate)


def load_config(ctx) -> ReconcilerConfig:
    """Load configuration and set up logging from it."""
    config_path = ctx.obj.get('config')
    try:
        settings = Config(config_path).load().get_settings()
    except FileNotFoundError:
        console.print(f"[red]Error:[/red] Configuration file not found: {config_path}")
        sys.exit(1)
    except ConfigValidationError as e:
        console.print("[red]Configuration validation failed:[/red]\n")
        console.print(str(e))
        sys.exit(1)

    setup_logging(
        ctx.obj.get('log_level') or settings.log_level,
        ctx.obj.get('log_dir') or settings.log_dir,
        json_console=bool(ctx.obj.get('json_logs')),
    )
    return settings


def apply_overrides(
    settings: ReconcilerConfig,
    job: str,
    max_attempts: Optional[int] = None,
    interval: Optional[float] = None,
    retry_forever: Optional[bool] = None
) -> ReconcilerConfig:
    """Copy of `settings` with command line policy overrides for one job."""
    update = {}
    if max_attempts is not None:
        update['max_attempts'] = max_attempts
    if interval is not None:
        update['interval_seconds'] = interval
    if retry_forever is not None:
        update['retry_forever'] = retry_forever
    if not update:
        return settings

    jobs = dict(settings.jobs)
    jobs[job] = settings.policy_for(job).model_copy(update=update)
    return settings.model_copy(update={'jobs': jobs})


def execute(ctx, job: str, settings: ReconcilerConfig, dry_run: bool, check_only: bool, verbose: bool):
    """Run a job with console reporting and exit with its status."""
    cancel = CancellationToken()
    install_signal_handlers(cancel)

    try:
        exit_code = run_job(
            settings,
            job,
            dry_run=dry_run or None,
            check_only=check_only,
            cancel=cancel,
            reporter=RichReporter(verbose=verbose),
        )
    except ReconcileError as e:
        logger.error(f"Reconciliation failed: {e.message}", extra={'error': e.to_dict()})
        console.print(f"[red]Reconciliation error:[/red] {e.to_user_message()}")
        sys.exit(1)
    except Exception as e:
        logger.exception("Unexpected error during reconciliation")
        console.print(f"[red]Unexpected error:[/red] {e}")
        sys.exit(1)

    sys.exit(exit_code)


@cli.command()
@click.pass_context
def jobs(ctx):
    """List jobs and their attempt policies."""
    settings = load_config(ctx)
    console.print(jobs_table(settings, JOBS))


@cli.command()
@click.argument('job', type=click.Choice(list(JOBS)))
@click.option('--dry-run', is_flag=True, help='Evaluate and report, never mutate')
@click.option('--check-only', is_flag=True, help='Evaluate only; no remediation or terminal action')
@click.option('--max-attempts', type=click.IntRange(min=1), help='Override attempts per cycle')
@click.option('--interval', type=click.FloatRange(min=0), help='Override seconds between attempts')
@click.option('--retry-forever/--no-retry-forever', default=None, help='Restart exhausted cycles indefinitely')
@click.option('--verbose', '-v', is_flag=True, help='Show every check result, not only failures')
@click.pass_context
def run(ctx, job, dry_run, check_only, max_attempts, interval, retry_forever, verbose):
    """Reconcile JOB until its checks pass or attempts run out."""
    settings = apply_overrides(load_config(ctx), job, max_attempts, interval, retry_forever)
    execute(ctx, job, settings, dry_run, check_only, verbose)


@cli.command()
@click.argument('job', type=click.Choice(list(JOBS)))
@click.option('--verbose', '-v', is_flag=True, help='Show every check result, not only failures')
@click.pass_context
def check(ctx, job, verbose):
    """Evaluate JOB once without remediating."""
    settings = apply_overrides(load_config(ctx), job, max_attempts=1, retry_forever=False)
    execute(ctx, job, settings, dry_run=False, check_only=True, verbose=verbose)


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
