"""
Cohort reports CLI - Command line interface for the digest job and server.

Usage:
    cohort-digest --help                          Show all commands
    cohort-digest digest --courseid 42            Email every cohort manager
    cohort-digest digest --courseid 42 --dry-run  Build and log without sending
    cohort-digest digest --courseid 42 --site-context-manager-userid 2
                                                  One all-cohorts digest
    cohort-digest serve                           Start the report web app
    cohort-digest migrate                         Create the digest log table
"""

import asyncio

import click
import typer

from cohort_reports.services.digest_dispatch import (
    DigestConfigurationError,
    DigestError,
    DigestOptions,
    SenderNotFoundError,
    validate_options,
)

app = typer.Typer(
    name="cohort-digest",
    help="Cohort reports CLI - course digests for cohort managers",
)


# --- Step printer helpers ---


def _print_step(step_num: int, total: int, message: str) -> None:
    """Print a step progress message."""
    typer.echo(f"\n[{step_num}/{total}] {message}...")


def _print_success(message: str) -> None:
    """Print a success message."""
    typer.echo(f"  ✅ {message}")


def _print_warning(message: str) -> None:
    """Print a warning message."""
    typer.echo(f"  ⚠️ {message}")


def _print_skipped(message: str) -> None:
    """Print a skipped step message."""
    typer.echo(f"  ⏭️ {message}")


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


@app.callback(invoke_without_command=True)
def _root(ctx: typer.Context) -> None:
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(0)


@app.command()
def digest(
    ctx: typer.Context,
    courseid: int | None = typer.Option(None, "--courseid", help="Course to report on"),
    since_days: int | None = typer.Option(
        None, "--since-days", help="Recent enrollment window in days (default 40)"
    ),
    years_back: int | None = typer.Option(
        None, "--years-back", help="Not-completed lookback in years (default 1)"
    ),
    manager_userid: int | None = typer.Option(
        None, "--manager-userid", help="Send only to this cohort manager"
    ),
    site_context_manager_userid: int | None = typer.Option(
        None,
        "--site-context-manager-userid",
        help="Send one all-cohorts digest to this site admin or site manager",
    ),
    noreply_userid: int | None = typer.Option(
        None, "--noreply-userid", help="User id of the sender (default 493)"
    ),
    roleid_manager: int | None = typer.Option(
        None, "--roleid-manager", help="Cohort manager role id (default 10)"
    ),
    roleid_site_manager: int | None = typer.Option(
        None, "--roleid-site-manager", help="Site manager role id (default 1)"
    ),
    min_interval_days: int | None = typer.Option(
        None, "--min-interval-days", help="Skip recipients sent to within this many days"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Build and log without sending"),
):
    """Email cohort digests for a course."""
    if courseid is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(0)

    from cohort_reports.config import get_config, get_settings

    settings = get_settings()
    config = get_config()

    options = DigestOptions(
        course_id=courseid,
        since_days=since_days if since_days is not None else config.reports.digest_since_days,
        years_back=years_back if years_back is not None else config.reports.years_back,
        manager_userid=manager_userid,
        site_context_manager_userid=site_context_manager_userid,
        roleid_manager=(
            roleid_manager if roleid_manager is not None else settings.roleid_cohort_manager
        ),
        roleid_site_manager=(
            roleid_site_manager
            if roleid_site_manager is not None
            else settings.roleid_site_manager
        ),
        min_interval_days=(
            min_interval_days if min_interval_days is not None else config.digest.min_interval_days
        ),
        dry_run=dry_run,
    )

    try:
        validate_options(options)
    except DigestConfigurationError as e:
        _print_error(str(e))
        raise typer.Exit(1)

    from cohort_reports.core.logging import setup_logging
    from cohort_reports.jobs.digest import main

    setup_logging()

    mode = "site-context" if options.site_context else "per-manager"
    _print_step(1, 2, f"Sending course {courseid} digests ({mode}{', dry run' if dry_run else ''})")

    try:
        summary = asyncio.run(main(options, noreply_userid=noreply_userid))
    except SenderNotFoundError as e:
        _print_error(str(e))
        raise typer.Exit(2)
    except DigestError as e:
        _print_error(str(e))
        raise typer.Exit(1)

    _print_step(2, 2, "Summary")
    if summary.sent:
        _print_success(f"{summary.sent} digest(s) sent")
    if summary.dry_run:
        _print_skipped(f"{summary.dry_run} digest(s) built in dry-run mode")
    if summary.failed:
        _print_warning(f"{summary.failed} digest(s) failed, see the digest log")
    if summary.skipped_throttle:
        _print_skipped(f"{summary.skipped_throttle} recipient(s) throttled")
    if summary.skipped_no_cohorts:
        _print_skipped(f"{summary.skipped_no_cohorts} recipient(s) without cohorts")
    if not summary.attempted:
        _print_warning("No digests attempted")


@app.command()
def migrate():
    """Run database migrations (alembic upgrade head)."""
    import subprocess

    result = subprocess.run(["alembic", "upgrade", "head"], check=False)
    raise typer.Exit(result.returncode)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable hot reload"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to run on"),
):
    """Start the report web app."""
    import subprocess

    cmd = ["uvicorn", "cohort_reports.main:app", "--host", "0.0.0.0", "--port", str(port)]
    if reload:
        cmd.append("--reload")

    subprocess.run(cmd, check=False)


def main() -> None:
    """Console entry point. Usage errors exit with 1 instead of click's 2."""
    try:
        rv = app(standalone_mode=False)
    except click.UsageError as e:
        e.show()
        raise SystemExit(1)
    except click.Abort:
        _print_error("Aborted")
        raise SystemExit(1)
    raise SystemExit(rv or 0)


if __name__ == "__main__":
    main()
