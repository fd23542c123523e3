"""
Command-line interface for LaraHarbor

One subcommand per lifecycle operation. Prompting happens here only; the
orchestrator never asks the operator anything.
"""

import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from .config import HarborConfig, load_config
from .environment.orchestrator import LifecycleOrchestrator
from .errors import HarborError
from .logging_config import setup_logging
from .models import BackupStatus, DatabaseEngine, SourceMode

# Global configuration object
config: Optional[HarborConfig] = None

DATABASE_CHOICES = {
    "mysql": DatabaseEngine.MYSQL,
    "pgsql": DatabaseEngine.POSTGRES,
    "postgres": DatabaseEngine.POSTGRES,
}


def get_orchestrator(ctx: click.Context) -> LifecycleOrchestrator:
    """Return the orchestrator for this invocation, building it on first use."""
    if ctx.obj.get("orchestrator") is None:
        ctx.obj["orchestrator"] = LifecycleOrchestrator(ctx.obj["config"])
    return ctx.obj["orchestrator"]


def fail(message: str) -> None:
    click.echo(f"❌ {message}", err=True)
    sys.exit(1)


@click.group()
@click.option(
    "--config-file",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Set logging level",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output",
)
@click.option(
    "--log-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Directory for log files",
)
@click.option(
    "--root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding every site (default ~/LaraHarbor)",
)
@click.version_option(package_name="laraharbor")
@click.pass_context
def cli(
    ctx: click.Context,
    config_file: Optional[Path],
    log_level: Optional[str],
    verbose: bool,
    log_dir: Optional[Path],
    root: Optional[Path],
) -> None:
    """
    LaraHarbor: multi-site local Laravel environments

    Create and manage isolated Laravel sites, each reachable at
    https://<name>.local behind one shared proxy.
    """
    global config

    try:
        config = load_config(
            config_file=str(config_file) if config_file else None,
            cli_overrides={
                k: v for k, v in {
                    "log_level": log_level.upper() if log_level else None,
                    "verbose": verbose or None,
                    "log_dir": str(log_dir) if log_dir else None,
                    "root_dir": str(root) if root else None,
                }.items() if v is not None
            },
        )
    except ValueError as e:
        fail(f"Invalid configuration: {e}")

    setup_logging(
        log_dir=str(config.get_log_dir_path()),
        verbose=config.verbose,
        log_level=config.log_level,
    )

    # Store config in context for subcommands
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command()
@click.pass_context
def setup(ctx: click.Context) -> None:
    """Create the shared network and start the proxy, mail and backup services."""
    click.echo("🚀 Setting up shared infrastructure...")
    try:
        result = get_orchestrator(ctx).setup()
    except HarborError as e:
        fail(f"Setup failed: {e}")

    if result.network_created:
        click.echo(f"✅ Network {ctx.obj['config'].network_name} created")
    for name in result.started:
        click.echo(f"✅ {name} started")
    for name in result.already_running:
        click.echo(f"   {name} already running")
    for warning in result.warnings:
        click.echo(f"⚠️  {warning}")
    click.echo(f"\n🎉 Shared infrastructure ready. Mail UI: https://{ctx.obj['config'].mail_host}")


@cli.command()
@click.argument("name", required=False)
@click.option(
    "--database",
    "-d",
    type=click.Choice(sorted(DATABASE_CHOICES), case_sensitive=False),
    default=None,
    help="Database engine",
)
@click.option("--cache/--no-cache", default=None, help="Include a Redis cache service")
@click.option(
    "--source",
    type=click.Choice([m.value for m in SourceMode], case_sensitive=False),
    default=None,
    help="Scaffold a fresh Laravel project or import an existing one",
)
@click.pass_context
def create(
    ctx: click.Context,
    name: Optional[str],
    database: Optional[str],
    cache: Optional[bool],
    source: Optional[str],
) -> None:
    """Create a new site. Prompts for anything not given on the command line."""
    if name is None:
        name = click.prompt("Site name")
    if database is None:
        database = click.prompt(
            "Database",
            type=click.Choice(["mysql", "pgsql"], case_sensitive=False),
            default="mysql",
        )
    if cache is None:
        cache = click.confirm("Include Redis cache?", default=True)
    if source is None:
        source = click.prompt(
            "Source",
            type=click.Choice([m.value for m in SourceMode], case_sensitive=False),
            default=SourceMode.FRESH.value,
        )

    click.echo(f"🚀 Creating site '{name}'...")
    try:
        result = get_orchestrator(ctx).create(
            name,
            engine=DATABASE_CHOICES[database.lower()],
            cache_enabled=cache,
            source_mode=SourceMode(source.lower()),
        )
    except HarborError as e:
        fail(f"Failed to create site: {e}")

    click.echo(f"✅ Site '{result.name}' created in {result.directory}")
    click.echo(f"   Site:     {result.url}")
    click.echo(f"   DB admin: {result.admin_url}")
    click.echo(f"   Mail:     {result.mail_url}")
    click.echo(f"   DB password:      {result.credentials.db_password}")
    click.echo(f"   DB root password: {result.credentials.db_root_password}")
    if result.credentials.cache_password:
        click.echo(f"   Redis password:   {result.credentials.cache_password}")
    if SourceMode(source.lower()) == SourceMode.IMPORT:
        click.echo(f"\n📦 Copy your project into {result.directory / 'src'} and run './composer install'")
    for warning in result.warnings:
        click.echo(f"⚠️  {warning}")
    if result.ready:
        click.echo(f"\n🎉 {result.url} is up")


@cli.command()
@click.argument("name", required=False)
@click.option("--all", "all_sites", is_flag=True, help="Back up every site and prune old dumps")
@click.pass_context
def backup(ctx: click.Context, name: Optional[str], all_sites: bool) -> None:
    """Dump a site's database (or every site's with --all)."""
    if not name and not all_sites:
        raise click.UsageError("Give a site NAME or --all")

    orchestrator = get_orchestrator(ctx)
    if all_sites:
        try:
            sweep = orchestrator.backup_all()
        except HarborError as e:
            fail(f"Backup failed: {e}")
        for result in sweep.results:
            click.echo(result.get_summary())
        if sweep.pruned:
            click.echo(f"🧹 Pruned {len(sweep.pruned)} old backup(s)")
        if sweep.failures:
            fail(f"{len(sweep.failures)} backup(s) failed")
        return

    try:
        result = orchestrator.backup(name)
    except HarborError as e:
        fail(f"Backup failed: {e}")
    click.echo(result.get_summary())


@cli.command("list")
@click.pass_context
def list_sites(ctx: click.Context) -> None:
    """List all sites with their state and backup count."""
    statuses = get_orchestrator(ctx).list()
    if not statuses:
        click.echo("No sites found. Create one with 'harbor create'.")
        return

    click.echo(f"{'NAME':<24} {'STATE':<10} {'BACKUPS':<8} URL")
    for status in statuses:
        state = "running" if status.running else "stopped"
        click.echo(f"{status.name:<24} {state:<10} {status.backup_count:<8} {status.url}")


def _report_sweep(verb: str, sweep) -> None:
    for name in sweep.succeeded:
        click.echo(f"✅ {name} {verb}")
    for name, message in sorted(sweep.failures.items()):
        click.echo(f"❌ {name}: {message}", err=True)
    if not sweep.success:
        sys.exit(1)


@cli.command("start-all")
@click.pass_context
def start_all(ctx: click.Context) -> None:
    """Start the shared services and every site."""
    click.echo("🚀 Starting all sites...")
    try:
        sweep = get_orchestrator(ctx).start_all()
    except HarborError as e:
        fail(f"Failed to start sites: {e}")
    _report_sweep("started", sweep)


@cli.command("stop-all")
@click.pass_context
def stop_all(ctx: click.Context) -> None:
    """Stop every site and the shared services."""
    click.echo("🛑 Stopping all sites...")
    try:
        sweep = get_orchestrator(ctx).stop_all()
    except HarborError as e:
        fail(f"Failed to stop sites: {e}")
    _report_sweep("stopped", sweep)


@cli.command()
@click.argument("name")
@click.pass_context
def start(ctx: click.Context, name: str) -> None:
    """Start one site."""
    try:
        get_orchestrator(ctx).start(name)
    except HarborError as e:
        fail(f"Failed to start site: {e}")
    click.echo(f"✅ Site '{name}' started")


@cli.command()
@click.argument("name")
@click.pass_context
def stop(ctx: click.Context, name: str) -> None:
    """Stop one site."""
    try:
        get_orchestrator(ctx).stop(name)
    except HarborError as e:
        fail(f"Failed to stop site: {e}")
    click.echo(f"✅ Site '{name}' stopped")


@cli.command()
@click.argument("name")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.option(
    "--require-backup",
    is_flag=True,
    help="Keep the site if the final backup cannot be written",
)
@click.pass_context
def delete(ctx: click.Context, name: str, yes: bool, require_backup: bool) -> None:
    """Back up, stop and remove a site."""
    confirmed = yes or click.confirm(
        f"Delete site '{name}'? Its database is backed up first", default=False
    )
    if not confirmed:
        click.echo("Aborted.")
        return

    click.echo(f"🗑️ Deleting site '{name}'...")
    try:
        result = get_orchestrator(ctx).delete(name, confirmed=True, require_backup=require_backup)
    except HarborError as e:
        fail(f"Failed to delete site: {e}")

    if result.backup and result.backup.status == BackupStatus.COMPLETED:
        click.echo(f"💾 Final backup: {result.backup.path}")
    for warning in result.warnings:
        click.echo(f"⚠️  {warning}")
    click.echo(f"✅ Site '{name}' deleted")


@cli.command()
@click.argument("name")
@click.pass_context
def regenerate(ctx: click.Context, name: str) -> None:
    """Re-render a site's files from its saved settings."""
    try:
        written = get_orchestrator(ctx).regenerate(name)
    except HarborError as e:
        fail(f"Failed to regenerate site: {e}")
    click.echo(f"✅ Regenerated {len(written)} files for '{name}'")
    click.echo(f"   Run 'harbor start {name}' to apply changes")


@cli.command(context_settings={"ignore_unknown_options": True})
@click.argument("name")
@click.argument("tool", type=click.Choice(["artisan", "composer", "npm"]))
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def run(ctx: click.Context, name: str, tool: str, args: Tuple[str, ...]) -> None:
    """Run artisan, composer or npm inside a site's app container."""
    try:
        get_orchestrator(ctx).run_tool(name, tool, list(args))
    except HarborError as e:
        fail(str(e))


@cli.command("config-show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Display current configuration."""
    config = ctx.obj["config"]

    click.echo("Current LaraHarbor Configuration:")
    click.echo("=" * 40)
    click.echo(f"Root Dir            : {config.root_path}")
    click.echo(f"Network             : {config.network_name}")
    click.echo(f"Domain Suffix       : {config.domain_suffix}")
    click.echo(f"Mail Host           : {config.mail_host}")
    click.echo(f"Hosts File          : {config.hosts_file}")
    click.echo(f"Container Runtime   : {config.container_runtime}")
    click.echo(f"Backup Retention    : {config.backup_retention_days} days")
    click.echo(f"Log Level           : {config.log_level}")
    click.echo(f"Log Dir             : {config.get_log_dir_path()}")
    click.echo(f"Verbose             : {config.verbose}")


@cli.command()
@click.pass_context
def version(ctx: click.Context) -> None:
    """Display version information."""
    from importlib.metadata import PackageNotFoundError
    from importlib.metadata import version as get_version

    try:
        harbor_version = get_version("laraharbor")
    except PackageNotFoundError:
        harbor_version = "development"

    click.echo(f"LaraHarbor version: {harbor_version}")

    config = ctx.obj["config"]
    import subprocess

    try:
        result = subprocess.run(
            [config.container_runtime, "--version"],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        click.echo(f"Container runtime: {config.container_runtime} not available")
        return
    if result.returncode == 0:
        click.echo(f"Container runtime: {result.stdout.strip().splitlines()[0]}")


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
