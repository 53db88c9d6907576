"""Command-line interface for managing Overmind AWS sources."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Annotated

import structlog
import typer
from rich.console import Console
from rich.table import Table

from overmind_provider.config import Config, state_file_from_env
from overmind_provider.models import AWSSourceConfig, AWSSourceState
from overmind_provider.provider import OvermindProvider
from overmind_provider.state import StateStore

# Create Typer app
app = typer.Typer(
    name="overmind-provider",
    help="Manage Overmind AWS infrastructure sources",
    add_completion=False,
)

console = Console()

ConfigFileOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Path to configuration file (optional, uses environment variables by default)",
    ),
]
LogLevelOption = Annotated[
    str | None,
    typer.Option(
        "--log-level",
        "-l",
        help="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    ),
]
StateFileOption = Annotated[
    Path | None,
    typer.Option("--state-file", "-s", help="Tracked state file"),
]
AddressArgument = Annotated[
    str, typer.Argument(help="Address the source is tracked under, e.g. prod")
]
NameOption = Annotated[
    str, typer.Option("--name", "-n", help="Human-readable name for this source")
]
RoleArnOption = Annotated[
    str,
    typer.Option(
        "--role-arn", help="ARN of the IAM role to assume in the customer's AWS account"
    ),
]
RegionOption = Annotated[
    list[str],
    typer.Option(
        "--region", "-r", help="AWS region to discover resources in (repeatable)"
    ),
]


def setup_logging(log_level: str = "ERROR", log_format: str = "text") -> None:
    """Setup structured logging.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: Log format (json or text).
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper(), logging.ERROR),
        force=True,
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format.lower() == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _load_config(
    config_file: Path | None,
    log_level: str | None,
    state_file: Path | None = None,
) -> Config:
    """Load configuration, apply CLI overrides and set up logging."""
    config = Config.from_file(config_file) if config_file else Config.from_env()
    if log_level:
        config.logging.level = log_level.upper()
    if state_file:
        config.state_file = state_file
    setup_logging(config.logging.level, config.logging.format)
    return config


def _fail(action: str, error: Exception) -> None:
    console.print(f"[red]✗ {action} failed: {error}[/red]")
    structlog.get_logger(__name__).error(
        "Command failed", action=action, error=str(error)
    )
    sys.exit(1)


def _display_source(address: str, state: AWSSourceState) -> None:
    table = Table(title=f"overmind_aws_source.{address}")
    table.add_column("Attribute", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("id", state.identifier)
    table.add_row("name", state.name or "")
    table.add_row("aws_role_arn", state.role_reference or "")
    table.add_row("aws_regions", ", ".join(state.region_set or []))
    table.add_row("external_id", state.external_identity or "")
    table.add_row("status", state.status.value)
    console.print(table)


@app.command("external-id")
def external_id(
    config_file: ConfigFileOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Show the account's AWS external ID.

    Use it in the trust policy of the IAM role before creating a source.
    """
    try:
        config = _load_config(config_file, log_level)
        result = asyncio.run(_external_id_main(config))
        console.print(result.external_identity)
    except Exception as e:
        _fail("Reading external ID", e)


async def _external_id_main(config: Config):
    async with OvermindProvider(config.provider) as provider:
        return await provider.aws_external_id().fetch()


@app.command()
def create(
    address: AddressArgument,
    name: NameOption,
    role_arn: RoleArnOption,
    regions: RegionOption,
    config_file: ConfigFileOption = None,
    state_file: StateFileOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Create a source and start tracking it under ADDRESS.

    Examples:
        overmind-provider create prod --name "Production" \\
            --role-arn arn:aws:iam::123456789012:role/overmind \\
            --region us-east-1 --region eu-west-1
    """
    try:
        config = _load_config(config_file, log_level, state_file)
        store = StateStore(config.state_file).load()
        if address in store:
            raise ValueError(
                f"{address} is already tracked; use 'update' or 'delete' instead"
            )
        desired = AWSSourceConfig(name=name, role_reference=role_arn, region_set=regions)
        state = asyncio.run(_create_main(config, desired))
        store.put(address, state)
        store.save()
        console.print(f"[green]✓[/green] Created {address} ({state.identifier})")
        _display_source(address, state)
    except Exception as e:
        _fail("Create", e)


async def _create_main(config: Config, desired: AWSSourceConfig) -> AWSSourceState:
    async with OvermindProvider(config.provider) as provider:
        return await provider.aws_source().create(desired)


@app.command()
def read(
    address: AddressArgument,
    config_file: ConfigFileOption = None,
    state_file: StateFileOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Refresh a tracked source from Overmind, pulling in remote changes."""
    try:
        config = _load_config(config_file, log_level, state_file)
        store = StateStore(config.state_file).load()
        tracked = _require_tracked(store, address)
        state = asyncio.run(_read_main(config, tracked))
        if state is None:
            store.remove(address)
            store.save()
            console.print(
                f"[yellow]![/yellow] {address} no longer exists in Overmind; removed from state"
            )
            return
        store.put(address, state)
        store.save()
        _display_source(address, state)
    except Exception as e:
        _fail("Read", e)


async def _read_main(config: Config, tracked: AWSSourceState) -> AWSSourceState | None:
    async with OvermindProvider(config.provider) as provider:
        return await provider.aws_source().read(tracked)


@app.command()
def update(
    address: AddressArgument,
    name: NameOption,
    role_arn: RoleArnOption,
    regions: RegionOption,
    config_file: ConfigFileOption = None,
    state_file: StateFileOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Replace the configuration of a tracked source."""
    try:
        config = _load_config(config_file, log_level, state_file)
        store = StateStore(config.state_file).load()
        tracked = _require_tracked(store, address)
        desired = AWSSourceConfig(name=name, role_reference=role_arn, region_set=regions)
        state = asyncio.run(_update_main(config, desired, tracked))
        store.put(address, state)
        store.save()
        console.print(f"[green]✓[/green] Updated {address}")
        _display_source(address, state)
    except Exception as e:
        _fail("Update", e)


async def _update_main(
    config: Config, desired: AWSSourceConfig, tracked: AWSSourceState
) -> AWSSourceState:
    async with OvermindProvider(config.provider) as provider:
        return await provider.aws_source().update(desired, tracked)


@app.command()
def delete(
    address: AddressArgument,
    config_file: ConfigFileOption = None,
    state_file: StateFileOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Delete a tracked source and stop tracking it."""
    try:
        config = _load_config(config_file, log_level, state_file)
        store = StateStore(config.state_file).load()
        tracked = _require_tracked(store, address)
        asyncio.run(_delete_main(config, tracked))
        store.remove(address)
        store.save()
        console.print(f"[green]✓[/green] Deleted {address}")
    except Exception as e:
        _fail("Delete", e)


async def _delete_main(config: Config, tracked: AWSSourceState) -> None:
    async with OvermindProvider(config.provider) as provider:
        await provider.aws_source().delete(tracked)


@app.command("import")
def import_source(
    address: AddressArgument,
    source_id: Annotated[str, typer.Argument(help="UUID of the existing source")],
    config_file: ConfigFileOption = None,
    state_file: StateFileOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Start tracking an existing source under ADDRESS."""
    try:
        config = _load_config(config_file, log_level, state_file)
        store = StateStore(config.state_file).load()
        if address in store:
            raise ValueError(f"{address} is already tracked")
        state = asyncio.run(_import_main(config, source_id))
        if state is None:
            console.print(
                f"[yellow]![/yellow] Source {source_id} does not exist in Overmind; nothing imported"
            )
            return
        store.put(address, state)
        store.save()
        console.print(f"[green]✓[/green] Imported {address} ({state.identifier})")
        _display_source(address, state)
    except Exception as e:
        _fail("Import", e)


async def _import_main(config: Config, source_id: str) -> AWSSourceState | None:
    async with OvermindProvider(config.provider) as provider:
        reconciler = provider.aws_source()
        seeded = reconciler.import_state(source_id)
        return await reconciler.read(seeded)


@app.command()
def show(
    config_file: ConfigFileOption = None,
    state_file: StateFileOption = None,
) -> None:
    """List tracked sources without contacting Overmind.

    The state file is taken from --state-file, then the configuration file,
    then OVERMIND_STATE_FILE.
    """
    try:
        if state_file is None:
            state_file = (
                _load_config(config_file, None).state_file
                if config_file
                else state_file_from_env()
            )
        store = StateStore(state_file).load()
    except Exception as e:
        _fail("Show", e)

    if not len(store):
        console.print("No sources tracked")
        return

    table = Table(title="Tracked Sources")
    table.add_column("Address", style="cyan")
    table.add_column("ID", style="blue")
    table.add_column("Name", style="magenta")
    table.add_column("Regions", style="green")
    table.add_column("Status", style="yellow")
    for address in store.addresses():
        state = store.get(address)
        table.add_row(
            address,
            state.identifier,
            state.name or "",
            ", ".join(state.region_set or []),
            state.status.value,
        )
    console.print(table)


@app.command()
def validate(
    config_file: ConfigFileOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Validate configuration and resolve the Overmind instance."""
    try:
        console.print("[blue]Validating configuration...[/blue]")
        config = _load_config(config_file, log_level)
        console.print("[green]✓[/green] Configuration loaded successfully")

        console.print("[blue]Resolving Overmind instance...[/blue]")
        api_url = asyncio.run(_validate_main(config))
        console.print(f"[green]✓[/green] API URL: {api_url}")
    except Exception as e:
        _fail("Validation", e)


async def _validate_main(config: Config) -> str:
    async with OvermindProvider(config.provider) as provider:
        return provider.client.api_url


@app.command()
def version() -> None:
    """Show version information."""
    from overmind_provider import __version__

    console.print(f"overmind-provider version {__version__}")


def _require_tracked(store: StateStore, address: str) -> AWSSourceState:
    state = store.get(address)
    if state is None:
        raise ValueError(f"{address} is not tracked in {store.state_file}")
    return state


if __name__ == "__main__":
    app()
