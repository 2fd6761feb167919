"""Command-line interface for mail-rpc.

Usage:
    mail-rpc [--config config.ini] accounts list
    mail-rpc send <account> <command...> [--body '{"k": "v"}'] [--timeout 30]
    mail-rpc config list
    mail-rpc config get autoDelete
    mail-rpc config set autoDelete false
    mail-rpc config remove apiKeys

Example:
    $ mail-rpc -c /etc/mail-rpc.ini send work usage
    $ mail-rpc -c /etc/mail-rpc.ini send work mkbook friends --json
"""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Any, Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from mail_rpc.accounts import AccountDirectory
from mail_rpc.config import Config, Settings, load_settings
from mail_rpc.errors import ConfigKeyError, MailRpcError
from mail_rpc.service import MailRpcService, configure_logging

console = Console()
err_console = Console(stderr=True)


def run_async(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    err_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_json(data: Any) -> None:
    """Print data as formatted JSON."""
    console.print_json(json.dumps(data, indent=2, default=str))


def parse_value(value: str) -> Any:
    """Interpret a command-line value as JSON, falling back to the raw string."""
    try:
        return json.loads(value)
    except ValueError:
        return value


def _settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


def _public(account) -> dict:
    """Account as a dict without server passwords."""
    data = account.model_dump()
    for section in ("smtp", "imap"):
        if data.get(section):
            data[section].pop("password", None)
    return data


@click.group()
@click.option("--config", "-c", "config_path", type=click.Path(dir_okay=False), default=None,
              help="INI configuration file (default: $MRPC_CONFIG or config.ini).")
@click.option("--log-level", default=None, help="Logging level (default: $MRPC_LOG_LEVEL or INFO).")
@click.version_option(package_name="mail-rpc")
@click.pass_context
def main(ctx: click.Context, config_path: Optional[str], log_level: Optional[str]) -> None:
    """Request/response RPC over email."""
    settings = load_settings(config_path)
    if log_level:
        settings.log_level = log_level.upper()
    configure_logging(settings.log_level)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


# ============================================================================
# send
# ============================================================================

@main.command("send")
@click.argument("account_id")
@click.argument("command", nargs=-1, required=True)
@click.option("--body", "-b", default=None, help="JSON payload sent as the email body.")
@click.option("--timeout", "-t", type=float, default=None, help="Seconds to wait for the reply (0 = forever).")
@click.option("--json", "as_json", is_flag=True, help="Output as raw JSON.")
@click.pass_context
def send(ctx: click.Context, account_id: str, command: Tuple[str, ...], body: Optional[str],
         timeout: Optional[float], as_json: bool) -> None:
    """Send COMMAND from ACCOUNT_ID and print the reply."""
    settings = _settings(ctx)
    payload = parse_value(body) if body is not None else None

    async def _send():
        service = await MailRpcService.from_settings(settings)
        async with service:
            return await service.controller.send_request(account_id, " ".join(command), payload, timeout)

    try:
        result = run_async(_send())
    except MailRpcError as exc:
        print_error(f"{exc.code}: {exc}")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(result, default=str))
    else:
        print_json(result)


# ============================================================================
# accounts
# ============================================================================

@main.group("accounts", invoke_without_command=True)
@click.pass_context
def accounts(ctx: click.Context) -> None:
    """Inspect configured accounts."""
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@accounts.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def accounts_list(ctx: click.Context, as_json: bool) -> None:
    """List the accounts declared in the configuration file."""
    settings = _settings(ctx)
    directory = AccountDirectory.from_config(settings.config_path) if settings.config_path else AccountDirectory()
    account_map = run_async(directory.get_accounts())

    if as_json:
        print_json({key: _public(account) for key, account in account_map.items()})
        return

    if not account_map:
        console.print("[dim]No accounts found.[/dim]")
        return

    table = Table(title="Accounts")
    table.add_column("ID", style="cyan")
    table.add_column("Email")
    table.add_column("Control address")
    table.add_column("SMTP", justify="center")
    table.add_column("IMAP", justify="center")

    for account in account_map.values():
        table.add_row(
            account.id,
            account.email,
            account.control_address(settings.control_local_part),
            "[green]✓[/green]" if account.smtp else "[red]✗[/red]",
            "[green]✓[/green]" if account.imap else "[red]✗[/red]",
        )

    console.print(table)


# ============================================================================
# config
# ============================================================================

@main.group("config", invoke_without_command=True)
@click.pass_context
def config_group(ctx: click.Context) -> None:
    """Read and write persisted preferences."""
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def _config_call(ctx: click.Context, action):
    """Open the config store and run ``action(config)`` in one event loop."""
    db_path = _settings(ctx).db_path

    async def _run():
        config = await Config.open(db_path)
        return await action(config)

    return run_async(_run())


@config_group.command("list")
@click.pass_context
def config_list(ctx: click.Context) -> None:
    """Show every local preference, defaults included."""
    print_json(_config_call(ctx, lambda config: config.local.get_all()))


@config_group.command("get")
@click.argument("key")
@click.pass_context
def config_get(ctx: click.Context, key: str) -> None:
    """Show one local preference."""
    try:
        value = _config_call(ctx, lambda config: config.local.get(key))
    except ConfigKeyError as exc:
        print_error(str(exc.args[0]))
        sys.exit(1)
    print_json({key: value})


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set one local preference; VALUE is parsed as JSON when possible."""
    try:
        _config_call(ctx, lambda config: config.local.set(key, parse_value(value)))
    except ConfigKeyError as exc:
        print_error(str(exc.args[0]))
        sys.exit(1)
    except MailRpcError as exc:
        print_error(str(exc))
        sys.exit(1)
    print_success(f"{key} updated")


@config_group.command("remove")
@click.argument("key")
@click.pass_context
def config_remove(ctx: click.Context, key: str) -> None:
    """Remove one local preference, restoring its default."""
    try:
        _config_call(ctx, lambda config: config.local.remove(key))
    except ConfigKeyError as exc:
        print_error(str(exc.args[0]))
        sys.exit(1)
    print_success(f"{key} removed")


if __name__ == "__main__":
    main()
