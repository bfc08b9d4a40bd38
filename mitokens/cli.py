"""Command line tool for fetching device tokens from the Xiaomi cloud."""

from __future__ import annotations

import logging
import re
import sys
from functools import wraps
from pathlib import Path
from typing import Any, NoReturn

import asyncclick as click

from .auth import MiCloudAuth
from .catalog import DeviceCatalog, EventType
from .config import ALL_REGIONS, DEFAULT_REGION, CloudConfig
from .credentials import Credentials
from .device import Device
from .exceptions import MiCloudException
from .json import dumps as json_dumps
from .json import loads as json_loads
from .state import SessionData

try:
    from rich import print as _echo
except ImportError:
    # Strip out rich formatting if rich is not installed
    rich_formatting = re.compile(r"\[/?[a-z ]+]")

    def _strip_rich_formatting(echo_func):
        """Strip rich formatting from messages."""

        @wraps(echo_func)
        def wrapper(message=None, *args, **kwargs) -> None:
            if message is not None:
                message = rich_formatting.sub("", message)
            echo_func(message, *args, **kwargs)

        return wrapper

    _echo = _strip_rich_formatting(click.echo)


def echo(*args, **kwargs) -> None:
    """Print a message, unless json output was requested."""
    ctx = click.get_current_context().find_root()
    if "json" not in ctx.params or ctx.params["json"] is False:
        _echo(*args, **kwargs)


def error(msg: str) -> NoReturn:
    """Print an error and exit."""
    echo(f"[bold red]{msg}[/bold red]")
    sys.exit(1)


def json_formatter_cb(result: Any, **kwargs) -> None:
    """Format and output the result as JSON, if requested."""
    if not kwargs.get("json") or result is None:
        return
    print(json_dumps(result, indent=True))


def _read_json(path: Path) -> Any:
    try:
        return json_loads(path.read_text())
    except ValueError as ex:
        error(f"Unable to read {path}: {ex}")


def _write_json(path: Path, data: Any) -> None:
    path.write_text(json_dumps(data, indent=True))


def _read_session(path: Path) -> SessionData:
    try:
        return SessionData.from_dict(_read_json(path))
    except (ValueError, LookupError, TypeError) as ex:
        error(f"Invalid session file {path}: {ex}")


def _catalog(session: SessionData, config: CloudConfig) -> DeviceCatalog:
    try:
        return DeviceCatalog.from_session(session, config=config)
    except MiCloudException as ex:
        error(f"Unusable session: {ex}")


async def _credentials(ctx: click.Context) -> Credentials:
    params = ctx.find_root().params
    username, password = params.get("username"), params.get("password")
    if not username:
        raise click.BadOptionUsage("username", "Login requires --username")
    if not password:
        password = await click.prompt("Password", hide_input=True)
    return Credentials(username=username, password=password)


def _echo_session(session: SessionData, session_out: Path | None) -> None:
    echo(f"[green]Logged in as {session.user_id}[/green]")
    if session_out:
        _write_json(session_out, session.to_dict())
        echo(f"Session written to {session_out}")


def _echo_device(device: Device) -> None:
    echo(f"[bold]{device.name}[/bold] ({device.model})")
    echo(f"\tDID: {device.did}")
    echo(f"\tToken: {device.token}")
    if device.ip:
        echo(f"\tIP: {device.ip}")
    if device.mac:
        echo(f"\tMAC: {device.mac}")
    if device.ble_key:
        echo(f"\tBLE key: {device.ble_key}")
    echo(f"\tOnline: {device.is_online}")


@click.group(result_callback=json_formatter_cb)
@click.option(
    "--username",
    default=None,
    required=False,
    envvar="MITOKENS_USERNAME",
    help="Xiaomi account username, email or phone number.",
)
@click.option(
    "--password",
    default=None,
    required=False,
    envvar="MITOKENS_PASSWORD",
    help="Xiaomi account password, prompted for if missing.",
)
@click.option(
    "--region",
    envvar="MITOKENS_REGION",
    default=DEFAULT_REGION,
    show_default=True,
    type=click.Choice(ALL_REGIONS, case_sensitive=False),
    help="Server region of the device api.",
)
@click.option(
    "--timeout",
    envvar="MITOKENS_TIMEOUT",
    default=CloudConfig.DEFAULT_TIMEOUT,
    type=int,
    show_default=True,
    help="Timeout for cloud requests.",
)
@click.option(
    "-d",
    "--debug",
    envvar="MITOKENS_DEBUG",
    default=False,
    is_flag=True,
    help="Print debug output",
)
@click.option(
    "--json/--no-json",
    envvar="MITOKENS_JSON",
    default=False,
    is_flag=True,
    help="Output the result as JSON.",
)
@click.version_option(package_name="python-mitokens")
@click.pass_context
async def cli(ctx, username, password, region, timeout, debug, json):
    """A tool for fetching device tokens from the Xiaomi cloud."""
    logging_config: dict[str, Any] = {
        "level": logging.DEBUG if debug else logging.INFO
    }
    try:
        from rich.logging import RichHandler

        rich_config = {
            "show_time": False,
        }
        logging_config["handlers"] = [RichHandler(**rich_config)]
        logging_config["format"] = "%(message)s"
    except ImportError:
        pass

    logging.basicConfig(**logging_config)  # type: ignore

    ctx.obj = CloudConfig(region=region.lower(), timeout=timeout)


@cli.command()
@click.option(
    "--state-out",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the client state to FILE when a second factor is required.",
)
@click.option(
    "--session-out",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the session to FILE.",
)
@click.pass_context
async def login(ctx, state_out: Path | None, session_out: Path | None):
    """Login and print the session."""
    auth = MiCloudAuth(await _credentials(ctx), config=ctx.obj)
    try:
        result = await auth.login()
        if result.requires_2fa:
            echo(f"Two factor verification required, see {result.verify_url}")
            if state_out:
                _write_json(state_out, auth.state.to_dict())
                echo(
                    f"Client state written to {state_out}, continue with "
                    f"mitokens verify --state {state_out} --ticket CODE"
                )
                return None
            ticket = await click.prompt("Verification code")
            session = await auth.complete_verification(ticket)
        else:
            session = result.session
    except MiCloudException as ex:
        error(f"Login failed: {ex}")
    finally:
        await auth.close()

    _echo_session(session, session_out)  # type: ignore[arg-type]
    return session.to_dict()  # type: ignore[union-attr]


@cli.command()
@click.option(
    "--state",
    "state_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Client state written by login --state-out.",
)
@click.option("--ticket", prompt="Verification code", help="Verification code.")
@click.option(
    "--session-out",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the session to FILE.",
)
@click.pass_context
async def verify(ctx, state_file: Path, ticket: str, session_out: Path | None):
    """Finish a login waiting for a second factor."""
    try:
        auth = MiCloudAuth.from_state(_read_json(state_file), config=ctx.obj)
    except (ValueError, LookupError, TypeError) as ex:
        error(f"Invalid client state {state_file}: {ex}")

    try:
        session = await auth.complete_verification(ticket)
    except MiCloudException as ex:
        error(f"Verification failed: {ex}")
    finally:
        await auth.close()

    _echo_session(session, session_out)
    return session.to_dict()


@cli.command()
@click.option(
    "--session",
    "session_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Session written by login --session-out.",
)
@click.option(
    "--scan-all",
    is_flag=True,
    default=False,
    help="Try the other regions if the selected one has no devices.",
)
@click.pass_context
async def devices(ctx, session_file: Path, scan_all: bool):
    """List the devices of every home with their tokens."""
    session = _read_session(session_file)
    config: CloudConfig = ctx.obj
    regions = [config.region]
    if scan_all:
        regions += [region for region in ALL_REGIONS if region != config.region]

    check_session = DeviceCatalog.needs_validation(session)
    found: list[Device] = []
    for region in regions:
        catalog = _catalog(session, config.with_region(region))
        try:
            async for event in catalog.stream(validate=check_session):
                if event.type is EventType.Error:
                    error(event.message or "Unable to fetch devices")
                elif event.type is EventType.Complete:
                    found = event.devices or []
                else:
                    echo(f"[dim]{event.message}[/dim]")
        finally:
            await catalog.close()

        check_session = False
        if found:
            break
        echo(f"No devices found in region {region}")

    for device in found:
        _echo_device(device)
    return [device.to_dict() for device in found]


@cli.command()
@click.option(
    "--session",
    "session_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Session written by login --session-out.",
)
@click.pass_context
async def validate(ctx, session_file: Path):
    """Check whether a saved session is still accepted."""
    session = _read_session(session_file)
    catalog = _catalog(session, ctx.obj)
    try:
        valid = await catalog.validate_session()
    finally:
        await catalog.close()

    if not valid:
        error("Session expired")
    echo("[green]Session is valid[/green]")
    return {"valid": True}


if __name__ == "__main__":
    cli()
