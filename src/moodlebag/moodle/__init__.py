from pathlib import Path
from typing import Annotated, NoReturn
from urllib.parse import unquote, urlparse

import platformdirs
import typer
from loguru import logger

from moodlebag import app as main_app

from .client import (
    authenticate as client_authenticate,
)
from .client import (
    call_function as client_call_function,
)
from .client import (
    download_file as client_download_file,
)
from .errors import AuthenticationError, MoodleError

# Create a local Typer app for moodle subcommands
app = typer.Typer(help="Moodle web-service commands")

# Nested Typer app for web-service client interactions
client_app = typer.Typer(help="Call the Moodle web-service API")


def _parse_params(params: list[str] | None) -> dict[str, str]:
    """Turn ``key=value`` strings into a dict."""
    result = {}
    for item in params or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected key=value, got '{item}'")
        result[key] = value
    return result


def _fail(e: Exception) -> NoReturn:
    if isinstance(e, ValueError):
        raise typer.BadParameter(str(e)) from e
    if isinstance(e, AuthenticationError) and e.errorcode:
        typer.echo(f"Authentication failed: {e.message} [{e.errorcode}]", err=True)
    else:
        typer.echo(f"Error: {e}", err=True)
    raise typer.Exit(code=1)


@client_app.command()
def authenticate(
    url: Annotated[str | None, typer.Option(help="Moodle site URL (default: $MOODLE_URL)")] = None,
    username: Annotated[str | None, typer.Option(help="Moodle username (default: $MOODLE_USERNAME)")] = None,
    password: Annotated[str | None, typer.Option(help="Moodle password (default: $MOODLE_PASSWORD)")] = None,
    skip_ssl: Annotated[bool, typer.Option(help="Skip TLS certificate verification")] = False,
) -> None:
    """Check that the credentials can obtain a web-service token."""
    try:
        client = client_authenticate(base_url=url, username=username, password=password, skip_ssl=skip_ssl)
    except (MoodleError, ValueError) as e:
        _fail(e)
    typer.echo(f"Authenticated as {client.session.username}.")


@client_app.command()
def call(
    function: Annotated[str, typer.Argument(help="Web-service function name, e.g. core_webservice_get_site_info")],
    param: Annotated[
        list[str] | None, typer.Option("--param", "-p", help="Function parameter as key=value (repeatable)")
    ] = None,
    mod: Annotated[bool, typer.Option(help="Use the assignment module endpoint")] = False,
    url: Annotated[str | None, typer.Option(help="Moodle site URL (default: $MOODLE_URL)")] = None,
    username: Annotated[str | None, typer.Option(help="Moodle username (default: $MOODLE_USERNAME)")] = None,
    password: Annotated[str | None, typer.Option(help="Moodle password (default: $MOODLE_PASSWORD)")] = None,
    skip_ssl: Annotated[bool, typer.Option(help="Skip TLS certificate verification")] = False,
) -> None:
    """Call a remote function and print the raw response."""
    params = _parse_params(param)
    try:
        body = client_call_function(
            function,
            params,
            mod=mod,
            base_url=url,
            username=username,
            password=password,
            skip_ssl=skip_ssl,
        )
    except (MoodleError, ValueError) as e:
        _fail(e)
    typer.echo(body.decode("utf-8", errors="replace"))


@client_app.command()
def download(
    file_url: Annotated[str, typer.Argument(help="File URL returned by the web services")],
    output: Annotated[
        Path | None, typer.Option(help="Destination path (default: user downloads directory)")
    ] = None,
    size: Annotated[int, typer.Option(help="Expected size in bytes; skip if a file of this size exists")] = -1,
    url: Annotated[str | None, typer.Option(help="Moodle site URL (default: $MOODLE_URL)")] = None,
    username: Annotated[str | None, typer.Option(help="Moodle username (default: $MOODLE_USERNAME)")] = None,
    password: Annotated[str | None, typer.Option(help="Moodle password (default: $MOODLE_PASSWORD)")] = None,
    skip_ssl: Annotated[bool, typer.Option(help="Skip TLS certificate verification")] = False,
) -> None:
    """Download a file into the local filesystem."""
    if output is None:
        name = Path(unquote(urlparse(file_url).path)).name or "download"
        output = Path(platformdirs.user_downloads_dir()) / name
    logger.debug(f"Saving {file_url} to {output}")
    try:
        path = client_download_file(
            file_url,
            output,
            filesize=size,
            base_url=url,
            username=username,
            password=password,
            skip_ssl=skip_ssl,
        )
    except (MoodleError, ValueError) as e:
        _fail(e)
    typer.echo(str(path))


# Register the moodle app as a subcommand with the main app
main_app.add_typer(app, name="moodle")
app.add_typer(client_app, name="client")
