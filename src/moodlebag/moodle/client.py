"""Module to interact with Moodle through its web-service API."""

import json
import os
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import requests
from dotenv import load_dotenv
from loguru import logger

from moodlebag.clients import LMSClient
from moodlebag.moodle.errors import (
    AuthenticationError,
    DownloadError,
    FilesystemError,
    HTTPStatusError,
    NotAuthenticatedError,
    ProtocolError,
    TransportError,
)
from moodlebag.moodle.session import Session, TokenExchangeResult
from moodlebag.moodle.transport import new_transport

TOKEN_PATH = "/login/token.php"
WEBSERVICE_PATH = "/webservice/rest/server.php"
MOD_ASSIGN_PATH = "/mod/assign/view.php"

SERVICE_NAME = "moodle_mobile_app"
RESPONSE_FORMAT = "json"

RESERVED_PARAMS = ("wstoken", "wsfunction", "moodlewsrestformat")

CHUNK_SIZE = 64 * 1024


def _without_query(url: str) -> str:
    """Drop the query string, which carries credentials and tokens."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def _transport_error(action: str, url: str, e: Exception) -> TransportError:
    # The requests message embeds the full URL, so only the exception type is kept.
    return TransportError(f"{action} {_without_query(url)} failed: {e.__class__.__name__}")


def build_request_params(
    params: Mapping[str, str] | None, token: str, function: str
) -> dict[str, str]:
    """Merge caller parameters with the parameters Moodle requires.

    Server-required parameters always win: a caller value for ``wstoken``,
    ``wsfunction`` or ``moodlewsrestformat`` is replaced (and a warning logged).
    The caller's mapping is not modified.

    Args:
        params: Function-specific parameters.
        token: Web-service token.
        function: Name of the remote function.

    Returns:
        A new dict with the caller's parameters followed by the reserved ones.
    """
    reserved = {
        "wstoken": token,
        "wsfunction": function,
        "moodlewsrestformat": RESPONSE_FORMAT,
    }
    merged = dict(params or {})
    for key in RESERVED_PARAMS:
        if key in merged:
            logger.warning(f"Ignoring caller-supplied '{key}'; server-required parameters always win")
            del merged[key]
    merged.update(reserved)
    return merged


@contextmanager
def _response(transport: requests.Session, url: str, **kwargs) -> Iterator[requests.Response]:
    """Issue a GET and release the response on every exit path.

    Connection-level failures become TransportError. A failure while closing
    is logged and never replaces the primary result or exception.
    """
    try:
        resp = transport.get(url, **kwargs)
    except requests.exceptions.RequestException as e:
        raise _transport_error("Request to", url, e) from e
    try:
        yield resp
    finally:
        try:
            resp.close()
        except Exception as e:
            logger.warning(f"Error closing response from {url}: {e}")


def _read_body(resp: requests.Response, url: str) -> bytes:
    try:
        return resp.content
    except requests.exceptions.RequestException as e:
        raise _transport_error("Reading response from", url, e) from e


class MoodleClient(LMSClient):
    """Client for the Moodle web-service API.

    Typical use is to authenticate once, then issue many calls and downloads.
    The client is not internally synchronized: do not re-authenticate while
    other threads are using it.

    Attributes:
        base_url: Moodle site URL, e.g. ``https://moodle.example.edu``.
        session: The current Session, or None before authentication.
        transport: The ``requests.Session`` used for every request.
        timeout: Optional timeout passed to every request.
    """

    def __init__(
        self,
        base_url: str | None = None,
        skip_ssl: bool = False,
        transport: requests.Session | None = None,
        timeout: float | None = None,
    ):
        """Initializes the MoodleClient.

        If `base_url` is None it is read from the ``MOODLE_URL`` environment variable.
        """
        if base_url is None:
            load_dotenv()
            base_url = os.getenv("MOODLE_URL")
        if not base_url:
            raise ValueError("No Moodle URL given and MOODLE_URL is not set.")
        self.base_url = base_url.rstrip("/")
        self.skip_ssl = skip_ssl
        if transport is not None:
            self.transport = transport
        else:
            self.transport = new_transport(skip_ssl)
        self.timeout = timeout
        self.session: Session | None = None

    def authenticate(self, username: str | None = None, password: str | None = None) -> Session:
        """Exchange username and password for a web-service token.

        On success the client's session is replaced by a new one. On any
        failure the previous session, if there was one, is left untouched.

        Args:
            username: Moodle username. Defaults to ``MOODLE_USERNAME``.
            password: Moodle password. Defaults to ``MOODLE_PASSWORD``.

        Returns:
            The new Session.

        Raises:
            ValueError: If no credentials are available.
            TransportError: If the token endpoint could not be reached.
            HTTPStatusError: If the token endpoint answered with an error status.
            ProtocolError: If the response is not a valid token response.
            AuthenticationError: If Moodle rejected the login.
        """
        if username is None or password is None:
            load_dotenv()
        if username is None:
            username = os.getenv("MOODLE_USERNAME")
        if password is None:
            password = os.getenv("MOODLE_PASSWORD")
        if not username or not password:
            raise ValueError("Username and password are required (or set MOODLE_USERNAME/MOODLE_PASSWORD).")

        login_url = f"{self.base_url}{TOKEN_PATH}"
        params = {"username": username, "password": password, "service": SERVICE_NAME}
        logger.debug(f"Requesting token from {login_url} for {username}")
        with _response(self.transport, login_url, params=params, timeout=self.timeout) as resp:
            if not 200 <= resp.status_code < 300:
                raise HTTPStatusError(resp.status_code, login_url)
            result = TokenExchangeResult.from_json(_read_body(resp, login_url))

        if result.error:
            logger.error(f"Failed to obtain token: {result.error}")
            raise AuthenticationError(result.error, result.errorcode)
        if not result.token:
            raise ProtocolError("Token endpoint returned neither a token nor an error")

        session = Session(
            service_url=self.base_url,
            token=result.token,
            username=username,
            private_token=result.private_token,
        )
        self.session = session
        logger.info(f"Authenticated to {self.base_url} as {username}")
        return session

    def _require_session(self, session: Session | None) -> Session:
        if session is not None:
            return session
        if self.session is None:
            raise NotAuthenticatedError()
        return self.session

    def invoke(
        self,
        endpoint_path: str,
        function: str,
        params: Mapping[str, str] | None = None,
        session: Session | None = None,
    ) -> bytes:
        """Call a remote function and return the raw response body.

        Moodle reports function errors as JSON with status 200, so the body is
        returned without inspection; interpreting it is up to the caller.

        Args:
            endpoint_path: Path below the service URL, e.g. ``/webservice/rest/server.php``.
            function: Name of the web-service function.
            params: Function-specific parameters.
            session: Session to use instead of the client's current one.

        Raises:
            NotAuthenticatedError: If there is no session.
            TransportError: If the request failed.
            HTTPStatusError: On a non-2xx status.
        """
        session = self._require_session(session)
        url = f"{session.service_url}{endpoint_path}"
        query = build_request_params(params, session.token, function)
        logger.debug(f"Calling {function} at {url}")
        with _response(self.transport, url, params=query, timeout=self.timeout) as resp:
            if not 200 <= resp.status_code < 300:
                raise HTTPStatusError(resp.status_code, url)
            return _read_body(resp, url)

    def webservice_request(
        self, function: str, params: Mapping[str, str] | None = None, session: Session | None = None
    ) -> bytes:
        """Call a function on the REST web-service endpoint."""
        return self.invoke(WEBSERVICE_PATH, function, params, session)

    def mod_request(
        self, function: str, params: Mapping[str, str] | None = None, session: Session | None = None
    ) -> bytes:
        """Call a function on the assignment module endpoint."""
        return self.invoke(MOD_ASSIGN_PATH, function, params, session)

    def call_function(
        self, function: str, params: Mapping[str, str] | None = None, session: Session | None = None
    ) -> Any:
        """Call a REST web-service function and decode its JSON body.

        Moodle exception payloads are returned as decoded data, not raised.

        Raises:
            ProtocolError: If the body is not JSON.
        """
        body = self.webservice_request(function, params, session)
        try:
            return json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            raise ProtocolError(f"{function} did not return JSON: {e}") from e

    def download_file(
        self, url: str, path: Path | str, filesize: int, session: Session | None = None
    ) -> Path:
        """Download a file unless a copy of the expected size already exists.

        Size is the only freshness check: a remote file that changed but kept
        its size is treated as up to date. A download that fails midway leaves
        the partial file in place.

        Args:
            url: File URL, as returned by the web services.
            path: Local destination. Missing parent directories are created.
            filesize: Expected size in bytes.
            session: Session to use instead of the client's current one.

        Returns:
            The destination path.

        Raises:
            NotAuthenticatedError: If there is no session.
            TransportError: If the request or the transfer failed.
            DownloadError: On a non-200 status.
            FilesystemError: If the destination could not be created or written.
        """
        path = Path(path)
        if path.is_file() and path.stat().st_size == filesize:
            logger.info(f"Skip file download {path}")
            return path

        session = self._require_session(session)
        logger.debug(f"Downloading {url} to {path}")
        with _response(
            self.transport, url, params={"token": session.token}, stream=True, timeout=self.timeout
        ) as resp:
            if resp.status_code != 200:
                raise DownloadError(resp.status_code, _without_query(url))

            try:
                path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise FilesystemError(path.parent, f"Could not create directory: {e}") from e

            try:
                with path.open("wb") as f:
                    for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                        f.write(chunk)
            except requests.exceptions.RequestException as e:
                raise _transport_error("Download of", url, e) from e
            except OSError as e:
                raise FilesystemError(path, f"Could not write file: {e}") from e

        logger.info(f"Downloaded {path}")
        return path


# Convenience module-level functions for CLI and simple scripting
def authenticate(
    base_url: str | None = None,
    username: str | None = None,
    password: str | None = None,
    skip_ssl: bool = False,
) -> MoodleClient:
    """Create a client and authenticate it.

    Returns:
        The authenticated MoodleClient.
    """
    client = MoodleClient(base_url=base_url, skip_ssl=skip_ssl)
    client.authenticate(username=username, password=password)
    return client


def call_function(
    function: str,
    params: Mapping[str, str] | None = None,
    mod: bool = False,
    base_url: str | None = None,
    username: str | None = None,
    password: str | None = None,
    skip_ssl: bool = False,
) -> bytes:
    """Authenticate and call a single remote function.

    Args:
        function: Web-service function name.
        params: Function-specific parameters.
        mod: Use the assignment module endpoint instead of the REST endpoint.
        base_url: Moodle site URL.
        username: Moodle username.
        password: Moodle password.
        skip_ssl: Disable TLS certificate verification.

    Returns:
        The raw response body.
    """
    client = authenticate(base_url=base_url, username=username, password=password, skip_ssl=skip_ssl)
    if mod:
        return client.mod_request(function, params)
    return client.webservice_request(function, params)


def download_file(
    url: str,
    path: Path,
    filesize: int = -1,
    base_url: str | None = None,
    username: str | None = None,
    password: str | None = None,
    skip_ssl: bool = False,
) -> Path:
    """Authenticate and download a single file.

    A negative `filesize` never matches an existing file, forcing a download.
    """
    client = authenticate(base_url=base_url, username=username, password=password, skip_ssl=skip_ssl)
    return client.download_file(url, path, filesize)
