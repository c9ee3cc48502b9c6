"""HTTP transport shared by all Moodle requests."""

import requests
import urllib3
from loguru import logger
from requests.cookies import RequestsCookieJar

USER_AGENT = "moodlebag"


def new_transport(skip_ssl: bool = False) -> requests.Session:
    """Create the HTTP session used for every Moodle call.

    The session keeps one cookie jar for its whole lifetime; some Moodle
    endpoints depend on session cookies even though authentication is by token.

    Args:
        skip_ssl: Disable TLS certificate verification (self-signed or internal
            deployments). This is logged once, since it weakens security.

    Returns:
        A configured ``requests.Session``.
    """
    if skip_ssl:
        logger.warning("Skipping SSL verification for all requests")

    transport = requests.Session()
    try:
        transport.cookies = RequestsCookieJar()
    except Exception as e:
        logger.critical(f"Could not create cookie jar: {e}")
        raise SystemExit(1) from e

    transport.verify = not skip_ssl
    if skip_ssl:
        # The warning above is the audit trail; don't repeat it per request.
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
    transport.headers["User-Agent"] = USER_AGENT
    return transport
