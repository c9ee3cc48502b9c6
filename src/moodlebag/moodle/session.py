"""Authenticated identity for the Moodle web services."""

import json
from dataclasses import dataclass
from typing import Any

from moodlebag.moodle.errors import ProtocolError


@dataclass(frozen=True)
class Session:
    """An authenticated Moodle session.

    Sessions are immutable. Re-authenticating produces a new Session which
    replaces the old one as a whole.

    Attributes:
        service_url: Base URL of the Moodle site, without trailing slash.
        token: Web-service token sent as ``wstoken`` / ``token``.
        username: The user the token was issued for.
        private_token: Secondary token returned by some sites. Stored, not used.
    """

    service_url: str
    token: str
    username: str
    private_token: str = ""

    def __repr__(self) -> str:
        return f"Session(service_url={self.service_url!r}, username={self.username!r})"


@dataclass(frozen=True)
class TokenExchangeResult:
    """Parsed body of ``/login/token.php``."""

    token: str = ""
    private_token: str = ""
    error: str = ""
    errorcode: str = ""

    @classmethod
    def from_json(cls, body: bytes | str) -> "TokenExchangeResult":
        """Parse a token endpoint response.

        Missing fields default to empty strings.

        Raises:
            ProtocolError: If the body is not a JSON object or a field is not a string.
        """
        try:
            data: Any = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            raise ProtocolError(f"Token endpoint did not return JSON: {e}") from e
        if not isinstance(data, dict):
            raise ProtocolError(f"Token endpoint returned {type(data).__name__}, expected an object")

        fields = {}
        for key, attr in (
            ("token", "token"),
            ("privatetoken", "private_token"),
            ("error", "error"),
            ("errorcode", "errorcode"),
        ):
            value = data.get(key)
            if value is None:
                value = ""
            if not isinstance(value, str):
                raise ProtocolError(f"Field '{key}' in token response is not a string")
            fields[attr] = value
        return cls(**fields)
