"""Base classes for LMS client implementations.

This module defines the common interface that LMS clients implement, so that
authentication looks the same regardless of which platform is behind it.
"""

from abc import ABC, abstractmethod
from typing import Any


class LMSClient(ABC):
    """Abstract base class for LMS (Learning Management System) clients.

    Attributes:
        base_url: The base URL for the LMS platform
    """

    base_url: str

    @abstractmethod
    def authenticate(
        self,
        username: str | None = None,
        password: str | None = None,
    ) -> Any:
        """Authenticate to the LMS platform.

        Args:
            username: Username for login. If None, implementations may read it
                from the environment.
            password: Password for login. If None, implementations may read it
                from the environment.

        Returns:
            An implementation-specific object describing the authenticated session.

        Raises:
            Exception: Implementations raise their own error type when the
                platform rejects the credentials.
        """
        ...
