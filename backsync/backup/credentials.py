"""
Storage credentials.

A provider is authenticated either with a bearer access token or with an
app key/secret pair. Both forms are validated when the configuration is
loaded, never lazily inside a run.
"""

from dataclasses import dataclass
from typing import Optional, Union


class ConfigurationError(Exception):
    """Raised when configuration is missing or inconsistent."""
    pass


@dataclass(frozen=True)
class TokenCredentials:
    """Bearer access token."""
    token: str

    def __repr__(self):
        return 'TokenCredentials(token=***)'


@dataclass(frozen=True)
class AppKeyCredentials:
    """App key/secret pair, optionally with a long-lived refresh token."""
    app_key: str
    app_secret: str
    refresh_token: Optional[str] = None

    def __repr__(self):
        return f'AppKeyCredentials(app_key={self.app_key!r}, app_secret=***)'


Credentials = Union[TokenCredentials, AppKeyCredentials]
