from typing import Optional


class CredentialsExpired(Exception):
    """Neither the access nor the refresh token of a connection is usable.

    The user has to go through the connect flow again.
    """

    def __init__(self, connection_name: str):
        self.connection_name = connection_name
        super().__init__(f"Credentials expired for connection '{connection_name}'")


class UpstreamAPIError(Exception):
    """Provider or ledger API answered with a non-success status."""

    def __init__(self, service: str, status_code: int, detail: Optional[str] = None):
        self.service = service
        self.status_code = status_code
        self.detail = detail
        message = f"{service} returned HTTP {status_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class DecryptionError(Exception):
    """Stored token ciphertext could not be decrypted."""


class InvalidInput(Exception):
    """Caller supplied a bad value, e.g. a blank or duplicate connection name."""


class InvalidState(InvalidInput):
    """OAuth callback carried an unknown or expired state parameter."""


class ConnectionNotFound(InvalidInput):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No connection named '{name}'")


class SyncIncomplete(Exception):
    """At least one source of a connection failed during a sync run."""

    def __init__(self, connection_name: str, failed_sources: list):
        self.connection_name = connection_name
        self.failed_sources = failed_sources
        super().__init__(
            f"{len(failed_sources)} source(s) failed for connection '{connection_name}'"
        )
