"""
Error taxonomy shared by connectors, the classifier and the state store.

Propagation rules:
- CredentialError aborts the run for a whole platform
- TransientNetworkError is retried by the connector, then skipped per item/account
- MalformedResponseError skips the offending item
- ClassificationError degrades to "other" with low confidence
- PersistenceConflict is a no-op (the record already exists)
"""


class LedgerHubError(Exception):
    """Base exception for all LedgerHub errors."""

    pass


class ConnectorError(LedgerHubError):
    """Base exception for source connector failures."""

    def __init__(self, message: str, platform: str | None = None):
        self.platform = platform
        self.message = message
        prefix = f"[{platform}] " if platform else ""
        super().__init__(f"{prefix}{message}")


class CredentialError(ConnectorError):
    """Missing or rejected API credential."""

    pass


class TransientNetworkError(ConnectorError):
    """Timeout, connection failure or retryable server status."""

    def __init__(self, message: str, platform: str | None = None, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message, platform)


class MalformedResponseError(ConnectorError):
    """Upstream payload did not have the expected shape."""

    def __init__(self, message: str, platform: str | None = None, payload: object = None):
        self.payload = payload
        super().__init__(message, platform)


class ConnectorAPIError(ConnectorError):
    """Non-retryable error response from an upstream API."""

    def __init__(
        self,
        status_code: int,
        message: str,
        platform: str | None = None,
        response_body: str | None = None,
    ):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(f"API error {status_code}: {message}", platform)


class ClassificationError(LedgerHubError):
    """AI classifier could not produce a usable result."""

    pass


class PersistenceConflict(LedgerHubError):
    """A transaction with the same natural key is already stored."""

    def __init__(self, external_id: str, external_source: str):
        self.external_id = external_id
        self.external_source = external_source
        super().__init__(
            f"Transaction {external_source}:{external_id} already exists"
        )
