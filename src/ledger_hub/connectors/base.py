"""
Source connector base classes.

Every platform connector exposes the same three operations:
- list_accounts()
- list_transactions(account, since=None)
- validate_credentials(key=None)

HttpConnector adds a requests session with an explicit retry policy and
maps transport and HTTP failures onto the connector error taxonomy.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import (
    ConnectorAPIError,
    ConnectorError,
    CredentialError,
    MalformedResponseError,
    TransientNetworkError,
)

if TYPE_CHECKING:
    from ..schemas.transaction import ExternalAccount, NativeTransaction
    from .egress_proxy import EgressProxy, ProxiedResponse

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = (429, 500, 502, 503, 504)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry policy for transient upstream failures.

    Attributes:
        max_retries: Retries after the first attempt (0 disables retrying).
        backoff_factor: Exponential backoff factor between attempts.
        retry_statuses: HTTP statuses worth retrying.
        retry_methods: Methods that may be replayed safely.
    """

    max_retries: int = 3
    backoff_factor: float = 0.5
    retry_statuses: tuple[int, ...] = RETRYABLE_STATUSES
    retry_methods: tuple[str, ...] = ("GET", "HEAD", "OPTIONS")

    def to_urllib3(self) -> Retry:
        # raise_on_status=False hands the last response back so the status
        # can be classified instead of surfacing as an opaque RetryError
        return Retry(
            total=self.max_retries,
            connect=self.max_retries,
            read=self.max_retries,
            status=self.max_retries,
            backoff_factor=self.backoff_factor,
            status_forcelist=list(self.retry_statuses),
            allowed_methods=list(self.retry_methods),
            raise_on_status=False,
        )


@dataclass
class FetchResult:
    """Transactions of one account plus the records that failed validation."""

    transactions: list[NativeTransaction] = field(default_factory=list)
    malformed: list[MalformedResponseError] = field(default_factory=list)


@dataclass
class CredentialCheck:
    """Result of validating a platform credential."""

    success: bool
    message: str = ""


class SourceConnector(ABC):
    """Common interface of all platform connectors."""

    platform: str = ""

    @abstractmethod
    def list_accounts(self) -> list[ExternalAccount]:
        """List the accounts visible with the configured credential."""

    @abstractmethod
    def fetch_transactions(
        self, account: ExternalAccount, since: datetime | None = None
    ) -> FetchResult:
        """Fetch transactions of one account, optionally only after ``since``."""

    def list_transactions(
        self, account: ExternalAccount, since: datetime | None = None
    ) -> list[NativeTransaction]:
        return self.fetch_transactions(account, since).transactions

    @abstractmethod
    def validate_credentials(self, key: str | None = None) -> CredentialCheck:
        """Check a credential (the configured one when ``key`` is None)."""

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *args) -> None:
        self.close()


class HttpConnector(SourceConnector):
    """
    Base for REST connectors.

    Features:
    - Bearer authentication
    - Automatic retry with backoff (explicit RetryPolicy)
    - Timeout on every call
    - Optional routing through the static-IP egress proxy
    """

    DEFAULT_TIMEOUT = 30.0
    requires_key = True

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = DEFAULT_TIMEOUT,
        retry_policy: RetryPolicy | None = None,
        proxy: EgressProxy | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.proxy = proxy

        self.session = requests.Session()
        self.session.headers.update(
            {
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )
        adapter = HTTPAdapter(max_retries=self.retry_policy.to_urllib3())
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _auth_headers(self, key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {key}"} if key else {}

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict | None = None,
        json_data: dict | None = None,
        key: str | None = None,
        url: str | None = None,
    ) -> requests.Response | ProxiedResponse:
        """Make an API request with error classification.

        Args:
            method: HTTP method.
            endpoint: Path appended to the base URL.
            params: Query parameters.
            json_data: JSON body.
            key: Credential overriding the configured one.
            url: Absolute URL used instead of base URL + endpoint.

        Raises:
            CredentialError: Missing key, or 401/403 from upstream.
            TransientNetworkError: Timeout, connection error, 429 or 5xx
                after retries are exhausted.
            ConnectorAPIError: Any other non-2xx status.
        """
        key = key if key is not None else self.api_key
        if not key and self.requires_key:
            raise CredentialError("API key is not configured", self.platform)

        url = url or f"{self.base_url}{endpoint}"
        headers = self._auth_headers(key)
        logger.debug("API Request: %s %s", method, url)

        try:
            if self.proxy is not None:
                response = self.proxy.request(
                    self.session,
                    method,
                    url,
                    headers=headers,
                    params=params,
                    json_data=json_data,
                    timeout=self.timeout,
                )
            else:
                response = self.session.request(
                    method=method,
                    url=url,
                    headers=headers,
                    params=params,
                    json=json_data,
                    timeout=self.timeout,
                )
        except requests.exceptions.Timeout as e:
            logger.warning("Timeout for %s: %s", url, e)
            raise TransientNetworkError(f"Request timed out: {e}", self.platform) from e
        except requests.exceptions.ConnectionError as e:
            logger.warning("Connection error to %s: %s", url, e)
            raise TransientNetworkError(f"Failed to connect: {e}", self.platform) from e
        except requests.exceptions.RetryError as e:
            logger.warning("Retries exhausted for %s: %s", url, e)
            raise TransientNetworkError(f"Retries exhausted: {e}", self.platform) from e
        except requests.exceptions.RequestException as e:
            logger.error("Request error for %s: %s", url, e)
            raise ConnectorError(f"Request failed: {e}", self.platform) from e

        logger.debug("Response status: %s", response.status_code)
        self._raise_for_status(response)
        return response

    def _raise_for_status(self, response: requests.Response | ProxiedResponse) -> None:
        status = response.status_code
        if status < 400:
            return

        body = response.text
        message = _error_message(response)

        if status in (401, 403):
            raise CredentialError(f"Credential rejected ({status}): {message}", self.platform)
        if status in RETRYABLE_STATUSES:
            raise TransientNetworkError(
                f"Upstream returned {status}: {message}", self.platform, status_code=status
            )

        logger.error("API Error %s: %s", status, message)
        raise ConnectorAPIError(
            status_code=status,
            message=message,
            platform=self.platform,
            response_body=body,
        )

    def _json(self, response: requests.Response | ProxiedResponse) -> Any:
        """Decode a JSON body or raise MalformedResponseError."""
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"Response is not JSON: {response.text[:200]}", self.platform
            ) from e

    def _get_json(self, endpoint: str, params: dict | None = None, key: str | None = None) -> Any:
        return self._json(self._request("GET", endpoint, params=params, key=key))

    def close(self) -> None:
        self.session.close()


def _error_message(response: requests.Response | ProxiedResponse) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] or "no body"
    if isinstance(data, dict):
        for field in ("message", "error", "detail"):
            value = data.get(field)
            if isinstance(value, str):
                return value
    return json.dumps(data)[:200]


def envelope(data: Any, key: str, platform: str) -> list:
    """Extract a list from a ``{key: [...]}`` response envelope."""
    if isinstance(data, dict):
        items = data.get(key)
    else:
        items = None
    if not isinstance(items, list):
        raise MalformedResponseError(
            f"expected '{key}' list in response", platform, payload=data
        )
    return items


def parse_records(
    items: Iterable[Any],
    to_native: Callable[[Any], NativeTransaction],
    platform: str,
) -> FetchResult:
    """Validate raw items one by one; malformed ones are collected, not fatal."""
    result = FetchResult()
    for item in items:
        try:
            result.transactions.append(to_native(item))
        except MalformedResponseError as e:
            logger.warning("Skipping malformed %s record: %s", platform, e)
            result.malformed.append(e)
    return result
