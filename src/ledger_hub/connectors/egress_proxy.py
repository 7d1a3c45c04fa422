"""
Static-IP egress proxy.

Some upstream APIs (the bank) only accept calls from allow-listed IPs. The
proxy forwards a request from its static address. Its status is cached and
revalidated at most once per ``status_ttl_seconds``.

The proxy never blocks a sync: when it is disabled, inactive, failing
revalidation or failing at transport level, the request goes out directly
through the caller's session and a warning is logged.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import requests

if TYPE_CHECKING:
    from ..config import EgressProxyConfig

logger = logging.getLogger(__name__)

STATUS_PATH = "/api/status"
PROXY_PATH = "/api/proxy"


class EgressProxyError(Exception):
    """Proxy could not forward the request."""

    pass


@dataclass
class ProxiedResponse:
    """The part of ``requests.Response`` that connectors rely on."""

    status_code: int
    data: Any = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    @property
    def text(self) -> str:
        if isinstance(self.data, str):
            return self.data
        return json.dumps(self.data)

    def json(self) -> Any:
        if isinstance(self.data, str):
            return json.loads(self.data)
        return self.data


@dataclass
class ProxyStatus:
    status: str = "inactive"  # inactive, pending, active
    ip_address: str | None = None
    last_checked: float | None = None


def sign(secret: str, timestamp: str, subject: str) -> str:
    """HMAC-SHA256 signature over ``"{timestamp}:{subject}"``."""
    return hmac.new(
        secret.encode(), f"{timestamp}:{subject}".encode(), hashlib.sha256
    ).hexdigest()


class EgressProxy:
    """Routes requests through the static-IP proxy with direct fallback."""

    def __init__(
        self,
        config: EgressProxyConfig,
        timeout: float = 30.0,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.timeout = timeout
        self._session = session or requests.Session()
        self._clock = clock
        self._status = ProxyStatus()
        self._lock = threading.Lock()

    @property
    def status(self) -> ProxyStatus:
        return self._status

    def _signed_headers(self, subject: str) -> dict[str, str]:
        timestamp = str(int(self._clock() * 1000))
        return {
            "X-API-Key": self.config.api_key,
            "X-Timestamp": timestamp,
            "X-Signature": sign(self.config.secret, timestamp, subject),
        }

    def _is_stale(self) -> bool:
        last = self._status.last_checked
        return last is None or self._clock() - last > self.config.status_ttl_seconds

    def check_status(self) -> ProxyStatus:
        """Query the proxy status endpoint and update the cache."""
        url = f"{self.config.proxy_url.rstrip('/')}{STATUS_PATH}"
        try:
            response = self._session.get(
                url, headers=self._signed_headers(STATUS_PATH), timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning("Egress proxy status check failed: %s", e)
            self._status = ProxyStatus(status="inactive", last_checked=self._clock())
            return self._status

        if isinstance(data, dict) and data.get("success"):
            self._status = ProxyStatus(
                status=str(data.get("status") or "inactive"),
                ip_address=data.get("ipAddress"),
                last_checked=self._clock(),
            )
            logger.info("Egress proxy status: %s", self._status.status)
        else:
            message = data.get("message") if isinstance(data, dict) else data
            logger.warning("Egress proxy reported failure: %s", message)
            self._status = ProxyStatus(status="inactive", last_checked=self._clock())
        return self._status

    def is_active(self) -> bool:
        """Whether requests should go through the proxy right now."""
        if not self.config.enabled or not self.config.proxy_url:
            return False
        with self._lock:
            if self._is_stale():
                self.check_status()
            return self._status.status == "active"

    def forward(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        params: dict | None = None,
        json_data: Any = None,
    ) -> ProxiedResponse:
        """Send one request through the proxy.

        Raises:
            EgressProxyError: The proxy itself failed.
        """
        proxy_headers = self._signed_headers(url)
        proxy_headers["Content-Type"] = "application/json"
        body = {
            "target": url,
            "method": method.upper(),
            "headers": headers or {},
            "data": json_data,
            "params": params,
        }
        try:
            response = self._session.post(
                f"{self.config.proxy_url.rstrip('/')}{PROXY_PATH}",
                json=body,
                headers=proxy_headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            envelope = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise EgressProxyError(f"Proxy request failed: {e}") from e

        if not isinstance(envelope, dict) or "status" not in envelope:
            raise EgressProxyError("Proxy returned an unexpected envelope")

        return ProxiedResponse(
            status_code=int(envelope["status"]),
            data=envelope.get("data"),
            headers=envelope.get("headers") or {},
        )

    def request(
        self,
        session: requests.Session,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        params: dict | None = None,
        json_data: Any = None,
        timeout: float | None = None,
    ) -> requests.Response | ProxiedResponse:
        """Send through the proxy when active, otherwise directly via ``session``."""
        if self.is_active():
            try:
                return self.forward(method, url, headers=headers, params=params, json_data=json_data)
            except EgressProxyError as e:
                logger.warning("Egress proxy failed, falling back to direct call: %s", e)
        elif self.config.enabled:
            logger.warning("Egress proxy not active, calling %s directly", url)

        return session.request(
            method=method,
            url=url,
            headers=headers,
            params=params,
            json=json_data,
            timeout=timeout or self.timeout,
        )

    def close(self) -> None:
        self._session.close()
