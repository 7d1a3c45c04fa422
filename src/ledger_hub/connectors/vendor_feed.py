"""
Vendor purchase feeds (REI, Home Depot, Amazon Business, Lowe's).

Each configured feed is exposed as one account. A feed answers
``GET {url}?since=...`` with a JSON list of purchases or a
``{"transactions": [...]}`` envelope.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from ..errors import CredentialError, MalformedResponseError
from ..schemas.native import VendorFeedRecord
from ..schemas.transaction import ExternalAccount, Platform
from .base import CredentialCheck, FetchResult, HttpConnector, RetryPolicy, parse_records

if TYPE_CHECKING:
    from ..config import VendorFeedConfig

logger = logging.getLogger(__name__)


class VendorFeedConnector(HttpConnector):
    """Reads every configured vendor feed; feeds may be unauthenticated."""

    platform = Platform.VENDOR.value
    requires_key = False

    def __init__(
        self,
        feeds: list[VendorFeedConfig],
        timeout: float = HttpConnector.DEFAULT_TIMEOUT,
        retry_policy: RetryPolicy | None = None,
    ):
        super().__init__("", "", timeout, retry_policy)
        self.feeds = {feed.name: feed for feed in feeds}

    def _feed(self, account: ExternalAccount) -> VendorFeedConfig:
        feed = self.feeds.get(account.external_id)
        if feed is None:
            raise MalformedResponseError(
                f"no vendor feed configured for account '{account.external_id}'", self.platform
            )
        return feed

    def list_accounts(self) -> list[ExternalAccount]:
        return [
            ExternalAccount(
                platform=self.platform,
                external_id=feed.name,
                name=feed.get_label(),
                type="other",
            )
            for feed in self.feeds.values()
        ]

    def _get_items(self, feed: VendorFeedConfig, params: dict | None = None, key: str | None = None) -> list:
        response = self._request("GET", "", params=params, key=key or feed.token, url=feed.url)
        data = self._json(response)
        if isinstance(data, dict):
            data = data.get("transactions")
        if not isinstance(data, list):
            raise MalformedResponseError(
                f"feed '{feed.name}' did not return a list", self.platform
            )
        return data

    def fetch_transactions(
        self, account: ExternalAccount, since: datetime | None = None
    ) -> FetchResult:
        feed = self._feed(account)
        params = {"since": since.isoformat()} if since is not None else None
        label = feed.get_label()
        return parse_records(
            self._get_items(feed, params),
            lambda item: VendorFeedRecord.from_api_response(item).to_native(
                feed.name, label, feed.default_category
            ),
            self.platform,
        )

    def validate_credentials(self, key: str | None = None) -> CredentialCheck:
        if not self.feeds:
            return CredentialCheck(False, "No vendor feeds configured")
        failed = []
        for feed in self.feeds.values():
            try:
                self._get_items(feed, {"limit": 1}, key=key)
            except CredentialError as e:
                failed.append(f"{feed.name}: {e.message}")
        if failed:
            return CredentialCheck(False, "; ".join(failed))
        return CredentialCheck(True, f"{len(self.feeds)} feed(s) reachable")
