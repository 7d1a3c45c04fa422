"""
DoorLoop property-management connector.

List endpoints return ``{"data": [...], "total_pages": N}`` envelopes and
are paginated with ``page``/``page_size``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from datetime import datetime
from typing import Any

from ..errors import CredentialError, MalformedResponseError
from ..schemas.native import DoorLoopAccountRecord, DoorLoopTransactionRecord
from ..schemas.transaction import ExternalAccount, Platform
from .base import CredentialCheck, FetchResult, HttpConnector, envelope, parse_records

logger = logging.getLogger(__name__)


class DoorLoopConnector(HttpConnector):
    """Client for the DoorLoop REST API."""

    platform = Platform.DOORLOOP.value
    DEFAULT_BASE_URL = "https://api.doorloop.com"
    PAGE_SIZE = 100
    # Upper bound on pages per listing; protects against a server that never
    # reports total_pages.
    MAX_PAGES = 500

    def _paginate(self, endpoint: str, params: dict | None = None) -> Iterator[Any]:
        page = 1
        while page <= self.MAX_PAGES:
            query = dict(params or {})
            query.update({"page": page, "page_size": self.PAGE_SIZE})
            data = self._get_json(endpoint, params=query)
            items = envelope(data, "data", self.platform)
            yield from items

            total_pages = data.get("total_pages") or data.get("totalPages")
            if total_pages is None:
                if len(items) < self.PAGE_SIZE:
                    return
            elif page >= int(total_pages):
                return
            page += 1
        logger.warning("DoorLoop listing %s stopped after %d pages", endpoint, self.MAX_PAGES)

    def list_accounts(self) -> list[ExternalAccount]:
        accounts = []
        for item in self._paginate("/api/v1/accounts"):
            try:
                accounts.append(DoorLoopAccountRecord.from_api_response(item).to_account())
            except MalformedResponseError as e:
                logger.warning("Skipping malformed DoorLoop account: %s", e)
        return accounts

    def fetch_transactions(
        self, account: ExternalAccount, since: datetime | None = None
    ) -> FetchResult:
        params = {"account_id": account.external_id}
        if since is not None:
            params["date_from"] = since.date().isoformat()
        return parse_records(
            self._paginate("/api/v1/transactions", params),
            lambda item: DoorLoopTransactionRecord.from_api_response(item).to_native(),
            self.platform,
        )

    def validate_credentials(self, key: str | None = None) -> CredentialCheck:
        try:
            self._get_json("/api/v1/accounts", params={"page": 1, "page_size": 1}, key=key)
        except CredentialError as e:
            return CredentialCheck(False, e.message)
        return CredentialCheck(True, "Connected")
