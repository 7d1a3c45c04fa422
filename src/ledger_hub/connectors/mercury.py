"""
Mercury bank connector.

REST API, Bearer token. Mercury allow-lists client IPs, so requests are
routed through the egress proxy when one is configured.
"""

from __future__ import annotations

import logging
from datetime import datetime

from ..errors import CredentialError, MalformedResponseError
from ..schemas.native import MercuryAccountRecord, MercuryTransactionRecord
from ..schemas.transaction import ExternalAccount, Platform
from .base import CredentialCheck, FetchResult, HttpConnector, envelope, parse_records

logger = logging.getLogger(__name__)


class MercuryConnector(HttpConnector):
    """Client for the Mercury banking API."""

    platform = Platform.MERCURY.value
    DEFAULT_BASE_URL = "https://api.mercury.com/api/v1"

    def list_accounts(self) -> list[ExternalAccount]:
        data = self._get_json("/accounts")
        accounts = []
        for item in envelope(data, "accounts", self.platform):
            try:
                accounts.append(MercuryAccountRecord.from_api_response(item).to_account())
            except MalformedResponseError as e:
                logger.warning("Skipping malformed Mercury account: %s", e)
        return accounts

    def fetch_transactions(
        self, account: ExternalAccount, since: datetime | None = None
    ) -> FetchResult:
        """Fetch transactions for one account.

        Malformed records are collected and skipped; the rest of the page is kept.
        """
        params = {}
        if since is not None:
            params["start_date"] = since.date().isoformat()

        data = self._get_json(f"/accounts/{account.external_id}/transactions", params=params)
        return parse_records(
            envelope(data, "transactions", self.platform),
            lambda item: MercuryTransactionRecord.from_api_response(item).to_native(),
            self.platform,
        )

    def validate_credentials(self, key: str | None = None) -> CredentialCheck:
        try:
            data = self._get_json("/accounts", key=key)
        except CredentialError as e:
            return CredentialCheck(False, e.message)
        count = len(data.get("accounts") or []) if isinstance(data, dict) else 0
        return CredentialCheck(True, f"Connected, {count} account(s) visible")
