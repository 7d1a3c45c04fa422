"""
Wave accounting connector (GraphQL).

Wave is both a source platform and the primary ledger: pushed transactions
are written with the ``moneyTransactionCreate`` mutation.

GraphQL answers HTTP 200 even on failure; an ``errors`` array in the body is
mapped onto the connector error taxonomy here.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from ..errors import ConnectorAPIError, CredentialError, MalformedResponseError
from ..schemas.native import WaveAccountRecord, WaveTransactionRecord
from ..schemas.transaction import ExternalAccount, Platform
from .base import CredentialCheck, FetchResult, HttpConnector, RetryPolicy, parse_records

if TYPE_CHECKING:
    from ..schemas.ledger_payload import LedgerTransactionPayload

logger = logging.getLogger(__name__)

USER_QUERY = """
query {
  user { id firstName lastName defaultEmail }
}
"""

BUSINESSES_QUERY = """
query ($page: Int!, $pageSize: Int!) {
  businesses(page: $page, pageSize: $pageSize) {
    pageInfo { currentPage totalPages }
    edges { node { id name isPersonal currency { code } } }
  }
}
"""

ACCOUNTS_QUERY = """
query ($businessId: ID!, $page: Int!, $pageSize: Int!) {
  business(id: $businessId) {
    accounts(page: $page, pageSize: $pageSize) {
      pageInfo { currentPage totalPages }
      edges {
        node {
          id
          name
          balance
          type { value }
          subtype { value }
          currency { code }
        }
      }
    }
  }
}
"""

TRANSACTIONS_QUERY = """
query ($businessId: ID!, $accountId: ID!, $page: Int!, $pageSize: Int!) {
  business(id: $businessId) {
    transactions(accountId: $accountId, page: $page, pageSize: $pageSize) {
      pageInfo { currentPage totalPages }
      edges {
        node {
          id
          date
          description
          direction
          amount { value }
          category { name }
        }
      }
    }
  }
}
"""

CREATE_TRANSACTION_MUTATION = """
mutation ($input: MoneyTransactionCreateInput!) {
  moneyTransactionCreate(input: $input) {
    didSucceed
    inputErrors { code message path }
    transaction { id }
  }
}
"""

# GraphQL is POST-only; reads are safe to replay and writes carry an
# externalId the ledger deduplicates on.
WAVE_RETRY_METHODS = ("GET", "POST")


class WaveConnector(HttpConnector):
    """Client for the Wave public GraphQL API."""

    platform = Platform.WAVE.value
    DEFAULT_BASE_URL = "https://gql.waveapps.com/graphql/public"
    PAGE_SIZE = 100

    def __init__(
        self,
        base_url: str,
        api_key: str,
        business_id: str = "",
        anchor_account_id: str = "",
        timeout: float = HttpConnector.DEFAULT_TIMEOUT,
        retry_policy: RetryPolicy | None = None,
        proxy=None,
    ):
        retry_policy = retry_policy or RetryPolicy(retry_methods=WAVE_RETRY_METHODS)
        super().__init__(base_url, api_key, timeout, retry_policy, proxy)
        self.business_id = business_id
        self.anchor_account_id = anchor_account_id

    def _graphql(self, query: str, variables: dict | None = None, key: str | None = None) -> dict:
        """Run one GraphQL operation and return its ``data`` object."""
        response = self._request(
            "POST",
            "",
            json_data={"query": query, "variables": variables or {}},
            key=key,
            url=self.base_url,
        )
        body = self._json(response)
        if not isinstance(body, dict):
            raise MalformedResponseError("GraphQL response is not an object", self.platform, body)

        errors = body.get("errors")
        if errors:
            messages = [str(err.get("message", err)) if isinstance(err, dict) else str(err) for err in errors]
            codes = {
                (err.get("extensions") or {}).get("code")
                for err in errors
                if isinstance(err, dict)
            }
            if "UNAUTHENTICATED" in codes or "FORBIDDEN" in codes:
                raise CredentialError("; ".join(messages), self.platform)
            raise ConnectorAPIError(
                status_code=response.status_code,
                message="; ".join(messages),
                platform=self.platform,
                response_body=response.text,
            )

        data = body.get("data")
        if not isinstance(data, dict):
            raise MalformedResponseError("GraphQL response has no data", self.platform, body)
        return data

    def _connection_pages(self, query: str, variables: dict, path: tuple[str, ...]):
        """Yield nodes of a paginated GraphQL connection."""
        page = 1
        while True:
            data = self._graphql(query, {**variables, "page": page, "pageSize": self.PAGE_SIZE})
            connection: Any = data
            for key in path:
                connection = connection.get(key) if isinstance(connection, dict) else None
            if not isinstance(connection, dict) or not isinstance(connection.get("edges"), list):
                raise MalformedResponseError(
                    f"missing '{'.'.join(path)}' connection", self.platform, data
                )

            for edge in connection["edges"]:
                if isinstance(edge, dict):
                    yield edge.get("node")

            page_info = connection.get("pageInfo") or {}
            total_pages = page_info.get("totalPages") or 1
            if page >= int(total_pages):
                return
            page += 1

    def list_businesses(self) -> list[dict]:
        """Businesses visible with the token, as ``{"id", "name"}`` dicts."""
        businesses = []
        for node in self._connection_pages(BUSINESSES_QUERY, {}, ("businesses",)):
            if isinstance(node, dict) and node.get("id"):
                businesses.append({"id": node["id"], "name": node.get("name", "")})
        return businesses

    def _business_id(self) -> str:
        if self.business_id:
            return self.business_id
        businesses = self.list_businesses()
        if not businesses:
            raise ConnectorAPIError(404, "no business visible with this token", self.platform)
        self.business_id = businesses[0]["id"]
        logger.info("Using Wave business %s", businesses[0]["name"] or self.business_id)
        return self.business_id

    def list_accounts(self) -> list[ExternalAccount]:
        accounts = []
        nodes = self._connection_pages(
            ACCOUNTS_QUERY, {"businessId": self._business_id()}, ("business", "accounts")
        )
        for node in nodes:
            try:
                accounts.append(WaveAccountRecord.from_api_response(node).to_account())
            except MalformedResponseError as e:
                logger.warning("Skipping malformed Wave account: %s", e)
        return accounts

    def fetch_transactions(
        self, account: ExternalAccount, since: datetime | None = None
    ) -> FetchResult:
        nodes = self._connection_pages(
            TRANSACTIONS_QUERY,
            {"businessId": self._business_id(), "accountId": account.external_id},
            ("business", "transactions"),
        )
        result = parse_records(
            nodes,
            lambda node: WaveTransactionRecord.from_api_response(node).to_native(),
            self.platform,
        )
        if since is not None:
            # The query has no date filter
            cutoff = since.date()
            result.transactions = [tx for tx in result.transactions if tx.date >= cutoff]
        return result

    def validate_credentials(self, key: str | None = None) -> CredentialCheck:
        try:
            data = self._graphql(USER_QUERY, key=key)
        except CredentialError as e:
            return CredentialCheck(False, e.message)
        user = data.get("user") or {}
        name = " ".join(part for part in (user.get("firstName"), user.get("lastName")) if part)
        return CredentialCheck(True, f"Connected as {name or user.get('defaultEmail') or 'unknown user'}")

    def create_transaction(self, payload: LedgerTransactionPayload) -> str:
        """
        Write one transaction to the ledger.

        Returns:
            Ledger transaction id.

        Raises:
            ConnectorAPIError: If the ledger rejected the input.
        """
        amount = abs(Decimal(payload.amount))
        tx_input: dict[str, Any] = {
            "businessId": payload.business_id,
            "externalId": payload.external_id,
            "date": payload.date,
            "description": payload.description,
        }
        if self.anchor_account_id:
            tx_input["anchor"] = {
                "accountId": self.anchor_account_id,
                "amount": float(amount),
                "direction": payload.direction,
            }
        if payload.account_id:
            tx_input["lineItems"] = [
                {"accountId": payload.account_id, "amount": float(amount), "balance": "INCREASE"}
            ]

        data = self._graphql(CREATE_TRANSACTION_MUTATION, {"input": tx_input})
        result = data.get("moneyTransactionCreate")
        if not isinstance(result, dict):
            raise MalformedResponseError("missing moneyTransactionCreate result", self.platform, data)

        if not result.get("didSucceed"):
            input_errors = result.get("inputErrors") or []
            message = "; ".join(
                str(err.get("message")) for err in input_errors if isinstance(err, dict)
            ) or "ledger rejected the transaction"
            raise ConnectorAPIError(422, message, self.platform)

        transaction = result.get("transaction") or {}
        if not transaction.get("id"):
            raise MalformedResponseError("created transaction has no id", self.platform, result)
        return str(transaction["id"])
