"""Source connectors for the external financial platforms."""

from ledger_hub.connectors.base import (
    CredentialCheck,
    FetchResult,
    HttpConnector,
    RetryPolicy,
    SourceConnector,
)
from ledger_hub.connectors.doorloop import DoorLoopConnector
from ledger_hub.connectors.egress_proxy import EgressProxy, EgressProxyError, ProxiedResponse
from ledger_hub.connectors.factory import build_connector, build_proxy
from ledger_hub.connectors.mercury import MercuryConnector
from ledger_hub.connectors.vendor_feed import VendorFeedConnector
from ledger_hub.connectors.wave import WaveConnector
from ledger_hub.errors import (
    ConnectorAPIError,
    ConnectorError,
    CredentialError,
    MalformedResponseError,
    TransientNetworkError,
)

__all__ = [
    "ConnectorAPIError",
    "ConnectorError",
    "CredentialCheck",
    "CredentialError",
    "DoorLoopConnector",
    "EgressProxy",
    "EgressProxyError",
    "FetchResult",
    "HttpConnector",
    "MalformedResponseError",
    "MercuryConnector",
    "ProxiedResponse",
    "RetryPolicy",
    "SourceConnector",
    "TransientNetworkError",
    "VendorFeedConnector",
    "WaveConnector",
    "build_connector",
    "build_proxy",
]
