"""Connector construction from configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..schemas.transaction import Platform
from .base import RetryPolicy, SourceConnector
from .doorloop import DoorLoopConnector
from .egress_proxy import EgressProxy
from .mercury import MercuryConnector
from .vendor_feed import VendorFeedConnector
from .wave import WAVE_RETRY_METHODS, WaveConnector

if TYPE_CHECKING:
    from ..config import Config


def retry_policy_from_config(config: Config, methods: tuple[str, ...] | None = None) -> RetryPolicy:
    kwargs = {}
    if methods is not None:
        kwargs["retry_methods"] = methods
    return RetryPolicy(
        max_retries=config.http.max_retries,
        backoff_factor=config.http.backoff_factor,
        **kwargs,
    )


def build_proxy(config: Config) -> EgressProxy | None:
    """The egress proxy, or None when it is disabled."""
    if not config.egress_proxy.enabled:
        return None
    return EgressProxy(config.egress_proxy, timeout=config.http.timeout_seconds)


def build_connector(
    platform: str | Platform,
    config: Config,
    proxy: EgressProxy | None = None,
    credential: str | None = None,
) -> SourceConnector:
    """
    Build the connector for one platform.

    Args:
        platform: Platform key (doorloop, mercury, wave, vendor).
        config: Application configuration.
        proxy: Shared egress proxy; only platforms that need a static IP use it.
        credential: API key used instead of the configured one.

    Raises:
        ValueError: Unknown platform.
    """
    platform = Platform(platform)
    timeout = config.http.timeout_seconds

    if platform == Platform.MERCURY:
        return MercuryConnector(
            config.mercury.base_url,
            credential or config.mercury.api_key,
            timeout=timeout,
            retry_policy=retry_policy_from_config(config),
            proxy=proxy if config.mercury.use_proxy else None,
        )
    if platform == Platform.DOORLOOP:
        return DoorLoopConnector(
            config.doorloop.base_url,
            credential or config.doorloop.api_key,
            timeout=timeout,
            retry_policy=retry_policy_from_config(config),
        )
    if platform == Platform.WAVE:
        return WaveConnector(
            config.wave.graphql_url,
            credential or config.wave.api_token,
            business_id=config.wave.business_id,
            anchor_account_id=config.wave.anchor_account_id,
            timeout=timeout,
            retry_policy=retry_policy_from_config(config, WAVE_RETRY_METHODS),
        )
    if platform == Platform.VENDOR:
        return VendorFeedConnector(
            config.vendor_feeds,
            timeout=timeout,
            retry_policy=retry_policy_from_config(config),
        )
    raise ValueError(f"No connector for platform '{platform.value}'")
