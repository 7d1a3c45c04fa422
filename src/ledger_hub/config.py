"""
Configuration management (SSOT).

This module defines ALL configuration for LedgerHub.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- API credentials may come from the YAML file or the environment; the
  environment always wins
- Every outbound call gets its timeout from ``http.timeout_seconds``
- The AI acceptance threshold is strict: a suggestion must EXCEED it
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class DoorLoopConfig:
    """DoorLoop (property management ledger) configuration."""

    api_key: str = ""
    base_url: str = "https://api.doorloop.com"


@dataclass
class MercuryConfig:
    """Mercury (bank) configuration.

    The bank allow-lists client IPs, so calls go through the egress proxy
    when ``use_proxy`` is set and the proxy is enabled.
    """

    api_key: str = ""
    base_url: str = "https://api.mercury.com/api/v1"
    use_proxy: bool = True


@dataclass
class WaveConfig:
    """Wave (accounting platform, primary ledger) configuration."""

    api_token: str = ""
    business_id: str = ""
    graphql_url: str = "https://gql.waveapps.com/graphql/public"
    # Bank account every pushed transaction is anchored to
    anchor_account_id: str = ""


@dataclass
class VendorFeedConfig:
    """A single vendor purchase feed (REI, Home Depot, Amazon Business, Lowe's)."""

    name: str
    url: str
    label: str = ""
    token: str = ""
    default_category: str = "supplies"

    def get_label(self) -> str:
        return self.label or self.name


@dataclass
class EgressProxyConfig:
    """Static-IP egress proxy configuration."""

    enabled: bool = False
    proxy_url: str = ""
    api_key: str = ""
    secret: str = ""
    # Cached status is revalidated at most this often
    status_ttl_seconds: int = 3600


@dataclass
class HttpConfig:
    """Outbound HTTP settings shared by all connectors."""

    timeout_seconds: float = 30.0
    # Explicit retry policy for transient failures
    max_retries: int = 3
    backoff_factor: float = 0.5


@dataclass
class LLMConfig:
    """Local LLM (Ollama) configuration.

    SSOT for LLM settings:
    - enabled: Master switch (default OFF)
    - ollama_url: Can be localhost, LAN IP, or remote URL
    - auth_header: Optional auth header for proxied deployments
    - max_concurrent: Concurrency limiter for queue management
    """

    enabled: bool = False
    ollama_url: str = "http://localhost:11434"
    auth_header: str | None = None
    model_fast: str = "qwen2.5:3b-instruct-q4_K_M"
    model_fallback: str = "qwen2.5:7b-instruct-q4_K_M"
    timeout_seconds: int = 30
    cache_ttl_days: int = 30
    max_concurrent: int = 2
    # Suggestions must be strictly above this to override "other"
    acceptance_threshold: float = 0.70
    # Learned native-category rules need this much confidence
    mapping_rule_threshold: float = 0.50

    def is_remote(self) -> bool:
        """Check if Ollama URL is remote (not localhost)."""
        url_lower = self.ollama_url.lower()
        return not any(
            local in url_lower
            for local in ["localhost", "127.0.0.1", "::1", "host.docker.internal"]
        )


@dataclass
class SyncConfig:
    """Ingestion and push settings."""

    # Concurrent account workers per platform (respect upstream rate limits)
    max_workers: int = 4
    # Default push window (days back from today)
    push_days: int = 30
    # Default recategorization window (days back from today)
    recategorize_days: int = 31


@dataclass
class ReconciliationConfig:
    """Reconciliation settings."""

    # Dates may differ by at most this many days for a match
    date_tolerance_days: int = 2
    # Minimum Jaccard overlap of description tokens for a match
    min_token_overlap: float = 0.1


@dataclass
class Config:
    """Application configuration (SSOT)."""

    doorloop: DoorLoopConfig = field(default_factory=DoorLoopConfig)
    mercury: MercuryConfig = field(default_factory=MercuryConfig)
    wave: WaveConfig = field(default_factory=WaveConfig)
    vendor_feeds: list[VendorFeedConfig] = field(default_factory=list)
    egress_proxy: EgressProxyConfig = field(default_factory=EgressProxyConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if self.egress_proxy.enabled:
            if not self.egress_proxy.proxy_url:
                errors.append("egress_proxy.proxy_url is required when the proxy is enabled")
            if not self.egress_proxy.api_key or not self.egress_proxy.secret:
                errors.append("egress_proxy.api_key and egress_proxy.secret are required")

        if self.llm.enabled and not self.llm.ollama_url:
            errors.append("llm.ollama_url is required when LLM is enabled")

        if not 0.0 <= self.llm.acceptance_threshold <= 1.0:
            errors.append("llm.acceptance_threshold must be between 0 and 1")

        if self.sync.max_workers < 1:
            errors.append("sync.max_workers must be >= 1")

        if self.http.timeout_seconds <= 0:
            errors.append("http.timeout_seconds must be positive")

        if self.reconciliation.date_tolerance_days < 0:
            errors.append("reconciliation.date_tolerance_days must be >= 0")

        names = [feed.name for feed in self.vendor_feeds]
        if len(names) != len(set(names)):
            errors.append("vendor_feeds names must be unique")

        return errors

    def configured_platforms(self) -> list[str]:
        """Platforms with credentials present."""
        platforms = []
        if self.doorloop.api_key:
            platforms.append("doorloop")
        if self.mercury.api_key:
            platforms.append("mercury")
        if self.wave.api_token:
            platforms.append("wave")
        if self.vendor_feeds:
            platforms.append("vendor")
        return platforms


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name, "").lower()
    if value == "true":
        return True
    if value == "false":
        return False
    return default


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - DOORLOOP_API_KEY
    - MERCURY_API_KEY
    - WAVE_API_TOKEN
    - WAVE_BUSINESS_ID
    - WAVE_ANCHOR_ACCOUNT_ID
    - STATIC_IP_PROXY_URL, STATIC_IP_PROXY_API_KEY, STATIC_IP_PROXY_SECRET
    - STATIC_IP_PROXY_ENABLED (true/false)
    - LEDGER_HUB_LLM_ENABLED (true/false)
    - OLLAMA_URL
    - OLLAMA_MODEL (fast model name)
    - OLLAMA_MODEL_FALLBACK (fallback model name)
    - OLLAMA_TIMEOUT (request timeout in seconds)
    - LEDGER_HUB_DB (state database path)
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    if not isinstance(data, dict):
        raise ConfigValidationError(f"{config_path} must contain a mapping")

    doorloop_data = data.get("doorloop", {}) or {}
    doorloop = DoorLoopConfig(
        api_key=os.environ.get("DOORLOOP_API_KEY", doorloop_data.get("api_key", "")),
        base_url=doorloop_data.get("base_url", "https://api.doorloop.com"),
    )

    mercury_data = data.get("mercury", {}) or {}
    mercury = MercuryConfig(
        api_key=os.environ.get("MERCURY_API_KEY", mercury_data.get("api_key", "")),
        base_url=mercury_data.get("base_url", "https://api.mercury.com/api/v1"),
        use_proxy=mercury_data.get("use_proxy", True),
    )

    wave_data = data.get("wave", {}) or {}
    wave = WaveConfig(
        api_token=os.environ.get("WAVE_API_TOKEN", wave_data.get("api_token", "")),
        business_id=os.environ.get("WAVE_BUSINESS_ID", wave_data.get("business_id", "")),
        graphql_url=wave_data.get("graphql_url", "https://gql.waveapps.com/graphql/public"),
        anchor_account_id=os.environ.get(
            "WAVE_ANCHOR_ACCOUNT_ID", wave_data.get("anchor_account_id", "")
        ),
    )

    vendor_feeds = []
    for feed_data in data.get("vendor_feeds", []) or []:
        if not isinstance(feed_data, dict) or "name" not in feed_data or "url" not in feed_data:
            raise ConfigValidationError("each vendor_feeds entry needs 'name' and 'url'")
        vendor_feeds.append(
            VendorFeedConfig(
                name=feed_data["name"],
                url=feed_data["url"],
                label=feed_data.get("label", ""),
                token=feed_data.get("token", ""),
                default_category=feed_data.get("default_category", "supplies"),
            )
        )

    proxy_data = data.get("egress_proxy", {}) or {}
    egress_proxy = EgressProxyConfig(
        enabled=_env_bool("STATIC_IP_PROXY_ENABLED", proxy_data.get("enabled", False)),
        proxy_url=os.environ.get("STATIC_IP_PROXY_URL", proxy_data.get("proxy_url", "")),
        api_key=os.environ.get("STATIC_IP_PROXY_API_KEY", proxy_data.get("api_key", "")),
        secret=os.environ.get("STATIC_IP_PROXY_SECRET", proxy_data.get("secret", "")),
        status_ttl_seconds=int(proxy_data.get("status_ttl_seconds", 3600)),
    )

    http_data = data.get("http", {}) or {}
    http = HttpConfig(
        timeout_seconds=float(http_data.get("timeout_seconds", 30.0)),
        max_retries=int(http_data.get("max_retries", 3)),
        backoff_factor=float(http_data.get("backoff_factor", 0.5)),
    )

    llm_data = data.get("llm", {}) or {}
    llm = LLMConfig(
        enabled=_env_bool("LEDGER_HUB_LLM_ENABLED", llm_data.get("enabled", False)),
        ollama_url=os.environ.get(
            "OLLAMA_URL", llm_data.get("ollama_url", "http://localhost:11434")
        ),
        auth_header=os.environ.get("OLLAMA_AUTH_HEADER", llm_data.get("auth_header")),
        model_fast=os.environ.get(
            "OLLAMA_MODEL", llm_data.get("model_fast", "qwen2.5:3b-instruct-q4_K_M")
        ),
        model_fallback=os.environ.get(
            "OLLAMA_MODEL_FALLBACK", llm_data.get("model_fallback", "qwen2.5:7b-instruct-q4_K_M")
        ),
        timeout_seconds=int(os.environ.get(
            "OLLAMA_TIMEOUT", llm_data.get("timeout_seconds", 30)
        )),
        cache_ttl_days=int(llm_data.get("cache_ttl_days", 30)),
        max_concurrent=int(llm_data.get("max_concurrent", 2)),
        acceptance_threshold=float(llm_data.get("acceptance_threshold", 0.70)),
        mapping_rule_threshold=float(llm_data.get("mapping_rule_threshold", 0.50)),
    )

    sync_data = data.get("sync", {}) or {}
    sync = SyncConfig(
        max_workers=int(sync_data.get("max_workers", 4)),
        push_days=int(sync_data.get("push_days", 30)),
        recategorize_days=int(sync_data.get("recategorize_days", 31)),
    )

    recon_data = data.get("reconciliation", {}) or {}
    reconciliation = ReconciliationConfig(
        date_tolerance_days=int(recon_data.get("date_tolerance_days", 2)),
        min_token_overlap=float(recon_data.get("min_token_overlap", 0.1)),
    )

    state_db = os.environ.get("LEDGER_HUB_DB", data.get("state_db_path", "data/state.db"))

    return Config(
        doorloop=doorloop,
        mercury=mercury,
        wave=wave,
        vendor_feeds=vendor_feeds,
        egress_proxy=egress_proxy,
        http=http,
        llm=llm,
        sync=sync,
        reconciliation=reconciliation,
        state_db_path=Path(state_db),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# LedgerHub configuration
#
# Credentials can be set here or through environment variables
# (DOORLOOP_API_KEY, MERCURY_API_KEY, WAVE_API_TOKEN, WAVE_BUSINESS_ID).
# Environment variables take precedence.

doorloop:
  api_key: ""
  base_url: "https://api.doorloop.com"

mercury:
  api_key: ""
  base_url: "https://api.mercury.com/api/v1"
  use_proxy: true                          # Route through the static-IP egress proxy

wave:
  api_token: ""
  business_id: ""                          # Ledger business receiving pushed transactions
  graphql_url: "https://gql.waveapps.com/graphql/public"
  anchor_account_id: ""                    # Bank account pushed transactions post against

# Vendor purchase feeds (one account per feed)
vendor_feeds: []
#  - name: homedepot
#    label: "Home Depot Pro"
#    url: "https://feeds.example.com/homedepot"
#    token: ""
#    default_category: supplies

# Static-IP egress proxy (bank IP allow-listing)
egress_proxy:
  enabled: false
  proxy_url: ""
  api_key: ""
  secret: ""
  status_ttl_seconds: 3600                 # Revalidate proxy status at most hourly

http:
  timeout_seconds: 30
  max_retries: 3                           # Retries for timeouts, 429 and 5xx
  backoff_factor: 0.5

# Local LLM settings (Ollama)
llm:
  enabled: false
  ollama_url: "http://localhost:11434"
  auth_header: null
  model_fast: "qwen2.5:3b-instruct-q4_K_M"
  model_fallback: "qwen2.5:7b-instruct-q4_K_M"
  timeout_seconds: 30
  cache_ttl_days: 30
  max_concurrent: 2
  acceptance_threshold: 0.70               # Must be exceeded to override "other"
  mapping_rule_threshold: 0.50

sync:
  max_workers: 4                           # Concurrent accounts per platform
  push_days: 30
  recategorize_days: 31

reconciliation:
  date_tolerance_days: 2
  min_token_overlap: 0.1

state_db_path: "data/state.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
