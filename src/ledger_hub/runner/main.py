"""
CLI main entry point.
"""

import argparse
import logging
import sys
from collections.abc import Callable
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path

from ..ai_classifier import AIClassifier
from ..categorization import CategoryMapper, CategoryMappingTable, CategoryResolver
from ..config import Config, create_default_config, load_config
from ..connectors import SourceConnector, build_connector, build_proxy
from ..errors import ConnectorError, CredentialError
from ..flows import FlowExecutor, FlowIdentifier, FlowKind, TransactionDraft
from ..matching import TransactionMatcher
from ..schemas.transaction import LEDGER_PLATFORM, Platform
from ..services import (
    AccountDiscovery,
    BulkRecategorizer,
    IngestionPipeline,
    PushEngine,
    ReconciliationEngine,
)
from ..services.reconciliation import DEFAULT_PLATFORMS
from ..state_store import StateStore

logger = logging.getLogger(__name__)

PLATFORM_CHOICES = [
    Platform.DOORLOOP.value,
    Platform.MERCURY.value,
    Platform.WAVE.value,
    Platform.VENDOR.value,
]


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got '{value}'") from e


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation as e:
        raise argparse.ArgumentTypeError(f"expected a number, got '{value}'") from e


def _add_date_range(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--start", type=_iso_date, help="First day (YYYY-MM-DD, inclusive)")
    parser.add_argument("--end", type=_iso_date, help="Last day (YYYY-MM-DD, inclusive)")


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledger-hub",
        description="Sync DoorLoop, Mercury, Wave and vendor feeds into one ledger",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # init-config command
    subparsers.add_parser("init-config", help="Write a default config file")

    # sync command
    sync_parser = subparsers.add_parser("sync", help="Ingest transactions from source platforms")
    sync_parser.add_argument(
        "--platform",
        action="append",
        choices=PLATFORM_CHOICES,
        help="Platform to sync (repeatable; default: all configured)",
    )

    # push command
    push_parser = subparsers.add_parser("push", help="Push transactions to the Wave ledger")
    _add_date_range(push_parser)
    push_parser.add_argument(
        "--force",
        action="store_true",
        help="Push again even if a transaction was pushed before",
    )

    # reconcile command
    reconcile_parser = subparsers.add_parser(
        "reconcile", help="Reconcile the canonical store against each platform"
    )
    _add_date_range(reconcile_parser)
    reconcile_parser.add_argument(
        "--platform",
        action="append",
        choices=list(DEFAULT_PLATFORMS),
        help="Platform to reconcile (repeatable; default: all configured)",
    )

    # recategorize command
    recategorize_parser = subparsers.add_parser(
        "recategorize", help="Re-run AI categorization over stored transactions"
    )
    _add_date_range(recategorize_parser)

    # discover-accounts command
    subparsers.add_parser(
        "discover-accounts", help="Map Wave ledger accounts onto categories"
    )

    # map-category command
    map_parser = subparsers.add_parser(
        "map-category", help="Learn the canonical category of a platform's category label"
    )
    map_parser.add_argument("--platform", required=True, choices=PLATFORM_CHOICES)
    map_parser.add_argument("--name", required=True, help="Platform category label")

    # identify-flow command
    identify_parser = subparsers.add_parser(
        "identify-flow", help="Identify the financial flow of a transaction"
    )
    identify_parser.add_argument("--description", required=True)
    identify_parser.add_argument("--amount", required=True, type=_decimal)
    identify_parser.add_argument("--vendor")
    identify_parser.add_argument("--property", dest="property_id")

    # flows command
    flows_parser = subparsers.add_parser("flows", help="List financial flow templates")
    flows_parser.add_argument(
        "--type",
        dest="kind",
        choices=[kind.value for kind in FlowKind],
        help="Only flows of this kind",
    )

    # execute-flow command
    execute_parser = subparsers.add_parser(
        "execute-flow", help="Record a manual transaction through a flow template"
    )
    execute_parser.add_argument("--flow-id", required=True)
    execute_parser.add_argument("--amount", required=True, type=_decimal)
    execute_parser.add_argument("--description", required=True)
    execute_parser.add_argument("--date", type=_iso_date, help="Default: today")
    execute_parser.add_argument("--property", dest="property_id")
    execute_parser.add_argument("--created-by")

    # validate-credentials command
    validate_parser = subparsers.add_parser(
        "validate-credentials", help="Check API credentials of each platform"
    )
    validate_parser.add_argument(
        "--platform",
        action="append",
        choices=PLATFORM_CHOICES,
        help="Platform to check (repeatable; default: all configured)",
    )

    # status command
    subparsers.add_parser("status", help="Show store statistics")

    return parser


def _date_range(
    start: date | None, end: date | None, default_days: int
) -> tuple[date, date] | None:
    """Complete a partial --start/--end pair; None when neither is given."""
    if start is None and end is None:
        return None
    end = end or date.today()
    start = start or end - timedelta(days=default_days)
    return start, end


def _build_resolver(
    config: Config, store: StateStore
) -> tuple[CategoryMappingTable, CategoryResolver, AIClassifier | None]:
    mapping = CategoryMappingTable(store)
    classifier = AIClassifier(config.llm, state_store=store) if config.llm.enabled else None
    resolver = CategoryResolver(
        mapping,
        classifier=classifier,
        acceptance_threshold=config.llm.acceptance_threshold,
    )
    return mapping, resolver, classifier


def _connector_factory(config: Config) -> Callable[[str, str | None], SourceConnector]:
    proxy = build_proxy(config)

    def factory(platform: str, credential: str | None = None) -> SourceConnector:
        return build_connector(platform, config, proxy=proxy, credential=credential)

    return factory


def cmd_init_config(config_path: Path) -> int:
    """Write a default config file."""
    if config_path.exists():
        print(f"❌ {config_path} already exists")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote default config to {config_path}")
    return 0


def cmd_sync(config: Config, platforms: list[str] | None) -> int:
    """Ingest transactions from source platforms."""
    platforms = platforms or config.configured_platforms()
    if not platforms:
        print("⚠️  No platforms configured; add credentials to the config file")
        return 1

    print(f"🔄 Syncing {', '.join(platforms)}...")

    store = StateStore(config.state_db_path)
    _, resolver, classifier = _build_resolver(config, store)
    pipeline = IngestionPipeline(
        store,
        resolver,
        _connector_factory(config),
        max_workers=config.sync.max_workers,
    )

    try:
        results = pipeline.sync_all(platforms)
    finally:
        if classifier is not None:
            classifier.close()

    print()
    print("📊 Sync Results")
    print("=" * 40)
    ok = True
    for platform, result in results.items():
        marker = "✓" if result.success else "❌"
        print(
            f"  {marker} {platform:<10} imported={result.imported} "
            f"categorized={result.categorized} mapped={result.mapped} "
            f"skipped={result.skipped} failed={result.failed}"
        )
        for error in result.errors:
            print(f"     - {error}")
        ok = ok and result.success

    return 0 if ok else 1


def cmd_push(
    config: Config, start: date | None, end: date | None, force: bool = False
) -> int:
    """Push transactions to the ledger."""
    store = StateStore(config.state_db_path)
    mapping = CategoryMappingTable(store)
    factory = _connector_factory(config)
    engine = PushEngine(
        store,
        mapping,
        lambda credential: factory(LEDGER_PLATFORM.value, credential),
        business_id=config.wave.business_id,
        push_days=config.sync.push_days,
    )

    print(f"📤 Pushing transactions to {LEDGER_PLATFORM.value}...")
    try:
        result = engine.push(
            date_range=_date_range(start, end, config.sync.push_days), force=force
        )
    except CredentialError as e:
        print(f"❌ {e}")
        print("   Check WAVE_API_TOKEN and WAVE_BUSINESS_ID")
        return 1

    print(f"  Pushed:   {result.total_pushed}")
    print(f"  Skipped:  {result.skipped}")
    print(f"  Errors:   {result.errors}")
    print(f"  Duration: {result.duration_ms}ms")
    if result.error_details:
        print("⚠️  Errors encountered:")
        for detail in result.error_details:
            print(f"   - {detail}")

    return 0 if result.success else 1


def cmd_reconcile(
    config: Config,
    start: date | None,
    end: date | None,
    platforms: list[str] | None,
) -> int:
    """Build a reconciliation report."""
    if platforms is None:
        configured = config.configured_platforms()
        platforms = [p for p in DEFAULT_PLATFORMS if p in configured]

    store = StateStore(config.state_db_path)
    engine = ReconciliationEngine(
        store,
        _connector_factory(config),
        matcher=TransactionMatcher(
            date_tolerance_days=config.reconciliation.date_tolerance_days,
            min_token_overlap=config.reconciliation.min_token_overlap,
        ),
    )

    period = None
    if start is not None or end is not None:
        end = end or date.today()
        period = (start or end.replace(day=1), end)

    print("🔄 Reconciling...")
    report = engine.reconcile(period=period, platforms=platforms)

    print()
    print(f"📊 Reconciliation {report.period_start} .. {report.period_end}")
    print("=" * 40)
    for name, total in report.totals.items():
        print(f"  {name:<10} total {total}")
    print(f"  Discrepancies: {len(report.discrepancies)} ({len(report.unmatched)} unmatched)")
    for item in report.discrepancies:
        print(f"   - [{item.platform}] {item.date} {item.amount} {item.description}: {item.note}")
    print(f"  Duplicate groups: {len(report.duplicates)}")
    for group in report.duplicates:
        print(f"   - [{group.platform}] {group.date} {group.amount} x{len(group.external_ids)}")

    if report.errors:
        print("⚠️  Errors encountered:")
        for error in report.errors:
            print(f"   - {error}")
        return 1
    return 0


def cmd_recategorize(config: Config, start: date | None, end: date | None) -> int:
    """Re-run AI categorization."""
    if not config.llm.enabled:
        print("❌ LLM is disabled; set llm.enabled or LEDGER_HUB_LLM_ENABLED=true")
        return 1

    store = StateStore(config.state_db_path)
    with AIClassifier(config.llm, state_store=store) as classifier:
        recategorizer = BulkRecategorizer(
            store,
            classifier,
            acceptance_threshold=config.llm.acceptance_threshold,
            days=config.sync.recategorize_days,
        )
        result = recategorizer.run(_date_range(start, end, config.sync.recategorize_days))

    print(f"  Processed:   {result.processed}")
    print(f"  Categorized: {result.categorized}")
    print(f"  Unchanged:   {result.unchanged}")
    print(f"  Errors:      {result.errors}")
    for detail in result.error_details:
        print(f"   - {detail}")
    return 0 if result.success else 1


def cmd_discover_accounts(config: Config) -> int:
    """Map ledger accounts onto categories."""
    store = StateStore(config.state_db_path)
    mapping = CategoryMappingTable(store)
    ledger = _connector_factory(config)(LEDGER_PLATFORM.value, None)

    try:
        result = AccountDiscovery(ledger, mapping).discover()
    except ConnectorError as e:
        print(f"❌ Account discovery failed: {e}")
        return 1
    finally:
        ledger.close()

    print(f"  Accounts found:  {result.accounts_found}")
    print(f"  Accounts mapped: {result.accounts_mapped}")
    for category, account_id in sorted(result.mappings.items()):
        print(f"   - {category:<12} -> {account_id}")
    return 0


def cmd_map_category(config: Config, platform: str, name: str) -> int:
    """Learn one native category label."""
    store = StateStore(config.state_db_path)
    mapping = CategoryMappingTable(store)

    known = mapping.lookup(platform, name)
    if known is not None:
        print(f"✓ '{name}' on {platform} is {known.value}")
        return 0

    if not config.llm.enabled:
        print(f"⚠️  '{name}' on {platform} is unknown and the LLM is disabled")
        return 1

    with AIClassifier(config.llm, state_store=store) as classifier:
        mapper = CategoryMapper(mapping, classifier, config.llm.mapping_rule_threshold)
        category = mapper.map_category(platform, name)

    print(f"✓ '{name}' on {platform} -> {category.value}")
    return 0


def cmd_identify_flow(
    config: Config,
    description: str,
    amount: Decimal,
    vendor: str | None = None,
    property_id: str | None = None,
) -> int:
    """Identify the financial flow of a transaction."""
    store = StateStore(config.state_db_path)
    _, resolver, classifier = _build_resolver(config, store)
    identifier = FlowIdentifier(resolver, use_ai=classifier is not None)

    try:
        flow = identifier.identify(
            TransactionDraft(
                description=description,
                amount=amount,
                vendor=vendor,
                property_id=property_id,
            )
        )
    finally:
        if classifier is not None:
            classifier.close()

    if flow is None:
        print("⚠️  No matching financial flow")
        return 1

    print(f"✓ {flow.name} ({flow.id})")
    print(f"  Category: {flow.category.value}")
    print(f"  Type:     {flow.type.value}")
    if flow.requires_property and not property_id:
        print("  ℹ️  This flow requires a property ID when recorded")
    return 0


def cmd_flows(kind: str | None = None) -> int:
    """List flow templates."""
    flows = FlowIdentifier(CategoryResolver(CategoryMappingTable())).list_flows(kind)
    print(f"\n📋 Financial flows ({len(flows)})")
    print("=" * 40)
    for flow in flows:
        recurrence = flow.recurrence.frequency if flow.recurrence else "one-off"
        print(f"  {flow.id:<32} {flow.category.value:<12} {flow.type.value:<8} {recurrence}")
    print()
    return 0


def cmd_execute_flow(
    config: Config,
    flow_id: str,
    amount: Decimal,
    description: str,
    tx_date: date | None = None,
    property_id: str | None = None,
    created_by: str | None = None,
) -> int:
    """Record a manual transaction through a flow template."""
    store = StateStore(config.state_db_path)
    execution = FlowExecutor(store).execute(
        flow_id,
        amount,
        description,
        tx_date or date.today(),
        property_id=property_id,
        created_by=created_by,
    )
    if not execution.success:
        print(f"❌ {execution.message}")
        return 1
    print(f"✓ {execution.message} (transaction {execution.transaction_id})")
    return 0


def cmd_validate_credentials(config: Config, platforms: list[str] | None) -> int:
    """Check each platform's credentials."""
    platforms = platforms or config.configured_platforms()
    if not platforms:
        print("⚠️  No platforms configured")
        return 1

    factory = _connector_factory(config)
    ok = True
    for platform in platforms:
        connector = factory(platform, None)
        try:
            check = connector.validate_credentials()
        except ConnectorError as e:
            check_ok, message = False, str(e)
        else:
            check_ok, message = check.success, check.message
        finally:
            connector.close()

        print(f"  {'✓' if check_ok else '❌'} {platform:<10} {message}")
        ok = ok and check_ok

    return 0 if ok else 1


def cmd_status(config: Config) -> int:
    """Show store status."""
    store = StateStore(config.state_db_path)
    stats = store.get_stats()

    print("\n📊 LedgerHub Status")
    print("=" * 40)
    print(f"  Transactions total:     {stats['transactions_total']}")
    for source, count in sorted(stats["transactions_by_source"].items()):
        print(f"    {source:<20} {count}")
    print(f"  Uncategorized:          {stats['uncategorized']}")
    print(f"  Accounts:               {stats['accounts']}")
    print(f"  Pushed to ledger:       {stats['pushed']}")
    print(f"  Push failures:          {stats['push_failed']}")

    latest = store.get_latest_reconciliation_report()
    if latest:
        print(
            f"  Last reconciliation:    {latest['period_start']} .. {latest['period_end']} "
            f"({latest['generated_at']})"
        )
    print()

    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    problems = config.validate()
    if problems:
        print("❌ Invalid configuration:")
        for problem in problems:
            print(f"   - {problem}")
        return 1

    # Route to command
    if parsed.command == "sync":
        return cmd_sync(config, parsed.platform)
    elif parsed.command == "push":
        return cmd_push(config, parsed.start, parsed.end, parsed.force)
    elif parsed.command == "reconcile":
        return cmd_reconcile(config, parsed.start, parsed.end, parsed.platform)
    elif parsed.command == "recategorize":
        return cmd_recategorize(config, parsed.start, parsed.end)
    elif parsed.command == "discover-accounts":
        return cmd_discover_accounts(config)
    elif parsed.command == "map-category":
        return cmd_map_category(config, parsed.platform, parsed.name)
    elif parsed.command == "identify-flow":
        return cmd_identify_flow(
            config,
            parsed.description,
            parsed.amount,
            vendor=parsed.vendor,
            property_id=parsed.property_id,
        )
    elif parsed.command == "flows":
        return cmd_flows(parsed.kind)
    elif parsed.command == "execute-flow":
        return cmd_execute_flow(
            config,
            parsed.flow_id,
            parsed.amount,
            parsed.description,
            tx_date=parsed.date,
            property_id=parsed.property_id,
            created_by=parsed.created_by,
        )
    elif parsed.command == "validate-credentials":
        return cmd_validate_credentials(config, parsed.platform)
    elif parsed.command == "status":
        return cmd_status(config)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
