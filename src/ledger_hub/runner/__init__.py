"""
CLI runner module.

Provides commands:
- sync: Ingest transactions from source platforms
- push: Push transactions to the Wave ledger
- reconcile: Cross-platform reconciliation report
- recategorize: Bulk AI recategorization
- discover-accounts / map-category: Maintain the category mapping table
- identify-flow / flows / execute-flow: Financial flow templates
- validate-credentials / status / init-config
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
