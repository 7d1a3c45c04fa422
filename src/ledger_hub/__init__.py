"""
DoorLoop, Mercury, Wave and vendor feeds -> canonical transactions -> Wave

Ingests transactions from independent financial platforms into one
canonical store, categorizes them deterministically with an AI fallback,
pushes them to the primary ledger idempotently and reconciles the
platforms against each other.
"""

__version__ = "0.1.0"
