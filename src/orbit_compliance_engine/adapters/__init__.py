"""Adapters: storage and analytics implementations for the compliance engine.

Contains:
- memory_store.py    : InMemoryComplianceStore
- sql_store.py       : SqlComplianceStore (SQLAlchemy async)
- read_analytics.py  : InMemoryReadAnalytics, best-effort read counters
"""

__all__: list[str] = []
