"""Adapters layer for the Contest Ledger service.

This layer contains all adapters that translate between the core domain
and external systems (databases, message buses, catalog APIs, etc).
"""
