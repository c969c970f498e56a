"""
Quota Module
Usage credits for the map bridge, gated by Tesla OAuth identity

This module provides:
- Identity verification against the Tesla userinfo endpoint
- Per-user balance ledger with lazy provisioning
- Concurrency-safe atomic consumption
- Credit top-ups for verified users

Collections used:
- tesla_map_bridge_usage_quota: One balance document per user (unique user_id)
- quota_meta: Init version stamp
"""

__version__ = "1.0.0"
