"""
Storage module for credproxy.

SQLite-backed reference implementation of the policy and credential store
interfaces the engine and template service depend on.
"""

from credproxy.store.db import PolicyDB, now_iso

__all__ = [
    "PolicyDB",
    "now_iso",
]
