"""Sync package - incremental transaction sync."""

from finlink.sync.engine import SyncEngine

__all__ = ["SyncEngine"]
