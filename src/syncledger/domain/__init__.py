"""Reconciliation core: change tracking, conflict resolution, sync and rewind."""
