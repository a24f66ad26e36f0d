"""Adapters connecting syncledger to remote stores, activity logs and storage."""
