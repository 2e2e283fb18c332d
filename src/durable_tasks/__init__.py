"""Durable relational work queue with claims, heartbeats and task event logs."""

__version__ = "0.1.0"
