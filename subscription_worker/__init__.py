"""Subscription worker - job ledger and dispatch pipeline for subscription alerts."""

__version__ = "0.1.0"
