"""Confirmation-safe, range-cursored indexer for tracked EVM contracts."""

__version__ = "0.1.0"
