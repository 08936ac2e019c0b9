"""Polymarket Fresh-Wallet Cluster Tracker.

Watches Polymarket exchange fills on Polygon and alerts when many fresh
wallets bet on the same outcome within a rolling window.
"""

__version__ = "0.1.0"
