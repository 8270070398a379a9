"""Vendor commission engine: rule resolution, per-order commissions and vendor payouts."""

__version__ = "1.0.0"
