"""Recurring payment engine for the bookkeeping dashboard."""

__version__ = "0.1.0"
