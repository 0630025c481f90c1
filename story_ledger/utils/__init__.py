"""Utility helpers shared across Story Ledger."""
