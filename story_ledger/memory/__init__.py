"""Persistence models and storage for the character ledger."""
