"""Service layer for Story Ledger."""
