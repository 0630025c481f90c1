"""YAML prompt templates for the ledger agents."""
