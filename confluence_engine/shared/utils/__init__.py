"""Shared utilities: error policy, logging helpers, retry."""
