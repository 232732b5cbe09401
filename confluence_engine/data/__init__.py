"""Data access: market-data adapters and signal persistence."""
