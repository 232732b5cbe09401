"""Decision strategy."""
