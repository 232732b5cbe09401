"""Delivery side of the engine: notifications and telemetry."""
