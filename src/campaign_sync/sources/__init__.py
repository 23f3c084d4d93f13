"""Source adapters for the external systems."""
