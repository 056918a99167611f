"""Service layer: clients for external platforms."""
