"""HTTP API: authorization flow, health checks and subscription routes."""
