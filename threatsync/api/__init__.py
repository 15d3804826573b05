"""HTTP API for feed management."""
