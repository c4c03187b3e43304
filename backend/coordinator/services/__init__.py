"""Service layer: orchestrator, external clients and read queries."""
