"""Request, response and metadata models."""
