"""Investigation coordinator: AI-assisted diagnostics for remote monitoring agents."""
