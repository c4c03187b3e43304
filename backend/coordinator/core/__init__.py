"""Cross-cutting pieces shared by routes and services."""
