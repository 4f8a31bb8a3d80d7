"""Process self-monitoring."""
