"""Optional forwarding of flushed batches to an HTTP endpoint."""
