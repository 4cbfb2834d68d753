"""Console output and per-run records."""
