"""Configuration, event sinks, run records and CI event parsing."""
