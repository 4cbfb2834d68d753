"""Infrastructure layer: I/O, subprocesses, external services and locking."""
