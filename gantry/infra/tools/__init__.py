"""Environment paths and subprocess helpers."""
