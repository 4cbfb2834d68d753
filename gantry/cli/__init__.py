"""gantry command line interface."""
