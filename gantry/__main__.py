"""Entry point for `python -m gantry`."""

from gantry.cli.cli import app

if __name__ == "__main__":
    app()
