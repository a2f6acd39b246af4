"""Entry point for ``python -m last_run``."""

from last_run.cli import app

if __name__ == "__main__":
    app()
