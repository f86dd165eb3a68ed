# notes_pipeline/__main__.py
"""Entry point for `python -m notes_pipeline`."""

from notes_pipeline.cli import app

if __name__ == "__main__":
    app()
