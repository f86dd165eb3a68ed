# notes_pipeline/__init__.py
"""notes-pipeline: resumable, checkpointed processing of a notes collection."""

__version__ = "0.1.0"
