# notes_pipeline/background/__init__.py
"""
Run coordination.

Exports:
    - PipelineLifecycle: Startup, stage run and shutdown coordination
    - setup_signal_handlers: Graceful shutdown signal handling
"""

from notes_pipeline.background.lifecycle import PipelineLifecycle
from notes_pipeline.background.signals import remove_signal_handlers, setup_signal_handlers

__all__ = ["PipelineLifecycle", "remove_signal_handlers", "setup_signal_handlers"]
