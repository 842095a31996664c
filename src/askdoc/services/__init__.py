"""Service layer orchestrations for askdoc."""

from .generation import CompletionClient, CompletionConfig, Completer, build_messages
from .orchestrator import Orchestrator, PipelineRun, PipelineState, Uploader

__all__ = [
    "CompletionClient",
    "CompletionConfig",
    "Completer",
    "build_messages",
    "Orchestrator",
    "PipelineRun",
    "PipelineState",
    "Uploader",
]
