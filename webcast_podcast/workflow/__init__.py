"""Workflow orchestration for the webcast podcast pipeline.

Processes recordings through: resolve → fetch → transcode → publish →
register → cleanup → transcribe.
"""

from webcast_podcast.workflow.orchestrator import (
    ItemState,
    PipelineOrchestrator,
    PipelineStats,
    ResolvedMedia,
)

__all__ = [
    "ItemState",
    "PipelineOrchestrator",
    "PipelineStats",
    "ResolvedMedia",
]
