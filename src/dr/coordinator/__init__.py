"""Pipeline coordinators and the research service."""

from dr.coordinator.deep_pipeline import (
    DeepResearchOptions,
    DeepResearchPipeline,
    DeepRunResult,
    apply_review,
)
from dr.coordinator.event_log import EventLog
from dr.coordinator.fast_pipeline import FastPipeline, FastPipelineOptions, FastRunResult
from dr.coordinator.service import ResearchService

__all__ = [
    "DeepResearchOptions",
    "DeepResearchPipeline",
    "DeepRunResult",
    "EventLog",
    "FastPipeline",
    "FastPipelineOptions",
    "FastRunResult",
    "ResearchService",
    "apply_review",
]
