"""Pipeline Orchestrator -- tag to published release."""

from plugship.pipeline.orchestrator import Orchestrator, PipelineRun
from plugship.pipeline.tags import resolve_tag, validate_tag, version_from_tag

__all__ = ["Orchestrator", "PipelineRun", "resolve_tag", "validate_tag", "version_from_tag"]
