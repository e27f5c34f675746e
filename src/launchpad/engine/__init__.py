"""Job orchestration: pipelines, polling, registry and event fan-out."""

from launchpad.engine.event_bus import EventBus
from launchpad.engine.manager import JobManager
from launchpad.engine.pipelines import (
    PipelineServices,
    RemotePipeline,
    ScaffoldPipeline,
    UplinkPipeline,
)
from launchpad.engine.polling import poll_agent_session
from launchpad.engine.registry import JobRegistry
from launchpad.engine.reporting import JobReporter

__all__ = [
    "EventBus",
    "JobManager",
    "JobRegistry",
    "JobReporter",
    "PipelineServices",
    "RemotePipeline",
    "ScaffoldPipeline",
    "UplinkPipeline",
    "poll_agent_session",
]
