from plainly.services.pipeline.gate import StageGate
from plainly.services.pipeline.orchestrator import PipelineOrchestrator, PipelineRun
from plainly.services.pipeline.stages import PipelinePolicy, StageDescriptor

__all__ = [
    "PipelineOrchestrator",
    "PipelinePolicy",
    "PipelineRun",
    "StageDescriptor",
    "StageGate",
]
