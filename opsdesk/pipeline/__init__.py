"""Status pipeline: transition maps, state machine, saga runner and service."""

from opsdesk.pipeline.machine import StatusChange, StatusMachine
from opsdesk.pipeline.saga import RetryPolicy, Saga, SagaResult, SagaStep, drain, pending_side_effects
from opsdesk.pipeline.service import FailureKind, PipelineService, TransitionResult

__all__ = [
    "FailureKind",
    "PipelineService",
    "RetryPolicy",
    "Saga",
    "SagaResult",
    "SagaStep",
    "StatusChange",
    "StatusMachine",
    "TransitionResult",
    "drain",
    "pending_side_effects",
]
