"""Job state storage and transitions."""

from diligence.state.base import StateBackend
from diligence.state.machine import JobStateMachine
from diligence.state.memory import InMemoryStateBackend

__all__ = ["InMemoryStateBackend", "JobStateMachine", "StateBackend"]
