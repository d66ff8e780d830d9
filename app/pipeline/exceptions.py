"""
Errors raised inside the document pipeline.

Stage-level failures (AgentExecutionError and subclasses,
ContractViolationError, NoAgentForCapabilityError) are caught by the
orchestrator and reported in PipelineResult.errors. Only
InvalidDocumentError escapes process_document.
"""
from typing import Optional

from app.pipeline.state import Capability


class OrchestratorError(Exception):
    """Base class for every pipeline error."""


class AgentExecutionError(OrchestratorError):
    """An agent could not produce a decision for its stage."""

    def __init__(
        self,
        message: str,
        agent_id: Optional[str] = None,
        stage: Optional[Capability] = None,
    ) -> None:
        super().__init__(message)
        self.agent_id = agent_id
        self.stage = stage


class AgentTimeoutError(AgentExecutionError):
    """An agent (or a service it called) exceeded its time budget."""


class ContractViolationError(OrchestratorError):
    """An agent returned something the Agent contract forbids."""

    def __init__(self, message: str, agent_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.agent_id = agent_id


class DuplicateAgentError(OrchestratorError):
    def __init__(self, agent_id: str) -> None:
        super().__init__(f"Agent already registered: {agent_id}")
        self.agent_id = agent_id


class NoAgentForCapabilityError(OrchestratorError):
    def __init__(self, capability: Capability) -> None:
        super().__init__(
            f"No agent registered for capability '{capability.value}'"
        )
        self.capability = capability


class InvalidDocumentError(OrchestratorError, ValueError):
    """The caller handed the orchestrator a document it must not accept."""
