import uuid
from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional, Sequence

from app.pipeline.exceptions import AgentExecutionError
from app.pipeline.state import (
    AgentResult,
    Capability,
    Decision,
    ExtractedData,
    FinancialDocument,
    Outcome,
    utcnow,
)


class BaseAgent(ABC):
    """
    A single-capability unit of the document pipeline.

    Subclasses implement process(): inspect (and optionally edit) the
    working copy of the document and return a Decision built with
    decide(). run() is what the orchestrator calls; it hands process()
    a deep copy so the caller's document is never touched mid-stage.

    Reasoning must depend on document content only (never on ids,
    clocks or randomness) so identical documents get identical
    audit trails.
    """

    def __init__(
        self,
        agent_id: str,
        name: str,
        capabilities: Iterable[Capability],
        action: str,
    ) -> None:
        self.agent_id = agent_id
        self.name = name
        self.capabilities = frozenset(capabilities)
        self.action = action

    async def run(
        self,
        document: FinancialDocument,
        trail: Sequence[Decision] = (),
    ) -> AgentResult:
        working = document.model_copy(deep=True)
        decision = await self.process(working, tuple(trail))
        return AgentResult(decision=decision, document=working)

    @abstractmethod
    async def process(
        self,
        document: FinancialDocument,
        trail: Sequence[Decision],
    ) -> Decision:
        raise NotImplementedError

    @property
    def primary_capability(self) -> Capability:
        return min(self.capabilities, key=lambda c: list(Capability).index(c))

    def decide(
        self,
        document: FinancialDocument,
        reasoning: str,
        confidence: float,
        outcome: "Outcome | str",
        **metadata: Any,
    ) -> Decision:
        return Decision(
            id=str(uuid.uuid4()),
            agent_id=self.agent_id,
            document_id=document.id,
            action=self.action,
            reasoning=reasoning,
            confidence_score=confidence,
            outcome=outcome.value if isinstance(outcome, Outcome) else str(outcome),
            timestamp=utcnow(),
            metadata={"capability": self.primary_capability.value, **metadata},
        )

    def fail(self, message: str) -> AgentExecutionError:
        """Build the error this agent raises when it cannot decide."""
        return AgentExecutionError(
            message, agent_id=self.agent_id, stage=self.primary_capability
        )

    def require_extracted(self, document: FinancialDocument) -> ExtractedData:
        if document.extracted_data is None:
            raise self.fail(
                f"{self.name} requires extracted data on document {document.id}"
            )
        return document.extracted_data

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.agent_id}>"


def find_decision(
    trail: Sequence[Decision], capability: Capability
) -> Optional[Decision]:
    """Most recent decision in the trail made for the given stage."""
    for decision in reversed(trail):
        if decision.capability == capability:
            return decision
    return None
