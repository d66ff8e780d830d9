import asyncio
import logging
import math
import time
import uuid
from typing import Optional

from langgraph.graph import END, START, StateGraph

from app.core.config import Settings, settings
from app.pipeline.agents.approval_agent import ApprovalAgent
from app.pipeline.agents.base import BaseAgent
from app.pipeline.agents.capture_agent import CaptureAgent
from app.pipeline.agents.classification_agent import ClassificationAgent
from app.pipeline.agents.compliance_agent import ComplianceAgent
from app.pipeline.agents.matching_agent import MatchingAgent
from app.pipeline.agents.payment_agent import PaymentAgent
from app.pipeline.agents.risk_agent import RiskAgent
from app.pipeline.exceptions import (
    AgentTimeoutError,
    ContractViolationError,
    InvalidDocumentError,
    NoAgentForCapabilityError,
    OrchestratorError,
)
from app.pipeline.reference_data import InMemoryReferenceData, ReferenceData
from app.pipeline.registry import AgentRegistry
from app.pipeline.sequencer import RISK_FLAGGED, PipelineSequencer
from app.pipeline.state import (
    AgentResult,
    AgentStatus,
    Capability,
    ErrorKind,
    FinancialDocument,
    PipelineError,
    PipelineResult,
    PipelineState,
    utcnow,
)

logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Drives one document through the registered agents.

    The run loop is a LangGraph StateGraph with one node per capability.
    Both the entry point and every edge are conditional on the
    sequencer, so a document resumes from whatever status it arrives in.
    One instance serves every request; runs share nothing except the
    registry's counters.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        sequencer: Optional[PipelineSequencer] = None,
        agent_timeout: float = 10.0,
    ) -> None:
        self.registry = registry
        self.sequencer = sequencer or PipelineSequencer()
        self.agent_timeout = agent_timeout
        self._graph = self._build_graph()

    # ── Public API ────────────────────────────────────────

    def register_agent(self, agent: BaseAgent) -> None:
        self.registry.register(agent)

    def get_registered_agents(self) -> list[AgentStatus]:
        return self.registry.snapshot()

    async def process_document(self, document: FinancialDocument) -> PipelineResult:
        if document is None or not document.id:
            raise InvalidDocumentError("Document must have an id")

        trace_id = str(uuid.uuid4())
        started_at = utcnow()
        started = time.perf_counter()
        logger.info(
            "Pipeline %s started for %s at status %s",
            trace_id, document.id, document.status.value,
        )

        state: PipelineState = {
            "trace_id": trace_id,
            "document": document.model_copy(deep=True),
            "decisions": [],
            "errors": [],
            "completed": [],
            "halted": False,
        }
        if self.sequencer.next_stage(document.status) is not None:
            state = await self._graph.ainvoke(state)
        else:
            logger.info("Document %s is at terminal status %s", document.id, document.status.value)

        final = state["document"]
        result = PipelineResult(
            document_id=final.id,
            trace_id=trace_id,
            status=final.status,
            decisions=state["decisions"],
            started_at=started_at,
            completed_at=utcnow(),
            duration_ms=max(0, round((time.perf_counter() - started) * 1000)),
            errors=state["errors"],
            document=final,
        )
        logger.info(
            "Pipeline %s finished for %s: status=%s decisions=%d errors=%d (%d ms)",
            trace_id, final.id, result.status.value,
            len(result.decisions), len(result.errors), result.duration_ms,
        )
        return result

    # ── Graph ─────────────────────────────────────────────

    def _build_graph(self):
        graph = StateGraph(PipelineState)
        routes = {END: END}
        for capability in self.sequencer.capabilities:
            graph.add_node(capability.value, self._make_node(capability))
            routes[capability.value] = capability.value

        graph.add_conditional_edges(START, self._route, routes)
        for capability in self.sequencer.capabilities:
            graph.add_conditional_edges(capability.value, self._route, routes)
        return graph.compile()

    def _route(self, state: PipelineState) -> str:
        if state["halted"]:
            return END
        rule = self.sequencer.next_stage(state["document"].status, state["completed"])
        return rule.capability.value if rule else END

    def _make_node(self, capability: Capability):
        async def node(state: PipelineState) -> dict:
            return await self._run_stage(state, capability)

        node.__name__ = f"{capability.value}_stage"
        return node

    # ── Stage execution ───────────────────────────────────

    async def _run_stage(self, state: PipelineState, capability: Capability) -> dict:
        document = state["document"]
        rule = self.sequencer.next_stage(document.status, state["completed"])

        try:
            agent = self.registry.resolve(capability)[0]
        except NoAgentForCapabilityError as exc:
            logger.error("[%s] %s", state["trace_id"], exc)
            return self._halt_with(
                state, PipelineError(stage=capability, error=str(exc), kind=ErrorKind.CONFIGURATION)
            )

        logger.debug("[%s] %s -> %s", state["trace_id"], capability.value, agent.agent_id)
        self.registry.mark_started(agent.agent_id)
        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(
                agent.run(document, state["decisions"]), timeout=self.agent_timeout
            )
            self._check_contract(agent, document, result)
        except asyncio.CancelledError:
            self.registry.release(agent.agent_id)
            raise
        except Exception as exc:
            latency_ms = (time.perf_counter() - started) * 1000
            self.registry.record_run(agent.agent_id, latency_ms, succeeded=False)
            error = self._stage_error(agent, capability, exc)
            logger.error(
                "[%s] %s failed at %s: %s",
                state["trace_id"], agent.agent_id, capability.value, error.error,
                exc_info=not isinstance(exc, (OrchestratorError, asyncio.TimeoutError)),
            )
            return self._halt_with(state, error)

        latency_ms = (time.perf_counter() - started) * 1000
        self.registry.record_run(agent.agent_id, latency_ms, succeeded=True)

        decision = result.decision
        updated = result.document
        # status is owned by the sequencer
        updated.status = document.status
        if updated != document:
            updated.updated_at = utcnow()

        transition = self.sequencer.transition(rule, decision.outcome)
        errors = list(state["errors"])
        if transition.note == RISK_FLAGGED:
            errors.append(PipelineError(
                agent_id=agent.agent_id,
                stage=capability,
                error=f"Risk flagged: {decision.reasoning}",
                kind=ErrorKind.RISK_FLAGGED,
                recoverable=True,
            ))

        completed = list(state["completed"]) + [capability]
        if transition.status is not None and transition.status != updated.status:
            updated.status = transition.status
            updated.updated_at = utcnow()
            completed = []

        logger.info(
            "[%s] %s: outcome=%s status=%s (%.1f ms)",
            state["trace_id"], agent.agent_id, decision.outcome,
            updated.status.value, latency_ms,
        )
        if transition.halt:
            logger.warning(
                "[%s] Pipeline halted for %s at %s",
                state["trace_id"], updated.id, updated.status.value,
            )

        return {
            "document": updated,
            "decisions": list(state["decisions"]) + [decision],
            "errors": errors,
            "completed": completed,
            "halted": transition.halt,
        }

    @staticmethod
    def _halt_with(state: PipelineState, error: PipelineError) -> dict:
        return {"errors": list(state["errors"]) + [error], "halted": True}

    def _stage_error(
        self, agent: BaseAgent, capability: Capability, exc: Exception
    ) -> PipelineError:
        if isinstance(exc, (asyncio.TimeoutError, AgentTimeoutError)):
            message = str(exc) or (
                f"{agent.name} timed out after {self.agent_timeout:g}s"
            )
            kind = ErrorKind.TIMEOUT
        elif isinstance(exc, ContractViolationError):
            message, kind = str(exc), ErrorKind.CONTRACT_VIOLATION
        else:
            message, kind = str(exc) or exc.__class__.__name__, ErrorKind.AGENT_ERROR
        return PipelineError(
            agent_id=agent.agent_id, stage=capability, error=message, kind=kind
        )

    @staticmethod
    def _check_contract(
        agent: BaseAgent, before: FinancialDocument, result: AgentResult
    ) -> None:
        decision, after = result.decision, result.document
        score = decision.confidence_score
        if math.isnan(score) or not 0.0 <= score <= 1.0:
            raise ContractViolationError(
                f"{agent.agent_id} returned confidence {score} outside [0, 1]",
                agent_id=agent.agent_id,
            )
        if after.id != before.id or decision.document_id != before.id:
            raise ContractViolationError(
                f"{agent.agent_id} changed the document id", agent_id=agent.agent_id
            )
        if after.tenant_id != before.tenant_id:
            raise ContractViolationError(
                f"{agent.agent_id} changed the document tenant", agent_id=agent.agent_id
            )


def create_orchestrator(
    config: Optional[Settings] = None,
    reference_data: Optional[ReferenceData] = None,
    extraction_chain=None,
) -> Orchestrator:
    """Orchestrator with the standard agent suite registered."""
    config = config or settings
    reference_data = reference_data or InMemoryReferenceData()
    if extraction_chain is None and config.EXTRACTION_USE_LLM:
        from app.pipeline.llm import build_extraction_chain

        extraction_chain = build_extraction_chain(
            config.OLLAMA_MODEL, config.OLLAMA_BASE_URL
        )

    registry = AgentRegistry()
    registry.register(CaptureAgent(extraction_chain, config.DEFAULT_CURRENCY))
    registry.register(ClassificationAgent())
    registry.register(ComplianceAgent(reference_data, config.REQUIRE_VENDOR_TAX_ID))
    registry.register(MatchingAgent(
        reference_data, config.MATCH_TOLERANCE_PERCENT, config.NON_PO_INVOICE_LIMIT
    ))
    registry.register(RiskAgent(reference_data))
    registry.register(ApprovalAgent(reference_data, config.AUTO_APPROVE_LIMIT))
    if config.AUTO_SCHEDULE_PAYMENT:
        registry.register(PaymentAgent(reference_data))

    return Orchestrator(
        registry,
        PipelineSequencer(schedule_payments=config.AUTO_SCHEDULE_PAYMENT),
        agent_timeout=config.AGENT_TIMEOUT_SECONDS,
    )
