import logging
import threading
from datetime import datetime
from typing import Optional

from app.pipeline.agents.base import BaseAgent
from app.pipeline.exceptions import DuplicateAgentError, NoAgentForCapabilityError
from app.pipeline.state import AgentRunState, AgentStatus, Capability, utcnow

logger = logging.getLogger(__name__)


class _AgentStats:
    """Mutable counters for one agent. Only touched under `lock`."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.in_flight = 0
        self.processed_count = 0
        self.average_latency_ms = 0.0
        self.last_failed = False
        self.last_processed_at: Optional[datetime] = None


class AgentRegistry:
    """
    Registered agents in registration order, plus per-agent run stats.

    Each agent has its own lock so concurrent pipeline runs touching the
    same agent never lose an increment. snapshot() takes the locks one
    at a time: every AgentStatus is internally consistent, the list as a
    whole is best effort.
    """

    def __init__(self) -> None:
        self._agents: dict[str, BaseAgent] = {}
        self._stats: dict[str, _AgentStats] = {}

    def register(self, agent: BaseAgent) -> None:
        if agent.agent_id in self._agents:
            raise DuplicateAgentError(agent.agent_id)
        self._agents[agent.agent_id] = agent
        self._stats[agent.agent_id] = _AgentStats()
        logger.debug(
            "Registered %s for %s",
            agent.agent_id,
            sorted(c.value for c in agent.capabilities),
        )

    def resolve(self, capability: Capability) -> list[BaseAgent]:
        agents = [a for a in self._agents.values() if capability in a.capabilities]
        if not agents:
            raise NoAgentForCapabilityError(capability)
        return agents

    def get(self, agent_id: str) -> Optional[BaseAgent]:
        return self._agents.get(agent_id)

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def mark_started(self, agent_id: str) -> None:
        stats = self._stats[agent_id]
        with stats.lock:
            stats.in_flight += 1

    def record_run(self, agent_id: str, latency_ms: float, succeeded: bool) -> None:
        """Close out a run started with mark_started()."""
        stats = self._stats[agent_id]
        with stats.lock:
            stats.in_flight = max(0, stats.in_flight - 1)
            stats.processed_count += 1
            # cumulative moving average
            stats.average_latency_ms += (
                latency_ms - stats.average_latency_ms
            ) / stats.processed_count
            stats.last_failed = not succeeded
            stats.last_processed_at = utcnow()

    def release(self, agent_id: str) -> None:
        """Drop an in-flight run that never completed (cancelled)."""
        stats = self._stats[agent_id]
        with stats.lock:
            stats.in_flight = max(0, stats.in_flight - 1)

    def status(self, agent_id: str) -> AgentStatus:
        agent = self._agents[agent_id]
        stats = self._stats[agent_id]
        with stats.lock:
            if stats.in_flight:
                state = AgentRunState.PROCESSING
            elif stats.last_failed:
                state = AgentRunState.ERROR
            else:
                state = AgentRunState.IDLE
            return AgentStatus(
                agent_id=agent.agent_id,
                agent_name=agent.name,
                capabilities=sorted(
                    agent.capabilities, key=lambda c: list(Capability).index(c)
                ),
                status=state,
                last_processed_at=stats.last_processed_at,
                processed_count=stats.processed_count,
                average_latency_ms=round(stats.average_latency_ms, 2),
            )

    def snapshot(self) -> list[AgentStatus]:
        return [self.status(agent_id) for agent_id in list(self._agents)]
