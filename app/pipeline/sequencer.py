"""
Stage order and branch/halt policy for the document pipeline.

The policy is data: STAGE_TABLE maps a document status to the stage
rules that run at that status, in order, and each rule maps a decision
outcome to a Transition. The orchestrator never branches on outcomes
itself; it asks the sequencer.
"""
from dataclasses import dataclass, field
from typing import Iterable, Optional

from app.pipeline.state import Capability, DocumentStatus, Outcome

RISK_FLAGGED = "risk_flagged"


@dataclass(frozen=True)
class Transition:
    # None keeps the current status
    status: Optional[DocumentStatus] = None
    halt: bool = False
    note: Optional[str] = None


REVIEW = Transition(DocumentStatus.FLAGGED_FOR_REVIEW, halt=True)
REJECT = Transition(DocumentStatus.REJECTED, halt=True)


@dataclass(frozen=True)
class StageRule:
    capability: Capability
    on_success: Transition
    on_flagged: Transition = REVIEW
    on_block: Transition = REVIEW
    on_reject: Transition = REJECT


STAGE_TABLE: dict[DocumentStatus, tuple[StageRule, ...]] = {
    DocumentStatus.INGESTED: (
        StageRule(Capability.EXTRACTION, Transition(DocumentStatus.EXTRACTED)),
    ),
    DocumentStatus.EXTRACTED: (
        StageRule(Capability.CLASSIFICATION, Transition(DocumentStatus.CLASSIFIED)),
    ),
    DocumentStatus.CLASSIFIED: (
        StageRule(
            Capability.COMPLIANCE, Transition(DocumentStatus.COMPLIANCE_CHECKED)
        ),
    ),
    DocumentStatus.COMPLIANCE_CHECKED: (
        StageRule(Capability.MATCHING, Transition(DocumentStatus.MATCHED)),
    ),
    DocumentStatus.MATCHED: (
        StageRule(
            Capability.RISK,
            on_success=Transition(),
            on_flagged=Transition(note=RISK_FLAGGED),
        ),
        StageRule(Capability.APPROVAL, Transition(DocumentStatus.APPROVED)),
    ),
}

PAYMENT_RULE = StageRule(
    Capability.PAYMENT, Transition(DocumentStatus.SCHEDULED_FOR_PAYMENT)
)


def classify_outcome(token: str) -> Outcome:
    """Map a decision's outcome token onto the sequencer vocabulary."""
    try:
        return Outcome(token)
    except ValueError:
        # GL codes and other informational tokens
        return Outcome.SUCCESS


@dataclass
class PipelineSequencer:
    """
    Picks the next stage for a document and the transition its decision
    causes. `completed` is the list of capabilities already run at the
    document's current status in this run; it lets the two stages that
    share the `matched` status run one after the other.
    """

    schedule_payments: bool = False
    table: dict[DocumentStatus, tuple[StageRule, ...]] = field(
        default_factory=lambda: dict(STAGE_TABLE)
    )

    def __post_init__(self) -> None:
        if self.schedule_payments:
            self.table[DocumentStatus.APPROVED] = (PAYMENT_RULE,)

    def rules_for(self, status: DocumentStatus) -> tuple[StageRule, ...]:
        return self.table.get(status, ())

    def next_stage(
        self,
        status: DocumentStatus,
        completed: Iterable[Capability] = (),
    ) -> Optional[StageRule]:
        done = set(completed)
        for rule in self.rules_for(status):
            if rule.capability not in done:
                return rule
        return None

    def transition(self, rule: StageRule, outcome: str) -> Transition:
        kind = classify_outcome(outcome)
        if kind is Outcome.BLOCK:
            return rule.on_block
        if kind is Outcome.FLAGGED:
            return rule.on_flagged
        if kind is Outcome.REJECT:
            return rule.on_reject
        return rule.on_success

    def is_terminal(self, status: DocumentStatus) -> bool:
        return not self.rules_for(status)

    @property
    def capabilities(self) -> list[Capability]:
        """Every capability the table can schedule, in pipeline order."""
        seen: list[Capability] = []
        for rules in self.table.values():
            for rule in rules:
                if rule.capability not in seen:
                    seen.append(rule.capability)
        return seen
