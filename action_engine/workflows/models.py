from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class WorkflowCategory(str, Enum):
    APPOINTMENTS = "appointments"
    CUSTOMER_SERVICE = "customer_service"
    SALES = "sales"
    SUPPORT = "support"


@dataclass(frozen=True)
class WorkflowStep:
    """
    One external action within a workflow.

    Attributes:
        tool_name: Registry tool name; also the name later steps use to read
            this step's result.
        action: Provider action to run, overriding the tool's default action.
        required: Marks steps the workflow is built around. A failed required
            step is narrated but does not stop the workflow.
        conditional: Optional predicate name gating the step.
        parameters: Static parameters sent with the action.
        retry_on_failure: Whether failures are retried.
        max_retries: Additional attempts when retrying. Ignored unless
            ``retry_on_failure`` is set; zero then means one retry.
        lookahead_days: When set, ``timeMin``/``timeMax`` are filled in at run
            time as a window of this many days starting now.
    """

    tool_name: str
    action: str
    required: bool = False
    conditional: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)
    retry_on_failure: bool = False
    max_retries: int = 0
    lookahead_days: Optional[int] = None

    @property
    def effective_max_retries(self) -> int:
        if not self.retry_on_failure:
            return 0
        return self.max_retries or 1

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "WorkflowStep":
        return cls(
            tool_name=payload["toolName"],
            action=payload["action"],
            required=bool(payload.get("required", False)),
            conditional=payload.get("conditional"),
            parameters=dict(payload.get("parameters") or {}),
            retry_on_failure=bool(payload.get("retryOnFailure", False)),
            max_retries=int(payload.get("maxRetries", 0) or 0),
            lookahead_days=payload.get("lookaheadDays"),
        )


@dataclass(frozen=True)
class WorkflowDefinition:
    name: str
    triggers: Tuple[str, ...]
    priority: int
    steps: Tuple[WorkflowStep, ...]
    category: WorkflowCategory
    context_aware: bool = False

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "WorkflowDefinition":
        return cls(
            name=payload["name"],
            triggers=tuple(t.lower() for t in payload.get("triggers") or []),
            priority=int(payload.get("priority", 1)),
            steps=tuple(WorkflowStep.from_dict(s) for s in payload.get("steps") or []),
            category=WorkflowCategory(payload["category"]),
            context_aware=bool(payload.get("contextAware", False)),
        )


@dataclass
class StepResult:
    step_name: str
    success: bool
    result: Any = None
    error: Optional[str] = None
    retry_attempts: int = 0


@dataclass
class UserProfile:
    is_existing_client: bool
    is_premium_user: bool
    appointment_history: int
    preferred_language: str
    last_activity: datetime

    @classmethod
    def default(cls, now: datetime) -> "UserProfile":
        return cls(
            is_existing_client=False,
            is_premium_user=False,
            appointment_history=0,
            preferred_language="es",
            last_activity=now,
        )


@dataclass
class WorkflowResult:
    workflow_executed: bool
    workflow_name: Optional[str] = None
    category: Optional[WorkflowCategory] = None
    results: List[StepResult] = field(default_factory=list)
    enhanced_context: str = ""
    execution_time_ms: int = 0
    user_intent: str = "general_inquiry"
    score: float = 0.0

    @property
    def successful_steps(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def total_steps(self) -> int:
        return len(self.results)

    @property
    def success_rate(self) -> float:
        return self.successful_steps / self.total_steps if self.results else 0.0


@dataclass(frozen=True)
class MatchOutcome:
    """What the matcher decided for one utterance."""

    workflow: Optional[WorkflowDefinition]
    score: float
    user_intent: str


def find_step_result(results: List[StepResult], step_name: str) -> Optional[StepResult]:
    for result in results:
        if result.step_name == step_name:
            return result
    return None


def booked_events(result: Optional[StepResult]) -> List[Dict[str, Any]]:
    """Events carried by a successful booked-events step, or an empty list."""
    if result is None or not result.success or not isinstance(result.result, dict):
        return []
    events = result.result.get("events")
    return [e for e in events if isinstance(e, dict)] if isinstance(events, list) else []
