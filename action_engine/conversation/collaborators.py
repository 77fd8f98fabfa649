"""
Interfaces of the services the engine consumes but does not implement:
the conversation store, the delivery queue and the telemetry sink.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Optional

from action_engine.conversation.models import AgentConfig, MessageStatus, TurnMessage
from action_engine.integrations.models import ActionLogEntry

if TYPE_CHECKING:
    from action_engine.workflows.models import WorkflowResult


class ConversationStore(ABC):
    @abstractmethod
    async def get_agent_config(self, agent_id: str) -> Optional[AgentConfig]:
        pass

    @abstractmethod
    async def save_assistant_message(
        self,
        conversation_id: str,
        agent_id: str,
        content: str,
        response_time_ms: int,
        status: MessageStatus,
    ) -> str:
        """Persist an assistant reply and return its message id."""

    @abstractmethod
    async def update_message_status(
        self,
        conversation_id: str,
        message_id: str,
        status: MessageStatus,
        error: Optional[str] = None,
    ) -> None:
        pass

    @abstractmethod
    async def list_user_messages(self, user_id: str) -> List[TurnMessage]:
        """Every text message the user has sent, across conversations."""

    @abstractmethod
    async def list_conversation_messages(self, conversation_id: str) -> List[TurnMessage]:
        """Messages of one conversation, oldest first."""


class DeliveryQueue(ABC):
    @abstractmethod
    async def enqueue_for_sending(
        self,
        conversation_id: str,
        message_id: str,
        agent_id: str,
        recipient_id: Optional[str],
    ) -> None:
        pass


class TelemetrySink(ABC):
    @abstractmethod
    async def record_usage(
        self, agent_id: str, user_id: str, input_tokens: int, output_tokens: int
    ) -> None:
        pass

    @abstractmethod
    async def record_workflow_execution(
        self,
        workflow_name: str,
        conversation_id: str,
        result: "WorkflowResult",
        duration_ms: int,
    ) -> None:
        pass

    async def record_integration_action(self, entry: ActionLogEntry) -> None:
        """Optional hook for per-action audit entries."""
        return None
