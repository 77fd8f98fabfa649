from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from action_engine.integrations.models import IntegrationInfo
from action_engine.vars import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE


class MessageStatus(str, Enum):
    RECEIVED = "received"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


class TurnRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    HUMAN_AGENT = "human_agent"


class TurnMessage(BaseModel):
    """One prior message of the conversation, as stored."""

    role: str
    content: Optional[str] = ""
    status: Optional[MessageStatus] = None
    message_id: Optional[str] = None

    @property
    def is_assistant(self) -> bool:
        return self.role == TurnRole.ASSISTANT.value


class RetrievedChunk(BaseModel):
    document_id: str
    chunk_id: str
    content: str
    similarity: float
    document_name: Optional[str] = None


class CompletionContext(BaseModel):
    """Per-turn inputs supplied by the caller. Read-only to the engine."""

    system_instructions: str = ""
    active_integrations: List[IntegrationInfo] = Field(default_factory=list)
    relevant_chunks: List[RetrievedChunk] = Field(default_factory=list)
    conversation_context: List[TurnMessage] = Field(default_factory=list)


class AgentConfig(BaseModel):
    temperature: float = DEFAULT_TEMPERATURE
    system_instructions: str = ""
    max_tokens: int = DEFAULT_MAX_TOKENS


class ChatCompletionJob(BaseModel):
    """Payload of one inbound message taken off the processing queue."""

    message_id: str
    conversation_id: str
    agent_id: str
    user_id: str
    recipient_id: Optional[str] = None
    context: CompletionContext = Field(default_factory=CompletionContext)
