"""
Prompt service module: assembles the round-zero message history for the
tool-calling completion loop.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from opentelemetry import trace

from action_engine.conversation.models import (
    AgentConfig,
    CompletionContext,
    MessageStatus,
    RetrievedChunk,
    TurnMessage,
    TurnRole,
)
from action_engine.integrations.models import IntegrationInfo
from action_engine.llm.models import Message, MessageRole, Tool
from action_engine.utils import truncate_text
from action_engine.vars import (
    KNOWLEDGE_CHUNK_CHAR_LIMIT,
    KNOWLEDGE_MIN_SIMILARITY,
    KNOWLEDGE_TOP_K,
    LOGGER_NAME,
    MAX_RECENT_MESSAGES,
)

logger = logging.getLogger(LOGGER_NAME)
tracer = trace.get_tracer(__name__)

DEFAULT_PERSONA = "You are a helpful assistant for this business."
TOOL_CALL_DIRECTIVE = (
    "When you call a tool, respond ONLY with the tool call. "
    "Do not add any text to a message that contains a tool call."
)

_ROLE_MAP = {
    TurnRole.SYSTEM.value: MessageRole.SYSTEM,
    TurnRole.USER.value: MessageRole.USER,
    TurnRole.ASSISTANT.value: MessageRole.ASSISTANT,
    TurnRole.HUMAN_AGENT.value: MessageRole.USER,
}


def map_turn_role(role: Optional[str]) -> MessageRole:
    """Stored roles the model does not know are sent as user turns."""
    return _ROLE_MAP.get((role or "").lower(), MessageRole.USER)


class PromptService:
    """Build the system prompt and the bounded conversation window."""

    def __init__(
        self,
        top_k: int = KNOWLEDGE_TOP_K,
        min_similarity: float = KNOWLEDGE_MIN_SIMILARITY,
        chunk_char_limit: int = KNOWLEDGE_CHUNK_CHAR_LIMIT,
        max_recent_messages: int = MAX_RECENT_MESSAGES,
    ):
        self.logger = logger
        self.top_k = top_k
        self.min_similarity = min_similarity
        self.chunk_char_limit = chunk_char_limit
        self.max_recent_messages = max_recent_messages

    def build_messages(
        self,
        context: CompletionContext,
        agent_config: AgentConfig,
        workflow_annex: str,
        tools: List[Tool],
        now: datetime,
        latest_query: Optional[str] = None,
    ) -> List[Message]:
        with tracer.start_as_current_span("build_prompt") as span:
            system_prompt = self.build_system_prompt(
                context, agent_config, workflow_annex, tools, now
            )
            messages = [Message(role=MessageRole.SYSTEM, content=system_prompt)]
            window = self.recent_turns(context.conversation_context)
            messages.extend(
                Message(role=map_turn_role(turn.role), content=turn.content)
                for turn in window
            )
            if latest_query:
                messages.append(
                    Message(
                        role=MessageRole.SYSTEM,
                        content=(
                            "Answer the user's latest message: "
                            f'"{latest_query.strip()}"'
                        ),
                    )
                )
            span.set_attribute("prompt.messages", len(messages))
            span.set_attribute("prompt.tools", len(tools))
            span.set_attribute("prompt.has_workflow", bool(workflow_annex))
            self.logger.debug(
                "[PromptService] Built prompt: %s chars system, %s turns",
                len(system_prompt),
                len(window),
            )
            return messages

    def build_system_prompt(
        self,
        context: CompletionContext,
        agent_config: AgentConfig,
        workflow_annex: str,
        tools: List[Tool],
        now: datetime,
    ) -> str:
        persona = (
            agent_config.system_instructions
            or context.system_instructions
            or DEFAULT_PERSONA
        ).strip()
        sections = [
            persona,
            f"Current date and time: {now.strftime('%A, %Y-%m-%d %H:%M %Z').strip()}",
        ]

        if tools:
            lines = ["## Available tools"]
            for tool in tools:
                description = tool.function.description or ""
                lines.append(f"- {tool.function.name}: {description}".rstrip(": "))
            sections.append("\n".join(lines))

        integrations = self.describe_integrations(context.active_integrations)
        if integrations:
            sections.append(integrations)

        knowledge = self.format_knowledge(context.relevant_chunks)
        if knowledge:
            sections.append(knowledge)

        if workflow_annex:
            sections.append(workflow_annex.strip())

        if tools:
            sections.append(TOOL_CALL_DIRECTIVE)
        return "\n\n".join(sections)

    @staticmethod
    def describe_integrations(integrations: Iterable[IntegrationInfo]) -> str:
        usable = [integration for integration in integrations or [] if integration.usable]
        if not usable:
            return ""
        lines = ["## Active integrations"]
        lines.extend(f"- {integration.describe()}" for integration in usable)
        return "\n".join(lines)

    def format_knowledge(self, chunks: Iterable[RetrievedChunk]) -> str:
        relevant = [
            chunk for chunk in chunks or [] if chunk.similarity > self.min_similarity
        ][: self.top_k]
        if not relevant:
            return ""
        lines = ["## Relevant knowledge"]
        for index, chunk in enumerate(relevant, start=1):
            source = chunk.document_name or chunk.document_id
            lines.append(
                f"[{index}] (source: {source}, chunk: {chunk.chunk_id}, "
                f"similarity: {chunk.similarity:.2f})\n"
                f"{truncate_text(chunk.content.strip(), self.chunk_char_limit)}"
            )
        return "\n\n".join(lines)

    def recent_turns(self, turns: Iterable[TurnMessage]) -> List[TurnMessage]:
        kept = [
            turn
            for turn in turns or []
            if turn.status != MessageStatus.FAILED
            and turn.content
            and turn.content.strip()
        ]
        if self.max_recent_messages <= 0:
            return []
        return kept[-self.max_recent_messages :]
