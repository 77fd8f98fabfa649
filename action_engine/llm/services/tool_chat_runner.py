import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from opentelemetry import trace

from action_engine.conversation.models import MessageStatus
from action_engine.errors import RecursionLimitExceededError
from action_engine.integrations.models import IntegrationInfo
from action_engine.llm.clients.llm_client import LLMClient
from action_engine.llm.models import CompletionResult, Message, MessageRole, Tool
from action_engine.llm.services.tool_service import ToolService
from action_engine.vars import LOGGER_NAME, MAX_TOOL_RECURSION_DEPTH

logger = logging.getLogger(LOGGER_NAME)
tracer = trace.get_tracer(__name__)

TOO_COMPLEX_MESSAGE = (
    "I'm sorry, this request turned out to be too complex for me to finish. "
    "Could you break it into smaller steps?"
)
TOOL_FAILURE_FALLBACK_MESSAGE = (
    "I'm sorry, I ran into a problem completing that action. "
    "Please try again in a moment."
)
EMPTY_RESPONSE_FALLBACK_MESSAGE = (
    "I'm sorry, I couldn't put together a response. Could you rephrase your message?"
)

CHARS_PER_TOKEN = 4


def estimate_tokens(messages: Iterable[Message]) -> int:
    """Rough token count used when the model reports no usage."""
    chars = 0
    for message in messages:
        chars += len(message.content or "")
        for tool_call in message.tool_calls or []:
            chars += len(tool_call.function.name) + len(tool_call.function.arguments or "")
    return chars // CHARS_PER_TOKEN


@dataclass
class ChatOutcome:
    """Terminal state of one turn's tool-calling loop."""

    content: str
    status: MessageStatus
    rounds: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    any_tool_failed: bool = False
    history: List[Message] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == MessageStatus.SENT


class ToolChatRunner:
    """
    Drive the model through rounds of tool calls until it answers in text.

    Rounds are an explicit loop with a depth counter. The model may request
    tools in rounds ``0 .. max_depth - 1``; a request in round ``max_depth``
    ends the turn with the "too complex" reply, without executing the calls.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        tool_service: ToolService,
        max_depth: int = MAX_TOOL_RECURSION_DEPTH,
    ):
        self.logger = logger
        self.llm_client = llm_client
        self.tool_service = tool_service
        self.max_depth = max_depth

    async def run(
        self,
        messages: List[Message],
        tools: Optional[List[Tool]] = None,
        active_integrations: Optional[Iterable[IntegrationInfo]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        caller_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> ChatOutcome:
        """
        Run the loop on a copy of ``messages``.

        Raises:
            ModelInvocationError: propagated from the LLM client; the caller
                owns the generic apology.
        """
        history = list(messages)
        integrations = list(active_integrations or [])
        prompt_tokens = 0
        completion_tokens = 0
        any_tool_failed = False
        depth = 0

        with tracer.start_as_current_span("tool_chat_loop") as span:
            span.set_attribute("chat.max_depth", self.max_depth)
            span.set_attribute("chat.tools", len(tools or []))

            while True:
                span.set_attribute("chat.round", depth)
                completion = await self.llm_client.complete(
                    list(history),
                    tools=tools or None,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
                round_prompt, round_completion = self._usage(history, completion)
                prompt_tokens += round_prompt
                completion_tokens += round_completion

                def outcome(content: str, status: MessageStatus) -> ChatOutcome:
                    span.set_attribute("chat.rounds", depth + 1)
                    span.set_attribute("chat.status", status.value)
                    return ChatOutcome(
                        content=content,
                        status=status,
                        rounds=depth + 1,
                        prompt_tokens=prompt_tokens,
                        completion_tokens=completion_tokens,
                        any_tool_failed=any_tool_failed,
                        history=history,
                    )

                if completion.has_tool_calls:
                    try:
                        self._check_depth(depth + 1)
                    except RecursionLimitExceededError as exc:
                        self.logger.warning(f"[ToolChatRunner] {exc}")
                        return outcome(TOO_COMPLEX_MESSAGE, MessageStatus.FAILED)

                    self.logger.info(
                        "[ToolChatRunner] Round %s requested %s tool call(s): %s",
                        depth,
                        len(completion.tool_calls),
                        [tool_call.function.name for tool_call in completion.tool_calls],
                    )
                    tool_messages, success = await self.tool_service.execute_tool_calls(
                        completion.tool_calls,
                        integrations,
                        caller_id=caller_id,
                        conversation_id=conversation_id,
                    )
                    if not success:
                        any_tool_failed = True
                    history.append(
                        Message(
                            role=MessageRole.ASSISTANT,
                            content=None,
                            tool_calls=completion.tool_calls,
                        )
                    )
                    history.extend(tool_messages)
                    depth += 1
                    continue

                if completion.has_content:
                    return outcome(completion.content.strip(), MessageStatus.SENT)

                self.logger.warning(
                    "[ToolChatRunner] Model returned neither content nor tool calls "
                    "(round %s, tool failure earlier: %s)",
                    depth,
                    any_tool_failed,
                )
                fallback = (
                    TOOL_FAILURE_FALLBACK_MESSAGE
                    if any_tool_failed
                    else EMPTY_RESPONSE_FALLBACK_MESSAGE
                )
                return outcome(fallback, MessageStatus.FAILED)

    def _check_depth(self, next_depth: int) -> None:
        if next_depth > self.max_depth:
            raise RecursionLimitExceededError(self.max_depth)

    @staticmethod
    def _usage(history: List[Message], completion: CompletionResult):
        usage = completion.usage
        if usage and (usage.prompt_tokens or usage.completion_tokens):
            return usage.prompt_tokens, usage.completion_tokens
        reply = Message(
            role=MessageRole.ASSISTANT,
            content=completion.content,
            tool_calls=completion.tool_calls,
        )
        return estimate_tokens(history), estimate_tokens([reply])
