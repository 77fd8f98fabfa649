import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from opentelemetry import trace

from action_engine.errors import MalformedToolArgumentsError
from action_engine.integrations.dispatcher import ActionDispatcher
from action_engine.integrations.models import ActionResult, IntegrationInfo
from action_engine.llm.models import Message, MessageRole, ToolCall
from action_engine.utils import truncate_text
from action_engine.utils.exception_logging import format_exception_message
from action_engine.vars import LOGGER_NAME, TOOL_RESULT_CHAR_LIMIT

logger = logging.getLogger(LOGGER_NAME)
tracer = trace.get_tracer(__name__)


def _compact_text(text: str) -> str:
    """Trim surrounding whitespace and minify JSON-like payloads."""
    compact = text.strip()
    if compact[:1] in ("{", "["):
        try:
            compact = json.dumps(
                json.loads(compact), ensure_ascii=False, separators=(",", ":")
            )
        except (json.JSONDecodeError, TypeError):
            pass
    return compact


def parse_tool_arguments(tool_call: ToolCall) -> Dict[str, Any]:
    """
    Decode a tool call's JSON arguments. Empty arguments mean no arguments.

    Raises:
        MalformedToolArgumentsError: not JSON, or JSON that is not an object.
    """
    raw = tool_call.function.arguments
    if raw is None or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedToolArgumentsError(tool_call.function.name, raw, str(exc)) from exc
    if not isinstance(parsed, dict):
        raise MalformedToolArgumentsError(
            tool_call.function.name, raw, f"expected an object, got {type(parsed).__name__}"
        )
    return parsed


class ToolService:
    """Execute model-requested tool calls through the action dispatcher."""

    def __init__(
        self,
        dispatcher: ActionDispatcher,
        result_char_limit: int = TOOL_RESULT_CHAR_LIMIT,
    ):
        self.logger = logger
        self.dispatcher = dispatcher
        self.result_char_limit = result_char_limit

    def format_result(self, result: ActionResult) -> str:
        if result.success:
            content = result.result
            if isinstance(content, str):
                text = _compact_text(content)
            else:
                try:
                    text = json.dumps(
                        content, ensure_ascii=False, separators=(",", ":"), default=str
                    )
                except (TypeError, ValueError):
                    text = str(content)
        else:
            payload: Dict[str, Any] = {"error": result.error or "Unknown error"}
            if result.details is not None:
                payload["details"] = result.details
            text = json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str)
        return truncate_text(text, self.result_char_limit)

    def create_result_message(self, tool_call: ToolCall, result: ActionResult) -> Message:
        return Message(
            role=MessageRole.TOOL,
            tool_call_id=tool_call.id,
            name=tool_call.function.name,
            content=self.format_result(result),
        )

    async def execute_tool_call(
        self,
        tool_call: ToolCall,
        active_integrations: Iterable[IntegrationInfo],
        caller_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> ActionResult:
        try:
            arguments = parse_tool_arguments(tool_call)
        except MalformedToolArgumentsError as exc:
            self.logger.warning(f"[ToolService] {exc}")
            return ActionResult.failure(str(exc), details={"kind": "malformed_arguments"})

        try:
            return await self.dispatcher.dispatch(
                tool_call.function.name,
                arguments,
                active_integrations,
                caller_id=caller_id,
                conversation_id=conversation_id,
            )
        except Exception as exc:
            error_msg = (
                f"Failed to execute tool {tool_call.function.name}: "
                f"{format_exception_message(exc)}"
            )
            self.logger.error(f"[ToolService] {error_msg}")
            return ActionResult.failure(error_msg)

    async def execute_tool_calls(
        self,
        tool_calls: List[ToolCall],
        active_integrations: Iterable[IntegrationInfo],
        caller_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> Tuple[List[Message], bool]:
        """
        Execute tool calls one after another, in request order.

        Returns:
            (messages, success): one tool message per call, in the same order,
            and whether every call succeeded.
        """
        integrations = list(active_integrations or [])
        messages: List[Message] = []
        success = True
        with tracer.start_as_current_span("execute_tool_calls") as span:
            span.set_attribute("tool_calls.count", len(tool_calls))
            for tool_call in tool_calls:
                result = await self.execute_tool_call(
                    tool_call, integrations, caller_id, conversation_id
                )
                if not result.success:
                    success = False
                self.logger.info(
                    "[ToolService] Tool '%s' (%s) finished: success=%s",
                    tool_call.function.name,
                    tool_call.id,
                    result.success,
                )
                messages.append(self.create_result_message(tool_call, result))
            span.set_attribute("tool_calls.success", success)
        return messages, success
