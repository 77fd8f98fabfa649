"""Chat completion wire models."""

from action_engine.llm.models.models import (
    MessageRole,
    ToolCallFunction,
    ToolCall,
    Message,
    FunctionDefinition,
    Tool,
    ChatCompletionRequest,
    Choice,
    Usage,
    ChatCompletionResponse,
    CompletionResult,
)

__all__ = [
    "MessageRole",
    "ToolCallFunction",
    "ToolCall",
    "Message",
    "FunctionDefinition",
    "Tool",
    "ChatCompletionRequest",
    "Choice",
    "Usage",
    "ChatCompletionResponse",
    "CompletionResult",
]
