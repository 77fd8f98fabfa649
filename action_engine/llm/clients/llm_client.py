"""
LLM client module for handling direct communication with an OpenAI-compatible
chat completions API.
"""

import json
import logging
from typing import List, Optional

import aiohttp
from opentelemetry import trace
from pydantic import ValidationError

from action_engine.errors import ModelInvocationError
from action_engine.llm.models import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    CompletionResult,
    Message,
    Tool,
)
from action_engine.utils import mask_token
from action_engine.vars import (
    LLM_MODEL_NAME,
    LLM_TIMEOUT_SECONDS,
    LLM_TOKEN,
    LLM_URL,
    LOGGER_NAME,
    SERVICE_NAME,
)

logger = logging.getLogger(LOGGER_NAME)
tracer = trace.get_tracer(__name__)


class LLMClient:
    """Client for communicating with the LLM API. One call, no retries."""

    def __init__(
        self,
        url: Optional[str] = None,
        token: Optional[str] = None,
        model_name: Optional[str] = None,
        timeout_seconds: float = LLM_TIMEOUT_SECONDS,
    ):
        self.logger = logger
        self.llm_url = (url if url is not None else LLM_URL).rstrip("/")
        self.llm_token = token if token is not None else LLM_TOKEN
        self.model_name = model_name or LLM_MODEL_NAME
        self.timeout_seconds = timeout_seconds

        self.logger.info(f"[LLMClient] Initialized with URL: {self.llm_url}")
        if self.llm_token:
            self.logger.info(
                mask_token(
                    f"[LLMClient] Using authentication token: {self.llm_token[:10]}...",
                    self.llm_token[:10],
                )
            )
        else:
            self.logger.info("[LLMClient] No authentication token configured")

    def _get_headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"{SERVICE_NAME}/1.0",
        }
        if self.llm_token:
            headers["Authorization"] = f"Bearer {self.llm_token}"
        return headers

    def _generate_llm_payload(self, request: ChatCompletionRequest) -> dict:
        """Generate the payload for the LLM API request."""
        payload = request.model_dump(mode="json", exclude_none=True)

        # tool_choice is only valid when tools are specified
        if not payload.get("tools"):
            payload.pop("tools", None)
            payload.pop("tool_choice", None)

        if not payload.get("model"):
            payload["model"] = self.model_name
        return payload

    async def complete(
        self,
        messages: List[Message],
        tools: Optional[List[Tool]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> CompletionResult:
        """
        Run one non-streaming completion.

        Raises:
            ModelInvocationError: transport failure, timeout, non-2xx status
                or a response without choices.
        """
        request = ChatCompletionRequest(
            messages=messages,
            model=self.model_name,
            tools=tools or None,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        response = await self.non_stream_completion(request)
        if not response.choices or response.choices[0].message is None:
            raise ModelInvocationError("LLM response did not contain a message")
        message = response.choices[0].message
        return CompletionResult(
            content=message.content,
            tool_calls=message.tool_calls or None,
            usage=response.usage,
        )

    async def non_stream_completion(
        self, request: ChatCompletionRequest
    ) -> ChatCompletionResponse:
        with tracer.start_as_current_span("non_stream_llm_completion") as span:
            span.set_attribute("llm.url", self.llm_url)
            span.set_attribute("llm.model", request.model or self.model_name)
            span.set_attribute("llm.messages", len(request.messages))

            request.stream = False
            payload = self._generate_llm_payload(request)
            serialized_payload = json.dumps(
                payload, ensure_ascii=False, separators=(",", ":")
            )
            self.logger.debug(
                "[LLMClient] Prepared payload (bytes=%s, messages=%s, tools=%s)",
                len(serialized_payload.encode("utf-8")),
                len(payload.get("messages", [])),
                len(payload.get("tools", [])),
            )

            try:
                async with aiohttp.ClientSession(
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
                ) as session:
                    async with session.post(
                        f"{self.llm_url}/chat/completions",
                        headers=self._get_headers(),
                        data=serialized_payload,
                    ) as response:
                        if not response.ok:
                            error_text = await response.text()
                            error_msg = f"LLM API error: {response.status} {error_text}"
                            self.logger.error(f"[LLMClient] {error_msg}")
                            span.set_attribute("error", True)
                            span.set_attribute("error.message", error_msg)
                            raise ModelInvocationError(error_msg, status_code=response.status)

                        response_data = await response.json()
                        return ChatCompletionResponse(**response_data)

            except ModelInvocationError:
                raise
            except (ValidationError, TypeError) as e:
                error_msg = f"Malformed LLM response: {str(e)}"
                self.logger.error(f"[LLMClient] {error_msg}")
                span.set_attribute("error", True)
                span.set_attribute("error.message", error_msg)
                raise ModelInvocationError(error_msg) from e
            except Exception as e:
                error_msg = f"Error calling LLM: {str(e) or type(e).__name__}"
                self.logger.error(f"[LLMClient] {error_msg}", exc_info=True)
                span.set_attribute("error", True)
                span.set_attribute("error.message", error_msg)
                raise ModelInvocationError(error_msg) from e
