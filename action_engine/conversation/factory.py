"""
Wire the engine's collaborators into a ready-to-use ``ChatCompletionHandler``.
"""

from typing import Dict, Optional, Tuple

from action_engine.conversation.collaborators import (
    ConversationStore,
    DeliveryQueue,
    TelemetrySink,
)
from action_engine.conversation.handler import ChatCompletionHandler
from action_engine.integrations.dispatcher import (
    ActionDispatcher,
    ActionExecutor,
    IntegrationDirectory,
)
from action_engine.integrations.models import IntegrationType
from action_engine.llm.clients.llm_client import LLMClient
from action_engine.llm.services.tool_chat_runner import ToolChatRunner
from action_engine.llm.services.tool_service import ToolService
from action_engine.workflows.executor import StepExecutor
from action_engine.workflows.matcher import WorkflowMatcher
from action_engine.workflows.profile import UserProfileBuilder
from action_engine.workflows.repository import WorkflowRepository
from action_engine.workflows.runner import WorkflowRunner


def build_chat_completion_handler(
    store: ConversationStore,
    delivery_queue: DeliveryQueue,
    executors: Dict[Tuple[IntegrationType, str], ActionExecutor],
    llm_client: Optional[LLMClient] = None,
    telemetry: Optional[TelemetrySink] = None,
    directory: Optional[IntegrationDirectory] = None,
    repository: Optional[WorkflowRepository] = None,
) -> ChatCompletionHandler:
    """
    Build one handler sharing a single dispatcher between the workflow layer
    and the tool-calling loop. Action audit entries go to ``telemetry`` when
    it is given. The workflow catalog defaults to ``WORKFLOWS_PATH`` or the
    built-in catalog.
    """
    dispatcher = ActionDispatcher(
        executors,
        directory=directory,
        log_callback=telemetry.record_integration_action if telemetry else None,
    )
    runner = ToolChatRunner(llm_client or LLMClient(), ToolService(dispatcher))
    workflow_runner = WorkflowRunner(
        WorkflowMatcher(repository or WorkflowRepository.from_environment()),
        StepExecutor(dispatcher),
        profile_builder=UserProfileBuilder(store),
        telemetry=telemetry,
    )
    return ChatCompletionHandler(
        store,
        delivery_queue,
        runner,
        workflow_runner=workflow_runner,
        telemetry=telemetry,
    )
