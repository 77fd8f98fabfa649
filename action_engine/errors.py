from typing import Optional


class OrchestrationError(Exception):
    """Base class for failures raised inside the orchestration engine."""


class UnmappedToolError(OrchestrationError):
    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"No integration mapping for tool '{tool_name}'")


class IntegrationUnavailableError(OrchestrationError):
    def __init__(self, tool_name: str, integration_type: str, provider: str):
        self.tool_name = tool_name
        self.integration_type = integration_type
        self.provider = provider
        super().__init__(
            f"No active {integration_type}/{provider} integration available for tool '{tool_name}'"
        )


class MalformedToolArgumentsError(OrchestrationError):
    def __init__(self, tool_name: str, raw_arguments: Optional[str], reason: str = ""):
        self.tool_name = tool_name
        self.raw_arguments = raw_arguments
        message = f"Arguments for tool '{tool_name}' are not a valid JSON object"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class RecursionLimitExceededError(OrchestrationError):
    def __init__(self, max_depth: int):
        self.max_depth = max_depth
        super().__init__(f"Tool-calling exceeded the maximum depth of {max_depth}")


class ModelInvocationError(OrchestrationError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
