from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class IntegrationType(str, Enum):
    CALENDAR = "calendar"
    MESSAGING = "messaging"
    EMAIL = "email"
    ERP = "erp"
    CRM = "crm"


class IntegrationStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"
    ERROR = "error"


class ActionLogStatus(str, Enum):
    QUEUED = "queued"
    SUCCESS = "success"
    ERROR = "error"


class IntegrationInfo(BaseModel):
    """An integration configured for an agent, as seen by the dispatcher."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: IntegrationType
    provider: str
    name: str = ""
    status: IntegrationStatus = IntegrationStatus.ACTIVE
    is_active: bool = True
    agent_id: Optional[str] = None

    @property
    def usable(self) -> bool:
        return self.status == IntegrationStatus.ACTIVE and self.is_active

    def describe(self) -> str:
        return f"{self.name or self.id} ({self.provider} - {self.type.value})"


class IntegrationAction(BaseModel):
    """A request to run one action against one integration."""

    model_config = ConfigDict(populate_by_name=True)

    integration_id: str = Field(alias="integrationId")
    action: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = Field(default=None, alias="userId")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    message_id: Optional[str] = Field(default=None, alias="messageId")
    run_async: bool = Field(default=False, alias="async")
    callback_url: Optional[str] = Field(default=None, alias="callbackUrl")


class ActionResult(BaseModel):
    """Normalized outcome of an action: ``{success, result | error}``."""

    success: bool
    result: Any = None
    error: Optional[str] = None
    details: Any = None
    status_code: Optional[int] = None
    request_id: Optional[str] = None

    @classmethod
    def ok(cls, result: Any = None, status_code: Optional[int] = None) -> "ActionResult":
        return cls(success=True, result=result, status_code=status_code)

    @classmethod
    def failure(
        cls,
        error: str,
        details: Any = None,
        status_code: Optional[int] = None,
    ) -> "ActionResult":
        return cls(success=False, error=error, details=details, status_code=status_code)

    @classmethod
    def accepted(cls, request_id: str) -> "ActionResult":
        return cls(
            success=True,
            result={"message": "Request queued", "requestId": request_id},
            status_code=202,
            request_id=request_id,
        )

    @classmethod
    def from_payload(cls, payload: Any) -> "ActionResult":
        """Coerce whatever an executor returned into an ``ActionResult``."""
        if isinstance(payload, ActionResult):
            return payload
        if isinstance(payload, dict) and "success" in payload:
            return cls(
                success=bool(payload.get("success")),
                result=payload.get("result"),
                error=payload.get("error"),
                details=payload.get("details"),
                status_code=payload.get("statusCode", payload.get("status_code")),
            )
        return cls.ok(payload)


class ActionLogEntry(BaseModel):
    integration_id: str
    action: str
    status: ActionLogStatus
    executed_by: Optional[str] = None
    agent_id: Optional[str] = None
    error_message: Optional[str] = None
    timestamp: datetime
