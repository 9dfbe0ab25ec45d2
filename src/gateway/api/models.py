"""Request and response models for the chat API.

Field names on the wire are camelCase; snake_case is accepted on input too.
"""

from typing import Annotated

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# Maximum message content length to prevent DoS
MAX_MESSAGE_LENGTH = 100_000


class CreateSessionRequest(BaseModel):
    """Body of ``POST /api/chat/sessions``."""

    model_config = ConfigDict(populate_by_name=True)

    model: Annotated[
        str | None,
        Field(default=None, max_length=100, description="Model to use for the session"),
    ]
    inactivity_timeout_minutes: Annotated[
        int | None,
        Field(
            default=None,
            ge=0,
            le=24 * 60,
            description="Inactivity timeout in minutes; 0 or unset uses the default",
            validation_alias=AliasChoices(
                "inactivityTimeoutMinutes",
                "sessionInactivityTimeoutMinutes",
                "inactivity_timeout_minutes",
            ),
        ),
    ]


class CreateSessionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str | None = Field(default=None, alias="sessionId")
    success: bool
    message: str | None = None


class SendMessageRequest(BaseModel):
    """Body of ``POST /api/chat/sessions/{sessionId}/messages``."""

    message: Annotated[str, Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)]


class CloseSessionResponse(BaseModel):
    success: bool
    message: str


class SessionStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    active: bool


class HealthResponse(BaseModel):
    available: bool
    version: str
    message: str | None = None


class PromptRequest(BaseModel):
    """Body of the one-shot ``POST /api/chat/stream`` endpoint."""

    prompt: Annotated[str, Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)]
