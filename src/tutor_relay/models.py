from __future__ import annotations

from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Turn(BaseModel):
    """One prior message of the conversation, supplied by the client.

    A turn is either a text turn or an image turn; ``kind`` tells them apart.
    """

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"] = "assistant"
    content: str = ""
    image: Optional[str] = None

    @field_validator("role", mode="before")
    @classmethod
    def _coerce_role(cls, value: Any) -> str:
        # Anything that is not the student is treated as the tutor.
        return "user" if value == "user" else "assistant"

    @field_validator("content", mode="before")
    @classmethod
    def _coerce_content(cls, value: Any) -> str:
        if value is None:
            return ""
        return value if isinstance(value, str) else str(value)

    @property
    def kind(self) -> Literal["text", "image"]:
        return "image" if self.image else "text"


class TutorRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = None
    conversation_history: List[Turn] = Field(
        default_factory=list, alias="conversationHistory"
    )
    selected_text: str = Field("", alias="selectedText")
    image: Optional[str] = None

    @field_validator("conversation_history", mode="before")
    @classmethod
    def _none_history(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("selected_text", mode="before")
    @classmethod
    def _none_selected(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def has_message(self) -> bool:
        return bool(self.message and self.message.strip())

    @property
    def has_image(self) -> bool:
        return bool(self.image)


class ImageUrl(BaseModel):
    url: str


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageUrlPart(BaseModel):
    type: Literal["image_url"] = "image_url"
    image_url: ImageUrl


ContentPart = Union[TextPart, ImageUrlPart]


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: Union[str, List[ContentPart]]


class Usage(BaseModel):
    model_config = ConfigDict(extra="allow")

    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class TutorResponse(BaseModel):
    response: Optional[str] = None
    usage: Optional[Usage] = None


class HealthResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str = "ok"
    message: str = "Tutor relay running"
    openai_configured: bool = Field(False, alias="openaiConfigured")
