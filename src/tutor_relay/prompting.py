"""Prompt assembly for the tutor relay.

Turns a validated :class:`TutorRequest` into the chat-completions payload the
upstream API expects: system prompt first, prior turns next, the current
question last.
"""

from __future__ import annotations

from typing import Any

from .config import RelayConfig
from .models import ChatMessage, ImageUrl, ImageUrlPart, TextPart, Turn, TutorRequest

SYSTEM_PROMPT_TEMPLATE = """You are BarbaraIA, an educational AI tutor for K-12 students. Your role is to:
- Explain concepts clearly and simply
- Break down complex topics into understandable parts
- Provide step-by-step solutions to problems
- Give relevant examples
- Encourage critical thinking
- Be patient and supportive
- Adapt explanations to student level
- When analyzing images: describe what you see, explain diagrams, solve visual math problems, read handwriting

{selection}

Always respond in a friendly, educational manner. If asked to solve a problem, guide the student through the solution rather than just giving the answer."""

DEFAULT_IMAGE_QUESTION = "What do you see in this image?"


def build_system_prompt(selected_text: str = "") -> str:
    selection = ""
    if selected_text:
        selection = (
            f'The student has selected this text from their PDF: "{selected_text}"'
        )
    return SYSTEM_PROMPT_TEMPLATE.format(selection=selection)


def _multipart(text: str, image: str) -> list[TextPart | ImageUrlPart]:
    return [TextPart(text=text), ImageUrlPart(image_url=ImageUrl(url=image))]


def translate_turn(turn: Turn) -> ChatMessage:
    if turn.kind == "image":
        return ChatMessage(role=turn.role, content=_multipart(turn.content, turn.image))
    return ChatMessage(role=turn.role, content=turn.content)


def current_message(request: TutorRequest) -> ChatMessage:
    if request.has_image:
        text = request.message or DEFAULT_IMAGE_QUESTION
        return ChatMessage(role="user", content=_multipart(text, request.image))
    return ChatMessage(role="user", content=request.message or "")


def build_messages(request: TutorRequest) -> list[ChatMessage]:
    messages = [
        ChatMessage(
            role="system", content=build_system_prompt(request.selected_text)
        )
    ]
    messages.extend(translate_turn(turn) for turn in request.conversation_history)
    messages.append(current_message(request))
    return messages


def select_model(cfg: RelayConfig, request: TutorRequest) -> str:
    """Vision model only when the current request carries an image."""
    return cfg.vision_model if request.has_image else cfg.text_model


def build_completion_payload(cfg: RelayConfig, request: TutorRequest) -> dict[str, Any]:
    return {
        "model": select_model(cfg, request),
        "messages": [m.model_dump() for m in build_messages(request)],
        "temperature": cfg.temperature,
        "max_tokens": cfg.max_tokens,
    }
