"""Tutor relay forwarding chat and image questions to an OpenAI-compatible API.

Keeps the API credential server-side, injects the tutoring system prompt and
applies request validation plus an origin allow-list.
"""

__all__ = []
