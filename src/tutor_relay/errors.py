from __future__ import annotations

from typing import Any

from fastapi import HTTPException


class RelayError(HTTPException):
    def __init__(self, status_code: int, message: str, details: Any = None):
        payload: dict[str, Any] = {"error": message}
        if details is not None:
            payload["details"] = details
        super().__init__(status_code=status_code, detail=payload)
        self.message = message


class InvalidRequest(RelayError):
    pass


class Misconfigured(RelayError):
    pass


class UpstreamAuthError(RelayError):
    pass


class UpstreamRateLimited(RelayError):
    pass


class UpstreamServiceError(RelayError):
    pass


class UnknownFailure(RelayError):
    pass


class PayloadTooLarge(RelayError):
    pass


def err_message_required() -> InvalidRequest:
    return InvalidRequest(400, "Message or image is required")


def err_invalid_body(details: Any = None) -> InvalidRequest:
    return InvalidRequest(400, "Invalid request body", details)


def err_payload_too_large(limit: int) -> PayloadTooLarge:
    return PayloadTooLarge(413, "Request body too large", f"Limit is {limit} bytes")


def err_missing_api_key() -> Misconfigured:
    return Misconfigured(
        500,
        "OpenAI API key not configured. Please set OPENAI_API_KEY environment variable.",
    )


def err_upstream_auth() -> UpstreamAuthError:
    return UpstreamAuthError(401, "Invalid OpenAI API key")


def err_rate_limited() -> UpstreamRateLimited:
    return UpstreamRateLimited(429, "Rate limit exceeded. Please try again later.")


def err_upstream_service() -> UpstreamServiceError:
    return UpstreamServiceError(500, "OpenAI service error. Please try again later.")


def err_unknown_failure(details: str | None = None) -> UnknownFailure:
    return UnknownFailure(500, "Failed to get AI response", details)


def err_origin_rejected() -> RelayError:
    return RelayError(403, "Not allowed by CORS")


def error_for_upstream_status(
    status_code: int, details: str | None = None
) -> RelayError:
    """Translate a failed upstream status into the relay's error taxonomy.

    ``details`` is only echoed for the catch-all case and callers pass it
    only in development mode.
    """
    if status_code == 401:
        return err_upstream_auth()
    if status_code == 429:
        return err_rate_limited()
    if status_code == 500:
        return err_upstream_service()
    return err_unknown_failure(details)
