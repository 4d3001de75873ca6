from __future__ import annotations

import logging
import time
from typing import Any

import httpx
from pydantic import ValidationError

from .config import RelayConfig
from .errors import (
    RelayError,
    err_invalid_body,
    err_message_required,
    err_missing_api_key,
    err_unknown_failure,
    error_for_upstream_status,
)
from .logging_utils import JsonlLogger, request_record
from .models import TutorRequest, TutorResponse, Usage
from .prompting import build_completion_payload

logger = logging.getLogger(__name__)


class TutorForwarder:
    """Validates a tutor request, relays it upstream and maps the outcome.

    One instance serves every request; it holds only the frozen config and
    a shared ``httpx.AsyncClient``.
    """

    def __init__(self, cfg: RelayConfig, request_log: JsonlLogger | None = None):
        self.cfg = cfg
        self.request_log = request_log
        headers = {}
        if cfg.openai_api_key:
            headers["Authorization"] = f"Bearer {cfg.openai_api_key}"
        self.client = httpx.AsyncClient(
            timeout=cfg.upstream_timeout_ms / 1000, headers=headers
        )

    @property
    def completions_url(self) -> str:
        return self.cfg.upstream_base_url.rstrip("/") + "/chat/completions"

    def _details(self, value: Any) -> Any:
        return value if self.cfg.is_development else None

    def parse_request(self, payload: Any) -> TutorRequest:
        if not isinstance(payload, dict):
            raise err_invalid_body(self._details("Request body must be a JSON object"))
        try:
            return TutorRequest.model_validate(payload)
        except ValidationError as exc:
            problems = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in exc.errors()
            ]
            raise err_invalid_body(self._details(problems)) from exc

    def validate(self, request: TutorRequest) -> None:
        if not request.has_message and not request.has_image:
            raise err_message_required()
        if not self.cfg.api_key_configured:
            raise err_missing_api_key()

    @staticmethod
    def _upstream_message(resp: httpx.Response) -> str:
        try:
            body = resp.json()
        except ValueError:
            return resp.text[:200]
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return f"{resp.status_code} {error['message']}"
        return resp.text[:200]

    async def _call_upstream(self, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = await self.client.post(self.completions_url, json=payload)
        except httpx.HTTPError as exc:
            logger.error("OpenAI API request failed: %s", exc)
            raise err_unknown_failure(self._details(str(exc))) from exc

        if resp.status_code >= 400:
            message = self._upstream_message(resp)
            logger.error(
                "OpenAI API error: status=%s model=%s detail=%s",
                resp.status_code,
                payload.get("model"),
                message,
            )
            raise error_for_upstream_status(resp.status_code, self._details(message))

        try:
            obj = resp.json()
        except ValueError as exc:
            logger.error("OpenAI API returned a non-JSON body: %s", resp.text[:200])
            raise err_unknown_failure(self._details("Malformed upstream response")) from exc
        if not isinstance(obj, dict):
            raise err_unknown_failure(self._details("Malformed upstream response"))
        return obj

    def _log(self, request, model, status, started_at, usage=None):
        if self.request_log is None:
            return
        self.request_log.log(
            request_record(
                model=model,
                has_image=request.has_image,
                history_turns=len(request.conversation_history),
                status=status,
                started_at=started_at,
                usage=usage,
            )
        )

    async def handle_tutor(self, payload: Any) -> TutorResponse:
        request = self.parse_request(payload)
        self.validate(request)

        body = build_completion_payload(self.cfg, request)
        model = body["model"]
        started_at = time.time()
        logger.info(
            "Relaying tutor request: model=%s history_turns=%d image=%s",
            model,
            len(request.conversation_history),
            request.has_image,
        )
        try:
            obj = await self._call_upstream(body)
            try:
                content = obj["choices"][0]["message"]["content"]
            except (KeyError, IndexError, TypeError) as exc:
                logger.error("OpenAI API response missing choices: %s", obj)
                raise err_unknown_failure(
                    self._details("Upstream response had no choices")
                ) from exc
        except RelayError as exc:
            self._log(request, model, exc.status_code, started_at)
            raise

        usage = obj.get("usage") if isinstance(obj.get("usage"), dict) else None
        self._log(request, model, 200, started_at, usage)
        return TutorResponse(
            response=content,
            usage=Usage.model_validate(usage) if usage else None,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
