from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import RelayConfig
from .errors import (
    RelayError,
    err_invalid_body,
    err_origin_rejected,
    err_payload_too_large,
    err_unknown_failure,
)
from .forwarder import TutorForwarder
from .logging_utils import JsonlLogger
from .models import HealthResponse

logging.basicConfig(level=logging.INFO)

logger = logging.getLogger(__name__)


def _error_response(exc: RelayError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.detail)


def create_app(cfg: RelayConfig | None = None) -> FastAPI:
    """Build the relay application around an explicit, frozen config."""
    cfg = cfg or RelayConfig.load()
    forwarder = TutorForwarder(cfg, JsonlLogger(cfg.log_path, cfg.max_log_bytes))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Tutor relay running on port %s", cfg.port)
        logger.info(
            "OpenAI API key: %s",
            "configured" if cfg.api_key_configured else "missing",
        )
        logger.info("Allowed origins: %s", ", ".join(cfg.allowed_origins))
        yield
        await forwarder.aclose()

    app = FastAPI(title="Tutor Relay", version="0.1", lifespan=lifespan)
    app.state.config = cfg
    app.state.forwarder = forwarder

    # Starlette runs the last registered middleware first: origin check,
    # then CORS headers, then the body size limit.
    @app.middleware("http")
    async def limit_body_size(request: Request, call_next):
        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > cfg.max_body_bytes:
            return _error_response(err_payload_too_large(cfg.max_body_bytes))
        return await call_next(request)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cfg.allowed_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def reject_unknown_origins(request: Request, call_next):
        origin = request.headers.get("origin")
        if not cfg.is_origin_allowed(origin):
            logger.warning("Rejected request from origin %s", origin)
            return _error_response(err_origin_rejected())
        return await call_next(request)

    @app.get("/health")
    async def health():
        body = HealthResponse(openai_configured=cfg.api_key_configured)
        return body.model_dump(by_alias=True)

    @app.post("/api/tutor")
    async def tutor(req: Request):
        # Chunked uploads carry no Content-Length; stop reading at the limit.
        chunks = []
        received = 0
        async for chunk in req.stream():
            received += len(chunk)
            if received > cfg.max_body_bytes:
                return _error_response(err_payload_too_large(cfg.max_body_bytes))
            chunks.append(chunk)
        raw = b"".join(chunks)
        try:
            payload = json.loads(raw) if raw.strip() else {}
        except ValueError:
            return _error_response(
                err_invalid_body("Malformed JSON" if cfg.is_development else None)
            )

        try:
            result = await forwarder.handle_tutor(payload)
        except RelayError as exc:
            return _error_response(exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected failure while relaying tutor request")
            return _error_response(
                err_unknown_failure(str(exc) if cfg.is_development else None)
            )
        return JSONResponse(content=result.model_dump(exclude_none=True))

    return app


app = create_app()


def main():  # pragma: no cover
    import uvicorn

    cfg: RelayConfig = app.state.config
    uvicorn.run(app, host=cfg.host, port=cfg.port)


if __name__ == "__main__":  # pragma: no cover
    main()
