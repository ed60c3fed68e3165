from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..domain.errors import AssistantError


logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    """Render domain errors and request validation failures as ``{"success": false, "error": ...}``."""

    @app.exception_handler(AssistantError)
    async def assistant_error_handler(request: Request, exc: AssistantError):
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        else:
            logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        body = {"success": False, "error": exc.message}
        if exc.code:
            body["code"] = exc.code
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        fields = []
        for error in exc.errors():
            loc = [str(part) for part in error.get("loc", ()) if part != "body"]
            fields.append(".".join(loc) or "body")
        logger.warning("Request validation failed on %s: %s", request.url.path, fields)
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": f"Missing or invalid fields: {', '.join(fields)}"},
        )
