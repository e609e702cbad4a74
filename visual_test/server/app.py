"""FastAPI app exposing the capture endpoint."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from pydantic import ValidationError

from visual_test.errors import InvalidCaptureName
from visual_test.models.capture import SCREENSHOT_ROUTE, CaptureRequest, ComparisonResult, ComparisonStatus
from visual_test.models.config import VisualTestConfig
from visual_test.server.middleware import CaptureMiddleware

logger = logging.getLogger(__name__)

HEALTH_ROUTE = "/visual-test/health"


async def _read_body(request: Request) -> dict[str, Any]:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        return dict(form)
    raw = await request.body()
    try:
        data = json.loads(raw or b"{}")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Malformed JSON body: {e}") from e
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Request body must be an object")
    return data


def create_app(
    config: VisualTestConfig,
    middleware: Optional[CaptureMiddleware] = None,
) -> FastAPI:
    capture = middleware or CaptureMiddleware(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.debug("Shutting down browser session...")
        await capture.close()

    app = FastAPI(title="Visual Test Capture Server", lifespan=lifespan)
    app.state.capture = capture

    # ---- Health ----
    @app.get(HEALTH_ROUTE)
    def health():
        return {"status": "ok", "browser": capture.session.state.value}

    # ---- Capture ----
    @app.post(SCREENSHOT_ROUTE)
    async def make_screenshot(request: Request):
        data = await _read_body(request)
        try:
            capture_request = CaptureRequest.model_validate(data)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=json.loads(e.json())) from e

        try:
            result = await capture.handle(capture_request)
        except InvalidCaptureName as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except Exception as e:
            logger.exception("Capture of %s failed", capture_request.name)
            result = ComparisonResult(status=ComparisonStatus.ERROR, error=f"Capture failed: {e}")
        return result.to_response()

    return app
