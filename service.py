#!/usr/bin/env python3
"""
HTTP surface for the Grok web-edit operator.

Endpoints:
- GET  /health          liveness probe, no browser involved
- POST /grok/web-edit   {imageUrl, prompt} -> {success, editedImageUrl, ...}
"""
from __future__ import annotations

import argparse
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from browser_session import Launcher, launch_session
from grok_operator import REQUIRED_FIELDS_MESSAGE, AutomationRequest, run_web_edit
from operator_config import OperatorConfig, load_config
from operator_errors import AutomationError

log = logging.getLogger(__name__)


class WebEditBody(BaseModel):
    # Both optional here so a missing field maps to our 400, not a validation 422.
    imageUrl: Optional[Any] = None
    prompt: Optional[Any] = None


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def create_app(
    config: Optional[OperatorConfig] = None,
    launcher: Launcher = launch_session,
    client: Optional[httpx.Client] = None,
) -> FastAPI:
    config = config or load_config()
    app = FastAPI(title="Grok Web Edit Automation")
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "service": config.service_name,
            "timestamp": utc_now_iso(),
            "chrome": "available" if config.executable_available() else "bundled",
        }

    # Plain def: FastAPI runs it in a worker thread, which the sync Playwright API requires.
    @app.post("/grok/web-edit")
    def web_edit(body: Optional[WebEditBody] = None) -> JSONResponse:
        try:
            request = AutomationRequest.from_payload(body.model_dump() if body else None)
        except ValueError:
            return JSONResponse(status_code=400, content={"success": False, "error": REQUIRED_FIELDS_MESSAGE})

        try:
            result = run_web_edit(request, config, launcher=launcher, client=client)
        except AutomationError as e:
            log.exception("Web edit failed at %s", e.stage)
            return JSONResponse(
                status_code=500,
                content={"success": False, "error": e.message, "stage": e.stage, "code": e.code},
            )

        return JSONResponse(
            status_code=200,
            content={
                "success": True,
                "editedImageUrl": result.edited_image_url,
                "message": "Image edited successfully",
                "processingTime": result.processing_time_s,
                "originalPrompt": result.original_prompt,
            },
        )

    return app


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="service", description="Run the Grok web-edit HTTP service.")
    p.add_argument("--host", default=None, help="Bind address (default from HOST or 0.0.0.0).")
    p.add_argument("--port", type=int, default=None, help="Port (default from PORT or 3000).")
    return p


def main() -> None:
    ns = build_parser().parse_args()
    config = load_config().with_overrides(host=ns.host, port=ns.port)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    log.info("Grok web-edit service on %s:%d (target %s)", config.host, config.port, config.target_url)
    uvicorn.run(create_app(config), host=config.host, port=config.port)


if __name__ == "__main__":
    main()
