"""
FastAPI application for the DETR object detection demo.

Endpoints (all under the configured base path, default /object-detection):
    GET  /               -> Upload page
    GET  /health         -> Health check {"status": "ok"}
    GET  /status         -> This viewer's phase, model readiness, current detections
    POST /detect/image   -> Detect objects in uploaded image (JSON)
    POST /detect/render  -> Detect objects and return the annotated PNG

Usage:
    uvicorn detr_demo.api.app:app --host 0.0.0.0 --port 8000
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import cv2
from fastapi import APIRouter, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import HTMLResponse, Response
from fastapi.templating import Jinja2Templates

from detr_demo.api.schemas import DetectionResponse, HealthResponse, StatusResponse
from detr_demo.config import DemoConfig, load_config
from detr_demo.inference.inference_image import (
    InferenceError,
    ModelInitializationError,
    build_orchestrator,
)
from detr_demo.inference.provider import SharedHandle
from detr_demo.inference.session import DetectionSession, InvalidImageError, SessionRegistry
from detr_demo.logs import setup_logging

logger = logging.getLogger(__name__)

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))


SESSION_COOKIE = "detr_demo_session"


def create_app(config: Optional[DemoConfig] = None, handle: Optional[SharedHandle] = None) -> FastAPI:
    """
    Create the demo app.

    The orchestrator (and its model handle) is shared by the whole process;
    each viewer gets its own DetectionSession, keyed by a session cookie.

    Args:
        config: Demo configuration; loaded from YAML/env when omitted.
        handle: Shared inference handle; built from ``config`` when omitted.
            Tests pass one wrapping a fake detector.
    """
    config = config or load_config()
    orchestrator = build_orchestrator(config, handle)
    sessions = SessionRegistry(orchestrator, threshold=config.threshold, max_sessions=config.max_sessions)

    app = FastAPI(
        title="DETR Object Detection Demo",
        description="Upload an image and see DETR ResNet-50 detections drawn on it",
        version="1.0.0",
    )
    app.state.config = config
    app.state.sessions = sessions

    router = APIRouter()

    def _session_for(request: Request) -> tuple[str, DetectionSession]:
        return sessions.get(request.cookies.get(SESSION_COOKIE))

    def _remember(response: Response, session_id: str) -> None:
        response.set_cookie(
            SESSION_COOKIE, session_id, path=config.base_path or "/", httponly=True, samesite="lax",
        )

    def _cookie_headers(session_id: str) -> dict:
        carrier = Response()
        _remember(carrier, session_id)
        return {"set-cookie": carrier.headers["set-cookie"]}

    async def _detect_upload(session_id: str, session: DetectionSession, file: UploadFile):
        # Errors carry the cookie too, so /status finds the failed session
        headers = _cookie_headers(session_id)
        contents = await file.read()
        try:
            generation = session.select_image(contents)
        except InvalidImageError as e:
            raise HTTPException(status_code=400, detail=str(e), headers=headers)

        try:
            detections = await session.on_image_loaded(generation)
        except ModelInitializationError as e:
            raise HTTPException(status_code=503, detail=f"model not ready: {e}", headers=headers)
        except InferenceError as e:
            raise HTTPException(status_code=500, detail=str(e), headers=headers)

        if detections is None:
            raise HTTPException(status_code=409, detail="superseded by a newer image", headers=headers)
        return detections

    async def _preload():
        try:
            await orchestrator.ensure_ready()
        except ModelInitializationError:
            logger.warning("Model preload failed; the next upload will retry")

    @app.on_event("startup")
    async def startup_event():
        """Start loading the model in the background so the first upload is faster."""
        logger.info("Preloading %s", config.model_checkpoint)
        app.state.preload = asyncio.create_task(_preload())

    @router.get("/", response_class=HTMLResponse)
    async def index(request: Request):
        """Upload page."""
        page = templates.TemplateResponse(
            request,
            "index.html",
            {"base_path": config.base_path, "model_ready": orchestrator.is_ready},
        )
        _remember(page, _session_for(request)[0])
        return page

    @router.get("/health", response_model=HealthResponse)
    async def health_check():
        return HealthResponse(status="ok")

    @router.get("/status", response_model=StatusResponse)
    async def status(request: Request, response: Response):
        """Current phase of this viewer's session."""
        session_id, session = _session_for(request)
        _remember(response, session_id)
        phase = session.refresh()
        return StatusResponse(
            phase=phase.name,
            model_ready=session.model_ready,
            error=getattr(phase, "message", None),
            detections=session.detections,
        )

    @router.post("/detect/image", response_model=DetectionResponse)
    async def detect_image(request: Request, response: Response, file: UploadFile = File(...)):
        """
        Detect objects in an uploaded image.

        - **file**: Image file (JPEG, PNG, etc.)
        - Returns: count, image size and detections with pixel boxes and scores
        """
        session_id, session = _session_for(request)
        _remember(response, session_id)
        detections = await _detect_upload(session_id, session, file)
        width, height = session.image.size
        return DetectionResponse(
            count=len(detections),
            width=width,
            height=height,
            detections=detections,
        )

    @router.post("/detect/render")
    async def detect_render(request: Request, file: UploadFile = File(...)):
        """Detect objects and return the image with boxes and labels drawn as PNG."""
        session_id, session = _session_for(request)
        detections = await _detect_upload(session_id, session, file)
        ok, encoded = cv2.imencode(".png", session.overlay)
        if not ok:
            raise HTTPException(status_code=500, detail="failed to encode overlay")
        response = Response(
            content=encoded.tobytes(),
            media_type="image/png",
            headers={"X-Detection-Count": str(len(detections))},
        )
        _remember(response, session_id)
        return response

    app.include_router(router, prefix=config.base_path)
    return app


def _default_app() -> FastAPI:
    config = load_config()
    setup_logging(config.log_level)
    return create_app(config)


app = _default_app()
