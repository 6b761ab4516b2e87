"""
HTTP / WebSocket server for the voice relay.

Routes:
- GET  /              liveness text
- GET  /health        health check
- WS   /media         call audio in, replies out
- GET  /audio/{ref}   synthesized reply audio
- /control/...        control API
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket
from fastapi.responses import PlainTextResponse, Response

from logging_setup import get_logger, Component
from voice_pipeline.runtime import VoiceRuntime, build_runtime
from .control_api import get_runtime, router as control_router

logger = get_logger(Component.SERVER)


def create_app(runtime: Optional[VoiceRuntime] = None) -> FastAPI:
    """
    Build the app. Without an injected runtime one is built from the environment
    at startup and closed at shutdown; an injected runtime is left to its owner.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = runtime is None
        app.state.runtime = runtime or build_runtime()
        logger.info("Server started", runtime_injected=not owned)
        try:
            yield
        finally:
            if owned:
                await app.state.runtime.aclose()
            logger.info("Server stopped")

    app = FastAPI(title="Voice Relay", lifespan=lifespan)
    app.include_router(control_router)
    if runtime is not None:
        app.state.runtime = runtime

    @app.get("/", response_class=PlainTextResponse)
    async def root() -> str:
        return "voice relay running"

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "ok", "component": "control_plane"}

    @app.websocket("/media")
    async def media(websocket: WebSocket):
        current = getattr(websocket.app.state, "runtime", None)
        if current is None:
            await websocket.close(code=1013)
            return
        await current.listener.serve(websocket)

    @app.get("/audio/{ref}")
    async def get_audio(ref: str, request: Request) -> Response:
        clip = get_runtime(request).clip_store.get(ref)
        if clip is None:
            raise HTTPException(status_code=404, detail="Audio not found")
        return Response(content=clip.data, media_type=clip.mime_type)

    return app


app = create_app()
