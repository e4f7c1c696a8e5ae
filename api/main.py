"""
FastAPI Service for the Code Agent

Runs agent sessions over HTTP, serves browser-preview pages and carries
the WebSocket traffic between preview sandboxes and the async bridge.
"""

import os
from contextlib import asynccontextmanager
from datetime import datetime, UTC
from typing import List, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, Field, ValidationError

from agents.shared.config import AgentSettings
from agents.shared.file_logger import setup_file_logger
from agents.shared.schemas import ProgressUpdate, SandboxMessage
from api.preview_page import render_preview_page
from api.websocket_sandbox import WebSocketSandbox
from orchestrator.errors import ModelServiceError
from orchestrator.progress_publisher import ProgressPublisher
from orchestrator.session import AgentSession

# Initialize file logging
logger = setup_file_logger(
    "api",
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    output_dir=os.getenv("LOG_DIR", "./output")
)

# Global state
agent_session: Optional[AgentSession] = None
progress_connections: List[WebSocket] = []


async def broadcast_progress(update: ProgressUpdate) -> None:
    """
    Send a progress update to every connected progress WebSocket.

    Args:
        update: Progress update to broadcast
    """
    payload = update.model_dump(mode="json")
    for websocket in list(progress_connections):
        try:
            await websocket.send_json(payload)
        except Exception as e:
            logger.warning(f"Dropping progress connection: {e}")
            if websocket in progress_connections:
                progress_connections.remove(websocket)


def build_session() -> AgentSession:
    settings = AgentSettings.from_env()
    session = AgentSession(
        settings=settings,
        progress_publisher=ProgressPublisher(broadcast_progress),
        configure_logging=True
    )
    session.register_default_tools()
    return session


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown"""
    global agent_session

    logger.info("Starting up...")

    if agent_session is None:
        try:
            agent_session = build_session()
            logger.info(f"Agent session ready with tools: {', '.join(agent_session.registry.names())}")
        except ModelServiceError as e:
            # Continue without a model so the health and preview endpoints stay up
            logger.warning(f"Could not create agent session: {e}")
            agent_session = None

    yield

    logger.info("Shutting down...")
    if agent_session is not None:
        await agent_session.shutdown()
        agent_session = None
    logger.info("Shutdown complete")


# FastAPI app
app = FastAPI(
    title="Code Agent API",
    version="1.0.0",
    description="API for running tool-using agent sessions",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify allowed origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Pydantic models
class RunRequest(BaseModel):
    """Request model for /run endpoint"""
    prompt: str = Field(..., min_length=1, max_length=10000, description="User request text")
    context: Optional[str] = Field(default=None, description="Optional code context")


def require_session() -> AgentSession:
    if agent_session is None:
        raise HTTPException(status_code=503, detail="Agent session is not available")
    return agent_session


# Endpoints
@app.get("/")
async def root():
    """Root endpoint - API info"""
    return {
        "message": "Code Agent API",
        "version": "1.0.0",
        "endpoints": {
            "health": "/health",
            "run": "/run",
            "preview": "/preview/{preview_id}?url=",
            "preview_websocket": "/ws/preview/{preview_id}",
            "progress_websocket": "/ws/progress"
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "session": "ready" if agent_session else "unavailable",
        "tools": agent_session.registry.names() if agent_session else [],
        "pending_requests": agent_session.bridge.pending_count() if agent_session else 0
    }


@app.post("/run")
async def run_agent(request: RunRequest):
    """
    Run one agent session to completion.

    Returns the final text with the execution steps. A model service
    failure is reported as 502 with the steps taken before it.
    """
    session = require_session()
    logger.info(f"Received request: {request.prompt[:50]}...")

    try:
        result = await session.run_agent(request.prompt, context=request.context)
    except ModelServiceError as e:
        logger.error(f"Model service error: {e}")
        detail = e.to_payload()
        if e.execution_log is not None:
            detail["execution_log"] = e.execution_log.to_dict()
        raise HTTPException(status_code=502, detail=detail)

    logger.info(f"Session {result.session_id} finished: {result.status}")
    return result.model_dump(mode="json")


@app.get("/preview/{preview_id}", response_class=HTMLResponse)
async def preview_page(preview_id: str, url: str = "about:blank"):
    """Preview page that frames the URL and connects back as a sandbox"""
    return HTMLResponse(render_preview_page(preview_id, url))


@app.websocket("/ws/preview/{preview_id}")
async def preview_websocket(websocket: WebSocket, preview_id: str):
    """
    WebSocket endpoint for preview sandboxes.

    The connection is the sandbox's outbound channel; every JSON message
    it sends is a reply handed to the async bridge.
    """
    session = agent_session
    if session is None:
        await websocket.accept()
        await websocket.close(code=1011)
        return

    # reachable as soon as the page connects
    sandbox = WebSocketSandbox(preview_id, websocket)
    session.bridge.attach(sandbox)

    try:
        await websocket.accept()
        while True:
            data = await websocket.receive_json()
            try:
                message = SandboxMessage.model_validate(data)
            except ValidationError as e:
                logger.warning(f"Invalid sandbox message from {preview_id}: {e}")
                continue
            session.bridge.handle_message(message)

    except WebSocketDisconnect:
        logger.info(f"Preview sandbox disconnected: {preview_id}")
    finally:
        sandbox.mark_closed()
        if session.bridge.get_sandbox(preview_id) is sandbox:
            session.bridge.detach(preview_id)


@app.websocket("/ws/progress")
async def progress_websocket(websocket: WebSocket):
    """WebSocket endpoint for real-time progress updates"""
    progress_connections.append(websocket)

    try:
        await websocket.accept()
        logger.info("Progress WebSocket connected")
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Progress WebSocket disconnected")
    finally:
        if websocket in progress_connections:
            progress_connections.remove(websocket)


# For running with uvicorn
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
