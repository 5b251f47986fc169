"""FastAPI application: JSON API and browser UI for the research agent.

Endpoints:
    - POST /api/research: Start (or run to completion) a research query
    - GET /api/research/{id}: Poll a research interaction once
    - POST /api/upload: Validate uploaded files and return them as documents
    - GET /api/sessions: List one page of remote sessions
    - GET /health: Service health status

No research state is kept here; the remote API tracks sessions and
interactions, and every request carries what it needs.
"""

import binascii
import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from gemini_research_agent.config import VERSION, ConfigurationError, Settings, load_settings
from gemini_research_agent.file_manager import (
    Document,
    FileFilters,
    FileManager,
)
from gemini_research_agent.models import (
    ApiError,
    ApiResponse,
    ErrorCode,
    OutputFormat,
    ResearchDepth,
    ResearchResult,
    ResearchStatus,
    SourceType,
)
from gemini_research_agent.research import DeepResearchAgent, create_deep_research_agent

logger = logging.getLogger(__name__)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "Surrogate-Control": "no-store",
}

HTTP_STATUS_BY_CODE = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.AUTH_ERROR: 401,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.QUOTA_ERROR: 429,
    ErrorCode.TIMEOUT: 504,
    ErrorCode.CONFIGURATION_ERROR: 503,
    ErrorCode.INTERNAL_ERROR: 500,
}


class AgentUnavailableError(Exception):
    """Raised when the API is called without a configured API key."""


class DocumentPayload(BaseModel):
    """A base64-encoded document attached to a research request."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1)
    mime_type: Optional[str] = Field(default=None, alias="mimeType")
    data: str


class ResearchRequest(BaseModel):
    """Request payload for POST /api/research.

    Attributes:
        query: The research question.
        depth: quick, standard or deep.
        format: markdown, text or json.
        sessionId: Existing session to reuse.
        sourceTypes: Kinds of sources to consult.
        documents: Attached documents (see POST /api/upload).
        wait: Block until the research finishes instead of returning a handle.
        timeout: Max seconds to wait when wait is true.
    """

    model_config = ConfigDict(populate_by_name=True)

    query: str
    depth: Optional[ResearchDepth] = None
    output_format: Optional[OutputFormat] = Field(default=None, alias="format")
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    source_types: Optional[list[SourceType]] = Field(default=None, alias="sourceTypes")
    documents: list[DocumentPayload] = Field(default_factory=list)
    wait: bool = False
    timeout: Optional[float] = Field(default=None, ge=0)


def status_for(error: Optional[ApiError]) -> int:
    """HTTP status for a failure envelope."""
    if error is None:
        return 500
    return HTTP_STATUS_BY_CODE.get(error.code, 502)


def envelope_response(response: ApiResponse[Any], success_status: int = 200) -> JSONResponse:
    if response.success:
        return JSONResponse(response.to_dict(), status_code=success_status)
    return JSONResponse(response.to_dict(), status_code=status_for(response.error))


def result_response(result: ResearchResult) -> JSONResponse:
    """Wrap a research result, mapping error results to an HTTP status."""
    if result.status != ResearchStatus.ERROR:
        return JSONResponse({"success": True, "data": result.to_dict()})
    error = ApiError(result.error_code or ErrorCode.INTERNAL_ERROR, result.error or "")
    return JSONResponse(
        {"success": False, "error": error.to_dict(), "data": result.to_dict()},
        status_code=status_for(error),
    )


def get_agent(request: Request) -> DeepResearchAgent:
    agent = request.app.state.agent
    if agent is None:
        raise AgentUnavailableError(
            "GEMINI_API_KEY is not configured on the server"
        )
    return agent


router = APIRouter(prefix="/api", tags=["research"])


@router.post("/research")
def start_research(
    body: ResearchRequest, agent: DeepResearchAgent = Depends(get_agent)
) -> JSONResponse:
    """Start a research run, or run it to completion when wait is true."""
    try:
        documents = [Document.from_dict(d.model_dump()) for d in body.documents]
    except (binascii.Error, ValueError) as e:
        return envelope_response(
            ApiResponse.fail(ErrorCode.VALIDATION_ERROR, f"Invalid document data: {e}")
        )

    overrides: dict[str, Any] = {
        "session_id": (body.session_id or "").strip() or None,
        "timeout": body.timeout,
    }
    if body.depth:
        overrides["depth"] = body.depth
    if body.output_format:
        overrides["output_format"] = body.output_format
    if body.source_types:
        overrides["source_types"] = body.source_types
    options = agent.default_options(**overrides)

    if body.wait:
        return result_response(agent.deep_research(body.query, documents, options))

    return envelope_response(
        agent.start_research(body.query, documents, options), success_status=202
    )


@router.get("/research/{research_id:path}")
def get_research(
    research_id: str, agent: DeepResearchAgent = Depends(get_agent)
) -> JSONResponse:
    """Poll a research interaction once (id is the interaction resource name)."""
    return result_response(agent.get_research(research_id))


@router.post("/upload")
async def upload_files(
    files: list[UploadFile] = File(...),
    types: Optional[str] = Form(None),
    max_size_mb: Optional[float] = Form(None),
) -> JSONResponse:
    """Validate uploaded files with the scan filters and echo them as documents."""
    manager = FileManager(FileFilters.from_cli(types=types, max_size_mb=max_size_mb))

    accepted = []
    skipped = []
    for upload in files:
        name = upload.filename or "upload"
        content = await upload.read()
        rejection = manager.check_upload(name, len(content))
        if rejection is not None:
            skipped.append(rejection.to_dict())
            continue
        accepted.append(Document.from_bytes(name, content))

    logger.info("Upload: %d accepted, %d skipped", len(accepted), len(skipped))
    return JSONResponse(
        {
            "success": True,
            "data": {
                "files": [d.to_dict() for d in accepted],
                "skipped": skipped,
                "total_size": sum(d.size for d in accepted),
            },
        }
    )


@router.get("/sessions")
def list_sessions(
    page_size: int = Query(20, alias="pageSize", ge=1, le=100),
    page_token: Optional[str] = Query(None, alias="pageToken"),
    agent: DeepResearchAgent = Depends(get_agent),
) -> JSONResponse:
    """List a single page of sessions."""
    return envelope_response(agent.client.list_sessions(page_size, page_token))


def _development_mode(settings: Optional[Settings]) -> bool:
    return (settings or Settings()).is_development


def create_app(
    settings: Optional[Settings] = None,
    agent: Optional[DeepResearchAgent] = None,
    mount_ui: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Explicit settings; loaded from the environment when omitted.
        agent: Pre-built agent (tests inject one with a mock transport).
        mount_ui: Mount the gradio browser client at "/".

    Returns:
        Configured FastAPI application instance.
    """
    if agent is None:
        if settings is None:
            try:
                settings = load_settings()
            except ConfigurationError:
                logger.warning(
                    "GEMINI_API_KEY environment variable is not set; "
                    "API calls will fail until it is configured. "
                    "Get your API key at: https://aistudio.google.com/apikey"
                )
        if settings is not None:
            agent = create_deep_research_agent(settings=settings)
    elif settings is None:
        settings = agent.client.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Starting Gemini Research Agent API...")
        yield
        logger.info("Shutting down Gemini Research Agent API...")
        if app.state.agent is not None:
            app.state.agent.close()

    application = FastAPI(
        title="Gemini Research Agent",
        description="JSON API for Gemini Deep Research sessions and interactions.",
        version=VERSION,
        lifespan=lifespan,
    )
    application.state.agent = agent
    application.state.development = _development_mode(settings)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @application.middleware("http")
    async def disable_caching(request: Request, call_next: Any) -> Any:
        response = await call_next(request)
        response.headers.update(NO_CACHE_HEADERS)
        return response

    @application.exception_handler(AgentUnavailableError)
    async def agent_unavailable(request: Request, exc: AgentUnavailableError) -> JSONResponse:
        return envelope_response(
            ApiResponse.fail(ErrorCode.CONFIGURATION_ERROR, str(exc))
        )

    @application.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        messages = [
            f"{'.'.join(str(p) for p in err['loc'][1:]) or 'body'}: {err['msg']}"
            for err in exc.errors()
        ]
        return envelope_response(
            ApiResponse.fail(ErrorCode.VALIDATION_ERROR, "; ".join(messages))
        )

    @application.exception_handler(Exception)
    async def internal_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Server error: %s", exc, exc_info=exc)
        message = str(exc) if application.state.development else "Internal server error"
        return JSONResponse(
            {"success": False, "error": {"code": "INTERNAL_ERROR", "message": message}},
            status_code=500,
            headers=NO_CACHE_HEADERS,
        )

    application.include_router(router)

    @application.get("/health")
    def health_check() -> dict[str, str]:
        """Check service health status."""
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": VERSION,
        }

    if mount_ui:
        import gradio as gr

        from gemini_research_agent.ui_gradio import create_ui

        application = gr.mount_gradio_app(application, create_ui(agent), path="/")

    return application


def serve(
    host: Optional[str] = None,
    port: Optional[int] = None,
    reload: bool = False,
) -> None:
    """Run the web server with uvicorn."""
    import uvicorn

    settings = Settings()
    log_level = settings.log_level.upper()
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    host = host or settings.host
    port = port or settings.port

    logger.info("Gemini Research Agent running at http://%s:%s", host, port)
    logger.info("API endpoints:")
    logger.info("  POST /api/research     - Start new research")
    logger.info("  GET  /api/research/:id - Get research status")
    logger.info("  POST /api/upload       - Upload files")
    logger.info("  GET  /api/sessions     - List sessions")

    uvicorn.run(
        "gemini_research_agent.web:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=log_level.lower(),
    )


def main() -> None:
    """Web server entry point."""
    serve()


if __name__ == "__main__":
    main()
