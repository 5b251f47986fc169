"""High-level research orchestration with prompt templates and progress events."""

import logging
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, Sequence

from gemini_research_agent.citations import extract_sources
from gemini_research_agent.client import GeminiClient, session_resource_name
from gemini_research_agent.config import Settings, load_settings
from gemini_research_agent.file_manager import Document
from gemini_research_agent.models import (
    ApiError,
    ApiResponse,
    Content,
    ErrorCode,
    Interaction,
    InteractionState,
    OutputFormat,
    Part,
    ResearchDepth,
    ResearchEvent,
    ResearchEventType,
    ResearchHandle,
    ResearchMetadata,
    ResearchOptions,
    ResearchResult,
    ResearchStatus,
)

logger = logging.getLogger(__name__)

ResearchListener = Callable[[ResearchEvent], None]

# Documents above this size are uploaded and referenced instead of inlined
INLINE_DATA_LIMIT = 20 * 1024 * 1024

NO_TEXT_NOTE = "Research completed without text output"

DEPTH_INSTRUCTIONS = {
    ResearchDepth.QUICK: (
        "Answer the query concisely. Consult a small number of authoritative "
        "sources and favour speed over exhaustiveness."
    ),
    ResearchDepth.STANDARD: (
        "Research the query thoroughly. Consult several independent sources "
        "and reconcile disagreements between them."
    ),
    ResearchDepth.DEEP: (
        "Act as an expert research analyst. Plan, search, read, and synthesize "
        "many sources to answer the query exhaustively, noting limitations and "
        "open questions."
    ),
}

FORMAT_INSTRUCTIONS = {
    OutputFormat.MARKDOWN: (
        "Produce a single, self-contained Markdown document with an Executive "
        "Summary, Main Findings (with subsections as needed), and Limitations."
    ),
    OutputFormat.TEXT: "Produce plain text without Markdown markup.",
    OutputFormat.JSON: (
        'Produce a single JSON object with the keys "summary", "findings" '
        '(a list of strings), and "limitations".'
    ),
}

RESEARCH_TEMPLATE = """{depth_instructions}

## Research Query
{query}

## Attached Documents
{documents}

## Output Format
{format_instructions}

## Citation Contract
- Support every factual claim with an inline citation such as [1](URL).
- End with a section titled exactly "## Sources", numbered, one entry per line:
  1. [Title](URL)
"""


def build_research_prompt(
    query: str,
    options: ResearchOptions,
    documents: Sequence[Document] = (),
) -> str:
    """Build the research prompt from template."""
    if documents:
        documents_text = "\n".join(
            f"- {doc.name} ({doc.mime_type})" for doc in documents
        )
        documents_text += "\nTreat the attached documents as primary sources."
    else:
        documents_text = "None"

    return RESEARCH_TEMPLATE.format(
        depth_instructions=DEPTH_INSTRUCTIONS[options.depth],
        query=query.strip(),
        documents=documents_text,
        format_instructions=FORMAT_INSTRUCTIONS[options.output_format],
    )


class ResearchEventChannel:
    """
    Delivers progress events to subscribed listeners.

    Delivery is synchronous, on the caller's thread. Once a terminal event
    (completed or error) has been delivered, later events are dropped.
    """

    def __init__(self, listeners: Iterable[ResearchListener] = ()) -> None:
        self._listeners: list[ResearchListener] = list(listeners)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: ResearchListener) -> Callable[[], None]:
        """Add a listener; returns a function that removes it again."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(
        self, event_type: ResearchEventType, message: str, **data: Any
    ) -> bool:
        """Deliver an event. Returns False if the channel was already closed."""
        if self._closed:
            logger.debug("Dropping %s event after terminal event", event_type.value)
            return False
        if event_type.is_terminal:
            self._closed = True

        event = ResearchEvent(type=event_type, message=message, data=data)
        for listener in list(self._listeners):
            listener(event)
        return True


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    # Timestamps without an offset are UTC on the wire
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _elapsed_between(start: Optional[str], end: Optional[str]) -> float:
    if not start or not end:
        return 0.0
    try:
        delta = _parse_timestamp(end) - _parse_timestamp(start)
    except (TypeError, ValueError):
        return 0.0
    return max(delta.total_seconds(), 0.0)


class DeepResearchAgent:
    """Composes client calls into research runs with progress reporting."""

    def __init__(self, client: GeminiClient, settings: Optional[Settings] = None) -> None:
        self._client = client
        self._settings = settings or client.settings

    @property
    def client(self) -> GeminiClient:
        return self._client

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "DeepResearchAgent":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def default_options(self, **overrides: Any) -> ResearchOptions:
        """Options seeded from settings, with keyword overrides."""
        options = ResearchOptions(
            depth=ResearchDepth(self._settings.default_depth),
            output_format=OutputFormat(self._settings.default_format),
        )
        return replace(options, **overrides)

    # -------------------------------------------------------------------------
    # Blocking research
    # -------------------------------------------------------------------------

    def quick_research(
        self,
        query: str,
        options: Optional[ResearchOptions] = None,
        *,
        on_event: Optional[ResearchListener] = None,
    ) -> ResearchResult:
        """Research a query in a fresh session without documents."""
        options = replace(
            options or self.default_options(depth=ResearchDepth.QUICK),
            session_id=None,
        )
        return self._run(query, [], options, on_event, display_name="quick-research")

    def deep_research(
        self,
        query: str,
        documents: Optional[Sequence[Document]] = None,
        options: Optional[ResearchOptions] = None,
        *,
        on_event: Optional[ResearchListener] = None,
    ) -> ResearchResult:
        """
        Research a query with optional attached documents.

        Reuses options.session_id when given; otherwise creates a session.
        Emits session-created (new sessions only), submitted, polling*, and
        finally exactly one of completed or error.
        """
        return self._run(
            query,
            list(documents or []),
            options or self.default_options(),
            on_event,
            display_name="deep-research",
        )

    def _run(
        self,
        query: str,
        documents: list[Document],
        options: ResearchOptions,
        on_event: Optional[ResearchListener],
        *,
        display_name: str,
    ) -> ResearchResult:
        channel = ResearchEventChannel([on_event] if on_event else [])
        start_time = time.monotonic()

        invalid = self._validate(query, documents)
        if invalid is not None:
            result = self._error_result(query, invalid, options, len(documents), 0.0)
            channel.emit(ResearchEventType.ERROR, result.error or "", code=invalid.code.value)
            return result

        logger.info(
            "Starting %s research (%d documents): %s",
            options.depth.value,
            len(documents),
            query[:100],
        )
        started = self._start(query, documents, options, channel, display_name)
        if not started.success or started.data is None:
            return self._finish_with_error(
                channel, query, started.error, options, len(documents), start_time
            )
        handle = started.data

        def on_poll(interaction: Interaction, elapsed: float) -> None:
            channel.emit(
                ResearchEventType.POLLING,
                f"Status: {interaction.state.value} ({elapsed:.0f}s)",
                state=interaction.state.value,
                elapsed=elapsed,
                interaction_name=interaction.name,
            )

        if handle.interaction is not None and handle.state.is_terminal:
            logger.debug(
                "Interaction %s was %s on submit",
                handle.interaction_name,
                handle.state.value,
            )
            final = handle.interaction
        else:
            waited = self._client.wait_for_completion(
                handle.interaction_name,
                options.poll_interval,
                options.timeout,
                on_poll=on_poll,
                cancel_event=options.cancel_event,
            )
            if not waited.success or waited.data is None:
                return self._finish_with_error(
                    channel, query, waited.error, options, len(documents), start_time
                )
            final = waited.data

        result = self._result_from_interaction(
            query,
            final,
            options,
            documents_used=len(documents),
            processing_time=time.monotonic() - start_time,
            session_name=handle.session_name,
        )
        if result.status == ResearchStatus.COMPLETED:
            logger.info("Research completed: %s", handle.interaction_name)
            channel.emit(
                ResearchEventType.COMPLETED,
                "Research complete",
                interaction_name=handle.interaction_name,
                sources_found=len(result.sources),
            )
        else:
            logger.warning("Research failed: %s", result.error)
            channel.emit(
                ResearchEventType.ERROR,
                result.error or "",
                code=ErrorCode.REMOTE_FAILURE.value,
            )
        return result

    # -------------------------------------------------------------------------
    # Non-blocking research
    # -------------------------------------------------------------------------

    def start_research(
        self,
        query: str,
        documents: Optional[Sequence[Document]] = None,
        options: Optional[ResearchOptions] = None,
    ) -> ApiResponse[ResearchHandle]:
        """Create (or reuse) a session and submit the query without waiting."""
        documents = list(documents or [])
        invalid = self._validate(query, documents)
        if invalid is not None:
            return ApiResponse(success=False, error=invalid)
        return self._start(
            query,
            documents,
            options or self.default_options(),
            ResearchEventChannel(),
            "deep-research",
        )

    def get_research(self, interaction_name: str, query: str = "") -> ResearchResult:
        """Poll an interaction once and describe where it stands."""
        depth = ResearchDepth(self._settings.default_depth)
        options = ResearchOptions(depth=depth)
        response = self._client.poll_interaction(interaction_name)
        if not response.success or response.data is None:
            return self._error_result(query, response.error, options, 0, 0.0)

        interaction = response.data
        return self._result_from_interaction(
            query,
            interaction,
            options,
            documents_used=0,
            processing_time=_elapsed_between(
                interaction.create_time, interaction.update_time
            ),
            session_name=interaction.session_name or None,
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _validate(query: str, documents: Sequence[Any]) -> Optional[ApiError]:
        for doc in documents:
            if not isinstance(doc, Document):
                raise TypeError(f"Expected Document, got {type(doc).__name__}")
        if not query or not query.strip():
            return ApiError(ErrorCode.VALIDATION_ERROR, "Query must not be empty")
        return None

    def _start(
        self,
        query: str,
        documents: list[Document],
        options: ResearchOptions,
        channel: ResearchEventChannel,
        display_name: str,
    ) -> ApiResponse[ResearchHandle]:
        tool_config = options.tool_config()

        if options.session_id:
            session_name = session_resource_name(options.session_id)
        else:
            created = self._client.create_session(
                display_name=f"{display_name}-{int(time.time())}",
                tool_config=tool_config,
            )
            if not created.success or created.data is None:
                return ApiResponse(success=False, error=created.error)
            session_name = created.data.name
            channel.emit(
                ResearchEventType.SESSION_CREATED,
                f"Session created: {session_name}",
                session_name=session_name,
            )

        parts = self._build_parts(query, documents, options)
        if not parts.success or parts.data is None:
            return ApiResponse(success=False, error=parts.error)

        submitted = self._client.create_interaction(
            session_name, Content.user(*parts.data), tool_config
        )
        if not submitted.success or submitted.data is None:
            return ApiResponse(success=False, error=submitted.error)

        interaction = submitted.data
        channel.emit(
            ResearchEventType.SUBMITTED,
            f"Interaction started: {interaction.name}",
            interaction_name=interaction.name,
            documents=len(documents),
        )
        return ApiResponse.ok(
            ResearchHandle(
                session_name=session_name,
                interaction_name=interaction.name,
                state=interaction.state,
                interaction=interaction,
            )
        )

    def _build_parts(
        self,
        query: str,
        documents: list[Document],
        options: ResearchOptions,
    ) -> ApiResponse[list[Part]]:
        parts = [Part(text=build_research_prompt(query, options, documents))]
        for doc in documents:
            if doc.size <= INLINE_DATA_LIMIT:
                parts.append(doc.to_part())
                continue

            logger.info("Uploading %s (%d bytes)", doc.name, doc.size)
            uploaded = self._client.upload_file(doc)
            if not uploaded.success or uploaded.data is None:
                return ApiResponse(success=False, error=uploaded.error)
            parts.append(Part(file_data=uploaded.data))
        return ApiResponse.ok(parts)

    def _result_from_interaction(
        self,
        query: str,
        interaction: Interaction,
        options: ResearchOptions,
        *,
        documents_used: int,
        processing_time: float,
        session_name: Optional[str],
    ) -> ResearchResult:
        metadata = ResearchMetadata(
            depth=options.depth,
            processing_time=processing_time,
            documents_used=documents_used,
            session_name=session_name,
            interaction_name=interaction.name,
            token_count=interaction.metadata.token_count,
        )

        if interaction.state == InteractionState.SUCCEEDED:
            text = interaction.text
            sources = extract_sources(
                interaction, text, resolve_redirects=options.resolve_redirects
            )
            metadata.sources_found = len(sources)
            return ResearchResult(
                status=ResearchStatus.COMPLETED,
                query=query,
                content=text,
                sources=sources,
                metadata=metadata,
                note=None if text else NO_TEXT_NOTE,
            )

        if interaction.state.is_terminal:
            return ResearchResult(
                status=ResearchStatus.ERROR,
                query=query,
                error=interaction.error_message or f"Interaction {interaction.state.value}",
                error_code=ErrorCode.REMOTE_FAILURE,
                metadata=metadata,
            )

        return ResearchResult(
            status=ResearchStatus.PENDING,
            query=query,
            metadata=metadata,
            note=f"Interaction {interaction.state.value}",
        )

    @staticmethod
    def _error_result(
        query: str,
        error: Optional[ApiError],
        options: ResearchOptions,
        documents_used: int,
        processing_time: float,
    ) -> ResearchResult:
        error = error or ApiError(ErrorCode.INTERNAL_ERROR, "Unknown error")
        return ResearchResult(
            status=ResearchStatus.ERROR,
            query=query,
            error=error.message or "Unknown error",
            error_code=error.code,
            metadata=ResearchMetadata(
                depth=options.depth,
                processing_time=processing_time,
                documents_used=documents_used,
            ),
        )

    def _finish_with_error(
        self,
        channel: ResearchEventChannel,
        query: str,
        error: Optional[ApiError],
        options: ResearchOptions,
        documents_used: int,
        start_time: float,
    ) -> ResearchResult:
        result = self._error_result(
            query, error, options, documents_used, time.monotonic() - start_time
        )
        logger.warning("Research failed (%s): %s", result.error_code, result.error)
        channel.emit(
            ResearchEventType.ERROR,
            result.error or "",
            code=result.error_code.value if result.error_code else None,
        )
        return result


def create_deep_research_agent(
    api_key: Optional[str] = None,
    settings: Optional[Settings] = None,
    **client_kwargs: Any,
) -> DeepResearchAgent:
    """
    Build an agent from an API key or settings.

    Without either, settings are loaded from the environment and a missing
    GEMINI_API_KEY raises ConfigurationError.
    """
    if settings is None:
        settings = load_settings(gemini_api_key=api_key) if api_key else load_settings()
    return DeepResearchAgent(GeminiClient(settings, **client_kwargs), settings)
