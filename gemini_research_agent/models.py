"""Data models for the Gemini Research Agent.

Wire types mirror the generative-language REST resources (camelCase on the
wire, snake_case here). Research types are local aggregates built by the
orchestrator and never persisted.
"""

import base64
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


# =============================================================================
# Errors and the response envelope
# =============================================================================


class ErrorCode(str, Enum):
    """Machine-readable failure codes carried in the response envelope."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    QUOTA_ERROR = "QUOTA_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
    NOT_FOUND = "NOT_FOUND"
    HTTP_ERROR = "HTTP_ERROR"
    TIMEOUT = "TIMEOUT"
    REMOTE_FAILURE = "REMOTE_FAILURE"
    CANCELLED = "CANCELLED"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorCategory(str, Enum):
    """Caller-facing classification of a failed operation."""

    AUTH = "AuthError"
    QUOTA = "QuotaError"
    NETWORK = "NetworkError"
    TIMEOUT = "Timeout"
    REMOTE_FAILURE = "RemoteFailure"
    VALIDATION = "ValidationError"
    UNKNOWN = "Unknown"


_CATEGORY_BY_CODE = {
    ErrorCode.VALIDATION_ERROR: ErrorCategory.VALIDATION,
    ErrorCode.AUTH_ERROR: ErrorCategory.AUTH,
    ErrorCode.QUOTA_ERROR: ErrorCategory.QUOTA,
    ErrorCode.NETWORK_ERROR: ErrorCategory.NETWORK,
    ErrorCode.TIMEOUT: ErrorCategory.TIMEOUT,
    ErrorCode.REMOTE_FAILURE: ErrorCategory.REMOTE_FAILURE,
    ErrorCode.MALFORMED_RESPONSE: ErrorCategory.REMOTE_FAILURE,
    ErrorCode.NOT_FOUND: ErrorCategory.REMOTE_FAILURE,
    ErrorCode.HTTP_ERROR: ErrorCategory.REMOTE_FAILURE,
}


def category_for(code: ErrorCode) -> ErrorCategory:
    """Map an envelope error code to its caller-facing category."""
    return _CATEGORY_BY_CODE.get(code, ErrorCategory.UNKNOWN)


@dataclass
class ApiError:
    """Structured failure information."""

    code: ErrorCode
    message: str
    status_code: Optional[int] = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def category(self) -> ErrorCategory:
        return category_for(self.code)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code.value, "message": self.message}


@dataclass
class ApiResponse(Generic[T]):
    """Uniform result envelope: either data or an error, never an exception."""

    success: bool
    data: Optional[T] = None
    error: Optional[ApiError] = None

    @classmethod
    def ok(cls, data: T) -> "ApiResponse[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(
        cls,
        code: ErrorCode,
        message: str,
        *,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> "ApiResponse[T]":
        return cls(
            success=False,
            error=ApiError(
                code=code,
                message=message,
                status_code=status_code,
                details=details or {},
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON envelope shape."""
        if not self.success:
            error = self.error or ApiError(ErrorCode.INTERNAL_ERROR, "Unknown error")
            return {"success": False, "error": error.to_dict()}
        data: Any = self.data
        if hasattr(data, "to_dict"):
            data = data.to_dict()
        return {"success": True, "data": data}


# =============================================================================
# Content
# =============================================================================


def expect_dict(value: Any, what: str) -> dict[str, Any]:
    """Return value if it is a JSON object, else raise ValueError."""
    if not isinstance(value, dict):
        raise ValueError(f"{what} is not an object: {value!r}")
    return value


def _resource_name(d: dict[str, Any]) -> str:
    name = d["name"]
    if not isinstance(name, str) or not name:
        raise ValueError(f"name is not a resource name: {name!r}")
    return name


class Role(str, Enum):
    USER = "user"
    AGENT = "agent"


@dataclass(frozen=True)
class InlineData:
    """Raw bytes sent inside the request body."""

    mime_type: str
    data: bytes

    def to_api(self) -> dict[str, Any]:
        return {
            "mimeType": self.mime_type,
            "data": base64.b64encode(self.data).decode("ascii"),
        }

    @classmethod
    def from_api(cls, d: dict[str, Any]) -> "InlineData":
        d = expect_dict(d, "inlineData")
        return cls(mime_type=d["mimeType"], data=base64.b64decode(d.get("data", "")))


@dataclass(frozen=True)
class FileData:
    """Reference to a file previously uploaded to the Files API."""

    mime_type: str
    file_uri: str
    name: Optional[str] = None

    def to_api(self) -> dict[str, Any]:
        return {"mimeType": self.mime_type, "fileUri": self.file_uri}

    @classmethod
    def from_api(cls, d: dict[str, Any]) -> "FileData":
        d = expect_dict(d, "fileData")
        return cls(
            mime_type=d.get("mimeType", "application/octet-stream"),
            file_uri=d.get("fileUri") or d["uri"],
            name=d.get("name"),
        )


@dataclass(frozen=True)
class Part:
    """One unit of content: text, inline bytes, or a file reference."""

    text: Optional[str] = None
    inline_data: Optional[InlineData] = None
    file_data: Optional[FileData] = None

    def __post_init__(self) -> None:
        populated = [
            v for v in (self.text, self.inline_data, self.file_data) if v is not None
        ]
        if len(populated) != 1:
            raise ValueError("A Part holds exactly one of text, inline_data, file_data")

    def to_api(self) -> dict[str, Any]:
        if self.text is not None:
            return {"text": self.text}
        if self.inline_data is not None:
            return {"inlineData": self.inline_data.to_api()}
        return {"fileData": self.file_data.to_api()}  # type: ignore[union-attr]

    @classmethod
    def from_api(cls, d: dict[str, Any]) -> "Part":
        d = expect_dict(d, "part")
        if "inlineData" in d:
            return cls(inline_data=InlineData.from_api(d["inlineData"]))
        if "fileData" in d:
            return cls(file_data=FileData.from_api(d["fileData"]))
        text = d.get("text", "")
        if not isinstance(text, str):
            raise ValueError(f"part text is not a string: {text!r}")
        return cls(text=text)


@dataclass(frozen=True)
class Content:
    """A role-tagged list of parts."""

    role: Role
    parts: tuple[Part, ...] = ()

    @classmethod
    def user(cls, *parts: Part) -> "Content":
        return cls(role=Role.USER, parts=tuple(parts))

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if p.text is not None)

    def to_api(self) -> dict[str, Any]:
        return {"role": self.role.value, "parts": [p.to_api() for p in self.parts]}

    @classmethod
    def from_api(cls, d: dict[str, Any]) -> "Content":
        d = expect_dict(d, "content")
        role_str = str(d.get("role", "agent")).lower()
        # The API reports generated turns as "model" in some responses
        role = Role.USER if role_str == "user" else Role.AGENT
        return cls(role=role, parts=tuple(Part.from_api(p) for p in d.get("parts", [])))


# =============================================================================
# Sessions and interactions
# =============================================================================


@dataclass
class Session:
    """Read-only copy of a remote session."""

    name: str
    display_name: Optional[str] = None
    model: Optional[str] = None
    create_time: Optional[str] = None
    update_time: Optional[str] = None
    history: list[Content] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.name.rsplit("/", 1)[-1]

    @classmethod
    def from_api(cls, d: dict[str, Any]) -> "Session":
        d = expect_dict(d, "session")
        return cls(
            name=_resource_name(d),
            display_name=d.get("displayName"),
            model=d.get("model"),
            create_time=d.get("createTime"),
            update_time=d.get("updateTime"),
            history=[Content.from_api(c) for c in d.get("history", [])],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "id": self.id,
            "display_name": self.display_name,
            "model": self.model,
            "create_time": self.create_time,
            "update_time": self.update_time,
            "history_length": len(self.history),
        }


@dataclass
class SessionPage:
    """A single page of sessions; never auto-paginated."""

    sessions: list[Session]
    next_page_token: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessions": [s.to_dict() for s in self.sessions],
            "next_page_token": self.next_page_token,
        }


class InteractionState(str, Enum):
    """Lifecycle state of an interaction."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            InteractionState.SUCCEEDED,
            InteractionState.FAILED,
            InteractionState.CANCELLED,
        )

    @classmethod
    def parse(cls, value: Optional[str]) -> "InteractionState":
        """Parse a remote state string, tolerating known aliases."""
        if not value:
            return cls.PENDING
        if not isinstance(value, str):
            raise ValueError(f"state is not a string: {value!r}")
        key = value.lower()
        if key.startswith("state_"):
            key = key[len("state_"):]
        state_map = {
            "pending": cls.PENDING,
            "queued": cls.PENDING,
            "running": cls.RUNNING,
            "in_progress": cls.RUNNING,
            "active": cls.RUNNING,
            "succeeded": cls.SUCCEEDED,
            "completed": cls.SUCCEEDED,
            "done": cls.SUCCEEDED,
            "failed": cls.FAILED,
            "cancelled": cls.CANCELLED,
            "canceled": cls.CANCELLED,
        }
        return state_map.get(key, cls.RUNNING)


@dataclass
class TokenCount:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_api(cls, d: dict[str, Any]) -> "TokenCount":
        d = expect_dict(d, "tokenCount")
        return cls(
            input_tokens=int(d.get("inputTokens", 0)),
            output_tokens=int(d.get("outputTokens", 0)),
            total_tokens=int(d.get("totalTokens", 0)),
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class InteractionMetadata:
    citations: list[dict[str, Any]] = field(default_factory=list)
    token_count: Optional[TokenCount] = None

    @classmethod
    def from_api(cls, d: dict[str, Any]) -> "InteractionMetadata":
        d = expect_dict(d, "metadata")
        token_count = d.get("tokenCount")
        return cls(
            citations=[expect_dict(c, "citation") for c in d.get("citations") or []],
            token_count=TokenCount.from_api(token_count) if token_count else None,
        )


@dataclass
class Interaction:
    """One query/response exchange within a session."""

    name: str
    state: InteractionState
    outputs: list[Content] = field(default_factory=list)
    error: Optional[dict[str, Any]] = None
    metadata: InteractionMetadata = field(default_factory=InteractionMetadata)
    create_time: Optional[str] = None
    update_time: Optional[str] = None

    @property
    def text(self) -> Optional[str]:
        """Concatenated text of the agent's output turns, if any."""
        chunks = [c.text for c in self.outputs if c.role == Role.AGENT and c.text]
        return "\n\n".join(chunks) if chunks else None

    @property
    def error_message(self) -> Optional[str]:
        if not self.error:
            return None
        message = self.error.get("message")
        return str(message) if message else None

    @property
    def session_name(self) -> str:
        prefix, sep, _ = self.name.partition("/interactions/")
        return prefix if sep else ""

    @classmethod
    def from_api(cls, d: dict[str, Any]) -> "Interaction":
        d = expect_dict(d, "interaction")
        outputs = d.get("outputs")
        if outputs is None:
            outputs = [d["content"]] if d.get("content") else []
        error = d.get("error")
        if error is not None and not isinstance(error, dict):
            # Some failures carry a bare message instead of a Status object
            error = {"message": str(error)}
        return cls(
            name=_resource_name(d),
            state=InteractionState.parse(d.get("state")),
            outputs=[Content.from_api(c) for c in outputs],
            error=error,
            metadata=InteractionMetadata.from_api(d.get("metadata") or {}),
            create_time=d.get("createTime"),
            update_time=d.get("updateTime"),
        )


# =============================================================================
# Tool configuration
# =============================================================================


class ResearchDepth(str, Enum):
    QUICK = "quick"
    STANDARD = "standard"
    DEEP = "deep"


class OutputFormat(str, Enum):
    MARKDOWN = "markdown"
    TEXT = "text"
    JSON = "json"


class SourceType(str, Enum):
    WEB = "web"
    ACADEMIC = "academic"
    NEWS = "news"
    DOCUMENTS = "documents"


@dataclass
class DeepResearchConfig:
    depth: ResearchDepth = ResearchDepth.DEEP
    output_format: OutputFormat = OutputFormat.MARKDOWN
    source_types: list[SourceType] = field(default_factory=lambda: [SourceType.WEB])
    max_sources: Optional[int] = None

    def to_api(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "depth": self.depth.value,
            "outputFormat": self.output_format.value,
            "sourceTypes": [s.value for s in self.source_types],
        }
        if self.max_sources:
            d["maxSources"] = self.max_sources
        return d


@dataclass
class ToolConfig:
    deep_research: Optional[DeepResearchConfig] = None
    google_search: bool = True

    def to_api(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        if self.deep_research:
            d["deepResearch"] = self.deep_research.to_api()
        if self.google_search:
            d["googleSearch"] = {}
        return d


# =============================================================================
# Research
# =============================================================================


@dataclass
class ResearchOptions:
    """Caller-tunable knobs for a research run."""

    depth: ResearchDepth = ResearchDepth.DEEP
    output_format: OutputFormat = OutputFormat.MARKDOWN
    source_types: list[SourceType] = field(default_factory=lambda: [SourceType.WEB])
    max_sources: Optional[int] = None
    session_id: Optional[str] = None
    poll_interval: Optional[float] = None
    timeout: Optional[float] = None
    resolve_redirects: bool = False
    cancel_event: Optional[threading.Event] = None

    def tool_config(self) -> ToolConfig:
        return ToolConfig(
            deep_research=DeepResearchConfig(
                depth=self.depth,
                output_format=self.output_format,
                source_types=list(self.source_types),
                max_sources=self.max_sources,
            ),
            google_search=SourceType.WEB in self.source_types
            or SourceType.NEWS in self.source_types,
        )


@dataclass
class SourceInfo:
    """A source cited by a research report."""

    title: str
    url: str
    snippet: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"title": self.title, "url": self.url, "snippet": self.snippet}


@dataclass
class ResearchMetadata:
    depth: ResearchDepth
    processing_time: float = 0.0  # seconds
    documents_used: int = 0
    sources_found: int = 0
    session_name: Optional[str] = None
    interaction_name: Optional[str] = None
    token_count: Optional[TokenCount] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "depth": self.depth.value,
            "processing_time": round(self.processing_time, 3),
            "documents_used": self.documents_used,
            "sources_found": self.sources_found,
            "session_name": self.session_name,
            "interaction_name": self.interaction_name,
            "token_count": self.token_count.to_dict() if self.token_count else None,
        }


class ResearchStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class ResearchResult:
    """Outcome of a research run, assembled after polling stops."""

    status: ResearchStatus
    query: str
    content: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    sources: list[SourceInfo] = field(default_factory=list)
    metadata: Optional[ResearchMetadata] = None
    note: Optional[str] = None

    @property
    def error_category(self) -> Optional[ErrorCategory]:
        return category_for(self.error_code) if self.error_code else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "query": self.query,
            "content": self.content,
            "error": self.error,
            "error_code": self.error_code.value if self.error_code else None,
            "error_category": (
                self.error_category.value if self.error_category else None
            ),
            "note": self.note,
            "sources": [s.to_dict() for s in self.sources],
            "metadata": self.metadata.to_dict() if self.metadata else None,
        }


@dataclass
class ResearchHandle:
    """Reference to a research run that was started but not awaited."""

    session_name: str
    interaction_name: str
    state: InteractionState
    interaction: Optional[Interaction] = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.interaction_name,
            "session_name": self.session_name,
            "state": self.state.value,
        }


class ResearchEventType(str, Enum):
    SESSION_CREATED = "session-created"
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ResearchEventType.COMPLETED, ResearchEventType.ERROR)


@dataclass
class ResearchEvent:
    """Progress notification emitted during a research run."""

    type: ResearchEventType
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
