"""Gemini Research Agent - client library, CLI and web server for Gemini Deep Research."""

from gemini_research_agent.client import GeminiClient
from gemini_research_agent.config import VERSION, ConfigurationError, Settings, load_settings
from gemini_research_agent.file_manager import (
    Document,
    FileFilters,
    FileManager,
    ScanResult,
    create_file_manager,
    load_document,
    load_documents_from_folder,
)
from gemini_research_agent.models import (
    ApiError,
    ApiResponse,
    ErrorCategory,
    ErrorCode,
    Interaction,
    InteractionState,
    OutputFormat,
    ResearchDepth,
    ResearchEvent,
    ResearchEventType,
    ResearchOptions,
    ResearchResult,
    ResearchStatus,
    Session,
    SourceInfo,
    SourceType,
)
from gemini_research_agent.research import DeepResearchAgent, create_deep_research_agent

__version__ = VERSION

__all__ = [
    "GeminiClient",
    "DeepResearchAgent",
    "create_deep_research_agent",
    "Settings",
    "load_settings",
    "ConfigurationError",
    "Document",
    "FileFilters",
    "FileManager",
    "ScanResult",
    "create_file_manager",
    "load_document",
    "load_documents_from_folder",
    "ApiError",
    "ApiResponse",
    "ErrorCategory",
    "ErrorCode",
    "Interaction",
    "InteractionState",
    "OutputFormat",
    "ResearchDepth",
    "ResearchEvent",
    "ResearchEventType",
    "ResearchOptions",
    "ResearchResult",
    "ResearchStatus",
    "Session",
    "SourceInfo",
    "SourceType",
]
