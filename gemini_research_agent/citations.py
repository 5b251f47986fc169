"""Citation extraction and URL resolution."""

import logging
import re
from typing import Iterable, Optional

import httpx

from gemini_research_agent.models import Interaction, SourceInfo

logger = logging.getLogger(__name__)

SOURCES_SECTION_PATTERN = re.compile(
    r"(?:^|\n)(?:\*\*Sources:\*\*|#{1,3} Sources|Sources:)\s*\n([\s\S]*?)(?:\n#{1,3} |\n\*\*[A-Z]|\Z)",
    re.IGNORECASE,
)
SOURCE_ENTRY_PATTERN = re.compile(
    r"^\s*\d+\.\s*\[([^\]]+)\]\(([^)\s]+)\)(?:\s*[-:–]\s*(.+))?", re.MULTILINE
)


def parse_sources(report_text: str) -> list[SourceInfo]:
    """
    Extract the trailing sources list of a Markdown report.

    Handles headers like:
    - **Sources:**
    - ## Sources
    - Sources:

    Each entry like:
    1. [title](url)
    2. [title](url) - optional snippet
    """
    match = SOURCES_SECTION_PATTERN.search(report_text)
    if not match:
        return []

    sources = []
    for m in SOURCE_ENTRY_PATTERN.finditer(match.group(1)):
        title, url, snippet = m.groups()
        sources.append(
            SourceInfo(
                title=title.strip(),
                url=url.strip(),
                snippet=snippet.strip() if snippet else None,
            )
        )
    return sources


def sources_from_metadata(interaction: Interaction) -> list[SourceInfo]:
    """Read structured citations attached to an interaction."""
    sources = []
    for citation in interaction.metadata.citations:
        url = citation.get("uri") or citation.get("url")
        if not url:
            continue
        sources.append(
            SourceInfo(
                title=citation.get("title") or url,
                url=url,
                snippet=citation.get("snippet"),
            )
        )
    return sources


def merge_sources(*groups: Iterable[SourceInfo]) -> list[SourceInfo]:
    """Concatenate source lists, keeping the first occurrence of each URL."""
    seen: set[str] = set()
    merged = []
    for group in groups:
        for src in group:
            if src.url in seen:
                continue
            seen.add(src.url)
            merged.append(src)
    return merged


def resolve_redirect(url: str, timeout: float = 10.0) -> Optional[str]:
    """
    Follow grounding-api-redirect URLs to get the final URL.

    Returns None on failure, the original URL if it is not a redirect.
    """
    if "grounding-api-redirect" not in url:
        return url

    try:
        with httpx.Client(follow_redirects=True, timeout=timeout) as client:
            resp = client.head(url)
            return str(resp.url)
    except httpx.HTTPError as e:
        logger.debug("Could not resolve redirect %s: %s", url, e)
        return None


def extract_sources(
    interaction: Interaction,
    text: Optional[str] = None,
    *,
    resolve_redirects: bool = False,
) -> list[SourceInfo]:
    """Collect sources from interaction metadata and the report's sources list."""
    text = interaction.text if text is None else text
    sources = merge_sources(
        sources_from_metadata(interaction),
        parse_sources(text) if text else [],
    )

    if resolve_redirects:
        for src in sources:
            final = resolve_redirect(src.url)
            if final and final != src.url:
                src.url = final
        sources = merge_sources(sources)

    return sources
