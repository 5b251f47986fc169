"""Tests for research orchestration: events, results and document handling."""

import httpx
import pytest

from gemini_research_agent import research
from gemini_research_agent.file_manager import Document
from gemini_research_agent.models import (
    ErrorCategory,
    ErrorCode,
    InteractionState,
    OutputFormat,
    ResearchDepth,
    ResearchEvent,
    ResearchEventType,
    ResearchOptions,
    ResearchStatus,
)
from gemini_research_agent.research import (
    NO_TEXT_NOTE,
    DeepResearchAgent,
    ResearchEventChannel,
    build_research_prompt,
    create_deep_research_agent,
)
from tests.conftest import INTERACTION_NAME, SESSION_NAME, FakeRemote

REPORT = """# Findings

Solid-state batteries are improving [1](https://example.com/a).

## Sources
1. [Battery review](https://example.com/a) - A survey
2. [Lab notes](https://example.com/b)
"""


def succeeded(text: str = REPORT) -> dict:
    return {
        "state": "SUCCEEDED",
        "outputs": [{"role": "agent", "parts": [{"text": text}]}],
        "metadata": {"tokenCount": {"inputTokens": 10, "outputTokens": 20, "totalTokens": 30}},
    }


class Recorder:
    def __init__(self) -> None:
        self.events: list[ResearchEvent] = []

    def __call__(self, event: ResearchEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[ResearchEventType]:
        return [e.type for e in self.events]


class TestPrompt:
    def test_prompt_contains_query_and_instructions(self) -> None:
        prompt = build_research_prompt(
            "  What is new in batteries?  ",
            ResearchOptions(depth=ResearchDepth.QUICK, output_format=OutputFormat.JSON),
        )
        assert "## Research Query\nWhat is new in batteries?\n" in prompt
        assert research.DEPTH_INSTRUCTIONS[ResearchDepth.QUICK] in prompt
        assert research.FORMAT_INSTRUCTIONS[OutputFormat.JSON] in prompt
        assert "## Sources" in prompt

    def test_prompt_lists_documents(self) -> None:
        doc = Document.from_bytes("paper.pdf", b"%PDF")
        prompt = build_research_prompt("q", ResearchOptions(), [doc])
        assert "- paper.pdf (application/pdf)" in prompt


class TestEventChannel:
    def test_events_after_terminal_are_dropped(self) -> None:
        recorder = Recorder()
        channel = ResearchEventChannel([recorder])

        assert channel.emit(ResearchEventType.SUBMITTED, "submitted")
        assert channel.emit(ResearchEventType.ERROR, "failed")
        assert not channel.emit(ResearchEventType.POLLING, "late")
        assert not channel.emit(ResearchEventType.COMPLETED, "late")

        assert recorder.types == [ResearchEventType.SUBMITTED, ResearchEventType.ERROR]
        assert channel.closed

    def test_unsubscribe(self) -> None:
        recorder = Recorder()
        channel = ResearchEventChannel()
        unsubscribe = channel.subscribe(recorder)

        channel.emit(ResearchEventType.SUBMITTED, "one")
        unsubscribe()
        channel.emit(ResearchEventType.POLLING, "two")

        assert recorder.types == [ResearchEventType.SUBMITTED]


class TestDeepResearch:
    def test_completed_run(self, agent: DeepResearchAgent, remote: FakeRemote) -> None:
        remote.finish_with({"state": "RUNNING"}, succeeded())
        recorder = Recorder()

        result = agent.deep_research("batteries", on_event=recorder)

        assert result.status == ResearchStatus.COMPLETED
        assert result.content == REPORT
        assert [s.url for s in result.sources] == [
            "https://example.com/a",
            "https://example.com/b",
        ]
        assert result.sources[0].snippet == "A survey"
        assert result.metadata is not None
        assert result.metadata.sources_found == 2
        assert result.metadata.session_name == SESSION_NAME
        assert result.metadata.interaction_name == INTERACTION_NAME
        assert result.metadata.token_count is not None
        assert result.metadata.token_count.total_tokens == 30

        assert recorder.types == [
            ResearchEventType.SESSION_CREATED,
            ResearchEventType.SUBMITTED,
            ResearchEventType.POLLING,
            ResearchEventType.POLLING,
            ResearchEventType.COMPLETED,
        ]

    def test_exactly_one_terminal_event_and_it_is_last(
        self, agent: DeepResearchAgent, remote: FakeRemote
    ) -> None:
        remote.finish_with({"state": "FAILED", "error": {"message": "x"}})
        recorder = Recorder()

        agent.deep_research("q", on_event=recorder)

        terminal = [t for t in recorder.types if t.is_terminal]
        assert terminal == [ResearchEventType.ERROR]
        assert recorder.types[-1] == ResearchEventType.ERROR

    def test_reuses_existing_session(self, agent: DeepResearchAgent, remote: FakeRemote) -> None:
        remote.finish_with(succeeded())
        recorder = Recorder()

        agent.deep_research(
            "q", options=agent.default_options(session_id="existing"), on_event=recorder
        )

        assert remote.paths("POST") == ["/v1beta/sessions/existing/interactions"]
        assert ResearchEventType.SESSION_CREATED not in recorder.types

    def test_small_documents_are_inlined(
        self, agent: DeepResearchAgent, remote: FakeRemote
    ) -> None:
        remote.finish_with(succeeded())
        doc = Document.from_bytes("notes.txt", b"hello")

        result = agent.deep_research("q", [doc])

        assert result.metadata is not None
        assert result.metadata.documents_used == 1
        interaction_body = remote.body(1)
        parts = interaction_body["content"]["parts"]
        assert "text" in parts[0]
        assert parts[1] == {"inlineData": {"mimeType": "text/plain", "data": "aGVsbG8="}}

    def test_large_documents_are_uploaded(
        self,
        agent: DeepResearchAgent,
        remote: FakeRemote,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(research, "INLINE_DATA_LIMIT", 4)
        remote.finish_with(succeeded())
        doc = Document.from_bytes("big.pdf", b"%PDF-large")

        result = agent.deep_research("q", [doc])

        assert result.status == ResearchStatus.COMPLETED
        assert "/upload/v1beta/files" in remote.paths("POST")
        interaction_body = remote.body(2)
        assert interaction_body["content"]["parts"][1] == {
            "fileData": {
                "mimeType": "application/pdf",
                "fileUri": "https://generativelanguage.googleapis.com/v1beta/files/f1",
            }
        }

    def test_completed_without_text(self, agent: DeepResearchAgent, remote: FakeRemote) -> None:
        remote.finish_with({"state": "SUCCEEDED", "outputs": []})

        result = agent.deep_research("q")

        assert result.status == ResearchStatus.COMPLETED
        assert result.content is None
        assert result.note == NO_TEXT_NOTE
        assert result.sources == []

    def test_timeout_result(self, agent: DeepResearchAgent, remote: FakeRemote) -> None:
        recorder = Recorder()

        result = agent.deep_research(
            "q", options=agent.default_options(timeout=0), on_event=recorder
        )

        assert result.status == ResearchStatus.ERROR
        assert result.error_code == ErrorCode.TIMEOUT
        assert result.error_category == ErrorCategory.TIMEOUT
        assert recorder.types[-1] == ResearchEventType.ERROR
        assert remote.paths("GET") == []

    def test_session_creation_failure(
        self, agent: DeepResearchAgent, remote: FakeRemote
    ) -> None:
        remote.overrides[("POST", "/v1beta/sessions")] = httpx.Response(
            401, json={"error": {"message": "API key not valid"}}
        )
        recorder = Recorder()

        result = agent.deep_research("q", on_event=recorder)

        assert result.error_code == ErrorCode.AUTH_ERROR
        assert result.error_category == ErrorCategory.AUTH
        assert result.error == "API key not valid"
        assert recorder.types == [ResearchEventType.ERROR]

    def test_empty_query_makes_no_network_call(
        self, agent: DeepResearchAgent, remote: FakeRemote
    ) -> None:
        recorder = Recorder()

        result = agent.deep_research("   ", on_event=recorder)

        assert result.status == ResearchStatus.ERROR
        assert result.error_code == ErrorCode.VALIDATION_ERROR
        assert result.error_category == ErrorCategory.VALIDATION
        assert recorder.types == [ResearchEventType.ERROR]
        assert remote.requests == []

    def test_non_document_rejected(self, agent: DeepResearchAgent) -> None:
        with pytest.raises(TypeError):
            agent.deep_research("q", ["not a document"])  # type: ignore[list-item]


class TestQuickResearch:
    def test_remote_failure_message_is_verbatim(
        self, agent: DeepResearchAgent, remote: FakeRemote
    ) -> None:
        remote.finish_with(
            {"state": "FAILED", "error": {"message": "Research quota exhausted for project"}}
        )

        result = agent.quick_research("q")

        assert result.status == ResearchStatus.ERROR
        assert result.error == "Research quota exhausted for project"
        assert result.error_code == ErrorCode.REMOTE_FAILURE
        assert result.error_category == ErrorCategory.REMOTE_FAILURE

    def test_bare_string_error_is_kept(
        self, agent: DeepResearchAgent, remote: FakeRemote
    ) -> None:
        remote.finish_with({"state": "FAILED", "error": "boom"})

        result = agent.quick_research("q")

        assert result.status == ResearchStatus.ERROR
        assert result.error == "boom"
        assert result.error_code == ErrorCode.REMOTE_FAILURE

    def test_failed_on_submit_keeps_remote_message(
        self, agent: DeepResearchAgent, remote: FakeRemote
    ) -> None:
        remote.overrides[("POST", "/interactions")] = httpx.Response(
            200,
            json={
                "name": INTERACTION_NAME,
                "state": "FAILED",
                "error": {"message": "quota gone"},
            },
        )
        recorder = Recorder()

        result = agent.quick_research(
            "q",
            agent.default_options(depth=ResearchDepth.QUICK, poll_interval=5, timeout=1),
            on_event=recorder,
        )

        assert result.status == ResearchStatus.ERROR
        assert result.error == "quota gone"
        assert result.error_code == ErrorCode.REMOTE_FAILURE
        assert recorder.types[-1] == ResearchEventType.ERROR
        assert remote.paths("GET") == []

    def test_succeeded_on_submit_skips_polling(
        self, agent: DeepResearchAgent, remote: FakeRemote
    ) -> None:
        remote.overrides[("POST", "/interactions")] = httpx.Response(
            200, json={"name": INTERACTION_NAME, **succeeded("Instant answer.")}
        )

        result = agent.quick_research("q")

        assert result.status == ResearchStatus.COMPLETED
        assert result.content == "Instant answer."
        assert remote.paths("GET") == []

    def test_always_uses_fresh_session(
        self, agent: DeepResearchAgent, remote: FakeRemote
    ) -> None:
        remote.finish_with(succeeded())

        result = agent.quick_research("q", agent.default_options(session_id="old"))

        assert result.status == ResearchStatus.COMPLETED
        assert remote.paths("POST")[0] == "/v1beta/sessions"
        session_body = remote.body(0)
        assert session_body["displayName"].startswith("quick-research-")

    def test_defaults_to_quick_depth(
        self, agent: DeepResearchAgent, remote: FakeRemote
    ) -> None:
        remote.finish_with(succeeded())

        result = agent.quick_research("q")

        assert result.metadata is not None
        assert result.metadata.depth == ResearchDepth.QUICK
        assert remote.body(1)["toolConfig"]["deepResearch"]["depth"] == "quick"


class TestNonBlocking:
    def test_start_research_returns_handle(
        self, agent: DeepResearchAgent, remote: FakeRemote
    ) -> None:
        response = agent.start_research("q")

        assert response.success
        assert response.data is not None
        assert response.data.interaction_name == INTERACTION_NAME
        assert response.data.session_name == SESSION_NAME
        assert response.data.state == InteractionState.PENDING
        assert remote.paths("GET") == []

    def test_start_research_validates_query(
        self, agent: DeepResearchAgent, remote: FakeRemote
    ) -> None:
        response = agent.start_research("")

        assert response.error is not None
        assert response.error.code == ErrorCode.VALIDATION_ERROR
        assert remote.requests == []

    def test_get_research_pending(self, agent: DeepResearchAgent, remote: FakeRemote) -> None:
        result = agent.get_research(INTERACTION_NAME)

        assert result.status == ResearchStatus.PENDING
        assert result.metadata is not None
        assert result.metadata.session_name == SESSION_NAME
        assert len(remote.requests) == 1

    def test_get_research_completed_with_elapsed_time(
        self, agent: DeepResearchAgent, remote: FakeRemote
    ) -> None:
        remote.finish_with(
            {
                **succeeded(),
                "createTime": "2025-01-01T10:00:00Z",
                "updateTime": "2025-01-01T10:02:30Z",
            }
        )

        result = agent.get_research(INTERACTION_NAME, query="q")

        assert result.status == ResearchStatus.COMPLETED
        assert result.metadata is not None
        assert result.metadata.processing_time == 150.0

    def test_get_research_mixed_timezone_timestamps(
        self, agent: DeepResearchAgent, remote: FakeRemote
    ) -> None:
        remote.finish_with(
            {
                **succeeded(),
                "createTime": "2025-01-01T10:00:00Z",
                "updateTime": "2025-01-01T10:01:00",
            }
        )

        result = agent.get_research(INTERACTION_NAME, query="q")

        assert result.status == ResearchStatus.COMPLETED
        assert result.metadata is not None
        assert result.metadata.processing_time == 60.0


class TestFactory:
    def test_create_with_api_key(self, monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)

        agent = create_deep_research_agent(api_key="explicit-key")

        assert agent.client.settings.gemini_api_key == "explicit-key"
        agent.close()
