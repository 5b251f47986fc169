"""Gradio browser client for the Gemini Research Agent."""

from pathlib import Path
from tempfile import gettempdir
from typing import Generator, Optional

import gradio as gr

from gemini_research_agent.display import format_duration, format_timestamp
from gemini_research_agent.file_manager import FileManager, format_bytes
from gemini_research_agent.models import (
    OutputFormat,
    ResearchDepth,
    ResearchResult,
    ResearchStatus,
)
from gemini_research_agent.research import DeepResearchAgent

NOT_CONFIGURED = "Error: GEMINI_API_KEY is not configured on the server"


def prepare_download(report_text: Optional[str], name: str) -> Optional[str]:
    """Write report to temp file and return path for download."""
    if not report_text:
        return None
    safe_name = name.replace("/", "_")
    path = Path(gettempdir()) / f"{safe_name}_report.md"
    path.write_text(report_text, encoding="utf-8")
    return str(path)


def format_sources(result: ResearchResult) -> str:
    """Render sources as a numbered Markdown list."""
    if not result.sources:
        return ""
    lines = [f"### Sources ({len(result.sources)})", ""]
    for i, src in enumerate(result.sources, 1):
        line = f"{i}. [{src.title}]({src.url})"
        if src.snippet:
            line += f": {src.snippet[:150]}"
        lines.append(line)
    return "\n".join(lines)


def format_status(result: ResearchResult) -> str:
    status = result.status.value
    if result.metadata:
        status += f" ({format_duration(result.metadata.processing_time)})"
    if result.status == ResearchStatus.ERROR and result.error_category:
        status += f" [{result.error_category.value}]"
    return status


def session_rows(agent: DeepResearchAgent, page_size: int = 20) -> list[list[str]]:
    """Rows for the sessions table; raises gr.Error on failure."""
    response = agent.client.list_sessions(page_size)
    if not response.success or response.data is None:
        message = response.error.message if response.error else "Unknown error"
        raise gr.Error(f"Failed to fetch sessions: {message}")
    return [
        [
            s.id,
            s.display_name or "-",
            (s.model or "-").rsplit("/", 1)[-1],
            format_timestamp(s.create_time),
        ]
        for s in response.data.sessions
    ]


def describe_session(agent: DeepResearchAgent, session_id: str) -> str:
    """Markdown summary of a session and its recent history."""
    response = agent.client.get_session(session_id)
    if not response.success or response.data is None:
        message = response.error.message if response.error else "Unknown error"
        return f"**Error:** {message}"

    session = response.data
    lines = [
        f"**ID:** {session.name}",
        f"**Display Name:** {session.display_name or '-'}",
        f"**Model:** {session.model or '-'}",
        f"**Created:** {format_timestamp(session.create_time)}",
        f"**Updated:** {format_timestamp(session.update_time)}",
    ]
    if session.history:
        lines.append(f"\n**History:** {len(session.history)} interaction(s)")
        for content in session.history[-3:]:
            text = content.text or "-"
            lines.append(f"- *{content.role.value}*: {text[:100]}")
    return "\n".join(lines)


def create_ui(agent: Optional[DeepResearchAgent]) -> gr.Blocks:
    """Create the Gradio web interface."""

    with gr.Blocks(title="Gemini Deep Research") as demo:
        gr.Markdown("# Gemini Deep Research Agent")

        with gr.Tab("Research"):
            query_input = gr.Textbox(
                label="Research Query",
                placeholder="Enter your research topic or question...",
                lines=3,
            )

            with gr.Row():
                depth_dropdown = gr.Dropdown(
                    choices=[d.value for d in ResearchDepth],
                    value=ResearchDepth.DEEP.value,
                    label="Research Depth",
                )
                format_dropdown = gr.Dropdown(
                    choices=[f.value for f in OutputFormat],
                    value=OutputFormat.MARKDOWN.value,
                    label="Output Format",
                )
                session_input = gr.Textbox(
                    label="Session ID (optional)",
                    placeholder="Reuse an existing session...",
                )

            files_input = gr.File(
                label="Documents",
                file_count="multiple",
                type="filepath",
            )

            action_btn = gr.Button("Start Research", variant="primary")

            with gr.Row():
                status_output = gr.Textbox(label="Status", interactive=False)
                interaction_output = gr.Textbox(label="Interaction", interactive=False)

            report_output = gr.Markdown(label="Research Report")
            sources_output = gr.Markdown()
            download_btn = gr.DownloadButton(
                "Download Report (.md)", visible=False, variant="secondary"
            )

        with gr.Tab("Sessions"):
            refresh_btn = gr.Button("Refresh")
            sessions_table = gr.Dataframe(
                headers=["Session ID", "Display Name", "Model", "Created"],
                interactive=False,
            )

        with gr.Tab("Status"):
            with gr.Row():
                status_session_input = gr.Textbox(
                    label="Session ID", placeholder="abc123 or sessions/abc123", scale=3
                )
                status_btn = gr.Button("Fetch", scale=1)
            session_details = gr.Markdown()

        # Event handlers
        def do_research(
            query: str,
            depth: str,
            output_format: str,
            session_id: str,
            file_paths: Optional[list[str]],
        ) -> Generator:
            """Run research and stream the outcome into the form."""
            if agent is None:
                yield {status_output: NOT_CONFIGURED}
                return
            if not query.strip():
                yield {status_output: "Error: Please enter a query"}
                return

            documents, errors = FileManager().load_paths(file_paths or [])
            attached = ", ".join(f"{d.name} ({format_bytes(d.size)})" for d in documents)
            yield {
                status_output: "Running..." + (f" with {attached}" if attached else ""),
                report_output: "\n".join(f"> {e}" for e in errors),
                sources_output: "",
                interaction_output: "",
                download_btn: gr.DownloadButton(visible=False),
            }

            options = agent.default_options(
                depth=ResearchDepth(depth),
                output_format=OutputFormat(output_format),
                session_id=session_id.strip() or None,
            )
            result = agent.deep_research(query, documents, options)

            report = result.content or result.error or result.note or ""
            if result.content and options.output_format != OutputFormat.MARKDOWN:
                report = f"```\n{result.content}\n```"
            interaction = result.metadata.interaction_name if result.metadata else None
            download_path = prepare_download(result.content, interaction or "research")
            yield {
                status_output: format_status(result),
                interaction_output: interaction or "",
                report_output: report,
                sources_output: format_sources(result),
                download_btn: gr.DownloadButton(
                    value=download_path, visible=download_path is not None
                ),
            }

        def refresh_sessions() -> list[list[str]]:
            if agent is None:
                raise gr.Error(NOT_CONFIGURED)
            return session_rows(agent)

        def fetch_session(session_id: str) -> str:
            if agent is None:
                return NOT_CONFIGURED
            if not session_id.strip():
                return "Error: Please enter a session ID"
            return describe_session(agent, session_id)

        # Wire up events
        action_btn.click(
            fn=do_research,
            inputs=[
                query_input,
                depth_dropdown,
                format_dropdown,
                session_input,
                files_input,
            ],
            outputs=[
                status_output,
                interaction_output,
                report_output,
                sources_output,
                download_btn,
            ],
        )

        refresh_btn.click(fn=refresh_sessions, outputs=[sessions_table])

        status_btn.click(
            fn=fetch_session,
            inputs=[status_session_input],
            outputs=[session_details],
        )

    return demo


def launch(agent: Optional[DeepResearchAgent] = None) -> None:
    """Launch the Gradio interface standalone."""
    from gemini_research_agent.research import create_deep_research_agent

    demo = create_ui(agent or create_deep_research_agent())
    demo.launch()


if __name__ == "__main__":
    launch()
