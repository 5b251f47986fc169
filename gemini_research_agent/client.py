"""HTTP client for the Gemini sessions/interactions REST API.

Every public operation returns an ApiResponse envelope. Remote failures
(auth, quota, HTTP errors, malformed JSON, transport errors) are captured in
the envelope; only invalid arguments raise.

Polling design
==============

Interactions are created in the background and then polled on a fixed
interval until they reach a terminal state or the caller's deadline passes.
There is no automatic retry: a failed poll ends the wait with that failure,
and the caller decides whether to try again.
"""

import logging
import threading
import time
from typing import Any, Callable, Optional, TypeVar

import httpx

from gemini_research_agent.config import INTERACTION_EXPIRY_SECONDS, VERSION, Settings
from gemini_research_agent.file_manager import Document
from gemini_research_agent.models import (
    ApiResponse,
    Content,
    ErrorCode,
    FileData,
    Interaction,
    Session,
    SessionPage,
    ToolConfig,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# (interaction, elapsed_seconds) -> None
PollCallback = Callable[[Interaction, float], None]


def session_resource_name(session_id: str) -> str:
    """Accept 'abc123' or 'sessions/abc123' and return the resource name."""
    session_id = session_id.strip()
    if not session_id:
        raise ValueError("session id must not be empty")
    return session_id if session_id.startswith("sessions/") else f"sessions/{session_id}"


class GeminiClient:
    """Typed access to the remote session and interaction endpoints."""

    def __init__(
        self,
        settings: Settings,
        *,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._http = httpx.Client(
            base_url=settings.base_url.rstrip("/") + "/",
            headers={
                "x-goog-api-key": settings.gemini_api_key,
                "User-Agent": f"gemini-research-agent/{VERSION}",
            },
            timeout=settings.request_timeout,
            transport=transport,
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "GeminiClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    def create_session(
        self,
        model: Optional[str] = None,
        display_name: Optional[str] = None,
        tool_config: Optional[ToolConfig] = None,
    ) -> ApiResponse[Session]:
        """Create a session bound to a model."""
        body: dict[str, Any] = {"model": model or self._settings.model}
        if display_name:
            body["displayName"] = display_name
        if tool_config:
            body["toolConfig"] = tool_config.to_api()
        return self._request("POST", "sessions", Session.from_api, json=body)

    def get_session(self, name: str) -> ApiResponse[Session]:
        return self._request("GET", session_resource_name(name), Session.from_api)

    def list_sessions(
        self, page_size: int = 20, page_token: Optional[str] = None
    ) -> ApiResponse[SessionPage]:
        """Fetch a single page of sessions. Does not follow next_page_token."""
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        params: dict[str, Any] = {"pageSize": page_size}
        if page_token:
            params["pageToken"] = page_token

        def parse(data: dict[str, Any]) -> SessionPage:
            return SessionPage(
                sessions=[Session.from_api(s) for s in data.get("sessions", [])],
                next_page_token=data.get("nextPageToken") or None,
            )

        return self._request("GET", "sessions", parse, params=params)

    # -------------------------------------------------------------------------
    # Interactions
    # -------------------------------------------------------------------------

    def create_interaction(
        self,
        session_name: str,
        content: Content,
        tool_config: Optional[ToolConfig] = None,
    ) -> ApiResponse[Interaction]:
        """Submit a query to a session. The returned interaction is not terminal."""
        if not content.parts:
            raise ValueError("content must contain at least one part")
        body: dict[str, Any] = {"content": content.to_api()}
        if tool_config:
            body["toolConfig"] = tool_config.to_api()
        path = f"{session_resource_name(session_name)}/interactions"
        return self._request("POST", path, Interaction.from_api, json=body)

    def poll_interaction(self, name: str) -> ApiResponse[Interaction]:
        """Read the current state of an interaction once."""
        if not name.strip():
            raise ValueError("interaction name must not be empty")
        return self._request("GET", name.strip(), Interaction.from_api)

    def wait_for_completion(
        self,
        name: str,
        interval: Optional[float] = None,
        timeout: Optional[float] = None,
        *,
        on_poll: Optional[PollCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ApiResponse[Interaction]:
        """
        Poll an interaction until it is terminal or the deadline passes.

        Before every poll the remaining budget is checked: if another interval
        would reach the deadline, the wait ends with TIMEOUT without polling.
        A budget of zero (or shorter than one interval) therefore never
        reports a completed interaction.

        A remote FAILED/CANCELLED state is returned as success; the envelope
        describes the transport, not the research outcome.

        Args:
            name: Interaction resource name
            interval: Seconds between polls (default from settings)
            timeout: Max seconds to wait (default from settings)
            on_poll: Called with (interaction, elapsed) after each poll
            cancel_event: Stops the wait with CANCELLED once set
        """
        interval = self._settings.default_poll_interval if interval is None else interval
        timeout = self._settings.default_poll_timeout if timeout is None else timeout
        if interval < 0 or timeout < 0:
            raise ValueError("interval and timeout must be non-negative")
        if timeout > INTERACTION_EXPIRY_SECONDS:
            logger.warning(
                "Polling timeout %.0fs exceeds interaction expiry; clamping to %.0fs",
                timeout,
                INTERACTION_EXPIRY_SECONDS,
            )
            timeout = INTERACTION_EXPIRY_SECONDS

        start_time = time.monotonic()

        while True:
            elapsed = time.monotonic() - start_time
            if elapsed + interval >= timeout:
                return ApiResponse.fail(
                    ErrorCode.TIMEOUT,
                    f"Interaction {name} did not finish within {timeout:g}s",
                )

            if cancel_event is not None:
                if cancel_event.wait(interval):
                    return ApiResponse.fail(
                        ErrorCode.CANCELLED, f"Waiting for {name} was cancelled"
                    )
            elif interval:
                time.sleep(interval)

            response = self.poll_interaction(name)
            if not response.success:
                return response

            interaction = response.data
            if interaction is None:
                return ApiResponse.fail(
                    ErrorCode.MALFORMED_RESPONSE, f"Empty poll response for {name}"
                )
            if on_poll:
                on_poll(interaction, time.monotonic() - start_time)

            if interaction.state.is_terminal:
                logger.debug("Interaction %s reached %s", name, interaction.state.value)
                return response

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    def upload_file(self, document: Document) -> ApiResponse[FileData]:
        """Upload a document with a simple media upload and return its reference."""
        url = self._settings.upload_base_url.rstrip("/") + "/files"

        def parse(data: dict[str, Any]) -> FileData:
            return FileData.from_api(data.get("file", data))

        return self._request(
            "POST",
            url,
            parse,
            params={"uploadType": "media"},
            content=document.content,
            headers={
                "Content-Type": document.mime_type,
                "X-Goog-Upload-Protocol": "raw",
                "X-Goog-Upload-File-Name": document.name,
            },
            timeout=max(self._settings.request_timeout, 300.0),
        )

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        parse: Callable[[dict[str, Any]], T],
        **kwargs: Any,
    ) -> ApiResponse[T]:
        logger.debug("%s %s", method, path)
        try:
            resp = self._http.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("%s %s timed out: %s", method, path, e)
            return ApiResponse.fail(ErrorCode.NETWORK_ERROR, f"Request timed out: {e}")
        except httpx.TransportError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            return ApiResponse.fail(ErrorCode.NETWORK_ERROR, f"Network error: {e}")

        if resp.is_error:
            failure: ApiResponse[T] = _error_from_response(resp)
            logger.warning(
                "%s %s -> HTTP %d %s",
                method,
                path,
                resp.status_code,
                failure.error.code.value if failure.error else "",
            )
            return failure

        try:
            data = resp.json()
        except ValueError:
            return ApiResponse.fail(
                ErrorCode.MALFORMED_RESPONSE,
                "Response body is not valid JSON",
                status_code=resp.status_code,
            )
        if not isinstance(data, dict):
            return ApiResponse.fail(
                ErrorCode.MALFORMED_RESPONSE,
                "Response body is not a JSON object",
                status_code=resp.status_code,
            )

        try:
            return ApiResponse.ok(parse(data))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            return ApiResponse.fail(
                ErrorCode.MALFORMED_RESPONSE,
                f"Unexpected response shape: {e!r}",
                status_code=resp.status_code,
            )


def _error_from_response(resp: httpx.Response) -> ApiResponse[Any]:
    """Map an HTTP error response to a failure envelope."""
    message = f"HTTP {resp.status_code}"
    remote_status = ""
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        err = body["error"]
        message = err.get("message") or message
        remote_status = str(err.get("status", ""))
    elif resp.text:
        message = f"{message}: {resp.text[:200]}"

    status = resp.status_code
    if status in (401, 403):
        code = ErrorCode.AUTH_ERROR
    elif status == 429 or remote_status == "RESOURCE_EXHAUSTED":
        code = ErrorCode.QUOTA_ERROR
    elif status == 404:
        code = ErrorCode.NOT_FOUND
    else:
        code = ErrorCode.HTTP_ERROR

    return ApiResponse.fail(
        code,
        message,
        status_code=status,
        details={"status": remote_status} if remote_status else None,
    )
