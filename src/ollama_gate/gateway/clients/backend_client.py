"""HTTP client for the Ollama backend.

Uses aiohttp.ClientSession, one session per gateway process.

Features:
- Model listing and tolerant name matching
- Existence and usability checks
- Streaming pull with per-line progress callback
- Raw request forwarding for the reverse proxy

No retries happen here; callers decide the policy.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import aiohttp

from ollama_gate.gateway.transforms.types import PullProgress

logger = logging.getLogger(__name__)

# Request headers never copied to the backend
HOP_BY_HOP_REQUEST_HEADERS = frozenset(
    {
        "host",
        "content-length",
        "connection",
        "keep-alive",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
        "accept-encoding",
    }
)

PullSink = Callable[[PullProgress], Awaitable[None] | None]


class BackendTransportError(Exception):
    """Raised when the backend cannot be reached or times out."""

    pass


class BackendError(Exception):
    """Raised when the backend answers with a non-success status."""

    def __init__(self, message: str, status_code: int, response_body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


@dataclass
class BackendClientConfig:
    """Configuration for the backend client."""

    base_url: str = "http://localhost:11434"

    # Timeouts (seconds, except download_timeout)
    connect_timeout: float = 10.0
    request_timeout: float = 30 * 60.0
    download_timeout: float = 60.0  # minutes
    probe_timeout: float = 10.0


def model_name_matches(requested: str, available: str) -> bool:
    """Check whether a listed model name satisfies a requested one.

    Matching is tolerant of tags in both directions:
    "qwen3:0.6b" matches a listing of "qwen3" or "qwen3:latest", and
    "qwen3" matches "qwen3:0.6b".
    """
    if requested == available:
        return True
    if ":" in requested:
        family = requested.split(":")[0]
        if available == family or available.startswith(family + ":"):
            return True
    return available.startswith(requested + ":")


def select_models(models: list[dict[str, Any]], name: str) -> list[dict[str, Any]]:
    """Pick the listing entries that stand for the configured model.

    Exact name matches win; tolerant matches are used only when there is
    no exact entry.
    """
    exact = [m for m in models if m.get("name") == name]
    if exact:
        return exact
    return [m for m in models if model_name_matches(name, str(m.get("name", "")))]


def filter_request_headers(headers: Mapping[str, str] | None) -> dict[str, str]:
    """Copy caller headers, dropping hop-by-hop ones."""
    if not headers:
        return {}
    return {k: v for k, v in headers.items() if k.lower() not in HOP_BY_HOP_REQUEST_HEADERS}


async def read_body(response: aiohttp.ClientResponse) -> bytes:
    """Read a whole backend response body.

    Raises:
        BackendTransportError: If the body is cut short or the read times out
    """
    try:
        return await response.read()
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise BackendTransportError(f"Failed to read backend response: {e}") from e


async def iter_lines(content: aiohttp.StreamReader) -> AsyncIterator[bytes]:
    """Yield newline-terminated lines of any length from a response body.

    aiohttp's own line iteration refuses lines over its buffer limit; NDJSON
    done lines carrying a token context easily exceed it. The trailing
    newline is stripped, and a final unterminated line is yielded at EOF.
    """
    buffer = b""
    async for chunk in content.iter_any():
        buffer += chunk
        while True:
            newline = buffer.find(b"\n")
            if newline < 0:
                break
            yield buffer[:newline]
            buffer = buffer[newline + 1 :]
    if buffer:
        yield buffer


@dataclass
class BackendClient:
    """Client for the backend's native API."""

    config: BackendClientConfig
    _session: aiohttp.ClientSession | None = None

    async def connect(self) -> None:
        """Open the HTTP session."""
        if self._session is not None:
            return
        timeout = aiohttp.ClientTimeout(
            connect=self.config.connect_timeout,
            total=self.config.request_timeout,
        )
        self._session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}{path}"

    def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError("Client not connected. Call connect() first.")
        return self._session

    async def list_models(self) -> list[dict[str, Any]]:
        """Return the backend's model listing (the "models" array of /api/tags).

        Raises:
            BackendTransportError: If the backend is unreachable
            BackendError: If the backend returns a non-200 status
        """
        session = self._require_session()
        try:
            async with session.get(self._url("/api/tags")) as response:
                body = await response.text()
                if response.status != 200:
                    raise BackendError(
                        f"Failed to list models: {response.status}",
                        response.status,
                        body,
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise BackendTransportError(f"Failed to reach backend: {e}") from e

        try:
            data = json.loads(body)
        except json.JSONDecodeError as e:
            raise BackendError("Backend returned invalid model listing", 200, body) from e

        models = data.get("models") if isinstance(data, dict) else None
        return [m for m in models or [] if isinstance(m, dict)]

    async def model_exists(self, name: str) -> bool:
        """Check whether the model appears in the backend's listing."""
        models = await self.list_models()
        names = [str(m.get("name", "")) for m in models]
        logger.debug("Checking model '%s' against available models: %s", name, names)

        for entry in names:
            if model_name_matches(name, entry):
                logger.debug("Model '%s' found (matches '%s')", name, entry)
                return True

        logger.debug("Model '%s' not found in model list", name)
        return False

    async def model_usable(self, name: str) -> bool:
        """Check whether the backend can serve the model, listed or not.

        /api/show answering 200 is proof. Otherwise a tiny generate call is
        tried with the probe timeout; any reply other than 404 or a
        "not found" message counts as usable.
        """
        session = self._require_session()
        probe_timeout = aiohttp.ClientTimeout(total=self.config.probe_timeout)

        try:
            async with session.post(
                self._url("/api/show"),
                json={"name": name},
                timeout=probe_timeout,
            ) as response:
                if response.status == 200:
                    logger.info("Model '%s' is usable (verified via /api/show)", name)
                    return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug("Show probe for '%s' failed: %s", name, e)

        try:
            async with session.post(
                self._url("/api/generate"),
                json={"model": name, "prompt": "test", "stream": False},
                timeout=probe_timeout,
            ) as response:
                if response.status == 404:
                    return False
                body = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug("Generate probe for '%s' failed: %s", name, e)
            return False

        if "not found" in body.lower():
            return False

        logger.info(
            "Model '%s' appears to be usable (verified via /api/generate, status: %d)",
            name,
            response.status,
        )
        return True

    async def pull_model(self, name: str, sink: PullSink) -> int:
        """Start a pull and feed every decoded progress line to sink.

        Reads until the backend closes the stream, even after a "success"
        line.

        Returns:
            Number of "success" lines seen

        Raises:
            BackendTransportError: If the backend is unreachable or times out
            BackendError: If the pull is rejected or reports an error line
        """
        session = self._require_session()
        timeout = aiohttp.ClientTimeout(
            connect=self.config.connect_timeout,
            total=self.config.download_timeout * 60,
        )
        success_count = 0
        line_count = 0

        try:
            async with session.post(
                self._url("/api/pull"),
                json={"name": name, "stream": True},
                timeout=timeout,
            ) as response:
                if response.status != 200:
                    body = await response.text()
                    raise BackendError(
                        f"Failed to pull model: {response.status}",
                        response.status,
                        body,
                    )

                async for raw in iter_lines(response.content):
                    line = raw.decode("utf-8", errors="replace").strip()
                    if not line:
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        logger.warning("Skipping malformed pull line: %s", line[:200])
                        continue
                    if not isinstance(data, dict):
                        logger.warning("Skipping malformed pull line: %s", line[:200])
                        continue
                    if data.get("error"):
                        raise BackendError(f"Pull failed: {data['error']}", 500, line)

                    progress = PullProgress.from_native(data)
                    line_count += 1
                    if progress.is_success:
                        success_count += 1
                    result = sink(progress)
                    if asyncio.iscoroutine(result):
                        await result
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise BackendTransportError(f"Pull stream failed: {e}") from e

        logger.info(
            "Pull stream for '%s' ended after %d lines (%d success)",
            name,
            line_count,
            success_count,
        )
        return success_count

    @asynccontextmanager
    async def forward(
        self,
        method: str,
        path: str,
        body: bytes | dict[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> AsyncIterator[aiohttp.ClientResponse]:
        """Send a request to the backend and yield the raw response.

        The response is released when the context exits. Connecting and
        receiving the status line are wrapped into BackendTransportError;
        read buffered bodies with read_body so a truncated body is wrapped too.

        Args:
            method: HTTP method
            path: Backend path, including any query string
            body: Raw bytes, or a dict to serialize as JSON (sent as application/json)
            headers: Caller headers; hop-by-hop ones are dropped
        """
        session = self._require_session()
        out_headers = filter_request_headers(headers)
        data: bytes | None
        if isinstance(body, dict):
            data = json.dumps(body).encode("utf-8")
            out_headers = {k: v for k, v in out_headers.items() if k.lower() != "content-type"}
            out_headers["Content-Type"] = "application/json"
        else:
            data = body

        try:
            response = await session.request(
                method,
                self._url(path),
                data=data,
                headers=out_headers,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise BackendTransportError(f"Failed to reach backend: {e}") from e

        try:
            yield response
        finally:
            response.release()
