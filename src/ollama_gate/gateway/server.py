"""Gateway server.

Single-model front for an Ollama backend:
1. Re-exposes the native API, forcing "model" to the configured model
2. Serves an OpenAI-compatible API translated to and from the native one
3. Resolves embedding input shapes and fans batches out per item
4. Publishes the model download progress at /api/progress
5. Runs the model acquisition task in the background
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

import aiohttp
from aiohttp import web

from ollama_gate.acquisition.manager import AcquisitionConfig, AcquisitionManager
from ollama_gate.acquisition.progress import DEFAULT_STATE_FILE, ProgressStore
from ollama_gate.gateway.clients.backend_client import (
    BackendClient,
    BackendClientConfig,
    BackendTransportError,
    iter_lines,
    read_body,
    select_models,
)
from ollama_gate.gateway.errors import native_error_body, openai_error_body
from ollama_gate.gateway.tracing import RequestTracer
from ollama_gate.gateway.transforms.embeddings import (
    EmbeddingExtractionError,
    EmbeddingInputError,
    backend_request,
    build_envelope,
    extract_vector,
    normalize_input,
)
from ollama_gate.gateway.transforms.openai import (
    OpenAIStreamTranslator,
    chat_request_to_native,
    chat_response_from_native,
    completion_request_to_native,
    completion_response_from_native,
    models_to_openai,
)
from ollama_gate.gateway.transforms.types import TokenUsage
from ollama_gate.gateway.transforms.validation import (
    ChatCompletionRequest,
    CompletionRequest,
    EmbeddingRequest,
    validate_request,
)

logger = logging.getLogger(__name__)

Dialect = Literal["native", "openai"]

STREAM_CHUNK_SIZE = 4096

# Backend response headers the server recomputes
STRIPPED_RESPONSE_HEADERS = frozenset(
    {"content-length", "transfer-encoding", "connection", "content-encoding"}
)

STREAMING_CONTENT_TYPES = ("text/event-stream", "application/x-ndjson")

OPENAI_CHAT_PATHS = ("/v1/chat/completions", "/api/chat/completions", "/api/chat/completed")
EMBEDDING_PATHS = ("/api/embeddings", "/api/embed", "/v1/embeddings")
PASSTHROUGH_PATHS = ("/api/version", "/api/ps", "/api/stop", "/v1/responses")

# Native embedding paths answer without CORS headers, like the backend itself
NO_CORS_PATHS = frozenset({"/api/embeddings", "/api/embed"})

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS, PATCH",
    "Access-Control-Allow-Headers": "Origin, Content-Type, Accept, Authorization, X-Requested-With",
    "Access-Control-Allow-Credentials": "true",
    "Access-Control-Max-Age": "3600",
}

CHAT_PROBE_ALLOW = "POST, GET, OPTIONS"


class InvalidRequest(Exception):
    """Raised for a client error detected before any backend call."""

    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.status = status


def dialect_for(path: str) -> Dialect:
    """OpenAI-compatible routes get OpenAI error bodies; the rest get native ones."""
    if path.startswith("/v1/") or path in OPENAI_CHAT_PATHS:
        return "openai"
    return "native"


def is_streaming_response(response: aiohttp.ClientResponse) -> bool:
    if response.headers.get("Transfer-Encoding", "").lower() == "chunked":
        return True
    content_type = response.headers.get("Content-Type", "").lower()
    return content_type.startswith(STREAMING_CONTENT_TYPES)


def copy_response_headers(response: aiohttp.ClientResponse) -> list[tuple[str, str]]:
    return [
        (key, value)
        for key, value in response.headers.items()
        if key.lower() not in STRIPPED_RESPONSE_HEADERS
    ]


@dataclass
class GatewayConfig:
    """Configuration for the gateway server."""

    host: str = "0.0.0.0"
    port: int = 8080

    # The one model every inference request is pinned to
    model: str = "llama2"

    # Backend configuration
    backend_url: str = "http://localhost:11434"
    connect_timeout: float = 10.0
    request_timeout: float = 30 * 60.0
    download_timeout: float = 60.0  # minutes

    # Shown by frontends next to the download progress
    app_url: str = ""

    # Completion record of the model download; None disables persistence
    state_file: str | None = str(DEFAULT_STATE_FILE)

    # Start the background acquisition task on startup
    acquire_model: bool = True

    # Request limits
    max_body_size: int = 500 * 1024 * 1024  # 500MB

    # Debug: save raw requests/responses to files
    debug_dir: str | None = None

    def backend_client_config(self) -> BackendClientConfig:
        return BackendClientConfig(
            base_url=self.backend_url,
            connect_timeout=self.connect_timeout,
            request_timeout=self.request_timeout,
            download_timeout=self.download_timeout,
        )


@dataclass
class GatewayServer:
    """HTTP gateway in front of one Ollama backend.

    Example:
        >>> config = GatewayConfig(model="qwen3:0.6b", backend_url="http://localhost:11434")
        >>> server = GatewayServer(config=config)
        >>> await server.serve()
    """

    config: GatewayConfig
    store: ProgressStore | None = None
    client: BackendClient | None = None
    acquisition_config: AcquisitionConfig | None = None
    _app: web.Application | None = None
    _runner: web.AppRunner | None = None
    _manager: AcquisitionManager | None = None
    _owns_client: bool = False
    _shutdown_event: asyncio.Event = field(default_factory=asyncio.Event)
    _tracer: RequestTracer = field(init=False)

    def __post_init__(self) -> None:
        self._tracer = RequestTracer(debug_dir=self.config.debug_dir)
        if self.store is None:
            self.store = ProgressStore(
                self.config.model,
                state_file=self.config.state_file,
                app_url=self.config.app_url,
            )

    @property
    def model(self) -> str:
        return self.config.model

    @property
    def manager(self) -> AcquisitionManager | None:
        return self._manager

    @property
    def bound_port(self) -> int | None:
        """Port actually bound (useful with port 0)."""
        if self._runner is None or not self._runner.addresses:
            return None
        return self._runner.addresses[0][1]

    def build_app(self) -> web.Application:
        """Create the aiohttp application with all routes."""
        app = web.Application(
            client_max_size=self.config.max_body_size,
            middlewares=[self._middleware],
        )
        app.on_response_prepare.append(self._on_response_prepare)

        router = app.router
        router.add_get("/health", self._handle_health)
        router.add_get("/api/progress", self._handle_progress)
        router.add_get("/api/tags", self._handle_tags)
        router.add_get("/v1/models", self._handle_models)

        router.add_post("/api/generate", self._handle_generate)
        router.add_post("/api/chat", self._handle_chat)
        router.add_get("/api/chat", self._handle_chat_probe)

        for path in OPENAI_CHAT_PATHS:
            router.add_post(path, self._handle_openai_chat)
            router.add_get(path, self._handle_chat_probe)
        router.add_post("/v1/completions", self._handle_openai_completions)

        for path in EMBEDDING_PATHS:
            router.add_post(path, self._handle_embeddings)

        for path in PASSTHROUGH_PATHS:
            router.add_get(path, self._handle_passthrough)
            router.add_post(path, self._handle_passthrough)

        return app

    async def start(self) -> None:
        """Connect the backend client, bind the listener and start acquisition."""
        if self.client is None:
            self.client = BackendClient(config=self.config.backend_client_config())
            self._owns_client = True
        await self.client.connect()

        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await site.start()

        logger.info(
            "Gateway listening on http://%s:%s -> %s (model: %s)",
            self.config.host,
            self.bound_port,
            self.config.backend_url,
            self.model,
        )
        if self.config.debug_dir:
            logger.info("Debug files will be saved to: %s", self.config.debug_dir)

        if self.config.acquire_model:
            assert self.store is not None
            self._manager = AcquisitionManager(
                self.client,
                self.store,
                config=self.acquisition_config,
            )
            self._manager.start()

    async def serve(self) -> None:
        """Start the server and run until shutdown is requested."""
        await self.start()
        await self._shutdown_event.wait()
        logger.info("Gateway shutdown requested")
        await self.stop()

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def stop(self) -> None:
        """Stop acquisition, the listener and the backend client."""
        if self._manager:
            await self._manager.stop()
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        if self.client and self._owns_client:
            await self.client.close()
            self.client = None
            self._owns_client = False

    # ------------------------------------------------------------------
    # Middleware and shared helpers
    # ------------------------------------------------------------------

    @web.middleware
    async def _middleware(self, request: web.Request, handler: Any) -> web.StreamResponse:
        """Answer CORS preflight and render 405 as JSON."""
        if request.method == "OPTIONS":
            return web.Response(status=204)

        try:
            response = await handler(request)
        except web.HTTPMethodNotAllowed as e:
            allowed = sorted(m for m in e.allowed_methods if m != "HEAD") + ["OPTIONS"]
            allow = ", ".join(allowed)
            logger.info("%s received unsupported method %s", request.path, request.method)
            response = self._error_response(
                dialect_for(request.path),
                f"Method {request.method} not allowed for {request.path} endpoint. "
                f"Supported methods: {allow}",
                405,
            )
            response.headers["Allow"] = allow

        if request.path.startswith("/api/") and response.status >= 400:
            logger.warning(
                "Request failed: %s %s -> Status: %d",
                request.method,
                request.path,
                response.status,
            )
        return response

    async def _on_response_prepare(
        self, request: web.Request, response: web.StreamResponse
    ) -> None:
        if request.path in NO_CORS_PATHS and request.method != "OPTIONS":
            return
        for key, value in CORS_HEADERS.items():
            response.headers[key] = value

    def _error_response(self, dialect: Dialect, message: str, status: int) -> web.Response:
        """Create an error response in the caller's dialect."""
        if dialect == "openai":
            body = openai_error_body(message, status)
        else:
            body = native_error_body(message)
        return web.json_response(body, status=status)

    def _require_client(self) -> BackendClient:
        if self.client is None:
            raise RuntimeError("Backend client not initialized. Call start() first.")
        return self.client

    async def _read_json_body(self, request: web.Request) -> dict[str, Any]:
        """Read and decode a JSON object body.

        Raises:
            InvalidRequest: On an empty body, invalid JSON, or a non-object
        """
        raw = await request.read()
        if not raw.strip():
            raise InvalidRequest("Request body cannot be empty")
        try:
            body = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidRequest(f"Invalid JSON: {e}") from e
        if not isinstance(body, dict):
            raise InvalidRequest("Request body must be a JSON object")
        return body

    async def _relay(
        self,
        request: web.Request,
        upstream: aiohttp.ClientResponse,
        trace_id: str,
    ) -> web.StreamResponse:
        """Copy a backend response to the caller, streaming when the backend streams."""
        headers = copy_response_headers(upstream)

        if not is_streaming_response(upstream):
            body = await read_body(upstream)
            logger.info(
                "[%s] Copied %d bytes from backend (status %d)",
                trace_id,
                len(body),
                upstream.status,
            )
            return web.Response(body=body, status=upstream.status, headers=headers)

        response = web.StreamResponse(status=upstream.status, headers=headers)
        await response.prepare(request)

        total_bytes = 0
        try:
            async for chunk in upstream.content.iter_chunked(STREAM_CHUNK_SIZE):
                await response.write(chunk)
                total_bytes += len(chunk)
        except ConnectionResetError:
            logger.debug("[%s] Client disconnected during streaming", trace_id)
            return response
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("[%s] Error reading from backend: %s", trace_id, e)

        logger.info("[%s] Copied %d bytes from backend stream", trace_id, total_bytes)
        try:
            await response.write_eof()
        except ConnectionResetError:
            logger.debug("[%s] Client disconnected before end of stream", trace_id)
        return response

    # ------------------------------------------------------------------
    # Status endpoints
    # ------------------------------------------------------------------

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Handle GET /health - health check endpoint."""
        return web.json_response({"status": "ok", "model": self.model})

    async def _handle_progress(self, request: web.Request) -> web.Response:
        """Handle GET /api/progress - model download progress."""
        assert self.store is not None
        return web.json_response(self.store.to_response())

    async def _handle_chat_probe(self, request: web.Request) -> web.Response:
        """Handle GET on chat routes - liveness probe used by web UIs."""
        logger.debug("Chat endpoint %s received GET (health check)", request.path)
        return web.json_response({"status": "ok"}, headers={"Allow": CHAT_PROBE_ALLOW})

    async def _handle_tags(self, request: web.Request) -> web.StreamResponse:
        """Handle GET /api/tags - backend listing filtered to the served model."""
        result = await self._served_models(request, "native")
        if isinstance(result, web.StreamResponse):
            return result
        return web.json_response({"models": result})

    async def _handle_models(self, request: web.Request) -> web.StreamResponse:
        """Handle GET /v1/models - the same listing in the OpenAI shape."""
        result = await self._served_models(request, "openai")
        if isinstance(result, web.StreamResponse):
            return result
        return web.json_response(models_to_openai(result))

    async def _served_models(
        self,
        request: web.Request,
        dialect: Dialect,
    ) -> list[dict[str, Any]] | web.StreamResponse:
        """Fetch the backend listing and keep the configured model's entries.

        Returns the entries, or the response to send when the listing
        cannot be used (backend status relayed, 502 otherwise).
        """
        client = self._require_client()
        trace_id = self._tracer.generate_trace_id(request.path)

        try:
            async with client.forward("GET", "/api/tags", headers=request.headers) as upstream:
                if upstream.status != 200:
                    return await self._relay(request, upstream, trace_id)
                raw = await read_body(upstream)
        except BackendTransportError as e:
            logger.error("[%s] Failed to proxy request to backend: %s", trace_id, e)
            return self._error_response(dialect, f"Failed to proxy request: {e}", 502)

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.error("[%s] Failed to decode backend model listing", trace_id)
            return self._error_response(dialect, "Failed to decode response", 502)

        models = data.get("models") if isinstance(data, dict) else None
        if not isinstance(models, list):
            logger.error("[%s] Invalid models format in backend response", trace_id)
            return self._error_response(dialect, "Invalid response format", 502)

        entries = [m for m in models if isinstance(m, dict)]
        selected = select_models(entries, self.model)
        logger.debug(
            "[%s] Model listing: %d of %d entries match %s",
            trace_id,
            len(selected),
            len(entries),
            self.model,
        )
        return selected

    # ------------------------------------------------------------------
    # Native inference
    # ------------------------------------------------------------------

    async def _handle_generate(self, request: web.Request) -> web.StreamResponse:
        """Handle POST /api/generate."""
        return await self._proxy_native(request, "/api/generate")

    async def _handle_chat(self, request: web.Request) -> web.StreamResponse:
        """Handle POST /api/chat."""
        return await self._proxy_native(request, "/api/chat")

    async def _proxy_native(self, request: web.Request, path: str) -> web.StreamResponse:
        """Rewrite the model and forward a native inference request."""
        client = self._require_client()
        trace_id = self._tracer.generate_trace_id(path)
        start_time = time.monotonic()

        try:
            body = await self._read_json_body(request)
        except InvalidRequest as e:
            logger.warning("[%s] Rejected request for %s: %s", trace_id, path, e)
            return self._error_response("native", str(e), e.status)

        self._tracer.save_debug(trace_id, "1_inbound.json", body)
        requested_model = body.get("model")
        body["model"] = self.model
        payload = json.dumps(body).encode("utf-8")
        self._tracer.log_request(trace_id, request.method, path, len(payload))

        logger.info(
            "[%s] Proxying %s %s (requested: %s, model: %s, body size: %d bytes)",
            trace_id,
            request.method,
            path,
            requested_model,
            self.model,
            len(payload),
        )

        try:
            async with client.forward(request.method, path, body, request.headers) as upstream:
                logger.info("[%s] Backend returned status %d", trace_id, upstream.status)
                response = await self._relay(request, upstream, trace_id)
        except BackendTransportError as e:
            self._tracer.log_response(trace_id, 502, time.monotonic() - start_time, error=str(e))
            return self._error_response("native", f"Failed to proxy request: {e}", 502)

        self._tracer.log_response(trace_id, response.status, time.monotonic() - start_time)
        return response

    async def _handle_passthrough(self, request: web.Request) -> web.StreamResponse:
        """Forward a management request verbatim."""
        client = self._require_client()
        trace_id = self._tracer.generate_trace_id(request.path)

        raw = await request.read()
        logger.debug("[%s] Passing through %s %s", trace_id, request.method, request.path_qs)
        try:
            async with client.forward(
                request.method,
                request.path_qs,
                raw or None,
                request.headers,
            ) as upstream:
                return await self._relay(request, upstream, trace_id)
        except BackendTransportError as e:
            logger.error("[%s] Failed to proxy request: %s", trace_id, e)
            return self._error_response(
                dialect_for(request.path), f"Failed to proxy request: {e}", 502
            )

    # ------------------------------------------------------------------
    # OpenAI-compatible inference
    # ------------------------------------------------------------------

    async def _handle_openai_chat(self, request: web.Request) -> web.StreamResponse:
        """Handle POST /v1/chat/completions (and its aliases)."""
        return await self._proxy_openai(request, "chat")

    async def _handle_openai_completions(self, request: web.Request) -> web.StreamResponse:
        """Handle POST /v1/completions."""
        return await self._proxy_openai(request, "completion")

    async def _proxy_openai(
        self,
        request: web.Request,
        kind: Literal["chat", "completion"],
    ) -> web.StreamResponse:
        """Translate an OpenAI request, forward it, translate the reply back."""
        client = self._require_client()
        trace_id = self._tracer.generate_trace_id(request.path)
        start_time = time.monotonic()

        try:
            body = await self._read_json_body(request)
        except InvalidRequest as e:
            logger.warning("[%s] Rejected request: %s", trace_id, e)
            return self._error_response("openai", str(e), e.status)

        schema = ChatCompletionRequest if kind == "chat" else CompletionRequest
        validation_errors = validate_request(body, schema)
        if validation_errors:
            logger.warning("[%s] Invalid request: %s", trace_id, "; ".join(validation_errors))
            return self._error_response("openai", "; ".join(validation_errors), 400)

        self._tracer.save_debug(trace_id, "1_openai_request.json", body)

        if kind == "chat":
            native_request = chat_request_to_native(body, self.model)
            backend_path = "/api/chat"
        else:
            native_request = completion_request_to_native(body, self.model)
            backend_path = "/api/generate"
        stream = native_request["stream"]

        self._tracer.save_debug(trace_id, "2_native_request.json", native_request)
        logger.info(
            "[%s] Request: model=%s, stream=%s -> forwarding to %s (%s)",
            trace_id,
            body.get("model", "unknown"),
            stream,
            backend_path,
            self.model,
        )

        try:
            async with client.forward(
                "POST", backend_path, native_request, request.headers
            ) as upstream:
                if upstream.status != 200:
                    logger.warning(
                        "[%s] Backend returned status %d, passing through",
                        trace_id,
                        upstream.status,
                    )
                    return await self._relay(request, upstream, trace_id)

                if stream:
                    response = await self._stream_openai(request, upstream, kind, trace_id)
                else:
                    response = await self._buffer_openai(upstream, kind, trace_id)
        except BackendTransportError as e:
            self._tracer.log_response(trace_id, 502, time.monotonic() - start_time, error=str(e))
            return self._error_response("openai", f"Failed to proxy request: {e}", 502)

        self._tracer.log_response(trace_id, response.status, time.monotonic() - start_time)
        return response

    async def _buffer_openai(
        self,
        upstream: aiohttp.ClientResponse,
        kind: Literal["chat", "completion"],
        trace_id: str,
    ) -> web.Response:
        raw = await read_body(upstream)
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.error("[%s] Error parsing backend response: %s", trace_id, raw[:500])
            return self._error_response("openai", "Failed to parse backend response", 502)
        if not isinstance(data, dict):
            return self._error_response("openai", "Invalid backend response format", 502)

        if kind == "chat":
            result = chat_response_from_native(data, self.model)
        else:
            result = completion_response_from_native(data, self.model)

        self._tracer.save_debug(trace_id, "3_openai_response.json", result)
        usage = result["usage"]
        logger.info(
            "[%s] Response complete: prompt_tokens=%d, completion_tokens=%d",
            trace_id,
            usage["prompt_tokens"],
            usage["completion_tokens"],
        )
        return web.json_response(result)

    async def _stream_openai(
        self,
        request: web.Request,
        upstream: aiohttp.ClientResponse,
        kind: Literal["chat", "completion"],
        trace_id: str,
    ) -> web.StreamResponse:
        response = web.StreamResponse(
            status=200,
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Trace-Id": trace_id,
            },
        )
        await response.prepare(request)

        translator = OpenAIStreamTranslator(model=self.model, kind=kind)
        frame_count = 0
        try:
            async for line in iter_lines(upstream.content):
                for frame in translator.feed_line(line):
                    await response.write(frame.encode("utf-8"))
                    frame_count += 1
                if translator.finished:
                    break
            for frame in translator.finish():
                await response.write(frame.encode("utf-8"))
                frame_count += 1
        except ConnectionResetError:
            logger.debug("[%s] Client disconnected during streaming", trace_id)
            return response
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("[%s] Error reading backend stream: %s", trace_id, e)

        if translator.usage:
            logger.info(
                "[%s] Stream complete: %d frames, prompt_tokens=%d, completion_tokens=%d",
                trace_id,
                frame_count,
                translator.usage.prompt_tokens,
                translator.usage.completion_tokens,
            )
        else:
            logger.info("[%s] Stream complete: %d frames (no usage info)", trace_id, frame_count)

        try:
            await response.write_eof()
        except ConnectionResetError:
            logger.debug("[%s] Client disconnected before end of stream", trace_id)
        return response

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    async def _handle_embeddings(self, request: web.Request) -> web.StreamResponse:
        """Handle POST /api/embeddings, /api/embed and /v1/embeddings."""
        client = self._require_client()
        dialect = dialect_for(request.path)
        trace_id = self._tracer.generate_trace_id(request.path)

        try:
            body = await self._read_json_body(request)
        except InvalidRequest as e:
            logger.warning("[%s] Rejected embeddings request: %s", trace_id, e)
            return self._error_response(dialect, str(e), e.status)

        validation_errors = validate_request(body, EmbeddingRequest)
        if validation_errors:
            logger.warning("[%s] Invalid request: %s", trace_id, "; ".join(validation_errors))
            return self._error_response(dialect, "; ".join(validation_errors), 400)

        try:
            embedding_input = normalize_input(body)
        except EmbeddingInputError as e:
            logger.warning("[%s] Rejected embeddings request: %s", trace_id, e)
            return self._error_response(dialect, str(e), 400)

        self._tracer.save_debug(trace_id, "1_inbound.json", body)
        logger.info(
            "[%s] Embeddings request: %d input(s), batch=%s (model: %s)",
            trace_id,
            len(embedding_input.items),
            embedding_input.batch,
            self.model,
        )

        headers = request.headers
        vectors: list[tuple[int, list[float]]] = []
        prompt_tokens = 0

        if not embedding_input.batch:
            item = embedding_input.items[0]
            payload = backend_request(item, self.model, embedding_input)
            try:
                async with client.forward("POST", "/api/embeddings", payload, headers) as upstream:
                    if upstream.status != 200:
                        logger.warning(
                            "[%s] Backend returned status %d for embeddings",
                            trace_id,
                            upstream.status,
                        )
                        return await self._relay(request, upstream, trace_id)
                    raw = await read_body(upstream)
            except BackendTransportError as e:
                logger.error("[%s] Failed to proxy embeddings request: %s", trace_id, e)
                return self._error_response(dialect, f"Failed to proxy request: {e}", 502)

            try:
                data = json.loads(raw)
                vectors.append((0, extract_vector(data)))
            except (json.JSONDecodeError, EmbeddingExtractionError) as e:
                logger.error("[%s] Invalid embedding response: %s", trace_id, e)
                return self._error_response(dialect, f"Invalid embedding format: {e}", 500)
            prompt_tokens = TokenUsage.from_native(data).prompt_tokens
        else:
            for index, item in enumerate(embedding_input.items):
                payload = backend_request(item, self.model, embedding_input)
                result = await self._embed_one(client, payload, headers, index, trace_id)
                if result is None:
                    continue
                vector, tokens = result
                vectors.append((index, vector))
                prompt_tokens += tokens

            if not vectors:
                logger.error("[%s] No embeddings generated from batch request", trace_id)
                return self._error_response(dialect, "Failed to generate embeddings", 500)

        envelope = build_envelope(
            request.path,
            vectors,
            self.model,
            TokenUsage(prompt_tokens=prompt_tokens),
        )
        logger.info(
            "[%s] Sent %d embedding(s) (dimension: %d)",
            trace_id,
            len(vectors),
            len(vectors[0][1]),
        )
        return web.json_response(envelope)

    async def _embed_one(
        self,
        client: BackendClient,
        payload: dict[str, Any],
        headers: Mapping[str, str],
        index: int,
        trace_id: str,
    ) -> tuple[list[float], int] | None:
        """Embed one batch item; failures are logged and reported as None."""
        try:
            async with client.forward("POST", "/api/embeddings", payload, headers) as upstream:
                if upstream.status != 200:
                    logger.warning(
                        "[%s] Backend returned status %d for batch embedding %d",
                        trace_id,
                        upstream.status,
                        index,
                    )
                    return None
                raw = await read_body(upstream)
        except BackendTransportError as e:
            logger.warning("[%s] Failed to proxy batch embedding %d: %s", trace_id, index, e)
            return None

        try:
            data = json.loads(raw)
            vector = extract_vector(data)
        except (json.JSONDecodeError, EmbeddingExtractionError) as e:
            logger.warning("[%s] Invalid batch embedding response %d: %s", trace_id, index, e)
            return None
        return vector, TokenUsage.from_native(data).prompt_tokens
