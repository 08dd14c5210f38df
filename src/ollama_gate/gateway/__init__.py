"""ollama-gate gateway - HTTP front for a single-model Ollama backend.

Components:
- Server: native pass-through, OpenAI-compatible translation, progress API
- Transforms: API format conversion utilities
- Clients: HTTP client for the backend's native API

Usage (via compose.py convenience functions):
    from ollama_gate.compose import build_gateway_config, run_gateway
    import asyncio

    async def main():
        config = await build_gateway_config(model="qwen3:0.6b")
        await run_gateway(config)

    asyncio.run(main())

Usage (direct):
        import asyncio

    async def main():
        config = GatewayConfig(
            model="qwen3:0.6b",
            backend_url="http://localhost:11434",
        )
        server = GatewayServer(config=config)
        await server.serve()

    asyncio.run(main())
"""

from ollama_gate.gateway.errors import ERROR_TYPE_MAP
from ollama_gate.gateway.tracing import RequestTracer

__all__ = [
    "ERROR_TYPE_MAP",
    "RequestTracer",
]
