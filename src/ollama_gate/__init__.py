"""ollama-gate - Single-model gateway for a local Ollama backend.

Re-exposes the backend's native API and an OpenAI-compatible API, pins
every inference request to one configured model, and makes sure that
model is present by pulling it in the background.

Layers:
    gateway/        HTTP dispatcher, backend client, format transforms
    acquisition/    Model pull state machine and progress store
    core/           Logging configuration
    frontends/      Command-line interface

Usage:
    from ollama_gate.compose import build_gateway_config, run_gateway
    import asyncio

    async def main():
        config = await build_gateway_config(model="qwen3:0.6b")
        await run_gateway(config)

    asyncio.run(main())
"""

__version__ = "0.1.0"
