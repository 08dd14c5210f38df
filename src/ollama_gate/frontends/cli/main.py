"""CLI entry point."""

from __future__ import annotations

import asyncio
import sys


def main() -> None:
    """Main entry point for the CLI."""
    import importlib.util

    if importlib.util.find_spec("rich_click") is None:
        print("CLI dependencies not installed. Run: pip install ollama-gate")
        sys.exit(1)

    _run_cli()


async def fetch_progress(url: str, timeout: float = 10.0) -> dict:
    """GET /api/progress from a running gateway."""
    import aiohttp

    client_timeout = aiohttp.ClientTimeout(total=timeout)
    async with aiohttp.ClientSession(timeout=client_timeout) as session:
        async with session.get(f"{url.rstrip('/')}/api/progress") as response:
            response.raise_for_status()
            return await response.json()


def _run_cli() -> None:
    """CLI definition and runner."""
    import rich_click as click

    # Configure rich-click styling
    click.rich_click.USE_RICH_MARKUP = True
    click.rich_click.USE_MARKDOWN = True
    click.rich_click.SHOW_ARGUMENTS = True
    click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
    click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
    click.rich_click.ERRORS_SUGGESTION = "Try running '--help' for more information."
    click.rich_click.ERRORS_EPILOGUE = ""
    click.rich_click.MAX_WIDTH = 100

    # =========================================================================
    # Root CLI
    # =========================================================================
    @click.group()
    @click.version_option(package_name="ollama-gate")
    def cli():
        """ollama-gate - single-model gateway for Ollama.

        Serves the native Ollama API and an OpenAI-compatible API for one
        configured model, and pulls that model in the background.

            ollama-gate serve       Run the gateway

            ollama-gate progress    Show model download progress

            ollama-gate check       Check the model on the backend
        """
        pass

    # =========================================================================
    # serve
    # =========================================================================
    @cli.command()
    @click.option("--model", "-m", default=None, help="Model to serve (env: OLLAMA_MODEL)")
    @click.option("--ollama-url", default=None, help="Ollama base URL (env: OLLAMA_URL)")
    @click.option("--host", default=None, help="Bind host (env: HOST)")
    @click.option("--port", "-p", type=int, default=None, help="Bind port (env: PORT)")
    @click.option(
        "--download-timeout",
        type=int,
        default=None,
        help="Model pull timeout in minutes (env: DOWNLOAD_TIMEOUT)",
    )
    @click.option("--app-url", default=None, help="Application URL (env: APP_URL)")
    @click.option(
        "--state-file",
        default=None,
        help="Download completion record (env: OLLAMA_GATE_STATE_FILE)",
    )
    @click.option(
        "--debug-dir",
        default=None,
        help="Save request/response payloads here (env: OLLAMA_GATE_DEBUG_DIR)",
    )
    @click.option("--config", "config_file", default=None, help="YAML config file")
    @click.option("--log-level", default=None, help="Log level (env: OLLAMA_GATE_LOG_LEVEL)")
    @click.option(
        "--log-format",
        type=click.Choice(["text", "json"]),
        default=None,
        help="Log format (env: OLLAMA_GATE_LOG_FORMAT)",
    )
    def serve(
        model: str | None,
        ollama_url: str | None,
        host: str | None,
        port: int | None,
        download_timeout: int | None,
        app_url: str | None,
        state_file: str | None,
        debug_dir: str | None,
        config_file: str | None,
        log_level: str | None,
        log_format: str | None,
    ):
        """Run the gateway.

        Starts the HTTP server immediately and makes sure the model is
        available in the background. Stop with Ctrl+C.

        **Examples:**

            ollama-gate serve --model qwen3:0.6b

            ollama-gate serve --config gate.yaml --log-format json
        """
        from ollama_gate.compose import build_gateway_config, load_env_file, run_gateway
        from ollama_gate.core.logging_config import configure_logging

        load_env_file()
        configure_logging(level=log_level, format=log_format)  # type: ignore[arg-type]

        async def _serve() -> None:
            config = await build_gateway_config(
                model=model,
                backend_url=ollama_url,
                host=host,
                port=port,
                download_timeout=download_timeout,
                app_url=app_url,
                state_file=state_file,
                debug_dir=debug_dir,
                config_file=config_file,
            )
            await run_gateway(config)

        asyncio.run(_serve())

    # =========================================================================
    # progress
    # =========================================================================
    @cli.command()
    @click.option(
        "--url",
        default="http://localhost:8080",
        show_default=True,
        help="Gateway base URL",
    )
    @click.option("--json", "-j", "json_output", is_flag=True, help="Output as JSON")
    def progress(url: str, json_output: bool):
        """Show the model download progress of a running gateway.

        **Examples:**

            ollama-gate progress

            ollama-gate progress --url http://gate:8080 --json
        """
        import aiohttp

        from ollama_gate.frontends.cli.output import error_exit, output_json, print_progress

        try:
            data = asyncio.run(fetch_progress(url))
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            error_exit(f"Failed to fetch progress from {url}: {e}")

        if json_output:
            output_json(data)
        else:
            print_progress(data)

    # =========================================================================
    # check
    # =========================================================================
    @cli.command()
    @click.option("--model", "-m", default=None, help="Model to check (env: OLLAMA_MODEL)")
    @click.option("--ollama-url", default=None, help="Ollama base URL (env: OLLAMA_URL)")
    @click.option("--config", "config_file", default=None, help="YAML config file")
    @click.option("--usable", is_flag=True, help="Also probe that the model can be called")
    def check(
        model: str | None,
        ollama_url: str | None,
        config_file: str | None,
        usable: bool,
    ):
        """Check whether the model is available on the backend.

        Exits 0 when the model is listed (or, with --usable, callable).
        """
        from ollama_gate.compose import build_gateway_config, check_model, load_env_file
        from ollama_gate.frontends.cli.output import error_exit
        from ollama_gate.gateway.clients.backend_client import (
            BackendError,
            BackendTransportError,
        )

        load_env_file()

        async def _check() -> tuple[str, bool, bool | None]:
            config = await build_gateway_config(
                model=model,
                backend_url=ollama_url,
                config_file=config_file,
            )
            exists, is_usable = await check_model(config, probe_usable=usable)
            return config.model, exists, is_usable

        try:
            name, exists, is_usable = asyncio.run(_check())
        except (BackendError, BackendTransportError) as e:
            error_exit(str(e))

        click.echo(f"{name}: {'listed' if exists else 'not listed'}")
        if is_usable is not None:
            click.echo(f"{name}: {'usable' if is_usable else 'not usable'}")

        available = exists or bool(is_usable)
        sys.exit(0 if available else 1)

    cli()


if __name__ == "__main__":
    main()
