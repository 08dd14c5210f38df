"""Composition helpers for running the gateway.

These helpers resolve configuration and wire the server, backend client
and acquisition task together.

Configuration priority:
1. Function arguments (highest)
2. Environment variables (a .env file in the working directory is loaded first)
3. Config file (--config or OLLAMA_GATE_CONFIG)
4. Defaults
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from collections.abc import Callable
from pathlib import Path
from typing import Any

from ollama_gate.gateway.server import GatewayConfig, GatewayServer

logger = logging.getLogger(__name__)

CONFIG_ENV_KEY = "OLLAMA_GATE_CONFIG"


def load_env_file(path: str | Path = ".env") -> bool:
    """Load a .env file into the environment without overriding set variables."""
    from dotenv import load_dotenv

    env_path = Path(path)
    if not env_path.exists():
        return False
    return load_dotenv(env_path, override=False)


async def _load_gateway_config(
    config_file: str | None,
    env_config_key: str = CONFIG_ENV_KEY,
) -> tuple[dict[str, Any], Callable[[Any, str, str, str], str]]:
    """Load the YAML config file and return (file_config, get_value_fn).

    Args:
        config_file: Path to config file, or None to check env var.
        env_config_key: Environment variable name for config path.

    Returns:
        Tuple of (file_config dict, get_value function).
        The get_value function resolves config values with priority:
        arg > env > file > default.
    """
    import yaml

    file_config: dict[str, Any] = {}
    config_path = config_file or os.environ.get(env_config_key)
    if config_path:
        try:
            content = await asyncio.to_thread(Path(config_path).read_text)
        except FileNotFoundError:
            logger.warning("Config file not found: %s", config_path)
        else:
            loaded = yaml.safe_load(content) or {}
            if not isinstance(loaded, dict):
                raise ValueError(f"Config file {config_path} must contain a mapping")
            file_config = loaded

    def get_value(arg: Any, env_key: str, file_key: str, default: str) -> str:
        if arg is not None:
            return str(arg)
        env_val = os.environ.get(env_key)
        if env_val:
            return env_val
        file_val = file_config.get(file_key)
        if file_val is not None and file_val != "":
            return str(file_val)
        return default

    return file_config, get_value


def _as_int(value: str, default: int, name: str) -> int:
    try:
        return int(value)
    except ValueError:
        logger.warning("Invalid integer for %s: %r, using %d", name, value, default)
        return default


async def build_gateway_config(
    model: str | None = None,
    backend_url: str | None = None,
    host: str | None = None,
    port: int | None = None,
    download_timeout: int | None = None,
    app_url: str | None = None,
    state_file: str | None = None,
    debug_dir: str | None = None,
    config_file: str | None = None,
) -> GatewayConfig:
    """Resolve a GatewayConfig from arguments, environment and config file.

    Args:
        model: Served model (or OLLAMA_MODEL env var).
        backend_url: Ollama base URL (or OLLAMA_URL env var).
        host: Host to bind to (or HOST env var).
        port: Port to bind to (or PORT env var).
        download_timeout: Pull timeout in minutes (or DOWNLOAD_TIMEOUT env var).
        app_url: URL shown next to the progress (or APP_URL env var).
        state_file: Completion record path (or OLLAMA_GATE_STATE_FILE env var).
        debug_dir: Debug dump directory (or OLLAMA_GATE_DEBUG_DIR env var).
        config_file: Path to YAML config (or OLLAMA_GATE_CONFIG env var).
    """
    _, get_value = await _load_gateway_config(config_file)
    defaults = GatewayConfig()

    debug = get_value(debug_dir, "OLLAMA_GATE_DEBUG_DIR", "debug_dir", "")
    return GatewayConfig(
        model=get_value(model, "OLLAMA_MODEL", "model", defaults.model),
        backend_url=get_value(backend_url, "OLLAMA_URL", "backend_url", defaults.backend_url),
        host=get_value(host, "HOST", "host", defaults.host),
        port=_as_int(get_value(port, "PORT", "port", str(defaults.port)), defaults.port, "port"),
        download_timeout=_as_int(
            get_value(
                download_timeout,
                "DOWNLOAD_TIMEOUT",
                "download_timeout",
                str(int(defaults.download_timeout)),
            ),
            int(defaults.download_timeout),
            "download_timeout",
        ),
        app_url=get_value(app_url, "APP_URL", "app_url", defaults.app_url),
        state_file=get_value(
            state_file,
            "OLLAMA_GATE_STATE_FILE",
            "state_file",
            defaults.state_file or "",
        )
        or None,
        debug_dir=debug or None,
    )


async def run_gateway(config: GatewayConfig, install_signal_handlers: bool = True) -> None:
    """Run the gateway until SIGINT/SIGTERM.

    This is a convenience function that blocks until stopped.
    """
    server = GatewayServer(config=config)

    if install_signal_handlers:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, server.request_shutdown)
            except NotImplementedError:
                # Windows event loops have no signal handlers
                pass

    logger.info("Target model: %s", config.model)
    logger.info("Ollama server: %s", config.backend_url)
    logger.info("Download timeout: %d minutes", int(config.download_timeout))

    try:
        await server.serve()
    finally:
        await server.stop()
    logger.info("Gateway exited")


async def check_model(config: GatewayConfig, probe_usable: bool = False) -> tuple[bool, bool | None]:
    """One-shot availability check of the configured model.

    Returns:
        (exists, usable); usable is None unless probe_usable is set.
    """
    from ollama_gate.gateway.clients.backend_client import BackendClient

    client = BackendClient(config=config.backend_client_config())
    await client.connect()
    try:
        exists = await client.model_exists(config.model)
        usable = await client.model_usable(config.model) if probe_usable else None
    finally:
        await client.close()
    return exists, usable
