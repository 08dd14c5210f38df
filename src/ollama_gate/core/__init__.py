"""Core - Process-wide plumbing shared by the gateway and the CLI."""

from ollama_gate.core.logging_config import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
]
