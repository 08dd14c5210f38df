"""HTTP clients for the inference backend."""

from ollama_gate.gateway.clients.backend_client import (
    BackendClient,
    BackendClientConfig,
    BackendError,
    BackendTransportError,
    model_name_matches,
    select_models,
)

__all__ = [
    "BackendClient",
    "BackendClientConfig",
    "BackendError",
    "BackendTransportError",
    "model_name_matches",
    "select_models",
]
