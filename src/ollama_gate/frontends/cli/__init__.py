"""CLI frontend for ollama-gate.

Commands:
    ollama-gate serve       Run the gateway and the model pull task
    ollama-gate progress    Show pull progress of a running gateway
    ollama-gate check       Check whether the model is available on the backend
"""
