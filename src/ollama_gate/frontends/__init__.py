"""Frontends - User interfaces for ollama-gate.

Submodules:
    cli/    Command-line interface
"""
