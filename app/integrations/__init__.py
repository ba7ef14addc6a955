"""
Integrations package initialization.
Exports the outbound service clients.
"""
from .ollama import OllamaClient, OllamaError

__all__ = [
    "OllamaClient",
    "OllamaError",
]
