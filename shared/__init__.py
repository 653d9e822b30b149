"""
Regulatory Truth Shared Library
===============================

Common utilities, configuration and client abstractions used by the
pipeline service and its scripts.

Modules:
    - config: Configuration management with Pydantic Settings
    - logging: Structured logging with structlog
    - database: SQL, Redis and Kafka clients
    - llm: LLM provider abstraction (Claude, Ollama)
    - models: API response models

Version: 0.1.0
"""

__version__ = "0.1.0"

from shared.config import settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
    "__version__",
]
