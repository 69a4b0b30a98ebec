"""Domain-scoped conversational search agent."""

from .config import OrchestratorConfig, SearchConfig

__all__ = ["OrchestratorConfig", "SearchConfig"]
