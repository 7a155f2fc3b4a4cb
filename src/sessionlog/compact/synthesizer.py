"""LLM integration for compaction calls."""

from __future__ import annotations

import logging

from sessionlog.config import CompactSectionConfig
from sessionlog.errors import SessionLogError
from sessionlog.llm import LLMError, call_llm

logger = logging.getLogger(__name__)


class CompactionError(SessionLogError):
    """Raised when a compaction call fails or returns nothing."""


class CompactionSynthesizer:
    """Runs compaction prompts through the configured LLM provider."""

    def __init__(self, config: CompactSectionConfig | None = None) -> None:
        self._config = config or CompactSectionConfig()

    @property
    def max_input_bytes(self) -> int:
        return self._config.max_input_bytes

    def summarize(self, prompt_input: str, *, label: str) -> str:
        """Send one complete compaction input and return the summary.

        Raises:
            CompactionError: If the call fails or the output is empty.
        """
        try:
            output = call_llm(
                prompt_input,
                provider=self._config.provider,
                model=self._config.model,
                timeout=self._config.timeout,
                label=label,
            )
        except LLMError as exc:
            raise CompactionError(str(exc)) from exc

        if not output.strip():
            raise CompactionError(f"Empty output from LLM ({label})")
        return output
