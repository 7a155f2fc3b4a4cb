"""External LLM collaborator.

Every summarization call runs a CLI with the full prompt on stdin and
returns its stdout. The caller gets either the complete text or an
``LLMError``; partial output is never returned.
"""

from __future__ import annotations

import logging
import os
import subprocess
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 600


class LLMError(Exception):
    """Base error for LLM calls."""


class Provider(str, Enum):
    CLAUDE = "claude"
    CODEX = "codex"
    OLLAMA = "ollama"


def build_command(provider: Provider | str, model: str | None = None) -> list[str]:
    """Command line for ``provider``, reading the prompt from stdin.

    Raises:
        LLMError: If the provider is unknown, or ollama has no model.
    """
    try:
        provider = Provider(provider)
    except ValueError as exc:
        raise LLMError(f"Unknown LLM provider: {provider!r}") from exc

    if provider is Provider.CLAUDE:
        cmd = ["claude", "-p"]
        if model:
            cmd.extend(["--model", model])
        return cmd
    if provider is Provider.CODEX:
        cmd = ["codex", "exec"]
        if model:
            cmd.extend(["-m", model])
        cmd.append("-")
        return cmd
    if not model:
        raise LLMError("The ollama provider needs a model name")
    return ["ollama", "run", model]


def call_llm(
    prompt: str,
    *,
    provider: Provider | str = Provider.CLAUDE,
    model: str | None = None,
    timeout: int = DEFAULT_TIMEOUT,
    label: str = "compaction",
) -> str:
    """Run the provider CLI on ``prompt`` and return its output.

    Args:
        prompt: Complete input, written to the process's stdin.
        provider: Which CLI to run.
        model: Optional model override passed to the CLI.
        timeout: Subprocess timeout in seconds.
        label: Label for logging and error messages.

    Returns:
        The response text (stripped). May be empty; callers decide whether
        an empty response is a failure.

    Raises:
        LLMError: On any failure (not found, timeout, non-zero exit).
    """
    cmd = build_command(provider, model)

    # Filter CLAUDECODE env var to prevent recursive Claude invocations
    env = {k: v for k, v in os.environ.items() if k != "CLAUDECODE"}

    logger.debug("Calling %s (%s, %d bytes)", cmd[0], label, len(prompt.encode("utf-8")))

    try:
        result = subprocess.run(
            cmd,
            input=prompt,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
        )
    except FileNotFoundError as exc:
        raise LLMError(f"{cmd[0]} not found on PATH (label={label})") from exc
    except subprocess.TimeoutExpired as exc:
        raise LLMError(f"{cmd[0]} timed out after {timeout}s (label={label})") from exc

    if result.returncode != 0:
        raise LLMError(
            f"{cmd[0]} failed (exit {result.returncode}, label={label}): "
            f"{result.stderr[:500]}"
        )

    return result.stdout.strip()
