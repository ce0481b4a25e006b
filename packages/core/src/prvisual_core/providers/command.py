"""Brief generation through a locally installed CLI.

Lets developers run the pipeline against their own agent CLI session
(e.g. `gemini`) instead of an API key. The prompt goes in on stdin so no
shell quoting or temp files are involved.
"""

from __future__ import annotations

import logging
import shlex
import subprocess

from prvisual_core.errors import GenerationError
from prvisual_core.providers.base import BaseGenerator

logger = logging.getLogger(__name__)

DEFAULT_COMMAND = "gemini -m gemini-3-flash-preview"


class CommandGenerator(BaseGenerator):
    def __init__(self, command: str | list[str] = DEFAULT_COMMAND, timeout: float = 120.0):
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        if not self.command:
            raise ValueError("CommandGenerator needs a non-empty command")
        self.timeout = timeout

    @property
    def name(self) -> str:
        return f"CommandGenerator({self.command[0]})"

    def _generate_text(self, prompt: str) -> str:
        try:
            result = subprocess.run(
                self.command,
                input=prompt,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise GenerationError(f"Command not found: {self.command[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise GenerationError(f"{self.command[0]} timed out after {self.timeout:.0f}s") from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip().splitlines()
            detail = stderr[-1] if stderr else f"exit code {result.returncode}"
            raise GenerationError(f"{self.command[0]} failed: {detail}")
        logger.debug("%s produced %d characters", self.command[0], len(result.stdout))
        return result.stdout
