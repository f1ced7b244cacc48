"""
Command runner for external build, test and package-manager commands.

Every command runs with a hard timeout; a command that exceeds it is killed
and reported as a CommandTimeoutError rather than blocking the caller.
"""

import logging
import os
import shlex
import subprocess
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from .exceptions import CommandFailedError, CommandTimeoutError

logger = logging.getLogger(__name__)

Command = Union[str, List[str]]


@dataclass
class CommandResult:
    """Captured output of a finished command."""
    command: str
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr."""
        if self.stdout and self.stderr:
            return f"{self.stdout}\n{self.stderr}"
        return self.stdout or self.stderr


class CommandRunner(ABC):
    """Executes named commands in a working directory."""

    @abstractmethod
    def run(self, command: Command, cwd: str, timeout: float,
            env: Optional[Dict[str, str]] = None, check: bool = False) -> CommandResult:
        """
        Run a command and capture its output.

        Args:
            command: Command line as a string or argument list
            cwd: Working directory
            timeout: Hard limit in seconds
            env: Extra environment variables
            check: Raise CommandFailedError on non-zero exit

        Raises:
            CommandTimeoutError: If the command exceeds its timeout
            CommandFailedError: If check is set and the command fails
        """
        pass

    def tool_available(self, tool: str, cwd: str = ".", timeout: float = 10) -> bool:
        """Check if a tool is available."""
        try:
            return self.run([tool, '--version'], cwd=cwd, timeout=timeout).success
        except (CommandFailedError, CommandTimeoutError):
            return False


class SubprocessCommandRunner(CommandRunner):
    """Runs commands as child processes without a shell."""

    def run(self, command: Command, cwd: str, timeout: float,
            env: Optional[Dict[str, str]] = None, check: bool = False) -> CommandResult:
        argv = shlex.split(command) if isinstance(command, str) else list(command)
        display = command if isinstance(command, str) else ' '.join(command)

        run_env = os.environ.copy()
        if env:
            run_env.update(env)

        logger.debug(f"Executing command: {display} (cwd={cwd}, timeout={timeout}s)")
        start_time = time.time()
        try:
            completed = subprocess.run(
                argv, capture_output=True, text=True, cwd=cwd, timeout=timeout, env=run_env
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"Command timed out after {timeout}s: {display}")
            raise CommandTimeoutError(display, timeout)
        except FileNotFoundError as e:
            logger.debug(f"Command not found: {display}: {e}")
            result = CommandResult(display, 127, "", str(e), round(time.time() - start_time, 2))
            if check:
                raise CommandFailedError(display, 127, str(e))
            return result

        result = CommandResult(
            command=display,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            duration=round(time.time() - start_time, 2),
        )
        logger.debug(f"Command completed - Return code: {result.returncode}, Execution time: {result.duration}s")

        if check and not result.success:
            raise CommandFailedError(display, result.returncode, result.output)
        return result
