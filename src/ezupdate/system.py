#!/usr/bin/env python3
"""
External command execution for package-manager adapters.

Every invocation is bounded by a timeout, elevated with sudo when it
mutates host state and we are not root, and mirrored into the run log.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from common.exceptions import CommandTimeoutError

logger = logging.getLogger(__name__)

# Command output goes to the verbose run log only
command_log = logging.getLogger("ezupdate.commands")

DEFAULT_TIMEOUT = 300
APPLY_TIMEOUT = 3600


@dataclass
class CommandResult:
    """Outcome of one external command."""
    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined output, useful for matching backend error messages."""
        return f"{self.stdout}\n{self.stderr}".strip()

    def brief_error(self) -> str:
        """Last non-empty stderr line, or the exit status."""
        for line in reversed(self.stderr.strip().splitlines()):
            if line.strip():
                return line.strip()
        return f"exit status {self.returncode}"


def binary_available(name: str) -> bool:
    """Check whether an executable is on PATH."""
    return shutil.which(name) is not None


def _needs_sudo() -> bool:
    try:
        return os.geteuid() != 0 and binary_available("sudo")
    except AttributeError:
        return False


def run_command(
    cmd: Sequence[str],
    timeout: float = DEFAULT_TIMEOUT,
    privileged: bool = False,
    env: Optional[Dict[str, str]] = None,
    input_text: Optional[str] = None,
) -> CommandResult:
    """
    Run an external command and capture its output.

    Args:
        cmd: Command and arguments
        timeout: Seconds before the command is killed
        privileged: Prefix with sudo when not already root
        env: Extra environment variables for the command
        input_text: Data written to the command's stdin

    Returns:
        CommandResult. A missing executable is reported as exit status 127.

    Raises:
        CommandTimeoutError: The command did not finish within timeout.
    """
    args = list(cmd)
    run_env = None

    if privileged and _needs_sudo():
        # sudo resets the environment, so pass extras as VAR=value arguments
        extras = [f"{k}={v}" for k, v in (env or {}).items()]
        args = ["sudo"] + extras + args
    elif env:
        run_env = dict(os.environ, **env)

    command_str = " ".join(args)
    command_log.debug(f"$ {command_str}")

    try:
        result = subprocess.run(
            args,
            capture_output=True,
            text=True,
            # Package names and descriptions are not always valid UTF-8
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            env=run_env,
            input=input_text,
        )
    except subprocess.TimeoutExpired:
        command_log.debug(f"timed out after {timeout}s: {command_str}")
        raise CommandTimeoutError(command_str, timeout)
    except FileNotFoundError as e:
        command_log.debug(f"not found: {command_str}")
        return CommandResult(args=args, returncode=127, stderr=str(e))

    stdout = result.stdout or ""
    stderr = result.stderr or ""
    if stdout.strip():
        command_log.debug(stdout.rstrip())
    if stderr.strip():
        command_log.debug(stderr.rstrip())
    command_log.debug(f"exit status {result.returncode}")

    return CommandResult(
        args=args,
        returncode=result.returncode,
        stdout=stdout,
        stderr=stderr,
    )
