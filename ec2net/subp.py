# This file is part of ec2net. See LICENSE file for license information.
"""Run external commands."""
import logging
import subprocess
from collections import namedtuple
from typing import List, Optional

LOG = logging.getLogger(__name__)

SubpResult = namedtuple("SubpResult", ["stdout", "stderr"])


class ProcessExecutionError(IOError):
    MESSAGE_TMPL = (
        "{description}\n"
        "Command: {cmd}\n"
        "Exit code: {exit_code}\n"
        "Stdout: {stdout}\n"
        "Stderr: {stderr}"
    )

    def __init__(
        self,
        stdout=None,
        stderr=None,
        exit_code=None,
        cmd=None,
        description=None,
    ):
        self.cmd = cmd
        self.stdout = stdout or ""
        self.stderr = stderr or ""
        self.exit_code = exit_code
        if description is None:
            description = "Unexpected error while running command."
        self.description = description
        super().__init__(
            self.MESSAGE_TMPL.format(
                description=description,
                cmd=cmd if cmd is not None else "-",
                exit_code=exit_code if exit_code is not None else "-",
                stdout=self.stdout.strip() or "-",
                stderr=self.stderr.strip() or "-",
            )
        )


def subp(args: List[str], timeout: Optional[float] = None) -> SubpResult:
    """Run a command and return its decoded output.

    @param args: command and arguments, never run through a shell.
    @param timeout: seconds after which the command is killed.
    @raises ProcessExecutionError: when the command exits non-zero or
        cannot be run to completion.
    """
    LOG.debug("Running command %s", args)
    try:
        proc = subprocess.run(
            args,
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise ProcessExecutionError(
            cmd=args,
            description="Failed to execute command: {0}".format(e),
        ) from e
    if proc.returncode != 0:
        raise ProcessExecutionError(
            stdout=proc.stdout,
            stderr=proc.stderr,
            exit_code=proc.returncode,
            cmd=args,
        )
    return SubpResult(proc.stdout, proc.stderr)
