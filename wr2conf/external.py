"""
Publish Writerside and Authord documentation to a single Confluence page.

Copyright 2025-2026, wr2conf authors
"""

import logging
import re
import subprocess
from typing import Sequence

LOGGER = logging.getLogger(__name__)


def _decode_console(data: bytes, application: str, stream: str) -> str | None:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        LOGGER.error("%s returned binary data on %s", application, stream)
        return None


def execute_subprocess(command: Sequence[str], data: bytes, *, application: str, timeout: float | None = None) -> bytes:
    """
    Executes a subprocess, feeding input to stdin, and capturing output from stdout.

    :param command: Full command with arguments to execute.
    :param data: Application input as `bytes`.
    :param application: Human-readable application name for error messages (e.g. "Mermaid").
    :param timeout: Number of seconds after which the process is killed, or `None` to wait indefinitely.
    :returns: Application output as `bytes`.
    :raises RuntimeError: If the subprocess cannot be started, fails with a non-zero exit code or times out.
    """

    LOGGER.debug("Executing: %s", " ".join(command))

    try:
        proc = subprocess.Popen(command, stdout=subprocess.PIPE, stdin=subprocess.PIPE, stderr=subprocess.PIPE)
    except OSError as ex:
        raise RuntimeError(f"failed to start {application}: {ex}") from ex

    try:
        stdout, stderr = proc.communicate(input=data, timeout=timeout)
    except subprocess.TimeoutExpired as ex:
        proc.kill()
        proc.communicate()
        LOGGER.error("%s did not finish within %s seconds", application, timeout)
        raise RuntimeError(f"{application} timed out after {timeout} seconds") from ex

    if proc.returncode:
        LOGGER.error("Failed to execute %s; exit code: %d", application, proc.returncode)
        messages = [f"failed to execute {application}; exit code: {proc.returncode}"]
        if stdout and (console_output := _decode_console(stdout, application, "stdout")) is not None:
            LOGGER.error(console_output)
            messages.append(f"output:\n{console_output}")
        if stderr and (console_error := _decode_console(stderr, application, "stderr")) is not None:
            LOGGER.error(console_error)

            # omit Node.js exception stack trace
            console_error = re.sub(r"^\s+at.*:\d+:\d+\)$\n", "", console_error, flags=re.MULTILINE).rstrip()
            messages.append(f"error:\n{console_error}")
        raise RuntimeError("\n".join(messages))

    return stdout
