# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Utility functions for running external commands, alone or chained through pipes."""

import logging
import os
import signal
import subprocess
import tempfile
import time
from types import SimpleNamespace
from typing import List, Optional, Sequence

from charms.opensearch_certs.v0.constants_certs import CMD_TIMEOUT
from charms.opensearch_certs.v0.opensearch_certs_exceptions import (
    CertsCmdError,
    CertsCmdTimeoutError,
    CertsPipelineError,
)

# The unique Charmhub library identifier, never change it
LIBID = "0f6a3b8d2c1e47a59d84b7e6c3a2f915"

# Increment this major API version when introducing breaking changes
LIBAPI = 0

# Increment this PATCH version before using `charmcraft publish-lib` or reset
# to 0 if you are raising the major API version
LIBPATCH = 1


logger = logging.getLogger(__name__)


def _cmd_name(command: Sequence[str]) -> str:
    # only the binary, arguments may carry passwords
    return os.path.basename(command[0]) if command else ""


def run_cmd(command: Sequence[str], timeout: Optional[int] = CMD_TIMEOUT) -> SimpleNamespace:
    """Run a single command and capture its output.

    Arg:
        command: the binary followed by its arguments
        timeout: seconds to wait for the command to complete
    """
    name = _cmd_name(command)
    logger.debug(f"Executing command: {name}")

    try:
        output = subprocess.run(
            list(command),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            timeout=timeout,
            env=os.environ,
        )
    except (TimeoutError, subprocess.TimeoutExpired):
        raise CertsCmdTimeoutError(cmd=name)
    except OSError as e:
        raise CertsCmdError(cmd=name, err=str(e))

    if output.returncode != 0:
        logger.error(f"{name} err: {output.stderr} / out: {output.stdout}")
        raise CertsCmdError(
            cmd=name, out=output.stdout, err=output.stderr, return_code=output.returncode
        )

    return SimpleNamespace(cmd=name, out=output.stdout, err=output.stderr)


def _terminate(processes: List[subprocess.Popen]) -> None:
    for process in processes:
        if process.poll() is None:
            process.kill()
        process.wait()


def run_pipeline(
    commands: Sequence[Sequence[str]], timeout: Optional[int] = CMD_TIMEOUT
) -> bytes:
    """Run commands chained by pipes and return the output of the last one.

    Each command but the last is started without waiting, its stdout wired to
    the stdin of the next one, so the processes stream into each other. The
    last command is waited for and its stdout returned.

    Arg:
        commands: the commands of the pipeline, each being a binary and its arguments
        timeout: seconds to wait for the whole pipeline to complete

    Raises:
        CertsPipelineError: if a command can't be started or the last one fails
        CertsCmdTimeoutError: if the pipeline doesn't complete in time
    """
    if not commands:
        raise ValueError("A pipeline needs at least one command.")

    names = [_cmd_name(command) for command in commands]
    logger.debug(f"Executing pipeline: {' | '.join(names)}")

    started: List[subprocess.Popen] = []
    stderr_files = []
    upstream = subprocess.DEVNULL
    for index, command in enumerate(commands[:-1]):
        # upstream stderr goes to a file, an unread pipe could block the producer
        stderr_file = tempfile.TemporaryFile()
        stderr_files.append(stderr_file)
        try:
            process = subprocess.Popen(
                list(command),
                stdin=upstream,
                stdout=subprocess.PIPE,
                stderr=stderr_file,
                env=os.environ,
            )
        except OSError as e:
            _terminate(started)
            _close_all(stderr_files)
            raise CertsPipelineError(cmd=names[index], err=str(e))
        finally:
            if upstream is not subprocess.DEVNULL:
                # the parent keeps no read end, the producer then gets SIGPIPE if
                # the consumer goes away
                upstream.close()

        started.append(process)
        upstream = process.stdout

    try:
        final = subprocess.Popen(
            list(commands[-1]),
            stdin=upstream,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=os.environ,
        )
    except OSError as e:
        _terminate(started)
        _close_all(stderr_files)
        raise CertsPipelineError(cmd=names[-1], err=str(e))
    finally:
        if upstream is not subprocess.DEVNULL:
            upstream.close()

    deadline = None if timeout is None else time.monotonic() + timeout
    try:
        out, err = final.communicate(timeout=_remaining(deadline))
        for process in started:
            process.wait(timeout=_remaining(deadline))
    except subprocess.TimeoutExpired:
        _terminate(started + [final])
        _close_all(stderr_files)
        raise CertsCmdTimeoutError(cmd=" | ".join(names))

    upstream_errors = []
    for name, process, stderr_file in zip(names, started, stderr_files):
        stderr_file.seek(0)
        upstream_errors.append((name, process.returncode, stderr_file.read()))
    _close_all(stderr_files)

    if final.returncode != 0:
        # report the first failing command, upstream failures starve the next ones.
        # SIGPIPE only means a consumer stopped reading.
        for name, return_code, upstream_err in upstream_errors:
            if return_code not in (0, -signal.SIGPIPE):
                logger.error(f"{name} err: {_decode(upstream_err)}")
                raise CertsPipelineError(
                    cmd=name, err=_decode(upstream_err), return_code=return_code
                )
        logger.error(f"{names[-1]} err: {_decode(err)} / out: {_decode(out)}")
        raise CertsPipelineError(
            cmd=names[-1], out=_decode(out), err=_decode(err), return_code=final.returncode
        )

    for name, return_code, _ in upstream_errors:
        if return_code not in (0, -signal.SIGPIPE):
            logger.warning(f"{name} exited with {return_code}, last command succeeded.")

    return out


def _remaining(deadline: Optional[float]) -> Optional[float]:
    # the whole pipeline shares one deadline
    if deadline is None:
        return None
    return max(deadline - time.monotonic(), 0)


def _close_all(files) -> None:
    for f in files:
        f.close()


def _decode(raw: Optional[bytes]) -> str:
    return (raw or b"").decode("utf-8", errors="replace")
