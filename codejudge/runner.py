import asyncio
import os
import signal
import time
from typing import List, Optional, Sequence

import structlog

from codejudge.models import ExecutionOutcome, JudgeStatus, Workspace

logger = structlog.get_logger(__name__)

# Output caps (bytes)
MAX_STDOUT_SIZE = 100 * 1024
MAX_STDERR_SIZE = 10 * 1024

_CHUNK_SIZE = 4096
_REAP_INTERVAL = 0.01  # seconds


class _Capture:
    """Bounded accumulator for one output stream."""

    def __init__(self, limit: int):
        self.limit = limit
        self.size = 0
        self.overflowed = False
        self._chunks: List[bytes] = []

    def feed(self, chunk: bytes) -> bool:
        room = self.limit - self.size
        if len(chunk) > room:
            if room > 0:
                self._chunks.append(chunk[:room])
                self.size += room
            self.overflowed = True
            return False
        self._chunks.append(chunk)
        self.size += len(chunk)
        return True

    def text(self) -> str:
        return b"".join(self._chunks).decode("utf-8", errors="replace")


def kill_process_group(process: asyncio.subprocess.Process) -> None:
    """SIGKILL the process and everything it spawned.

    The group outlives its leader while any member is alive, so this is
    sent even after the direct child has been reaped.
    """
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass


async def _feed_stdin(process: asyncio.subprocess.Process, data: bytes) -> None:
    try:
        if data:
            process.stdin.write(data)
            await process.stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        # Program exited or closed its input without reading everything
        pass
    finally:
        process.stdin.close()


async def _pump(stream: asyncio.StreamReader, capture: _Capture, process: asyncio.subprocess.Process) -> None:
    while True:
        chunk = await stream.read(_CHUNK_SIZE)
        if not chunk:
            return
        if not capture.feed(chunk):
            kill_process_group(process)
            return


async def run(
    workspace: Workspace,
    command: Sequence[str],
    stdin: str,
    timeout_ms: int,
    max_stdout: int = MAX_STDOUT_SIZE,
    max_stderr: int = MAX_STDERR_SIZE,
    env: Optional[dict] = None,
) -> ExecutionOutcome:
    """Run ``command`` inside the workspace and classify how it ended.

    The program gets ``stdin`` followed by EOF. It is SIGKILLed (with its
    whole process group) when ``timeout_ms`` elapses or when either output
    stream exceeds its cap. Spawn failures come back as an INTERNAL_ERROR
    outcome instead of an exception.
    """
    log = logger.bind(workspace=workspace.id)
    start_time = time.perf_counter()

    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(workspace.path),
            env={**os.environ, **env} if env else None,
            start_new_session=True,
        )
    except OSError as e:
        log.error("run.spawn_failed", command=command[0], error=str(e))
        return ExecutionOutcome.failure(JudgeStatus.INTERNAL_ERROR, f"Process error: {e}")

    stdout = _Capture(max_stdout)
    stderr = _Capture(max_stderr)

    async def reap():
        # returncode is known at exit; wait() also waits for the pipes to close
        while process.returncode is None:
            await asyncio.sleep(_REAP_INTERVAL)
        # Background children would hold the pipes open past the exit
        kill_process_group(process)

    async def communicate():
        await asyncio.gather(
            _feed_stdin(process, stdin.encode("utf-8")),
            _pump(process.stdout, stdout, process),
            _pump(process.stderr, stderr, process),
            reap(),
        )
        await process.wait()

    killed_by_timeout = False
    try:
        await asyncio.wait_for(communicate(), timeout=timeout_ms / 1000.0)
    except asyncio.TimeoutError:
        killed_by_timeout = True
        kill_process_group(process)
        await process.wait()
    except BaseException:
        kill_process_group(process)
        await process.wait()
        raise
    finally:
        kill_process_group(process)

    elapsed_ms = int((time.perf_counter() - start_time) * 1000)

    if killed_by_timeout:
        log.info("run.timeout", timeout_ms=timeout_ms)
        return ExecutionOutcome(
            classification=JudgeStatus.TIME_LIMIT_EXCEEDED,
            stdout=stdout.text(),
            stderr=stderr.text(),
            exit_code=process.returncode,
            killed_by_timeout=True,
            runtime_ms=timeout_ms,
            error="Time limit exceeded",
        )

    if stdout.overflowed or stderr.overflowed:
        which = "stdout" if stdout.overflowed else "stderr"
        log.info("run.output_limit", stream=which)
        return ExecutionOutcome(
            classification=JudgeStatus.RUNTIME_ERROR,
            stdout=stdout.text(),
            stderr=stderr.text(),
            exit_code=process.returncode,
            runtime_ms=elapsed_ms,
            error=f"Output limit exceeded on {which}",
        )

    if process.returncode != 0:
        error_text = stderr.text()
        return ExecutionOutcome(
            classification=JudgeStatus.RUNTIME_ERROR,
            stdout=stdout.text(),
            stderr=error_text,
            exit_code=process.returncode,
            runtime_ms=elapsed_ms,
            error=error_text.strip() or f"Runtime error (exit code {process.returncode})",
        )

    return ExecutionOutcome(
        classification=JudgeStatus.SUCCESS,
        stdout=stdout.text(),
        stderr=stderr.text(),
        exit_code=0,
        runtime_ms=elapsed_ms,
    )
