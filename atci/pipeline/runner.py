import logging
import subprocess
from typing import List, Optional, Sequence

import ffmpeg

from ..cancellation import CancellationToken
from ..errors import CancelError, IOFailed, SpawnFailed, ToolError
from ..models import ToolResult

logger = logging.getLogger("atci")


class ToolRunner:
    """
    Spawns external tools and waits for them while watching a cancel token.

    Output is captured in full. While the child runs the token is checked
    every `poll_interval` seconds; when it trips the child is terminated,
    reaped, and CancelError is raised. A child never outlives a call.
    """

    def __init__(self, poll_interval: float = 0.5, terminate_grace: float = 5.0):
        self.poll_interval = poll_interval
        self.terminate_grace = terminate_grace

    def run(self, program: str, args: Sequence[str],
            cancel_token: Optional[CancellationToken] = None) -> ToolResult:
        """
        Run `program` with `args` to completion.

        Returns:
            ToolResult with exit status and captured stdout/stderr. A
            non-zero exit is not an error at this level; see check().
        """
        argv = [str(program)] + [str(a) for a in args]
        logger.debug(f"Running: {' '.join(argv)}")
        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise SpawnFailed(f"Failed to execute {program}: {e}") from e

        return self.wait(process, cancel_token, description=str(program))

    def run_ffmpeg(self, stream, ffmpeg_path: str,
                   cancel_token: Optional[CancellationToken] = None) -> ToolResult:
        """Run an ffmpeg-python stream graph under the same cancellation rules"""
        logger.debug(f"Running: {' '.join(compile_ffmpeg(stream, ffmpeg_path))}")
        stream = stream.global_args('-nostdin')
        try:
            process = stream.run_async(cmd=ffmpeg_path, pipe_stdout=True, pipe_stderr=True)
        except OSError as e:
            raise SpawnFailed(f"Failed to execute {ffmpeg_path}: {e}") from e

        return self.wait(process, cancel_token, description=str(ffmpeg_path))

    def wait(self, process: subprocess.Popen, cancel_token: Optional[CancellationToken],
             description: str = "child") -> ToolResult:
        """Wait for a spawned child, polling the token between waits"""
        try:
            while True:
                if cancel_token is not None and cancel_token.is_cancelled():
                    self._terminate(process)
                    logger.info(f"CANCELLED: killed {description} (pid {process.pid})")
                    raise CancelError(f"{description} cancelled")
                try:
                    stdout, stderr = process.communicate(timeout=self.poll_interval)
                    break
                except subprocess.TimeoutExpired:
                    continue
        except CancelError:
            raise
        except OSError as e:
            self._terminate(process)
            raise IOFailed(f"Pipe error while running {description}: {e}") from e
        except BaseException:
            self._terminate(process)
            raise

        return ToolResult(exit_status=process.returncode, stdout=stdout or b"", stderr=stderr or b"")

    def _terminate(self, process: subprocess.Popen) -> None:
        if process.poll() is not None:
            return
        process.terminate()
        try:
            process.communicate(timeout=self.terminate_grace)
        except subprocess.TimeoutExpired:
            process.kill()
            process.communicate()


def check(result: ToolResult, description: str) -> ToolResult:
    """Raise ToolError for a non-zero exit status"""
    if result.exit_status != 0:
        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        raise ToolError(
            f"{description} failed with exit status {result.exit_status}: {stderr[-2000:]}",
            exit_status=result.exit_status,
            stderr=result.stderr,
        )
    return result


def compile_ffmpeg(stream, ffmpeg_path: str) -> List[str]:
    """Argument vector for an ffmpeg-python stream graph"""
    return ffmpeg.compile(stream.global_args('-nostdin'), cmd=ffmpeg_path)
