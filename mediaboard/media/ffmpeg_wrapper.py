"""
Async child-process wrapper for the media toolchain.

Every external invocation (ffmpeg, ffprobe, gifski) goes through
FFmpegRunner so binaries, timeouts, logging and metrics are handled in one
place. Arguments are always passed as an argv list, never through a shell.
"""

import asyncio
import time
from dataclasses import dataclass

from ..core.config import MediaConfig, settings
from ..core.logging import get_logger
from ..observability.metrics import metrics
from .errors import FFmpegError, FFmpegTimeoutError, ToolchainUnavailable

logger = get_logger("media.ffmpeg_wrapper")


@dataclass
class ProcessResult:
    """Captured outcome of one child process."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class FFmpegRunner:
    """Runs toolchain binaries as asyncio subprocesses."""

    def __init__(self, config: MediaConfig | None = None):
        config = config or settings.media
        self.ffmpeg_binary = config.ffmpeg_binary
        self.ffprobe_binary = config.ffprobe_binary
        self.gifski_binary = config.gifski_binary
        self.timeout = config.process_timeout

    async def run(self, binary: str, args: list[str], label: str | None = None) -> ProcessResult:
        """
        Execute a binary and wait for it to exit.

        Args:
            binary: Executable name or path
            args: Argument vector (without the binary)
            label: Short name for logs and metrics

        Returns:
            ProcessResult with decoded output

        Raises:
            ToolchainUnavailable: The binary could not be started
            FFmpegTimeoutError: A configured timeout elapsed
        """
        label = label or binary
        start_time = time.time()

        logger.debug("Executing toolchain command", label=label, command=" ".join([binary, *args]))

        try:
            process = await asyncio.create_subprocess_exec(
                binary,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            metrics.track_toolchain_call(binary, "unavailable", time.time() - start_time)
            logger.error("Toolchain binary unavailable", binary=binary, error=str(e))
            raise ToolchainUnavailable(f"Cannot execute '{binary}': {e}") from e

        try:
            if self.timeout:
                stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
            else:
                stdout, stderr = await process.communicate()
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            metrics.track_toolchain_call(binary, "timeout", time.time() - start_time)
            raise FFmpegTimeoutError(f"{label} timed out after {self.timeout}s")

        result = ProcessResult(
            returncode=process.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )

        duration = time.time() - start_time
        metrics.track_toolchain_call(binary, "success" if result.ok else "failure", duration)

        if result.stderr.strip():
            logger.debug("Toolchain stderr", label=label, stderr=result.stderr.strip()[-2000:])

        return result

    async def _checked(self, binary: str, args: list[str], label: str) -> ProcessResult:
        result = await self.run(binary, args, label)
        if not result.ok:
            raise FFmpegError(
                f"{label} exited with code {result.returncode}: {result.stderr.strip()[-2000:]}"
            )
        return result

    async def ffmpeg(self, args: list[str], label: str = "ffmpeg") -> ProcessResult:
        """Run ffmpeg, raising FFmpegError on a non-zero exit."""
        return await self._checked(self.ffmpeg_binary, args, label)

    async def ffprobe(self, args: list[str], label: str = "ffprobe") -> str:
        """Run ffprobe and return its stdout."""
        result = await self._checked(self.ffprobe_binary, args, label)
        return result.stdout

    async def gifski(self, args: list[str], label: str = "gifski") -> ProcessResult:
        """Run gifski, raising FFmpegError on a non-zero exit."""
        return await self._checked(self.gifski_binary, args, label)

    async def introspect(self, flag: str) -> str:
        """
        Run an ffmpeg listing command such as -encoders or -hwaccels.

        A failure here means the host toolchain is misconfigured, so it is
        reported as ToolchainUnavailable rather than FFmpegError.
        """
        result = await self.run(self.ffmpeg_binary, ["-hide_banner", flag], f"ffmpeg{flag}")
        if not result.ok:
            raise ToolchainUnavailable(
                f"'{self.ffmpeg_binary} {flag}' exited with code {result.returncode}"
            )
        return result.stdout
