"""FFmpeg/ffprobe command line wrappers.

Probes uploaded videos for their geometry and rewrites MP4 containers so the
moov atom sits at the head of the file (fast start). Both tools block on a
subprocess; callers in async code run them in a worker thread.
"""

import logging
import os
import subprocess
from typing import Optional, Protocol

from pydantic import ValidationError

from tubely.modules.transcoding.schemas import FFprobeOutput, FFprobeStream, VideoGeometry

logger = logging.getLogger(__name__)

FAST_START_SUFFIX = ".processing"


class MediaToolError(Exception):
    """Base exception for ffmpeg/ffprobe failures."""

    def __init__(self, message: str, output: Optional[str] = None):
        super().__init__(message)
        self.output = output

    def __str__(self) -> str:
        message = super().__str__()
        if self.output:
            return f"{message}, output: {self.output.strip()}"
        return message


class MediaProbeError(MediaToolError):
    """Raised when a file's stream geometry cannot be determined."""


class FastStartError(MediaToolError):
    """Raised when the fast-start rewrite fails."""


class MediaProbe(Protocol):
    """Reads the geometry of a local media file."""

    def probe(self, path: str) -> VideoGeometry:
        ...


class FastStartRewriter(Protocol):
    """Rewrites a local MP4 for fast start and returns the new file's path."""

    def rewrite(self, path: str) -> str:
        ...


def first_stream(streams: list[FFprobeStream]) -> FFprobeStream:
    """Return the first stream ffprobe reported, whatever its type.

    Raises:
        MediaProbeError: If there are no streams at all
    """
    if not streams:
        raise MediaProbeError("ffprobe reported no streams")
    return streams[0]


class FFprobeMediaProbe:
    """Media probe backed by the ffprobe binary."""

    def __init__(self, ffprobe_path: str = "ffprobe", timeout: Optional[float] = None):
        """Initialize probe.

        Args:
            ffprobe_path: Path to ffprobe binary
            timeout: Seconds before the subprocess is killed
        """
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout

    def build_command(self, path: str) -> list[str]:
        return [
            self.ffprobe_path,
            "-v", "error",
            "-print_format", "json",
            "-show_streams",
            path,
        ]

    def probe(self, path: str) -> VideoGeometry:
        """Return the width and height of the file's first stream.

        Raises:
            MediaProbeError: If ffprobe fails, its output cannot be decoded,
                or the first stream lacks positive dimensions
        """
        cmd = self.build_command(path)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise MediaProbeError(f"ffprobe not found at {self.ffprobe_path}") from e
        except subprocess.TimeoutExpired as e:
            raise MediaProbeError(f"ffprobe timed out after {self.timeout}s") from e

        if result.returncode != 0:
            raise MediaProbeError(
                f"ffprobe exited with status {result.returncode}",
                output=result.stderr,
            )

        try:
            output = FFprobeOutput.model_validate_json(result.stdout)
        except ValidationError as e:
            raise MediaProbeError("Couldn't decode ffprobe output", output=result.stdout) from e

        stream = first_stream(output.streams)
        if not stream.width or not stream.height or stream.width <= 0 or stream.height <= 0:
            raise MediaProbeError(
                f"Stream {stream.index} has no usable dimensions "
                f"(width={stream.width}, height={stream.height})"
            )

        logger.debug(
            "Probed video geometry",
            extra={"path": path, "width": stream.width, "height": stream.height},
        )
        return VideoGeometry(width=stream.width, height=stream.height)


class FFmpegFastStartRewriter:
    """Fast-start rewriter backed by the ffmpeg binary.

    Streams are copied verbatim; only the container layout changes.
    """

    def __init__(self, ffmpeg_path: str = "ffmpeg", timeout: Optional[float] = None):
        self.ffmpeg_path = ffmpeg_path
        self.timeout = timeout

    @staticmethod
    def output_path_for(path: str) -> str:
        return path + FAST_START_SUFFIX

    def build_command(self, input_path: str, output_path: str) -> list[str]:
        return [
            self.ffmpeg_path,
            "-y",  # Overwrite output
            "-i", input_path,
            "-c", "copy",
            "-movflags", "faststart",
            "-f", "mp4",
            output_path,
        ]

    def rewrite(self, path: str) -> str:
        """Write a fast-start copy of ``path`` and return its path.

        The caller owns the returned file and must remove it.

        Raises:
            FastStartError: If ffmpeg fails; the combined output is attached
        """
        output_path = self.output_path_for(path)
        cmd = self.build_command(path, output_path)

        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise FastStartError(f"ffmpeg not found at {self.ffmpeg_path}") from e
        except subprocess.TimeoutExpired as e:
            _remove_quietly(output_path)
            raise FastStartError(f"ffmpeg timed out after {self.timeout}s") from e

        if result.returncode != 0:
            _remove_quietly(output_path)
            raise FastStartError(
                f"Couldn't execute ffmpeg command: exit status {result.returncode}",
                output=result.stdout,
            )

        return output_path


def _remove_quietly(path: str) -> None:
    """Remove a partial output file if ffmpeg left one behind."""
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
