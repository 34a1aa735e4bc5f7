"""Streams raw BGRA frames to an ffmpeg subprocess for H.264 encoding."""

import logging
import subprocess
from typing import Optional

from petals.errors import EncoderError

logger = logging.getLogger(__name__)


def build_ffmpeg_command(
    output_path: str,
    width: int,
    height: int,
    fps: int,
    executable: str = "ffmpeg",
) -> list[str]:
    """ffmpeg arguments reading rawvideo BGRA from stdin and writing an mp4."""
    return [
        executable,
        "-y",
        "-f", "rawvideo",
        "-pix_fmt", "bgra",
        "-s", f"{width}x{height}",
        "-r", str(fps),
        "-i", "-",
        "-c:v", "libx264",
        "-preset", "slow",
        "-crf", "18",
        "-pix_fmt", "yuv420p",
        "-g", str(max(1, fps // 2)),
        "-bf", "2",
        "-movflags", "+faststart",
        "-an",
        output_path,
    ]


class FFmpegEncoder:
    """Byte sink that pipes each frame into ffmpeg's stdin.

    ``write_frame`` blocks while the pipe is full, which is what throttles the
    render loop to the encoder's speed.

    Args:
        output_path: video file to write
        width, height: frame size in pixels
        fps: frame rate of the output video
        command: full command line; defaults to ``build_ffmpeg_command``
    """

    def __init__(
        self,
        output_path: str,
        width: int,
        height: int,
        fps: int,
        command: Optional[list[str]] = None,
    ):
        self.output_path = output_path
        self.width = width
        self.height = height
        self.fps = fps
        self.frame_size = 4 * width * height
        self.command = command or build_ffmpeg_command(output_path, width, height, fps)
        self.frames_written = 0
        self._process: Optional[subprocess.Popen] = None

    @property
    def is_open(self) -> bool:
        return self._process is not None

    def open(self):
        if self._process is not None:
            raise EncoderError("Encoder is already open")
        logger.info("Launching encoder: %s", " ".join(self.command))
        try:
            self._process = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
            )
        except FileNotFoundError as e:
            raise EncoderError(
                f"Cannot start {self.command[0]!r}; is ffmpeg installed and on your PATH?"
            ) from e
        except OSError as e:
            raise EncoderError(f"Cannot start encoder: {e}") from e

    def write_frame(self, frame: bytes):
        if self._process is None:
            raise EncoderError("write_frame() called before open()")
        if len(frame) != self.frame_size:
            raise EncoderError(
                f"Frame is {len(frame)} bytes, expected {self.frame_size} "
                f"({self.width}x{self.height} BGRA)"
            )
        try:
            self._process.stdin.write(frame)
        except (BrokenPipeError, ValueError) as e:
            code = self._process.poll()
            raise EncoderError(f"Encoder pipe closed after {self.frames_written} frames (exit code {code})") from e
        self.frames_written += 1

    def close(self):
        """Send end-of-input and wait for the encoder to finish the file."""
        if self._process is None:
            return
        process, self._process = self._process, None
        try:
            process.stdin.close()
        except BrokenPipeError:
            logger.warning("Encoder pipe was already closed")
        returncode = process.wait()
        if returncode != 0:
            raise EncoderError(f"Encoder exited with status {returncode}")
        logger.info("Wrote %d frames to %s", self.frames_written, self.output_path)
