"""Concatenation of generated video clips into a single deliverable."""

import subprocess
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..core.exceptions import StitchError
from ..core.logging import get_logger
from ..models.media import BatchResult, FinalAsset, MediaResult, StitchingStatus
from .assets import AssetStore, VIDEOS_DIR


logger = get_logger(__name__)

ProgressListener = Callable[[str, Dict], None]

TRANSCODE_OPTIONS = [
    "-c:v", "libx264",
    "-c:a", "aac",
    "-movflags", "+faststart",
    "-preset", "fast",
    "-crf", "23",
]
STREAM_COPY_OPTIONS = ["-c", "copy"]


class FFmpegRunner:
    """Runs ffmpeg, streaming its ``-progress`` output to logging and a listener."""

    def __init__(self, binary: str = "ffmpeg", tail_lines: int = 20):
        self.binary = binary
        self.tail_lines = tail_lines

    def run(self, args: List[str], listener: Optional[ProgressListener] = None) -> None:
        """Run ffmpeg with ``args``; raise StitchError on any failure."""
        command = [self.binary, "-hide_banner", "-nostats", "-progress", "pipe:1", "-y", *args]
        notify = listener or (lambda event, data: None)
        tail = deque(maxlen=self.tail_lines)

        logger.info(f"Starting ffmpeg: {' '.join(command)}")
        notify("start", {"command": command})
        try:
            process = subprocess.Popen(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            notify("error", {"message": str(e)})
            raise StitchError(f"Could not start ffmpeg ({self.binary}): {e}") from e

        with process:
            for line in process.stdout:
                line = line.strip()
                if not line:
                    continue
                key, _, value = line.partition("=")
                if key == "out_time_ms" and value.isdigit():
                    seconds = int(value) / 1_000_000
                    logger.debug(f"ffmpeg progress: {seconds:.1f}s")
                    notify("progress", {"out_time": seconds})
                elif "=" not in line:
                    tail.append(line)
            return_code = process.wait()

        if return_code != 0:
            output_tail = "\n".join(tail)
            notify("error", {"return_code": return_code, "message": output_tail})
            raise StitchError(
                f"ffmpeg exited with code {return_code}",
                return_code=return_code,
                output_tail=output_tail,
            )
        notify("end", {"return_code": 0})
        logger.info("ffmpeg finished")


def _manifest_line(path: str) -> str:
    escaped = path.replace("'", "'\\''")
    return f"file '{escaped}'"


@dataclass(frozen=True)
class AssemblyOutcome:
    status: StitchingStatus
    final_asset: Optional[FinalAsset] = None
    error: Optional[str] = None


class ClipAssembler:
    """Builds the final video from the successful clips of a batch, in order."""

    def __init__(
        self,
        runner: FFmpegRunner,
        assets: AssetStore,
        stream_copy: bool = False,
        listener: Optional[ProgressListener] = None,
    ):
        self.runner = runner
        self.assets = assets
        self.stream_copy = stream_copy
        self.listener = listener

    def assemble(self, clips: List[MediaResult]) -> AssemblyOutcome:
        successful = [clip for clip in clips if clip.success]

        if not successful:
            logger.info("No successful clips; skipping stitching")
            return AssemblyOutcome(status=StitchingStatus.SKIPPED)

        if len(successful) == 1:
            clip = successful[0]
            return AssemblyOutcome(
                status=StitchingStatus.SUCCESS,
                final_asset=FinalAsset(
                    url=clip.url,
                    local_path=clip.local_path,
                    duration=clip.clip_duration or 0.0,
                ),
            )

        return self._concatenate(successful)

    def apply(self, batch: BatchResult) -> BatchResult:
        """Return ``batch`` with the assembly outcome attached."""
        outcome = self.assemble(batch.results)
        return batch.model_copy(update={
            "final_asset": outcome.final_asset,
            "stitching_status": outcome.status,
            "stitch_error": outcome.error,
        })

    def _concatenate(self, clips: List[MediaResult]) -> AssemblyOutcome:
        manifest = self.assets.reserve(VIDEOS_DIR, "concat", ".txt")
        output = self.assets.reserve(VIDEOS_DIR, "final-video", ".mp4")
        logger.info(f"Stitching {len(clips)} clips into {output.local_path}")

        try:
            with open(manifest.local_path, "x", encoding="utf-8") as handle:
                handle.write("\n".join(_manifest_line(clip.local_path) for clip in clips) + "\n")

            args = ["-f", "concat", "-safe", "0", "-i", manifest.local_path]
            args += STREAM_COPY_OPTIONS if self.stream_copy else TRANSCODE_OPTIONS
            args.append(output.local_path)
            self.runner.run(args, self.listener)

            if not Path(output.local_path).is_file():
                raise StitchError("ffmpeg reported success but produced no output file")
        except (StitchError, OSError) as e:
            Path(output.local_path).unlink(missing_ok=True)
            message = e.message if isinstance(e, StitchError) else str(e)
            logger.error(f"Stitching failed: {message}")
            return AssemblyOutcome(status=StitchingStatus.FAILED, error=message)
        finally:
            Path(manifest.local_path).unlink(missing_ok=True)

        return AssemblyOutcome(
            status=StitchingStatus.SUCCESS,
            final_asset=FinalAsset(
                url=output.url,
                local_path=output.local_path,
                duration=sum(clip.clip_duration or 0.0 for clip in clips),
            ),
        )
