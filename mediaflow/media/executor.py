"""Sequential, rate-limited batch execution of image and video generation.

A batch is capped before any provider call, then processed one item at a
time. Each item moves through ``ItemPhase``:

    PENDING -> CALLING -> SUCCEEDED | FAILED -> [COOLING_DOWN] -> DONE

Item failures never escape the batch; they become failed ``MediaResult``
records. Only configuration problems (unknown model, invalid options) raise,
and they do so before the first provider call.
"""

import base64
import logging
import mimetypes
import time
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

from ..core.exceptions import ConfigurationError, ProviderError, WorkflowEngineError
from ..core.logging import get_logger, log_with_context
from ..models.media import (
    BatchResult,
    ImageGenerationOptions,
    InputMode,
    MediaKind,
    MediaResult,
    VideoGenerationOptions,
    WorkItem,
    round_cost,
)
from .assets import AssetStore, IMAGES_DIR, VIDEOS_DIR, StoredAsset
from .providers import AssetRef, GenerateResult, JobHandle, JobState, ProviderClient
from .registry import ModelProfile, ModelRegistry


logger = get_logger(__name__)

MAX_PROMPT_LENGTH = 4000
RATE_LIMIT_MARKERS = ("rate limit", "429")


class ItemPhase(str, Enum):
    PENDING = "pending"
    CALLING = "calling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    COOLING_DOWN = "cooling_down"
    DONE = "done"


def is_rate_limited(message: Optional[str]) -> bool:
    lowered = (message or "").lower()
    return any(marker in lowered for marker in RATE_LIMIT_MARKERS)


def truncate_prompt(prompt: str) -> str:
    return prompt[:MAX_PROMPT_LENGTH]


def image_data_uri(path: str) -> str:
    """Encode a local image as a base64 data URI."""
    mime_type = mimetypes.guess_type(path)[0] or "image/jpeg"
    encoded = base64.b64encode(Path(path).read_bytes()).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


Options = Union[ImageGenerationOptions, VideoGenerationOptions]


class MediaGenerationExecutor:
    """Shared batch loop; subclasses build provider input and store outputs."""

    kind: MediaKind
    max_batch_size: int
    pacing_delay: float
    cooldown: float
    asset_subdir: str
    asset_stem: str
    asset_suffix: str

    def __init__(
        self,
        provider: ProviderClient,
        registry: ModelRegistry,
        assets: AssetStore,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        poll_interval: float = 5.0,
        max_polls: int = 120,
    ):
        self.provider = provider
        self.registry = registry
        self.assets = assets
        self.sleep = sleep
        self.clock = clock
        self.poll_interval = poll_interval
        self.max_polls = max_polls

    def run(self, items: List[WorkItem], options: Options) -> BatchResult:
        """Process ``items`` in order and aggregate the outcome."""
        profile = self.registry.resolve(options.model, self.kind)
        self.validate_options(options, profile)

        requested = len(items)
        batch = items[:self.max_batch_size]
        truncated = requested > len(batch)
        if truncated:
            logger.warning(f"Limiting {self.kind.value} batch to {self.max_batch_size} items (requested {requested})")

        results: List[MediaResult] = []
        cooled_down = False
        for index, item in enumerate(batch):
            if index > 0 and not cooled_down:
                self.sleep(self.pacing_delay)
            result, cooled_down = self._process_item(item, index, len(batch), profile, options)
            results.append(result)

        outcome = BatchResult(
            kind=self.kind,
            provider=self.provider.name,
            results=results,
            requested_count=requested,
            truncated=truncated,
        )
        log_with_context(
            logger, logging.INFO,
            f"{self.kind.value.capitalize()} batch complete: "
            f"{outcome.success_count}/{outcome.processed_count} succeeded",
            kind=self.kind.value,
            model=profile.id,
            succeeded=outcome.success_count,
            failed=outcome.failure_count,
            truncated=truncated,
            estimated_total_cost=str(outcome.estimated_total_cost),
        )
        return outcome

    def validate_options(self, options: Options, profile: ModelProfile) -> None:
        pass

    def _process_item(
        self, item: WorkItem, index: int, total: int, profile: ModelProfile, options: Options
    ) -> Tuple[MediaResult, bool]:
        phase = self._transition(item, ItemPhase.PENDING)
        started = self.clock()
        shot = item.shot_number or index + 1
        logger.info(f"[{index + 1}/{total}] Generating {self.kind.value} for shot {shot}")

        phase = self._transition(item, ItemPhase.CALLING)
        try:
            result = self.generate_item(item, shot, profile, options, started)
            phase = self._transition(item, ItemPhase.SUCCEEDED)
        except Exception as e:
            message = e.message if isinstance(e, WorkflowEngineError) else str(e)
            logger.error(f"Failed to generate {self.kind.value} for shot {shot}: {message}")
            result = MediaResult.failed(
                item,
                model=profile.id,
                error=message or type(e).__name__,
                generation_time=self.clock() - started,
            )
            phase = self._transition(item, ItemPhase.FAILED)

        cooled_down = False
        if phase == ItemPhase.FAILED and is_rate_limited(result.error):
            self._transition(item, ItemPhase.COOLING_DOWN)
            logger.warning(f"Rate limit hit; cooling down for {self.cooldown:.0f}s")
            self.sleep(self.cooldown)
            cooled_down = True

        self._transition(item, ItemPhase.DONE)
        return result, cooled_down

    def _transition(self, item: WorkItem, phase: ItemPhase) -> ItemPhase:
        logger.debug(f"Shot {item.shot_number} -> {phase.value}")
        return phase

    def generate_item(
        self, item: WorkItem, shot: int, profile: ModelProfile, options: Options, started: float
    ) -> MediaResult:
        raise NotImplementedError

    def use_conditioning(self, item: WorkItem, profile: ModelProfile, mode: InputMode) -> bool:
        """Decide between image-conditioned and text-only generation."""
        if not profile.supports_image_conditioning or not item.source_image:
            return False
        if mode == InputMode.IMAGE:
            return True
        if mode == InputMode.AUTO:
            return Path(item.source_image).is_file()
        return False

    def resolve(self, handle: GenerateResult) -> AssetRef:
        """Return the finished asset, polling the provider for async jobs."""
        if isinstance(handle, AssetRef):
            return handle
        if not isinstance(handle, JobHandle):
            raise ProviderError(f"Unexpected provider response: {handle!r}")

        status = self.provider.poll_status(handle.job_id)
        polls = 0
        while not status.state.is_terminal and polls < self.max_polls:
            logger.debug(f"Job {handle.job_id} status {status.state.value} (poll {polls + 1})")
            self.sleep(self.poll_interval)
            status = self.provider.poll_status(handle.job_id)
            polls += 1

        if status.state == JobState.FAILED:
            raise ProviderError(
                f"{self.kind.value.capitalize()} generation failed: {status.failure_reason or 'Unknown error'}"
            )
        if status.state != JobState.SUCCEEDED or status.output is None:
            raise ProviderError(
                f"{self.kind.value.capitalize()} generation timed out after "
                f"{int(self.max_polls * self.poll_interval)} seconds"
            )
        return status.output

    def store(self, asset: AssetRef, shot: int) -> StoredAsset:
        stem = f"{self.asset_stem}-{shot}"
        if asset.content is not None:
            return self.assets.save_bytes(self.asset_subdir, stem, self.asset_suffix, asset.content)
        if asset.url:
            return self.assets.download(asset.url, self.asset_subdir, stem, self.asset_suffix)
        raise ProviderError("Provider returned an empty asset")


class ImageGenerationExecutor(MediaGenerationExecutor):
    kind = MediaKind.IMAGE
    max_batch_size = 20
    pacing_delay = 1.0
    cooldown = 10.0
    asset_subdir = IMAGES_DIR
    asset_stem = "shot"
    asset_suffix = ".png"

    def generate_item(self, item, shot, profile, options, started):
        aspect_ratio = options.aspect_ratio or item.aspect_ratio
        payload = {
            "prompt": truncate_prompt(item.prompt),
            "aspect_ratio": aspect_ratio,
            "output_format": "png",
        }
        steps = options.num_inference_steps or profile.default_steps
        if steps:
            payload["num_inference_steps"] = steps
        if self.use_conditioning(item, profile, options.input_mode):
            payload["image"] = image_data_uri(item.source_image)

        asset = self.resolve(self.provider.generate(profile.id, payload))
        stored = self.store(asset, shot)
        return MediaResult.succeeded(
            item.model_copy(update={"aspect_ratio": aspect_ratio}),
            url=stored.url,
            local_path=stored.local_path,
            model=profile.id,
            generation_time=self.clock() - started,
            cost=round_cost(profile.cost_for(1)),
        )


class VideoGenerationExecutor(MediaGenerationExecutor):
    kind = MediaKind.VIDEO
    max_batch_size = 10
    pacing_delay = 2.0
    cooldown = 30.0
    asset_subdir = VIDEOS_DIR
    asset_stem = "clip"
    asset_suffix = ".mp4"

    def validate_options(self, options, profile):
        if profile.durations and options.duration not in profile.durations:
            raise ConfigurationError(
                f"Model '{profile.id}' supports durations {list(profile.durations)}, got {options.duration}",
                config_key="duration",
            )

    def generate_item(self, item, shot, profile, options, started):
        ratio = options.ratio or item.aspect_ratio
        payload = {
            "promptText": truncate_prompt(item.prompt),
            "duration": options.duration,
            "ratio": ratio,
        }
        if self.use_conditioning(item, profile, options.input_mode):
            logger.info(f"Using image-to-video mode with source {item.source_image}")
            payload["promptImage"] = image_data_uri(item.source_image)

        asset = self.resolve(self.provider.generate(profile.id, payload))
        stored = self.store(asset, shot)
        return MediaResult.succeeded(
            item.model_copy(update={"aspect_ratio": ratio}),
            url=stored.url,
            local_path=stored.local_path,
            model=profile.id,
            clip_duration=float(options.duration),
            generation_time=self.clock() - started,
            cost=round_cost(profile.cost_for(options.duration)),
        )
