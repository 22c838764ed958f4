"""Workflow tools that drive the image and video generation pipeline."""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from ..core.exceptions import ConfigurationError
from ..core.logging import get_logger
from ..core.tool_registry import ToolRegistry
from ..media.assembler import ClipAssembler
from ..media.assets import AssetStore
from ..media.executor import ImageGenerationExecutor, VideoGenerationExecutor
from ..media.normalizer import OutputNormalizer
from ..media.providers import ProviderSet
from ..media.registry import ModelRegistry
from ..models.media import ImageGenerationOptions, VideoGenerationOptions

logger = get_logger(__name__)

IMAGE_TOOL_NAMES = ("generate_image", "image.generate")
VIDEO_TOOL_NAMES = ("generate_video", "video.generate")


@dataclass
class MediaServices:
    """Collaborators shared by media tools across runs."""
    registry: ModelRegistry
    providers: ProviderSet
    assets: AssetStore
    assembler: Optional[ClipAssembler] = None
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic
    executor_options: Dict[str, Any] = field(default_factory=dict)


def _services(context) -> MediaServices:
    services = getattr(context, "services", None)
    if not isinstance(services, MediaServices):
        raise ConfigurationError("Media tools require MediaServices on the execution context")
    return services


def _options(options_type, tool_name: str, parameters: Dict[str, Any]):
    try:
        return options_type.model_validate(parameters)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid parameters for tool '{tool_name}': "
            + "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        ) from e


def _upstream(context, prompts: Any) -> Any:
    """Explicit ``prompts`` parameter wins over the previous node's output."""
    if prompts is not None:
        return prompts
    return context.state.last_output


def generate_images(context, prompts: Any = None, **parameters) -> Dict[str, Any]:
    """
    Generate one image per work item derived from the upstream output.

    Args:
        context: Execution context of the run
        prompts: Optional value to normalize instead of ``lastOutput``
        **parameters: ``ImageGenerationOptions`` fields

    Returns:
        Batch summary with ``images`` and aggregate counters
    """
    options = _options(ImageGenerationOptions, "generate_image", parameters)
    services = _services(context)
    provider = services.providers.require_image()

    items = OutputNormalizer.for_images().normalize(_upstream(context, prompts))
    if options.aspect_ratio:
        items = [item.model_copy(update={"aspect_ratio": options.aspect_ratio}) for item in items]

    executor = ImageGenerationExecutor(
        provider, services.registry, services.assets,
        sleep=services.sleep, clock=services.clock, **services.executor_options,
    )
    batch = executor.run(items, options)
    return batch.to_output()


def generate_videos(context, prompts: Any = None, **parameters) -> Dict[str, Any]:
    """Generate one clip per work item, then stitch successful clips when enabled."""
    options = _options(VideoGenerationOptions, "generate_video", parameters)
    services = _services(context)
    provider = services.providers.require_video()

    items = OutputNormalizer.for_videos().normalize(_upstream(context, prompts))
    if options.ratio:
        items = [item.model_copy(update={"aspect_ratio": options.ratio}) for item in items]

    executor = VideoGenerationExecutor(
        provider, services.registry, services.assets,
        sleep=services.sleep, clock=services.clock, **services.executor_options,
    )
    batch = executor.run(items, options)

    if options.stitch and services.assembler is not None:
        batch = services.assembler.apply(batch)
    elif options.stitch:
        logger.warning("Clip stitching requested but no assembler is configured")
    return batch.to_output()


def register_media_tools(registry: ToolRegistry, replace: bool = False) -> None:
    """Register the image and video tools under their canonical names."""
    for name in IMAGE_TOOL_NAMES:
        registry.register_tool(
            name, generate_images,
            description="Generate images from upstream prompts", replace=replace,
        )
    for name in VIDEO_TOOL_NAMES:
        registry.register_tool(
            name, generate_videos,
            description="Generate video clips from upstream prompts and stitch them", replace=replace,
        )
