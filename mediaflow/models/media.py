"""Pydantic models for media generation batches."""

from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import Field, field_serializer, field_validator, model_validator

from .core import CamelModel


COST_QUANTUM = Decimal("0.0001")


def round_cost(value) -> Decimal:
    """Round a cost to four decimal places, half-up."""
    return Decimal(str(value)).quantize(COST_QUANTUM, rounding=ROUND_HALF_UP)


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class InputMode(str, Enum):
    """How a video item chooses between text-only and image-conditioned generation."""
    TEXT = "text"
    IMAGE = "image"
    AUTO = "auto"


class StitchingStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class WorkItem(CamelModel):
    """One unit of generation work. Order within a batch is significant."""
    shot_number: Optional[int] = Field(None, alias="shotNumber")
    prompt: str = Field(..., description="Prompt text")
    source_image: Optional[str] = Field(None, alias="sourceImage", description="Local path of a conditioning image")
    aspect_ratio: str = Field(default="16:9", alias="aspectRatio")
    style: Optional[str] = None


class MediaResult(CamelModel):
    """Outcome of one work item: fully successful or fully failed, never partial."""
    shot_number: Optional[int] = Field(None, alias="shotNumber")
    url: str = Field(default="", description="Public relative URL")
    local_path: str = Field(default="", alias="localPath", description="Absolute filesystem path")
    prompt: str = Field(default="", alias="originalPrompt")
    source_image: Optional[str] = Field(None, alias="sourceImage")
    aspect_ratio: Optional[str] = Field(None, alias="aspectRatio")
    style: Optional[str] = None
    model: str = Field(default="", description="Model profile id used")
    clip_duration: Optional[float] = Field(None, alias="duration", description="Clip length in seconds (video)")
    generation_time: float = Field(default=0.0, alias="generationTime", description="Elapsed seconds")
    estimated_cost: Decimal = Field(default=Decimal("0"), alias="estimatedCost")
    success: bool
    error: Optional[str] = None

    @field_validator('estimated_cost')
    @classmethod
    def quantize_cost(cls, cost):
        return round_cost(cost)

    @model_validator(mode='after')
    def validate_outcome(self):
        """Success requires asset locations and no error; failure requires the opposite."""
        if self.success:
            if not self.url or not self.local_path:
                raise ValueError("Successful result requires url and local path")
            if self.error:
                raise ValueError("Successful result cannot carry an error")
        else:
            if self.url or self.local_path:
                raise ValueError("Failed result cannot carry asset locations")
            if not self.error:
                raise ValueError("Failed result requires an error message")
            if self.estimated_cost:
                raise ValueError("Failed result cannot carry a cost")
        return self

    @field_serializer('estimated_cost')
    def serialize_cost(self, cost: Decimal) -> float:
        return float(cost)

    @classmethod
    def succeeded(cls, item: WorkItem, *, url: str, local_path: str, model: str,
                  generation_time: float, cost, clip_duration: Optional[float] = None) -> "MediaResult":
        return cls(
            shot_number=item.shot_number,
            url=url,
            local_path=local_path,
            prompt=item.prompt,
            source_image=item.source_image,
            aspect_ratio=item.aspect_ratio,
            style=item.style,
            model=model,
            clip_duration=clip_duration,
            generation_time=round(generation_time, 1),
            estimated_cost=cost,
            success=True,
        )

    @classmethod
    def failed(cls, item: WorkItem, *, model: str, error: str,
               generation_time: float = 0.0) -> "MediaResult":
        return cls(
            shot_number=item.shot_number,
            prompt=item.prompt,
            source_image=item.source_image,
            aspect_ratio=item.aspect_ratio,
            style=item.style,
            model=model,
            generation_time=round(generation_time, 1),
            success=False,
            error=error or "Unknown error",
        )


class FinalAsset(CamelModel):
    """The single deliverable produced by stitching."""
    url: str
    local_path: str = Field(..., alias="localPath")
    duration: float = Field(..., description="Sum of contributing clip durations")
    format: str = "mp4"


class BatchResult(CamelModel):
    """Ordered results of one executor invocation plus aggregates."""
    kind: MediaKind
    provider: str
    results: List[MediaResult] = Field(default_factory=list)
    requested_count: int = Field(default=0, alias="totalRequested", description="Items before the cap")
    truncated: bool = Field(default=False, description="Whether the cap dropped items")
    final_asset: Optional[FinalAsset] = Field(None, alias="finalVideo")
    stitching_status: Optional[StitchingStatus] = Field(None, alias="stitchingStatus")
    stitch_error: Optional[str] = Field(None, alias="stitchError")

    @property
    def processed_count(self) -> int:
        return len(self.results)

    @property
    def dropped_count(self) -> int:
        return max(self.requested_count - self.processed_count, 0)

    @property
    def success_count(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for result in self.results if not result.success)

    @property
    def estimated_total_cost(self) -> Decimal:
        """Exact sum of the already-rounded per-item costs of successful items."""
        return sum((result.estimated_cost for result in self.results if result.success), Decimal("0"))

    @property
    def successful(self) -> List[MediaResult]:
        return [result for result in self.results if result.success]

    def to_output(self) -> Dict[str, Any]:
        """Shape the batch as the node output consumed by downstream nodes."""
        items = [result.model_dump(by_alias=True, mode="json") for result in self.results]
        output: Dict[str, Any] = {
            "totalGenerated": self.success_count,
            "totalFailed": self.failure_count,
            "totalRequested": self.requested_count,
            "totalProcessed": self.processed_count,
            "truncated": self.truncated,
            "droppedCount": self.dropped_count,
            "estimatedTotalCost": float(self.estimated_total_cost),
            "provider": self.provider,
        }
        if self.kind == MediaKind.IMAGE:
            output["images"] = items
            output["savedToPublic"] = True
            output["publicPath"] = "/generated-images/"
        else:
            output["clips"] = items
            output["finalVideo"] = (
                self.final_asset.model_dump(by_alias=True, mode="json") if self.final_asset else None
            )
            output["stitchingStatus"] = self.stitching_status.value if self.stitching_status else None
            if self.stitch_error:
                output["stitchError"] = self.stitch_error
        return output


class ImageGenerationOptions(CamelModel):
    """Validated parameters of an image generation node."""
    model: str = Field(default="black-forest-labs/flux-schnell")
    num_inference_steps: Optional[int] = Field(None, alias="numInferenceSteps", gt=0, le=50)
    aspect_ratio: Optional[str] = Field(None, alias="aspectRatio", description="Overrides per-item ratios")
    input_mode: InputMode = Field(default=InputMode.AUTO, alias="inputMode")


class VideoGenerationOptions(CamelModel):
    """Validated parameters of a video generation node."""
    model: str = Field(default="gen3a_turbo")
    duration: int = Field(default=5, gt=0, le=60, description="Clip length in seconds")
    ratio: Optional[str] = Field(None, description="Overrides per-item aspect ratios")
    input_mode: InputMode = Field(default=InputMode.AUTO, alias="inputMode")
    stitch: bool = Field(default=True, description="Concatenate successful clips into one video")
