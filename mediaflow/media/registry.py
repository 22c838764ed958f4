"""Immutable model/pricing registry for image and video profiles."""

from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Dict, Iterable, List, Optional

from ..core.exceptions import ConfigurationError
from ..models.media import MediaKind


@dataclass(frozen=True)
class ModelProfile:
    """Pricing and capability facts for one provider model.

    ``unit_cost`` is per image for image profiles and per second of clip for
    video profiles.
    """
    id: str
    kind: MediaKind
    provider: str
    unit_cost: Decimal
    description: str = ""
    default_steps: Optional[int] = None
    default_quality: Optional[str] = None
    supports_image_conditioning: bool = False
    durations: tuple = ()

    def cost_for(self, units) -> Decimal:
        return self.unit_cost * Decimal(str(units))


DEFAULT_IMAGE_MODEL = "black-forest-labs/flux-schnell"
DEFAULT_VIDEO_MODEL = "gen3a_turbo"

_DEFAULT_PROFILES = (
    ModelProfile(
        id="black-forest-labs/flux-schnell",
        kind=MediaKind.IMAGE,
        provider="replicate",
        unit_cost=Decimal("0.003"),
        description="Fastest and cheapest; draft storyboards",
        default_steps=4,
        default_quality="draft",
    ),
    ModelProfile(
        id="black-forest-labs/flux-dev",
        kind=MediaKind.IMAGE,
        provider="replicate",
        unit_cost=Decimal("0.025"),
        description="Balanced quality and speed",
        default_steps=28,
        default_quality="standard",
        supports_image_conditioning=True,
    ),
    ModelProfile(
        id="black-forest-labs/flux-1.1-pro",
        kind=MediaKind.IMAGE,
        provider="replicate",
        unit_cost=Decimal("0.04"),
        description="Highest fidelity for final frames",
        default_quality="hd",
        supports_image_conditioning=True,
    ),
    ModelProfile(
        id="gen3a_turbo",
        kind=MediaKind.VIDEO,
        provider="runway",
        unit_cost=Decimal("0.05"),
        description="Fast image-to-video; also accepts text-only prompts",
        supports_image_conditioning=True,
        durations=(5, 10),
    ),
    ModelProfile(
        id="gen4_turbo",
        kind=MediaKind.VIDEO,
        provider="runway",
        unit_cost=Decimal("0.05"),
        description="Image-to-video with stronger motion coherence",
        supports_image_conditioning=True,
        durations=(5, 10),
    ),
    ModelProfile(
        id="veo3",
        kind=MediaKind.VIDEO,
        provider="runway",
        unit_cost=Decimal("0.40"),
        description="Text-to-video with native audio",
        supports_image_conditioning=False,
        durations=(8,),
    ),
)


class ModelRegistry:
    """Read-only lookup of model profiles, built once and shared by reference."""

    def __init__(self, profiles: Iterable[ModelProfile]):
        table: Dict[str, ModelProfile] = {}
        for profile in profiles:
            if profile.id in table:
                raise ConfigurationError(f"Duplicate model profile '{profile.id}'", config_key="models")
            table[profile.id] = profile
        self._profiles = MappingProxyType(table)

    @classmethod
    def default(cls) -> "ModelRegistry":
        return cls(_DEFAULT_PROFILES)

    def resolve(self, model_id: str, kind: MediaKind) -> ModelProfile:
        """Return the profile for ``model_id`` or raise ConfigurationError."""
        profile = self._profiles.get(model_id)
        if profile is None or profile.kind != kind:
            available = ", ".join(p.id for p in self.profiles(kind))
            raise ConfigurationError(
                f"Unknown {kind.value} model '{model_id}'. Available: {available}",
                config_key="model",
            )
        return profile

    def profiles(self, kind: Optional[MediaKind] = None) -> List[ModelProfile]:
        return [p for p in self._profiles.values() if kind is None or p.kind == kind]

    def __contains__(self, model_id: str) -> bool:
        return model_id in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)
