"""Media generation pipeline: normalization, providers, batch execution and stitching."""

from .assembler import AssemblyOutcome, ClipAssembler, FFmpegRunner
from .assets import AssetStore, StoredAsset
from .executor import ImageGenerationExecutor, ItemPhase, MediaGenerationExecutor, VideoGenerationExecutor
from .normalizer import OutputNormalizer
from .providers import (
    AssetRef,
    JobHandle,
    JobState,
    JobStatus,
    ProviderClient,
    ProviderSet,
    ReplicateClient,
    RunwayClient,
)
from .registry import ModelProfile, ModelRegistry

__all__ = [
    "AssemblyOutcome",
    "ClipAssembler",
    "FFmpegRunner",
    "AssetStore",
    "StoredAsset",
    "ImageGenerationExecutor",
    "ItemPhase",
    "MediaGenerationExecutor",
    "VideoGenerationExecutor",
    "OutputNormalizer",
    "AssetRef",
    "JobHandle",
    "JobState",
    "JobStatus",
    "ProviderClient",
    "ProviderSet",
    "ReplicateClient",
    "RunwayClient",
    "ModelProfile",
    "ModelRegistry",
]
