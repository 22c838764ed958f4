"""Tools module for workflow engine."""

from .media_tools import (
    IMAGE_TOOL_NAMES,
    VIDEO_TOOL_NAMES,
    MediaServices,
    generate_images,
    generate_videos,
    register_media_tools,
)

__all__ = [
    "IMAGE_TOOL_NAMES",
    "VIDEO_TOOL_NAMES",
    "MediaServices",
    "generate_images",
    "generate_videos",
    "register_media_tools",
]
