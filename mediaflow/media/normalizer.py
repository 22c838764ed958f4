"""Normalization of arbitrary upstream node output into ordered work items.

Upstream nodes produce whatever their model or tool returns: a previous image
batch, a planning object with ``imagePrompts``, a bare list, or markdown with
fenced prompt blocks. ``OutputNormalizer`` turns all of these into a
non-empty list of ``WorkItem`` by trying an ordered list of matchers, each
returning a list of items or ``None`` when its shape does not apply.
"""

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional, Sequence

from ..core.logging import get_logger
from ..models.media import WorkItem


logger = get_logger(__name__)

DEFAULT_IMAGE_PROMPT = "cinematic photo, professional lighting, 4:3 aspect ratio"
DEFAULT_VIDEO_PROMPT = "cinematic establishing shot, professional lighting"

MIN_BLOCK_LENGTH = 50
SKIP_MARKERS = ("negative prompt:", "technical specifications")

_FENCED_BLOCK = re.compile(r"```[^\n]*\n(.*?)```", re.DOTALL)


class InputShape(Enum):
    """Tag of the upstream value, decided once before matching."""
    MAPPING = "mapping"
    SEQUENCE = "sequence"
    TEXT = "text"
    OTHER = "other"


def classify(value: Any) -> InputShape:
    if isinstance(value, Mapping):
        return InputShape.MAPPING
    if isinstance(value, str):
        return InputShape.TEXT
    if isinstance(value, (list, tuple)):
        return InputShape.SEQUENCE
    return InputShape.OTHER


@dataclass(frozen=True)
class Matcher:
    name: str
    shapes: frozenset
    match: Callable[[Any], Optional[List[WorkItem]]]


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def _shot_number(value: Any, index: int) -> int:
    """Positive integer shot number, else the 1-based position."""
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    return index + 1


def _text_or(value: Any, default: Optional[str]) -> Optional[str]:
    return value if isinstance(value, str) and value.strip() else default


def extract_markdown_prompts(text: str) -> List[str]:
    """Return usable fenced code blocks from markdown, in source order.

    Blocks that hold negative prompts or technical specifications, or whose
    trimmed body is shorter than ``MIN_BLOCK_LENGTH``, are discarded.
    """
    prompts = []
    for match in _FENCED_BLOCK.finditer(text):
        body = match.group(1).strip()
        lowered = body.lower()
        if any(marker in lowered for marker in SKIP_MARKERS):
            continue
        if len(body) < MIN_BLOCK_LENGTH:
            continue
        prompts.append(body)
    return prompts


class OutputNormalizer:
    """Total function from an upstream value to a non-empty list of work items."""

    def __init__(self, default_aspect_ratio: str = "16:9", default_prompt: str = DEFAULT_VIDEO_PROMPT):
        self.default_aspect_ratio = default_aspect_ratio
        self.default_prompt = default_prompt
        self._matchers = [
            Matcher("image_batch", frozenset({InputShape.MAPPING}), self._match_image_batch),
            Matcher("sequence", frozenset({InputShape.SEQUENCE}), self._match_sequence),
            Matcher("image_prompts", frozenset({InputShape.MAPPING}), self._match_image_prompts),
            Matcher("object_scan", frozenset({InputShape.MAPPING}), self._match_object),
            Matcher("text", frozenset({InputShape.TEXT}), self._match_text),
        ]

    @classmethod
    def for_images(cls) -> "OutputNormalizer":
        return cls(default_aspect_ratio="4:3", default_prompt=DEFAULT_IMAGE_PROMPT)

    @classmethod
    def for_videos(cls) -> "OutputNormalizer":
        return cls(default_aspect_ratio="16:9", default_prompt=DEFAULT_VIDEO_PROMPT)

    def normalize(self, value: Any) -> List[WorkItem]:
        shape = classify(value)
        for matcher in self._matchers:
            if shape not in matcher.shapes:
                continue
            try:
                items = matcher.match(value)
            except Exception:
                logger.warning(f"Matcher {matcher.name} failed on upstream output; trying next", exc_info=True)
                continue
            if items:
                logger.debug(f"Normalized upstream output via {matcher.name} into {len(items)} work items")
                return items

        logger.info("No usable prompts in upstream output; using default prompt")
        return [self.placeholder()]

    def placeholder(self) -> WorkItem:
        return WorkItem(shot_number=1, prompt=self.default_prompt, aspect_ratio=self.default_aspect_ratio)

    # Matchers, in priority order

    def _match_image_batch(self, value: Mapping) -> Optional[List[WorkItem]]:
        images = value.get("images")
        if not isinstance(images, (list, tuple)):
            return None
        generated = [
            image for image in images
            if isinstance(image, Mapping) and image.get("success") is True
            and isinstance(image.get("localPath"), str) and image["localPath"]
        ]
        items = []
        for index, image in enumerate(generated):
            prompt = _stringify(image.get("originalPrompt") or image.get("prompt") or "").strip()
            items.append(WorkItem(
                shot_number=_shot_number(image.get("shotNumber"), index),
                prompt=prompt or self.default_prompt,
                source_image=image["localPath"],
                aspect_ratio=_text_or(image.get("aspectRatio"), self.default_aspect_ratio),
                style=_text_or(image.get("style"), None),
            ))
        return items or None

    def _match_sequence(self, value: Sequence) -> Optional[List[WorkItem]]:
        return self._map_entries(value) or None

    def _match_image_prompts(self, value: Mapping) -> Optional[List[WorkItem]]:
        entries = value.get("imagePrompts")
        if not isinstance(entries, (list, tuple)):
            return None
        return self._map_entries(entries) or None

    def _match_object(self, value: Mapping) -> Optional[List[WorkItem]]:
        for entries in value.values():
            if (isinstance(entries, (list, tuple)) and entries
                    and isinstance(entries[0], Mapping) and "prompt" in entries[0]):
                items = self._map_entries(entries)
                if items:
                    return items
        if "prompt" in value:
            item = self._item_from_entry(value, 0)
            return [item] if item else None
        return None

    def _match_text(self, value: str) -> Optional[List[WorkItem]]:
        if not value.strip():
            return None
        if "```" in value:
            prompts = extract_markdown_prompts(value)
            if prompts:
                return [
                    WorkItem(shot_number=number, prompt=prompt, aspect_ratio=self.default_aspect_ratio)
                    for number, prompt in enumerate(prompts, start=1)
                ]
        return [WorkItem(shot_number=1, prompt=value.strip(), aspect_ratio=self.default_aspect_ratio)]

    # Entry mapping

    def _map_entries(self, entries: Sequence) -> List[WorkItem]:
        items = []
        for index, entry in enumerate(entries):
            item = self._item_from_entry(entry, index)
            if item is not None:
                items.append(item)
        return items

    def _item_from_entry(self, entry: Any, index: int) -> Optional[WorkItem]:
        if isinstance(entry, Mapping) and "prompt" in entry:
            prompt = _stringify(entry["prompt"] if entry["prompt"] is not None else "").strip()
            if not prompt:
                return None
            source_image = entry.get("sourceImage") or entry.get("localPath") or entry.get("image")
            return WorkItem(
                shot_number=_shot_number(entry.get("shotNumber"), index),
                prompt=prompt,
                source_image=source_image if isinstance(source_image, str) else None,
                aspect_ratio=_text_or(entry.get("aspectRatio"), self.default_aspect_ratio),
                style=_text_or(entry.get("style"), None),
            )

        prompt = _stringify(entry).strip() if entry is not None else ""
        if not prompt:
            return None
        return WorkItem(shot_number=index + 1, prompt=prompt, aspect_ratio=self.default_aspect_ratio)
