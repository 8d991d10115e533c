"""
Content dispatch adapter.

Turns one logical piece of content into per-platform payloads before it is
handed to the posting collaborator. Pure and deterministic: no state, no I/O.

Per-platform rules:
- max_length: hard character cut, not word-aware
- extract_hashtags: ``#tag`` tokens are listed separately; by default they
  also stay in the body
- body_field: key the body is sent under (TikTok takes a caption)
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .connections import coerce_platform
from .errors import InvalidContent, UnsupportedPlatform
from entitlement_guard.storage.models import Platform

HASHTAG_PATTERN = re.compile(r"#([A-Za-z0-9_]+)")


@dataclass(frozen=True)
class PlatformFormat:
    """Formatting constraints for one platform."""
    max_length: Optional[int] = None
    extract_hashtags: bool = False
    body_field: str = "content"

    def __post_init__(self):
        """Validate the length budget."""
        if self.max_length is not None and self.max_length <= 0:
            raise ValueError("max_length must be > 0")


DEFAULT_PLATFORM_FORMATS: Mapping[Platform, PlatformFormat] = {
    Platform.TWITTER: PlatformFormat(max_length=280, extract_hashtags=True),
    Platform.THREADS: PlatformFormat(max_length=500),
    Platform.TIKTOK: PlatformFormat(max_length=2200, extract_hashtags=True, body_field="caption"),
    Platform.INSTAGRAM: PlatformFormat(max_length=2200, extract_hashtags=True),
    Platform.LINKEDIN: PlatformFormat(max_length=3000),
    Platform.FACEBOOK: PlatformFormat(),
}


@dataclass(frozen=True)
class PlatformPayload:
    """Content shaped for a single platform."""
    platform: str
    content: str
    hashtags: Tuple[str, ...] = ()
    truncated: bool = False
    body_field: str = "content"
    tracks_hashtags: bool = False

    def to_request(self) -> Dict[str, object]:
        """Structured body for the posting collaborator."""
        request: Dict[str, object] = {self.body_field: self.content}
        if self.tracks_hashtags:
            request["hashtags"] = list(self.hashtags)
        return request


def extract_hashtags(content: str) -> Tuple[str, ...]:
    """Hashtag tokens without the ``#``, in order of first appearance."""
    seen: List[str] = []
    for tag in HASHTAG_PATTERN.findall(content):
        if tag not in seen:
            seen.append(tag)
    return tuple(seen)


def strip_hashtags(content: str) -> str:
    """Remove hashtag tokens and collapse the whitespace left behind."""
    return " ".join(HASHTAG_PATTERN.sub("", content).split())


class ContentDispatchAdapter:
    """Shapes content for each requested platform."""

    def __init__(
        self,
        formats: Mapping[Platform, PlatformFormat] = DEFAULT_PLATFORM_FORMATS,
        strip_hashtags: bool = False
    ):
        """Initialize the adapter.

        Args:
            formats: Formatting rules keyed by platform
            strip_hashtags: Remove extracted hashtags from the body of
                platforms that list them separately
        """
        self.formats = dict(formats)
        self.strip_hashtags = strip_hashtags

    def adapt(
        self,
        content: Optional[str],
        platforms: Iterable[Union[Platform, str]]
    ) -> Dict[str, PlatformPayload]:
        """Build one payload per requested platform.

        Raises:
            InvalidContent: If content is missing, not text, or blank
            UnsupportedPlatform: If a platform has no formatting rule
        """
        if content is None:
            raise InvalidContent("content is required")
        if not isinstance(content, str):
            raise InvalidContent(f"content must be text, got {type(content).__name__}")
        if not content.strip():
            raise InvalidContent("content cannot be blank")

        hashtags = extract_hashtags(content)
        payloads: Dict[str, PlatformPayload] = {}
        for requested in platforms:
            platform = coerce_platform(requested)
            if platform not in self.formats:
                raise UnsupportedPlatform(platform.value)
            payloads[platform.value] = self._shape(platform, self.formats[platform], content, hashtags)
        return payloads

    def _shape(
        self,
        platform: Platform,
        rule: PlatformFormat,
        content: str,
        hashtags: Tuple[str, ...]
    ) -> PlatformPayload:
        body = content
        if rule.extract_hashtags and self.strip_hashtags:
            body = strip_hashtags(body)

        truncated = rule.max_length is not None and len(body) > rule.max_length
        if truncated:
            body = body[:rule.max_length]

        return PlatformPayload(
            platform=platform.value,
            content=body,
            hashtags=hashtags if rule.extract_hashtags else (),
            truncated=truncated,
            body_field=rule.body_field,
            tracks_hashtags=rule.extract_hashtags,
        )
