"""
Unit tests for the content dispatch adapter.
"""

import pytest

from entitlement_guard.core.dispatch import (
    ContentDispatchAdapter,
    PlatformFormat,
    extract_hashtags,
    strip_hashtags,
)
from entitlement_guard.core.errors import InvalidContent, UnsupportedPlatform
from entitlement_guard.storage.models import Platform


class TestHashtags:
    """Test hashtag extraction helpers."""

    def test_extract_in_order(self):
        assert extract_hashtags("Great sale! #sale #local") == ("sale", "local")

    def test_extract_deduplicates(self):
        assert extract_hashtags("#a then #b then #a again") == ("a", "b")

    def test_extract_none(self):
        assert extract_hashtags("no tags here, just a # sign") == ()

    def test_strip_collapses_whitespace(self):
        assert strip_hashtags("Great sale! #sale #local today") == "Great sale! today"


class TestContentDispatchAdapter:
    """Test per-platform shaping."""

    def test_truncates_and_extracts(self):
        adapter = ContentDispatchAdapter(
            {Platform.TWITTER: PlatformFormat(max_length=10, extract_hashtags=True)}
        )
        payload = adapter.adapt("Great sale! #sale #local", ["twitter"])["twitter"]
        assert payload.content == "Great sale"
        assert payload.hashtags == ("sale", "local")
        assert payload.truncated

    def test_hashtags_come_from_full_content(self):
        """Tags cut off by truncation are still listed."""
        adapter = ContentDispatchAdapter(
            {Platform.TWITTER: PlatformFormat(max_length=5, extract_hashtags=True)}
        )
        payload = adapter.adapt("Hello world #late", ["twitter"])["twitter"]
        assert payload.content == "Hello"
        assert payload.hashtags == ("late",)

    def test_content_under_limit_unchanged(self):
        adapter = ContentDispatchAdapter()
        content = "Weekend brunch specials #brunch"
        payload = adapter.adapt(content, [Platform.INSTAGRAM])["instagram"]
        assert payload.content == content
        assert payload.hashtags == ("brunch",)
        assert not payload.truncated

    def test_default_twitter_limit(self):
        payload = ContentDispatchAdapter().adapt("x" * 300, ["twitter"])["twitter"]
        assert len(payload.content) == 280

    def test_passthrough_platform(self):
        content = "y" * 5000 + " #long"
        payload = ContentDispatchAdapter().adapt(content, ["facebook"])["facebook"]
        assert payload.content == content
        assert payload.hashtags == ()
        assert payload.to_request() == {"content": content}

    def test_one_payload_per_platform(self):
        payloads = ContentDispatchAdapter().adapt("Hi #there", ["linkedin", "threads", "tiktok"])
        assert set(payloads) == {"linkedin", "threads", "tiktok"}
        assert payloads["linkedin"].hashtags == ()
        assert payloads["tiktok"].hashtags == ("there",)

    def test_tiktok_uses_caption_field(self):
        payload = ContentDispatchAdapter().adapt("Dance #fyp", ["tiktok"])["tiktok"]
        assert payload.to_request() == {"caption": "Dance #fyp", "hashtags": ["fyp"]}

    def test_strip_hashtags_option(self):
        adapter = ContentDispatchAdapter(strip_hashtags=True)
        payloads = adapter.adapt("Great sale! #sale #local", ["twitter", "linkedin"])
        assert payloads["twitter"].content == "Great sale!"
        assert payloads["twitter"].hashtags == ("sale", "local")
        # Platforms that do not list tags keep them in the body
        assert payloads["linkedin"].content == "Great sale! #sale #local"

    def test_deterministic(self):
        adapter = ContentDispatchAdapter()
        first = adapter.adapt("Same #input", ["twitter", "instagram"])
        second = adapter.adapt("Same #input", ["twitter", "instagram"])
        assert first == second

    @pytest.mark.parametrize("content", [None, "", "   \n", 42])
    def test_invalid_content(self, content):
        with pytest.raises(InvalidContent):
            ContentDispatchAdapter().adapt(content, ["twitter"])

    def test_unknown_platform(self):
        with pytest.raises(UnsupportedPlatform, match="myspace"):
            ContentDispatchAdapter().adapt("hello", ["twitter", "myspace"])

    def test_platform_without_rule(self):
        adapter = ContentDispatchAdapter({Platform.TWITTER: PlatformFormat(max_length=280)})
        with pytest.raises(UnsupportedPlatform):
            adapter.adapt("hello", ["linkedin"])

    def test_invalid_max_length(self):
        with pytest.raises(ValueError, match="max_length"):
            PlatformFormat(max_length=0)
