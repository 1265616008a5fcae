"""大小解析与层级标记文本。"""

from __future__ import annotations

import pytest

from asset_optimizer.core.exceptions import InvalidConfigurationError
from asset_optimizer.core.markers import AGGRESSIVE_MARKER, OPTIMIZED_MARKER, Tier, text_to_tier, tier_to_text
from asset_optimizer.utils.sizes import format_size, parse_size


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("1MB", 1048576),
        ("500KB", 512000),
        ("500k", 512000),
        ("2g", 2 * 1024**3),
        ("1024", 1024),
        (" 12 B ", 12),
    ],
)
def test_parse_size(text: str, expected: int) -> None:
    assert parse_size(text) == expected


@pytest.mark.parametrize("text", ["", "MB", "1.5MB", "-1KB", "10TB"])
def test_parse_size_rejects_garbage(text: str) -> None:
    with pytest.raises(InvalidConfigurationError):
        parse_size(text)


def test_format_size() -> None:
    assert format_size(12) == "12B"
    assert format_size(1024) == "1.00KB"
    assert format_size(1536) == "1.50KB"
    assert format_size(3 * 1024**2 // 2) == "1.50MB"
    assert format_size(-2048) == "-2.00KB"


def test_tiers_are_ordered() -> None:
    assert Tier.NONE < Tier.OPTIMIZED < Tier.AGGRESSIVE


def test_marker_text_round_trip() -> None:
    assert tier_to_text(Tier.OPTIMIZED) == OPTIMIZED_MARKER == "philoassets-optimized"
    assert tier_to_text(Tier.AGGRESSIVE) == AGGRESSIVE_MARKER == "philoassets-aggressive"
    assert text_to_tier(" philoassets-aggressive\n") is Tier.AGGRESSIVE
    assert text_to_tier(b"philoassets-optimized") is Tier.OPTIMIZED


def test_unknown_text_is_unmarked() -> None:
    assert text_to_tier(None) is Tier.NONE
    assert text_to_tier("Created with GIMP") is Tier.NONE
    with pytest.raises(ValueError):
        tier_to_text(Tier.NONE)
