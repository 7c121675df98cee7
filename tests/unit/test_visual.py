"""Unit tests for agent_eyes.browser.visual — pixel diff, perceptual hash, DOM signature."""

from __future__ import annotations

import warnings

import pytest

from agent_eyes.browser.visual import (
    decode_data_url,
    dom_signature,
    hamming_distance,
    perceptual_hash,
    pixel_diff_ratio,
    to_data_url,
)


class TestPixelDiffRatio:
    """Tests for the sampled pixel diff."""

    def test_identical_images_have_zero_diff(self, make_image) -> None:
        img = make_image((120, 40, 200), box=(10, 10, 30, 30))
        assert pixel_diff_ratio(img, img) == 0.0

    def test_black_vs_white_is_full_diff(self, make_image) -> None:
        black = make_image((0, 0, 0))
        white = make_image((255, 255, 255))
        assert pixel_diff_ratio(black, white) == 1.0

    def test_partial_change_is_between_zero_and_one(self, make_image) -> None:
        base = make_image((255, 255, 255), size=(100, 100))
        changed = make_image((255, 255, 255), size=(100, 100), box=(0, 0, 50, 100))
        ratio = pixel_diff_ratio(base, changed, sample_stride=1, resize_width=100)
        assert 0.3 < ratio < 0.7

    def test_small_color_shift_below_threshold_is_ignored(self, make_image) -> None:
        a = make_image((100, 100, 100))
        b = make_image((105, 105, 105))
        assert pixel_diff_ratio(a, b) == 0.0

    def test_accepts_data_urls(self, make_image) -> None:
        img = make_image((10, 20, 30))
        url = to_data_url(img, "image/png")
        assert pixel_diff_ratio(url, img) == 0.0

    def test_undecodable_input_is_full_diff(self, make_image) -> None:
        assert pixel_diff_ratio(b"not an image", make_image()) == 1.0
        assert pixel_diff_ratio("data:image/png;base64,@@@", make_image()) == 1.0

    def test_different_sizes_are_compared_after_resize(self, make_image) -> None:
        small = make_image((0, 128, 0), size=(40, 30))
        large = make_image((0, 128, 0), size=(400, 300))
        assert pixel_diff_ratio(small, large) == 0.0

    def test_works_with_jpeg(self, make_image) -> None:
        img = make_image((200, 200, 200), fmt="JPEG")
        assert pixel_diff_ratio(img, img) == 0.0


class TestPerceptualHash:
    """Tests for the 8x8 average hash."""

    def test_deterministic_16_hex_chars(self, make_image) -> None:
        img = make_image((255, 255, 255), box=(0, 0, 32, 48))
        first = perceptual_hash(img)
        assert first is not None
        assert len(first) == 16
        assert first == perceptual_hash(img)
        int(first, 16)

    def test_black_and_white_hash_differently(self, make_image) -> None:
        assert perceptual_hash(make_image((0, 0, 0))) != perceptual_hash(make_image((255, 255, 255)))

    def test_left_dark_half_sets_right_bits(self, make_image) -> None:
        img = make_image((255, 255, 255), size=(64, 64), box=(0, 0, 32, 64))
        value = int(perceptual_hash(img), 16)
        # each row is 00001111
        assert value == int("0f" * 8, 16)

    def test_undecodable_returns_none(self) -> None:
        assert perceptual_hash(b"\x00\x01garbage") is None

    @pytest.mark.parametrize("fmt", ["PNG", "JPEG", "GIF", "BMP", "TIFF"])
    def test_no_deprecation_warnings(self, make_image, fmt: str) -> None:
        img = make_image((255, 255, 255), fmt=fmt, box=(0, 0, 32, 48))
        with warnings.catch_warnings():
            warnings.simplefilter("error", DeprecationWarning)
            assert perceptual_hash(img) is not None


class TestHammingDistance:
    def test_identical(self) -> None:
        assert hamming_distance("ffff000000000000", "ffff000000000000") == 0

    def test_counts_differing_bits(self) -> None:
        assert hamming_distance("0000000000000000", "000000000000000f") == 4
        assert hamming_distance("0000000000000000", "ffffffffffffffff") == 64


class TestDomSignature:
    def test_equal_trees_share_hash(self) -> None:
        tree = {"tag": "html", "attrs": {}, "children": [{"tag": "body", "attrs": {}, "children": []}]}
        same = {"children": [{"children": [], "attrs": {}, "tag": "body"}], "attrs": {}, "tag": "html"}
        assert dom_signature(tree) == dom_signature(same)

    def test_changed_text_changes_hash(self) -> None:
        a = {"tag": "h1", "attrs": {}, "children": [], "text": "Hello"}
        b = {"tag": "h1", "attrs": {}, "children": [], "text": "Hello!"}
        sig_a, sig_b = dom_signature(a), dom_signature(b)
        assert sig_a.hash != sig_b.hash
        assert sig_b.size == sig_a.size + 1
        assert len(sig_a.hash) == 40

    def test_none_tree(self) -> None:
        sig = dom_signature(None)
        assert sig.size == len("null")


class TestDataUrls:
    def test_round_trip(self) -> None:
        assert decode_data_url(to_data_url(b"abc", "image/jpeg")) == b"abc"

    @pytest.mark.parametrize("value", ["https://example.com/x.png", "data:image/png,raw", "data:image/png;base64"])
    def test_rejects_non_base64_urls(self, value: str) -> None:
        with pytest.raises(ValueError):
            decode_data_url(value)
