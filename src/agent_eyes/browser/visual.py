"""Visual comparison primitives — pixel diff, perceptual hash, DOM signature.

Pure functions with no browser I/O.  Images may be given as raw encoded
bytes (PNG / JPEG / WebP) or as ``data:`` URLs; decoding is done with Pillow.

Undecodable input is treated conservatively: :func:`pixel_diff_ratio`
reports ``1.0`` (everything changed) and :func:`perceptual_hash` returns
``None``.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
from io import BytesIO
from typing import Any

from PIL import Image

from agent_eyes.models.observation import DomSignature

logger = logging.getLogger(__name__)

# Manhattan RGB distance above which a sampled pixel counts as changed.
CHANGE_THRESHOLD = 30

_HASH_SIZE = 8
_MIN_RESIZE_WIDTH = 32
_MIN_HEIGHT = 32
# Flat images (no luminance spread) are thresholded against mid-grey instead of their mean.
_FLAT_PIVOT = 128.0

ImageInput = bytes | bytearray | memoryview | str


# ---------------------------------------------------------------------------
# Encoding helpers
# ---------------------------------------------------------------------------


def to_data_url(data: bytes, mime: str) -> str:
    """Encode *data* as a base64 ``data:`` URL."""
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def decode_data_url(data_url: str) -> bytes:
    """Return the payload bytes of a base64 ``data:`` URL.

    Raises:
        ValueError: If *data_url* is not a base64 data URL.
    """
    if not data_url.startswith("data:"):
        raise ValueError("not a data URL")
    header, sep, payload = data_url.partition(",")
    if not sep or not header.endswith(";base64"):
        raise ValueError("only base64 data URLs are supported")
    return base64.b64decode(payload, validate=True)


def decode_image(image: ImageInput) -> Image.Image:
    """Decode *image* (bytes or data URL) into an RGB Pillow image.

    Raises:
        ValueError: If the input cannot be decoded.
    """
    try:
        raw = decode_data_url(image) if isinstance(image, str) else bytes(image)
        with Image.open(BytesIO(raw)) as img:
            img.load()
            return img.convert("RGB")
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        raise ValueError(f"undecodable image: {exc}") from exc


# ---------------------------------------------------------------------------
# Comparators
# ---------------------------------------------------------------------------


def pixel_diff_ratio(
    image_a: ImageInput,
    image_b: ImageInput,
    *,
    sample_stride: int = 2,
    resize_width: int = 256,
) -> float:
    """Return the fraction of sampled pixels that differ between two images.

    Both images are resized to ``resize_width`` (at least 32) by a height
    derived from the first image's aspect ratio (at least 32), then compared on
    a grid of every ``sample_stride``-th pixel.  A pixel counts as changed when
    the summed absolute R/G/B difference exceeds ``CHANGE_THRESHOLD``.

    Returns:
        A ratio in ``[0, 1]``; ``1.0`` if either image fails to decode.
    """
    stride = max(1, int(sample_stride))
    width = max(_MIN_RESIZE_WIDTH, int(resize_width))
    try:
        img_a = decode_image(image_a)
        img_b = decode_image(image_b)
    except ValueError as exc:
        logger.debug("pixel diff: %s", exc)
        return 1.0

    height = max(_MIN_HEIGHT, int(img_a.height * (width / img_a.width)))
    pixels_a = img_a.resize((width, height), Image.BILINEAR).load()
    pixels_b = img_b.resize((width, height), Image.BILINEAR).load()

    changed = 0
    total = 0
    for y in range(0, height, stride):
        for x in range(0, width, stride):
            ra, ga, ba = pixels_a[x, y]
            rb, gb, bb = pixels_b[x, y]
            if abs(ra - rb) + abs(ga - gb) + abs(ba - bb) > CHANGE_THRESHOLD:
                changed += 1
            total += 1
    return changed / total if total else 0.0


def perceptual_hash(image: ImageInput) -> str | None:
    """Compute a 64-bit average hash as a 16-character hex string.

    The image is reduced to 8x8, converted to luma
    (``0.299R + 0.587G + 0.114B``) and each pixel contributes one bit in raster
    order: 1 when its luma is at or above the mean.

    Returns:
        The hex digest, or ``None`` if the image cannot be decoded.
    """
    try:
        img = decode_image(image)
    except ValueError as exc:
        logger.debug("perceptual hash: %s", exc)
        return None

    pixels = img.resize((_HASH_SIZE, _HASH_SIZE), Image.BILINEAR).load()
    luma = [
        0.299 * r + 0.587 * g + 0.114 * b
        for r, g, b in (pixels[x, y] for y in range(_HASH_SIZE) for x in range(_HASH_SIZE))
    ]
    pivot = sum(luma) / len(luma)
    if max(luma) - min(luma) < 1.0:
        pivot = _FLAT_PIVOT

    value = 0
    for level in luma:
        value = (value << 1) | (1 if level >= pivot else 0)
    return f"{value:016x}"


def hamming_distance(hash_a: str, hash_b: str) -> int:
    """Number of differing bits between two hex perceptual hashes."""
    return bin(int(hash_a, 16) ^ int(hash_b, 16)).count("1")


def dom_signature(tree: Any) -> DomSignature:
    """Hash a serialized DOM tree into a ``DomSignature``.

    The tree is serialized canonically (sorted keys, compact separators) so two
    structurally equal trees always produce the same hash and size.
    """
    serialized = json.dumps(tree, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    digest = hashlib.sha1(serialized.encode("utf-8")).hexdigest()
    return DomSignature(hash=digest, size=len(serialized))
