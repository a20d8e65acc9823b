"""Perceptual image diff — CIEDE2000 tolerance, anti-aliasing and caret filtering."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from PIL import Image

from might.errors import SizeMismatchError

logger = logging.getLogger(__name__)

HIGHLIGHT_COLOR = (255, 0, 255, 255)
OVERLAY_OPACITY = 0.35

# caret: a vertical stripe at most this wide and at least this tall
CARET_MAX_WIDTH = 2
CARET_MIN_HEIGHT = 5

_NEIGHBOURS = np.array(
    [(-1, -1), (-1, 0), (-1, 1), (0, -1), (0, 1), (1, -1), (1, 0), (1, 1)]
)

_RGB_TO_XYZ = np.array([
    [0.4124564, 0.3575761, 0.1804375],
    [0.2126729, 0.7151522, 0.0721750],
    [0.0193339, 0.1191920, 0.9503041],
])
_D65_WHITE = np.array([0.95047, 1.0, 1.08883])


@dataclass
class DiffResult:
    same: bool
    differences: Optional[int] = None
    diff_image: Optional[bytes] = None  # composite PNG, only when not same


def rgb_to_lab(rgb: np.ndarray) -> np.ndarray:
    """sRGB (0-255, last axis RGB) to CIE L*a*b* under D65."""
    c = rgb / 255.0
    c = np.where(c > 0.04045, ((c + 0.055) / 1.055) ** 2.4, c / 12.92)
    xyz = (c @ _RGB_TO_XYZ.T) / _D65_WHITE
    epsilon = (6 / 29) ** 3
    f = np.where(xyz > epsilon, np.cbrt(xyz), xyz / (3 * (6 / 29) ** 2) + 4 / 29)
    lab = np.empty_like(f)
    lab[..., 0] = 116 * f[..., 1] - 16
    lab[..., 1] = 500 * (f[..., 0] - f[..., 1])
    lab[..., 2] = 200 * (f[..., 1] - f[..., 2])
    return lab


def ciede2000(lab1: np.ndarray, lab2: np.ndarray) -> np.ndarray:
    """CIEDE2000 color difference, element-wise over the leading axes."""
    L1, a1, b1 = lab1[..., 0], lab1[..., 1], lab1[..., 2]
    L2, a2, b2 = lab2[..., 0], lab2[..., 1], lab2[..., 2]

    c_bar7 = ((np.hypot(a1, b1) + np.hypot(a2, b2)) / 2) ** 7
    g = 0.5 * (1 - np.sqrt(c_bar7 / (c_bar7 + 25.0 ** 7)))
    a1p = (1 + g) * a1
    a2p = (1 + g) * a2
    c1p = np.hypot(a1p, b1)
    c2p = np.hypot(a2p, b2)
    h1p = np.degrees(np.arctan2(b1, a1p)) % 360
    h2p = np.degrees(np.arctan2(b2, a2p)) % 360
    chroma_zero = (c1p * c2p) == 0

    dlp = L2 - L1
    dcp = c2p - c1p
    dhp = h2p - h1p
    dhp = np.where(dhp > 180, dhp - 360, dhp)
    dhp = np.where(dhp < -180, dhp + 360, dhp)
    dhp = np.where(chroma_zero, 0, dhp)
    d_hp = 2 * np.sqrt(c1p * c2p) * np.sin(np.radians(dhp / 2))

    l_bar = (L1 + L2) / 2
    c_bar = (c1p + c2p) / 2
    h_sum = h1p + h2p
    h_bar = np.where(
        chroma_zero, h_sum,
        np.where(np.abs(h1p - h2p) <= 180, h_sum / 2,
                 np.where(h_sum < 360, (h_sum + 360) / 2, (h_sum - 360) / 2)),
    )

    t = (1
         - 0.17 * np.cos(np.radians(h_bar - 30))
         + 0.24 * np.cos(np.radians(2 * h_bar))
         + 0.32 * np.cos(np.radians(3 * h_bar + 6))
         - 0.20 * np.cos(np.radians(4 * h_bar - 63)))
    d_theta = 30 * np.exp(-(((h_bar - 275) / 25) ** 2))
    rc = 2 * np.sqrt(c_bar ** 7 / (c_bar ** 7 + 25.0 ** 7))
    sl = 1 + (0.015 * (l_bar - 50) ** 2) / np.sqrt(20 + (l_bar - 50) ** 2)
    sc = 1 + 0.045 * c_bar
    sh = 1 + 0.015 * c_bar * t
    rt = -np.sin(np.radians(2 * d_theta)) * rc

    return np.sqrt(
        (dlp / sl) ** 2 + (dcp / sc) ** 2 + (d_hp / sh) ** 2
        + rt * (dcp / sc) * (d_hp / sh)
    )


def _flatten(image: Image.Image) -> np.ndarray:
    """RGB float array with any transparency composited over white."""
    rgba = image.convert("RGBA")
    background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
    return np.asarray(Image.alpha_composite(background, rgba).convert("RGB"), dtype=np.float64)


def _brightness(rgb: np.ndarray) -> np.ndarray:
    return 0.3 * rgb[..., 0] + 0.59 * rgb[..., 1] + 0.11 * rgb[..., 2]


def _neighbour(ys: np.ndarray, xs: np.ndarray, dy: int, dx: int, shape: tuple[int, int]):
    ny, nx = ys + dy, xs + dx
    inside = (ny >= 0) & (ny < shape[0]) & (nx >= 0) & (nx < shape[1])
    return np.clip(ny, 0, shape[0] - 1), np.clip(nx, 0, shape[1] - 1), inside


def _on_border(ys: np.ndarray, xs: np.ndarray, shape: tuple[int, int]) -> np.ndarray:
    return (ys == 0) | (xs == 0) | (ys == shape[0] - 1) | (xs == shape[1] - 1)


def _has_many_siblings(rgb: np.ndarray, ys: np.ndarray, xs: np.ndarray) -> np.ndarray:
    """True where more than two neighbours share the exact same color."""
    shape = rgb.shape[:2]
    zeroes = _on_border(ys, xs, shape).astype(int)
    center = rgb[ys, xs]
    for dy, dx in _NEIGHBOURS:
        ny, nx, inside = _neighbour(ys, xs, dy, dx, shape)
        zeroes += inside & np.all(rgb[ny, nx] == center, axis=-1)
    return zeroes > 2


def _antialiased(
    rgb: np.ndarray, other: np.ndarray, ys: np.ndarray, xs: np.ndarray, tolerance: float,
) -> np.ndarray:
    """Detect anti-aliased pixels (pixelmatch-style neighbourhood test).

    A pixel is anti-aliased when it sits between a darker and a brighter
    neighbour, has at most two equal-brightness neighbours, and that darkest
    or brightest neighbour belongs to a flat region in both images.
    """
    shape = rgb.shape[:2]
    bright = _brightness(rgb)
    center = bright[ys, xs]
    zeroes = _on_border(ys, xs, shape).astype(int)
    min_delta = np.zeros(len(ys))
    max_delta = np.zeros(len(ys))
    min_k = np.full(len(ys), -1)
    max_k = np.full(len(ys), -1)

    for k, (dy, dx) in enumerate(_NEIGHBOURS):
        ny, nx, inside = _neighbour(ys, xs, dy, dx, shape)
        delta = center - bright[ny, nx]
        equal = inside & (np.abs(delta) <= tolerance)
        zeroes += equal
        lower = inside & ~equal & (delta < min_delta)
        min_delta = np.where(lower, delta, min_delta)
        min_k = np.where(lower, k, min_k)
        higher = inside & ~equal & (delta > max_delta)
        max_delta = np.where(higher, delta, max_delta)
        max_k = np.where(higher, k, max_k)

    candidate = (zeroes <= 2) & (min_k >= 0) & (max_k >= 0)
    if not candidate.any():
        return candidate

    offsets = np.vstack([_NEIGHBOURS, [(0, 0)]])  # index -1 -> the pixel itself
    min_y = np.clip(ys + offsets[min_k, 0], 0, shape[0] - 1)
    min_x = np.clip(xs + offsets[min_k, 1], 0, shape[1] - 1)
    max_y = np.clip(ys + offsets[max_k, 0], 0, shape[0] - 1)
    max_x = np.clip(xs + offsets[max_k, 1], 0, shape[1] - 1)

    darkest_flat = _has_many_siblings(rgb, min_y, min_x) & _has_many_siblings(other, min_y, min_x)
    brightest_flat = _has_many_siblings(rgb, max_y, max_x) & _has_many_siblings(other, max_y, max_x)
    return candidate & (darkest_flat | brightest_flat)


def _is_caret(ys: np.ndarray, xs: np.ndarray) -> bool:
    width = xs.max() - xs.min() + 1
    height = ys.max() - ys.min() + 1
    return (
        width <= CARET_MAX_WIDTH
        and height >= CARET_MIN_HEIGHT
        and len(np.unique(ys)) == height
    )


def difference_mask(
    reference: Image.Image,
    current: Image.Image,
    tolerance: float = 2.5,
    antialiasing_tolerance: float = 3.5,
) -> np.ndarray:
    """Boolean mask of pixels that differ perceptually."""
    if reference.size != current.size:
        raise SizeMismatchError(reference.size, current.size)

    ref = _flatten(reference)
    cur = _flatten(current)
    mask = np.zeros(ref.shape[:2], dtype=bool)

    ys, xs = np.nonzero(np.any(ref != cur, axis=-1))
    if len(ys) == 0:
        return mask

    distance = ciede2000(rgb_to_lab(ref[ys, xs]), rgb_to_lab(cur[ys, xs]))
    over = distance > tolerance
    ys, xs = ys[over], xs[over]
    if len(ys) == 0:
        return mask

    aa = (_antialiased(ref, cur, ys, xs, antialiasing_tolerance)
          | _antialiased(cur, ref, ys, xs, antialiasing_tolerance))
    ys, xs = ys[~aa], xs[~aa]
    if len(ys) == 0 or _is_caret(ys, xs):
        return mask

    mask[ys, xs] = True
    return mask


def _highlight(reference: Image.Image, mask: np.ndarray) -> Image.Image:
    pixels = np.array(reference.convert("RGBA"))
    pixels[mask] = HIGHLIGHT_COLOR
    return Image.fromarray(pixels, "RGBA")


def composite(reference: Image.Image, current: Image.Image, mask: np.ndarray) -> bytes:
    """Build the review image.

    Layout: current (top-left), reference (top-right), current with a
    35%-opacity reference overlay (bottom-left), highlighted diff
    (bottom-right).
    """
    width, height = reference.size
    margin = int(min(50, width * 0.15))
    reference = reference.convert("RGBA")
    current = current.convert("RGBA")

    final = Image.new("RGBA", (width * 2 + margin, height * 2 + margin), (0, 0, 0, 0))
    final.paste(current, (0, 0))
    final.paste(reference, (width + margin, 0))

    overlay = reference.copy()
    overlay.putalpha(overlay.getchannel("A").point(lambda a: int(a * OVERLAY_OPACITY)))
    final.paste(current, (0, height + margin))
    final.alpha_composite(overlay, (0, height + margin))

    final.paste(_highlight(reference, mask), (width + margin, height + margin))

    buffer = io.BytesIO()
    final.save(buffer, format="PNG")
    return buffer.getvalue()


def compare(
    reference: Image.Image,
    current: Image.Image,
    tolerance: float = 2.5,
    antialiasing_tolerance: float = 3.5,
) -> DiffResult:
    """Compare two screenshots.

    Raises ``SizeMismatchError`` when the dimensions differ; that usually
    means a viewport misconfiguration, not a rendering regression.
    """
    mask = difference_mask(reference, current, tolerance, antialiasing_tolerance)
    count = int(mask.sum())
    if count == 0:
        return DiffResult(same=True)
    logger.debug("Found %d differing pixel(s)", count)
    return DiffResult(
        same=False,
        differences=count,
        diff_image=composite(reference, current, mask),
    )
