"""
Similarity Primitives

Two ways of saying "these look alike":
- text: bigram Dice coefficient over normalized strings
- images: Hamming distance between 64-bit average-hash fingerprints

Both are pure functions with no dependencies on catalog state.
"""

import re
from collections import Counter

import numpy as np


FINGERPRINT_SIZE = 8  # 8x8 grid -> 64 bits -> 16 hex chars
MAX_FINGERPRINT_DISTANCE = FINGERPRINT_SIZE * FINGERPRINT_SIZE

# Art box position inside a full card, as fractions of width/height
FOCUS_REGION = (0.10, 0.23, 0.80, 0.42)  # x, y, w, h

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_WHITESPACE = re.compile(r"\s+")


# ============================================================
# TEXT
# ============================================================

def normalize_text(value: str) -> str:
    """Lowercase, map non-alphanumerics to spaces, collapse whitespace."""
    lowered = _NON_ALNUM.sub(" ", value.lower())
    return _WHITESPACE.sub(" ", lowered).strip()


def _bigrams(value: str) -> Counter:
    return Counter(value[i:i + 2] for i in range(len(value) - 1))


def text_similarity(a: str, b: str) -> float:
    """
    Bigram Dice coefficient in [0, 1].

    0 if either side normalizes to an empty string, 1 on an exact
    normalized match.
    """
    x = normalize_text(a or "")
    y = normalize_text(b or "")
    if not x or not y:
        return 0.0
    if x == y:
        return 1.0

    bx = _bigrams(x)
    by = _bigrams(y)
    total = sum(bx.values()) + sum(by.values())
    if total == 0:
        # Two different single characters
        return 0.0
    overlap = sum((bx & by).values())
    return 2.0 * overlap / total


# ============================================================
# FINGERPRINTS
# ============================================================

def fingerprint_distance(a: str, b: str) -> int:
    """
    Hamming distance between two hex fingerprints of equal bit length.

    Raises:
        ValueError: if lengths differ or either value is not hex
    """
    if len(a) != len(b):
        raise ValueError(
            f"Fingerprints must have equal length, got {len(a)} and {len(b)} hex chars"
        )
    return bin(int(a, 16) ^ int(b, 16)).count("1")


def to_grayscale(pixels: np.ndarray) -> np.ndarray:
    """Luma (ITU-R 601) for RGB/RGBA arrays; 2-D arrays pass through."""
    arr = np.asarray(pixels, dtype=np.float64)
    if arr.ndim == 2:
        return arr
    if arr.ndim == 3 and arr.shape[2] >= 3:
        return 0.299 * arr[:, :, 0] + 0.587 * arr[:, :, 1] + 0.114 * arr[:, :, 2]
    raise ValueError(f"Expected an HxW or HxWxC image array, got shape {arr.shape}")


def _area_downsample(gray: np.ndarray, size: int) -> np.ndarray:
    """Average each of size x size roughly equal blocks."""
    height, width = gray.shape
    if height < size or width < size:
        raise ValueError(f"Image must be at least {size}x{size}, got {width}x{height}")
    row_edges = np.linspace(0, height, size + 1).astype(int)
    col_edges = np.linspace(0, width, size + 1).astype(int)
    cells = np.empty((size, size), dtype=np.float64)
    for r in range(size):
        for c in range(size):
            block = gray[row_edges[r]:row_edges[r + 1], col_edges[c]:col_edges[c + 1]]
            cells[r, c] = block.mean()
    return cells


def average_hash(pixels: np.ndarray, size: int = FINGERPRINT_SIZE) -> str:
    """
    Average-luminance fingerprint of an image.

    Each cell of the size x size grid is 1 when its luminance is at or above
    the grid mean. Bits are packed row-major, most significant first.
    """
    cells = _area_downsample(to_grayscale(pixels), size)
    bits = (cells >= cells.mean()).flatten()
    value = 0
    for bit in bits:
        value = (value << 1) | int(bit)
    return format(value, f"0{size * size // 4}x")


def crop_focus_region(pixels: np.ndarray) -> np.ndarray:
    """Cut the art box out of a full-card image."""
    arr = np.asarray(pixels)
    height, width = arr.shape[:2]
    fx, fy, fw, fh = FOCUS_REGION
    x, y = int(width * fx), int(height * fy)
    w, h = int(width * fw), int(height * fh)
    return arr[y:y + h, x:x + w]


def fingerprint_regions(pixels: np.ndarray) -> tuple[str, str]:
    """Return (full_card, focus_region) fingerprints for a card image."""
    return average_hash(pixels), average_hash(crop_focus_region(pixels))
