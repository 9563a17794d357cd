"""Aspect ratio reduction and orientation classification."""

from tubely.modules.transcoding.schemas import Orientation

LANDSCAPE_RATIO = (16, 9)
PORTRAIT_RATIO = (9, 16)

# Accepts near-standard sizes such as 854x480 or 1366x768
RATIO_TOLERANCE = 0.01


def gcd(a: int, b: int) -> int:
    """Greatest common divisor by the Euclidean remainder algorithm."""
    while b != 0:
        a, b = b, a % b
    return a


def reduce_ratio(width: int, height: int) -> tuple[int, int]:
    """Reduce ``width:height`` to lowest terms.

    Raises:
        ValueError: If either dimension is not positive
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Dimensions must be positive, got {width}x{height}")
    divisor = gcd(width, height)
    return width // divisor, height // divisor


def classify_aspect_ratio(width: int, height: int) -> Orientation:
    """Classify a video's dimensions into an orientation bucket.

    Exact 16:9 and 9:16 reductions win first; otherwise the raw ratio is
    compared against both with a small tolerance.

    Args:
        width: Frame width in pixels
        height: Frame height in pixels

    Returns:
        Orientation of the video

    Raises:
        ValueError: If either dimension is not positive
    """
    reduced = reduce_ratio(width, height)
    if reduced == LANDSCAPE_RATIO:
        return Orientation.LANDSCAPE
    if reduced == PORTRAIT_RATIO:
        return Orientation.PORTRAIT

    ratio = width / height
    if abs(ratio - 16 / 9) < RATIO_TOLERANCE:
        return Orientation.LANDSCAPE
    if abs(ratio - 9 / 16) < RATIO_TOLERANCE:
        return Orientation.PORTRAIT
    return Orientation.OTHER
