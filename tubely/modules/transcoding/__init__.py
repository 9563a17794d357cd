"""Media inspection and preparation for uploaded videos.

Classifies aspect ratios and wraps the ffprobe/ffmpeg command line tools
used to read stream geometry and to rewrite MP4s for fast start.
"""

from tubely.modules.transcoding.ffmpeg import (
    FastStartError,
    FastStartRewriter,
    FFmpegFastStartRewriter,
    FFprobeMediaProbe,
    MediaProbe,
    MediaProbeError,
    MediaToolError,
)
from tubely.modules.transcoding.ratio import classify_aspect_ratio, gcd, reduce_ratio
from tubely.modules.transcoding.schemas import Orientation, VideoGeometry

__all__ = [
    "FastStartError",
    "FastStartRewriter",
    "FFmpegFastStartRewriter",
    "FFprobeMediaProbe",
    "MediaProbe",
    "MediaProbeError",
    "MediaToolError",
    "Orientation",
    "VideoGeometry",
    "classify_aspect_ratio",
    "gcd",
    "reduce_ratio",
]
