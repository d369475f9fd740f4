# video_config.py
"""
Static delivery tables: codecs, containers, quality presets, the adaptive
bitrate ladder, delivery providers and size budgets.

These values are configuration, not state. Nothing in the engine mutates them.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Tuple

# Codecs in order of compression efficiency (most efficient first); matches COMPRESSION_FACTORS
FORMATS: Tuple[str, ...] = ('av1', 'h265', 'vp9', 'h264')

CONTAINERS: Tuple[str, ...] = ('mp4', 'webm', 'mov')

# Codec every client is expected to decode
SAFE_FALLBACK_FORMAT = 'h264'

AUTO_FORMAT = 'auto'


@dataclass(frozen=True)
class QualityPreset:
    """Named quality tier mapped to a fixed bitrate/compression target."""
    key: str
    bitrate: int  # kbps
    crf: int
    name: str

    def to_dict(self) -> Dict[str, object]:
        return {'key': self.key, 'bitrate': self.bitrate, 'crf': self.crf, 'name': self.name}


QUALITY_PRESETS = MappingProxyType({
    'ultra': QualityPreset('ultra', 8000, 18, '4K Ultra'),
    'high': QualityPreset('high', 4000, 23, '1080p High'),
    'medium': QualityPreset('medium', 2000, 28, '720p Medium'),
    'low': QualityPreset('low', 800, 32, '480p Low'),
    'mobile': QualityPreset('mobile', 400, 35, '360p Mobile'),
})

# Used when quality is an explicit bitrate instead of a preset name
CUSTOM_QUALITY_CRF = 28
CUSTOM_QUALITY_BITRATE = 2000


@dataclass(frozen=True)
class BitrateLadderEntry:
    width: int
    height: int
    label: str
    bitrate: int  # kbps


# Adaptive streaming rungs, highest resolution first
RESOLUTIONS: Tuple[BitrateLadderEntry, ...] = (
    BitrateLadderEntry(3840, 2160, '4K', 8000),
    BitrateLadderEntry(2560, 1440, '1440p', 5000),
    BitrateLadderEntry(1920, 1080, '1080p', 3000),
    BitrateLadderEntry(1280, 720, '720p', 1500),
    BitrateLadderEntry(854, 480, '480p', 800),
    BitrateLadderEntry(640, 360, '360p', 400),
)

DEFAULT_VARIANT_LABEL = '720p'

# Playability probes handed to the runtime, per codec and per container
CODEC_MIME_TYPES = MappingProxyType({
    'av1': 'video/mp4; codecs="av01.0.08M.08"',
    'vp9': 'video/webm; codecs="vp9"',
    'h264': 'video/mp4; codecs="avc1.42E01E"',
    'h265': 'video/mp4; codecs="hev1.1.6.L93.B0"',
})

CONTAINER_MIME_TYPES = MappingProxyType({
    'mp4': 'video/mp4',
    'webm': 'video/webm',
    'mov': 'video/quicktime',
})

# RFC 6381 codec strings advertised in manifests
CODEC_STRINGS = MappingProxyType({
    'av1': 'av01.0.08M.08',
    'vp9': 'vp9',
    'h264': 'avc1.42E01E',
    'h265': 'hev1.1.6.L93.B0',
})

# Relative output size at equal bitrate (h264 = baseline)
COMPRESSION_FACTORS = MappingProxyType({
    'av1': 0.5,   # 50% more efficient than H.264
    'h265': 0.6,  # 40% more efficient than H.264
    'vp9': 0.7,   # 30% more efficient than H.264
    'h264': 1.0,  # baseline
})

# Reference encode used to report savings
BASELINE_FORMAT = 'h264'
BASELINE_BITRATE = 3000

# Maximum file sizes (MB) per delivery profile
MAX_FILE_SIZE = MappingProxyType({
    'mobile': 50,
    'desktop': 200,
    'streaming': 500,
})

CDN_PROVIDERS = MappingProxyType({
    'cloudflare_stream': {
        'base_url': 'https://videodelivery.net',
        'formats': ('mp4', 'webm'),
        'features': ('adaptive_streaming', 'thumbnails', 'watermarks', 'trim'),
    },
    'mux': {
        'base_url': 'https://stream.mux.com',
        'formats': ('mp4', 'webm', 'hls'),
        'features': ('adaptive_streaming', 'analytics', 'thumbnails', 'gif_generation'),
    },
})

DEFAULT_CDN_PROVIDER = 'cloudflare_stream'

EFFECTIVE_CONNECTION_TYPES: Tuple[str, ...] = ('slow-2g', '2g', '3g', '4g')

# Result echoes when the caller leaves these unset
DEFAULT_WIDTH = 1280
DEFAULT_HEIGHT = 720
DEFAULT_FRAMERATE = 30
ESTIMATION_DURATION_SECONDS = 60

DEFAULT_THUMBNAIL_COUNT = 10
THUMBNAIL_WIDTH = 160
THUMBNAIL_HEIGHT = 90

POSTER_PLACEHOLDER = '/images/video-poster-placeholder.jpg'
POSTER_DEFAULT_OFFSET_SECONDS = 5
POSTER_DURATION_FRACTION = 0.1
