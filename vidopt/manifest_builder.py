"""
Adaptive bitrate manifest construction.

Walks the static bitrate ladder and produces one delivery URL per rung
through the provider dialects, then renders the result as an HLS master
playlist or a DASH MPD.
"""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional, Sequence, Tuple

from .delivery_providers import DeliveryParams, ProviderLike, select_provider
from .video_config import (
    CODEC_STRINGS,
    DEFAULT_VARIANT_LABEL,
    RESOLUTIONS,
    BitrateLadderEntry,
)

logger = logging.getLogger(__name__)

# Codec served over HLS; every other codec is published as DASH
HLS_FORMAT = 'h264'


@dataclass(frozen=True)
class AdaptiveVariant:
    url: str
    width: int
    height: int
    bitrate: int  # kbps
    label: str
    codecs: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AdaptiveManifest:
    format: str  # 'hls' or 'dash'
    variants: Tuple[AdaptiveVariant, ...]
    default_variant: AdaptiveVariant
    type: str = 'adaptive'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'format': self.format,
            'variants': [variant.to_dict() for variant in self.variants],
            'default_variant': self.default_variant.to_dict(),
        }


def get_codec_string(codec: str) -> str:
    try:
        return CODEC_STRINGS[codec]
    except KeyError:
        raise ValueError(f"No codec string known for {codec}") from None


def manifest_format_for(codec: str) -> str:
    return 'hls' if codec == HLS_FORMAT else 'dash'


def build_adaptive_manifest(asset: str, codec: str, provider: ProviderLike = None,
                            ladder: Sequence[BitrateLadderEntry] = RESOLUTIONS) -> AdaptiveManifest:
    """Build one variant per ladder rung, top to bottom."""
    if not ladder:
        raise ValueError("Bitrate ladder is empty")

    selected = select_provider(asset, provider)
    codecs = get_codec_string(codec)

    variants = []
    for rung in ladder:
        url = selected.build_delivery_url(asset, DeliveryParams(
            width=rung.width,
            height=rung.height,
            codec=codec,
            bitrate=rung.bitrate,
        ))
        variants.append(AdaptiveVariant(
            url=url,
            width=rung.width,
            height=rung.height,
            bitrate=rung.bitrate,
            label=rung.label,
            codecs=codecs,
        ))

    default_variant = next((v for v in variants if v.label == DEFAULT_VARIANT_LABEL), variants[0])
    manifest = AdaptiveManifest(
        format=manifest_format_for(codec),
        variants=tuple(variants),
        default_variant=default_variant,
    )
    logger.debug(f"Built {manifest.format} manifest for {asset}: {len(variants)} variants via {selected.name}")
    return manifest


def render_hls_master(manifest: AdaptiveManifest) -> str:
    """Render an HLS master playlist, default variant first so players start there."""
    lines = ["#EXTM3U", "#EXT-X-VERSION:3", "#EXT-X-INDEPENDENT-SEGMENTS"]

    ordered = [manifest.default_variant] + [v for v in manifest.variants if v is not manifest.default_variant]
    for variant in ordered:
        lines.append(
            f'#EXT-X-STREAM-INF:BANDWIDTH={variant.bitrate * 1000},'
            f'RESOLUTION={variant.width}x{variant.height},'
            f'CODECS="{variant.codecs}",NAME="{variant.label}"'
        )
        lines.append(variant.url)

    return "\n".join(lines) + "\n"


def render_dash_mpd(manifest: AdaptiveManifest, duration_seconds: Optional[float] = None) -> str:
    """Render a static DASH MPD with one Representation per variant."""
    mpd = ET.Element('MPD', {
        'xmlns': 'urn:mpeg:dash:schema:mpd:2011',
        'type': 'static',
        'profiles': 'urn:mpeg:dash:profile:isoff-on-demand:2011',
        'minBufferTime': 'PT2S',
    })
    if duration_seconds:
        mpd.set('mediaPresentationDuration', f"PT{duration_seconds:g}S")

    period = ET.SubElement(mpd, 'Period', {'id': '0'})
    adaptation = ET.SubElement(period, 'AdaptationSet', {
        'contentType': 'video',
        'mimeType': 'video/webm' if manifest.default_variant.codecs == CODEC_STRINGS['vp9'] else 'video/mp4',
        'segmentAlignment': 'true',
    })
    for variant in manifest.variants:
        representation = ET.SubElement(adaptation, 'Representation', {
            'id': variant.label,
            'bandwidth': str(variant.bitrate * 1000),
            'width': str(variant.width),
            'height': str(variant.height),
            'codecs': variant.codecs,
        })
        base_url = ET.SubElement(representation, 'BaseURL')
        base_url.text = variant.url

    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(mpd, encoding='unicode') + "\n"


def render_manifest(manifest: AdaptiveManifest, duration_seconds: Optional[float] = None) -> str:
    if manifest.format == 'hls':
        return render_hls_master(manifest)
    return render_dash_mpd(manifest, duration_seconds)
