"""
Capability Detection for the delivery optimizer
Probes which codecs and containers the playback runtime can decode
"""

import subprocess
import psutil
import platform
import logging
from typing import Callable, Dict, Iterable, Mapping, Optional, Set

from .video_config import (
    AUTO_FORMAT,
    CODEC_MIME_TYPES,
    CONTAINER_MIME_TYPES,
    CONTAINERS,
    FORMATS,
    SAFE_FALLBACK_FORMAT,
)

logger = logging.getLogger(__name__)

# A probe answers a MIME type the way HTMLMediaElement.canPlayType does:
# 'probably', 'maybe' or ''.
PlaybackProbe = Callable[[str], str]

PLAYABLE_ANSWERS = ('probably', 'maybe')

# ffmpeg decoder / demuxer names that prove a MIME type can be handled
FFMPEG_DECODERS = {
    'av1': ('libdav1d', 'libaom-av1', 'av1'),
    'vp9': ('vp9', 'libvpx-vp9'),
    'h264': ('h264',),
    'h265': ('hevc',),
}

FFMPEG_DEMUXERS = {
    'mp4': ('mov,mp4,m4a,3gp,3g2,mj2',),
    'webm': ('matroska,webm',),
    'mov': ('mov,mp4,m4a,3gp,3g2,mj2',),
}


class CapabilityDetector:
    """Owns the codec/container capability table for one engine instance."""

    def __init__(self, probe: Optional[PlaybackProbe] = None, auto_detect: bool = True):
        self.probe = probe
        self.capabilities: Dict[str, bool] = {}
        if auto_detect:
            self.detect()

    def detect(self) -> Dict[str, bool]:
        """Populate the capability table. Safe to call again; entries are overwritten, never removed."""
        if self.probe is None:
            logger.debug("No playback probe available - every codec and container marked unsupported")

        for codec in FORMATS:
            self.capabilities[codec] = self._probe(codec, CODEC_MIME_TYPES[codec])
        for container in CONTAINERS:
            self.capabilities[container] = self._probe(container, CONTAINER_MIME_TYPES[container])

        supported = [name for name, ok in self.capabilities.items() if ok]
        logger.info(f"Detected playback support: {', '.join(supported) if supported else 'none'}")
        return dict(self.capabilities)

    def _probe(self, name: str, mime_type: str) -> bool:
        if self.probe is None:
            return False
        try:
            answer = self.probe(mime_type)
        except Exception as e:
            logger.warning(f"Playback probe failed for {name} ({mime_type}): {e}")
            return False
        playable = answer in PLAYABLE_ANSWERS
        logger.debug(f"Probe {name}: {answer or 'no'}")
        return playable

    def is_supported(self, name: str) -> bool:
        """False for anything never probed"""
        return self.capabilities.get(name, False)

    def get_optimal_format(self, requested_format: str = AUTO_FORMAT) -> str:
        """
        Get the most efficient codec the runtime can play.
        An explicit request is honoured as-is.
        """
        if requested_format != AUTO_FORMAT:
            return requested_format

        for codec in FORMATS:
            if self.is_supported(codec):
                return codec

        logger.debug(f"No probed codec is playable, falling back to {SAFE_FALLBACK_FORMAT}")
        return SAFE_FALLBACK_FORMAT

    def snapshot(self) -> Dict[str, bool]:
        return dict(self.capabilities)

    def runtime_info(self) -> Dict[str, object]:
        """Basic host information for diagnostics"""
        return {
            'platform': platform.system(),
            'architecture': platform.architecture()[0],
            'cpu_count': psutil.cpu_count(),
            'memory_gb': round(psutil.virtual_memory().total / (1024**3), 2),
            'probe': type(self.probe).__name__ if self.probe is not None else None,
        }

    def get_capability_report(self) -> str:
        """Generate a human-readable capability report"""
        report = ["=== Playback Capability Report ==="]
        report.append("Codecs (most efficient first):")
        for codec in FORMATS:
            report.append(f"  {'OK' if self.is_supported(codec) else '--'} {codec}")
        report.append("Containers:")
        for container in CONTAINERS:
            report.append(f"  {'OK' if self.is_supported(container) else '--'} {container}")
        report.append("")
        report.append(f"Preferred codec: {self.get_optimal_format()}")
        return "\n".join(report)


class StaticPlaybackProbe:
    """Answers from a client-reported mapping, e.g. canPlayType results posted by a page."""

    def __init__(self, answers: Mapping[str, object]):
        self.answers = dict(answers)

    def __call__(self, mime_type: str) -> str:
        answer = self.answers.get(mime_type, '')
        if answer is True:
            return 'probably'
        if answer is False or answer is None:
            return ''
        return str(answer)


class FFmpegPlaybackProbe:
    """Answers from the decoders and demuxers compiled into the local ffmpeg."""

    def __init__(self, decoders: Iterable[str], demuxers: Iterable[str]):
        self.decoders: Set[str] = set(decoders)
        self.demuxers: Set[str] = set(demuxers)
        self._mime_lookup = {}
        for codec, mime_type in CODEC_MIME_TYPES.items():
            self._mime_lookup[mime_type] = (self.decoders, FFMPEG_DECODERS[codec])
        for container, mime_type in CONTAINER_MIME_TYPES.items():
            self._mime_lookup[mime_type] = (self.demuxers, FFMPEG_DEMUXERS[container])

    def __call__(self, mime_type: str) -> str:
        entry = self._mime_lookup.get(mime_type)
        if entry is None:
            return ''
        available, wanted = entry
        return 'probably' if any(name in available for name in wanted) else ''


def static_playback_probe(answers: Mapping[str, object]) -> StaticPlaybackProbe:
    return StaticPlaybackProbe(answers)


def ffmpeg_playback_probe(ffmpeg_path: str = 'ffmpeg', timeout: float = 15) -> Optional[FFmpegPlaybackProbe]:
    """
    Build a probe from `ffmpeg -decoders` / `ffmpeg -demuxers`.

    Returns None when ffmpeg is missing or broken so callers fall back to
    the conservative defaults.
    """
    try:
        decoders = _parse_ffmpeg_listing(_run_ffmpeg_listing(ffmpeg_path, '-decoders', timeout))
        demuxers = _parse_ffmpeg_listing(_run_ffmpeg_listing(ffmpeg_path, '-demuxers', timeout))
    except (subprocess.TimeoutExpired, subprocess.CalledProcessError, FileNotFoundError, OSError) as e:
        logger.warning(f"FFmpeg not available for capability detection: {e}")
        return None

    logger.info(f"FFmpeg probe ready: {len(decoders)} decoders, {len(demuxers)} demuxers")
    return FFmpegPlaybackProbe(decoders, demuxers)


def _run_ffmpeg_listing(ffmpeg_path: str, flag: str, timeout: float) -> str:
    result = subprocess.run([ffmpeg_path, '-hide_banner', flag],
                            capture_output=True, text=True, timeout=timeout, check=True)
    return result.stdout


def _parse_ffmpeg_listing(output: str) -> Set[str]:
    """
    Extract names from ffmpeg's tabular listings.

    Rows look like ' V....D h264   H.264 / AVC ...' (decoders) or
    ' D  matroska,webm   Matroska / WebM' (demuxers); the legend above the
    '--' separator is skipped.
    """
    names = set()
    in_table = False
    for line in output.splitlines():
        stripped = line.strip()
        if not in_table:
            if stripped.startswith('--'):
                in_table = True
            continue
        parts = stripped.split()
        if len(parts) >= 2:
            names.add(parts[1])
    return names
