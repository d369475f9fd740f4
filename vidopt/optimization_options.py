"""
Optimization options for a single delivery request.

Options are validated up front: a bad value raises InvalidOptionsError
before the optimizer touches its cache or in-flight map.
"""

from dataclasses import dataclass, asdict, fields
from typing import Any, Dict, Mapping, Optional, Union

from .video_config import (
    AUTO_FORMAT,
    CDN_PROVIDERS,
    CONTAINERS,
    DEFAULT_CDN_PROVIDER,
    DEFAULT_THUMBNAIL_COUNT,
    FORMATS,
    QUALITY_PRESETS,
)

# Spellings accepted from callers that speak the browser-side option names
OPTION_ALIASES = {
    'format': 'format',
    'codec': 'format',
    'startTime': 'start_time',
    'endTime': 'end_time',
    'cdnProvider': 'cdn_provider',
    'provider': 'cdn_provider',
    'adaptiveStreaming': 'adaptive_streaming',
    'generateThumbnails': 'generate_thumbnails',
    'thumbnailCount': 'thumbnail_count',
}


class InvalidOptionsError(ValueError):
    """Raised when an option value is rejected before any work starts"""

    def __init__(self, field: str, value: Any, reason: str):
        super().__init__(f"Invalid option {field}={value!r}: {reason}")
        self.field = field
        self.value = value
        self.reason = reason


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _normalize_number(value: Any) -> Any:
    # 1280.0 and 1280 are the same request
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


@dataclass(frozen=True)
class OptimizationOptions:
    width: Optional[int] = None
    height: Optional[int] = None
    quality: Union[str, int, float, None] = None
    format: str = AUTO_FORMAT
    container: str = 'mp4'
    bitrate: Optional[float] = None
    framerate: Optional[float] = None
    duration: Optional[float] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    muted: bool = False
    autoplay: bool = False
    poster: Optional[str] = None
    cdn_provider: str = DEFAULT_CDN_PROVIDER
    adaptive_streaming: bool = True
    generate_thumbnails: bool = True
    thumbnail_count: int = DEFAULT_THUMBNAIL_COUNT

    def __post_init__(self):
        self._validate()
        # 1280.0 is accepted but delivered as 1280
        for name in ('width', 'height'):
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, int(value))

    def _validate(self):
        for name in ('width', 'height'):
            value = getattr(self, name)
            if value is not None and (not _is_number(value) or value <= 0 or not float(value).is_integer()):
                raise InvalidOptionsError(name, value, "must be a positive integer")

        quality = self.quality
        if quality is not None:
            if isinstance(quality, str):
                if quality not in QUALITY_PRESETS:
                    raise InvalidOptionsError('quality', quality,
                                              f"unknown preset (must be one of: {', '.join(QUALITY_PRESETS)})")
            elif not _is_number(quality) or quality <= 0:
                raise InvalidOptionsError('quality', quality, "must be a preset name or a positive bitrate in kbps")

        if self.format != AUTO_FORMAT and self.format not in FORMATS:
            raise InvalidOptionsError('format', self.format,
                                      f"must be '{AUTO_FORMAT}' or one of: {', '.join(FORMATS)}")
        if self.container not in CONTAINERS:
            raise InvalidOptionsError('container', self.container, f"must be one of: {', '.join(CONTAINERS)}")
        if self.cdn_provider not in CDN_PROVIDERS:
            raise InvalidOptionsError('cdn_provider', self.cdn_provider,
                                      f"must be one of: {', '.join(CDN_PROVIDERS)}")

        for name in ('bitrate', 'framerate'):
            value = getattr(self, name)
            if value is not None and (not _is_number(value) or value <= 0):
                raise InvalidOptionsError(name, value, "must be a positive number")

        for name in ('duration', 'start_time', 'end_time'):
            value = getattr(self, name)
            if value is not None and (not _is_number(value) or value < 0):
                raise InvalidOptionsError(name, value, "must be a non-negative number of seconds")

        if self.start_time is not None and self.end_time is not None and self.end_time <= self.start_time:
            raise InvalidOptionsError('end_time', self.end_time, f"must be after start_time ({self.start_time})")

        for name in ('muted', 'autoplay', 'adaptive_streaming', 'generate_thumbnails'):
            value = getattr(self, name)
            if not isinstance(value, bool):
                raise InvalidOptionsError(name, value, "must be true or false")

        if self.poster is not None and not isinstance(self.poster, str):
            raise InvalidOptionsError('poster', self.poster, "must be a URL string")

        if not _is_int(self.thumbnail_count) or self.thumbnail_count < 0:
            raise InvalidOptionsError('thumbnail_count', self.thumbnail_count, "must be a non-negative integer")

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]] = None, **defaults) -> 'OptimizationOptions':
        """
        Build options from a plain mapping.

        Keys may use either snake_case or the camelCase names; `defaults`
        fills fields the mapping leaves out. Unknown keys are rejected.
        """
        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}

        for source in (defaults, data or {}):
            for key, value in source.items():
                name = OPTION_ALIASES.get(key, key)
                if name not in known:
                    raise InvalidOptionsError(key, value, "unknown option")
                if value is None and source is data and name in defaults:
                    continue
                values[name] = value

        # None means "use the default" for fields whose default is not None
        for f in fields(cls):
            if values.get(f.name, f.default) is None and f.default is not None:
                values.pop(f.name, None)

        try:
            return cls(**values)
        except TypeError as e:
            raise InvalidOptionsError('options', data, str(e)) from e

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def cache_key_payload(self) -> Dict[str, Any]:
        """Canonical form used for cache keys; numerically equal values compare equal."""
        return {name: _normalize_number(value) for name, value in self.to_dict().items()}
