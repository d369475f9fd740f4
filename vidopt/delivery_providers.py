"""
Delivery providers: translate an asset reference plus target parameters into
provider-specific delivery, poster and thumbnail URLs.

Each provider owns its URL dialect. Assets no known provider recognizes go
through PassthroughProvider, which hands the original reference back
unchanged, so building URLs never fails on an unfamiliar source.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .video_config import (
    POSTER_PLACEHOLDER,
    THUMBNAIL_HEIGHT,
    THUMBNAIL_WIDTH,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryParams:
    """Target rendition requested from the provider."""
    width: Optional[int] = None
    height: Optional[int] = None
    codec: Optional[str] = None
    container: Optional[str] = None
    bitrate: Optional[int] = None  # kbps
    framerate: Optional[float] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None


def format_number(value: Union[int, float]) -> str:
    """Render 1500.0 as '1500' and 29.97 as '29.97'."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def thumbnail_offsets(count: int) -> List[float]:
    """Evenly spaced positions through the asset, as percentages."""
    if count <= 0:
        return []
    return [i / count * 100 for i in range(count)]


class DeliveryProvider(ABC):
    """Common interface for every delivery network dialect."""

    name: str = ''
    host_pattern: Optional[re.Pattern] = None

    def matches(self, asset: str) -> bool:
        return bool(self.host_pattern and self.host_pattern.match(asset))

    @abstractmethod
    def build_delivery_url(self, asset: str, params: DeliveryParams) -> str:
        ...

    @abstractmethod
    def build_poster(self, asset: str, width: int, height: int, time_offset: float) -> str:
        ...

    @abstractmethod
    def thumbnail_url(self, asset: str, percent: float, width: int, height: int) -> Optional[str]:
        ...

    def build_thumbnails(self, asset: str, count: int,
                         width: int = THUMBNAIL_WIDTH, height: int = THUMBNAIL_HEIGHT) -> List[str]:
        thumbnails = []
        for percent in thumbnail_offsets(count):
            url = self.thumbnail_url(asset, percent, width, height)
            if url is not None:
                thumbnails.append(url)
        return thumbnails

    def __repr__(self):
        return f"{type(self).__name__}()"


class CloudflareStreamProvider(DeliveryProvider):
    """videodelivery.net: options travel as one comma-joined path segment."""

    name = 'cloudflare_stream'
    host_pattern = re.compile(r'^(?:https?:)?//(?:[\w-]+\.)*videodelivery\.net(?:[/?#]|$)', re.IGNORECASE)

    def build_delivery_url(self, asset: str, params: DeliveryParams) -> str:
        segment = []
        if params.width and params.height:
            segment.append(f"{params.width}x{params.height}")
        if params.bitrate:
            segment.append(f"br={format_number(params.bitrate)}")
        if params.framerate:
            segment.append(f"fps={format_number(params.framerate)}")
        if params.start_time:
            segment.append(f"start={format_number(params.start_time)}")
        if params.end_time:
            segment.append(f"end={format_number(params.end_time)}")

        base = asset.rstrip('/')
        container = params.container or 'mp4'
        if segment:
            return f"{base}/{','.join(segment)}/{container}"
        return f"{base}/{container}"

    def build_poster(self, asset: str, width: int, height: int, time_offset: float) -> str:
        return (f"{asset.rstrip('/')}/thumbnails/thumbnail.jpg"
                f"?time={format_number(time_offset)}s&width={width}&height={height}")

    def thumbnail_url(self, asset: str, percent: float, width: int, height: int) -> str:
        return (f"{asset.rstrip('/')}/thumbnails/thumbnail.jpg"
                f"?time={format_number(percent)}%&width={width}&height={height}")


class MuxProvider(DeliveryProvider):
    """stream.mux.com: options travel as query parameters."""

    name = 'mux'
    host_pattern = re.compile(r'^(?:https?:)?//(?:[\w-]+\.)*stream\.mux\.com(?:[/?#]|$)', re.IGNORECASE)

    def build_delivery_url(self, asset: str, params: DeliveryParams) -> str:
        query = [
            ('width', params.width),
            ('height', params.height),
            ('bitrate', params.bitrate),
            ('fps', params.framerate),
            ('start', params.start_time),
            ('end', params.end_time),
        ]
        return _set_query_params(asset, {key: format_number(value) for key, value in query if value})

    def build_poster(self, asset: str, width: int, height: int, time_offset: float) -> str:
        return (f"{asset.rstrip('/')}/thumbnail.jpg"
                f"?time={format_number(time_offset)}&width={width}&height={height}")

    def thumbnail_url(self, asset: str, percent: float, width: int, height: int) -> str:
        return (f"{asset.rstrip('/')}/thumbnail.jpg"
                f"?time={format_number(percent)}%&width={width}&height={height}")


class PassthroughProvider(DeliveryProvider):
    """Fallback for sources no provider recognizes."""

    name = 'passthrough'

    def __init__(self, poster_placeholder: str = POSTER_PLACEHOLDER):
        self.poster_placeholder = poster_placeholder

    def matches(self, asset: str) -> bool:
        return True

    def build_delivery_url(self, asset: str, params: DeliveryParams) -> str:
        return asset

    def build_poster(self, asset: str, width: int, height: int, time_offset: float) -> str:
        # Generating a poster for an arbitrary source would need server-side frame extraction
        return self.poster_placeholder

    def thumbnail_url(self, asset: str, percent: float, width: int, height: int) -> None:
        return None


def _set_query_params(url: str, params: Dict[str, str]) -> str:
    """Set (replace or append) query parameters, keeping the rest of the URL intact."""
    if not params:
        return url
    parts = urlsplit(url)
    query = []
    pending = dict(params)
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        if key in params:
            # First occurrence takes the new value, later duplicates of a set key are dropped
            if key in pending:
                query.append((key, pending.pop(key)))
            continue
        query.append((key, value))
    query.extend(pending.items())
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


PROVIDERS: Dict[str, DeliveryProvider] = {
    CloudflareStreamProvider.name: CloudflareStreamProvider(),
    MuxProvider.name: MuxProvider(),
}

PASSTHROUGH = PassthroughProvider()

ProviderLike = Union[str, DeliveryProvider, None]


def get_provider(name: str) -> DeliveryProvider:
    try:
        return PROVIDERS[name]
    except KeyError:
        raise ValueError(f"Unknown delivery provider: {name} (must be one of: {', '.join(PROVIDERS)})") from None


def select_provider(asset: str, preferred: ProviderLike = None,
                    fallback: Optional[DeliveryProvider] = None) -> DeliveryProvider:
    """
    Pick the provider that serves an asset.

    The asset URL decides: the preferred provider wins only if it recognizes
    the asset, otherwise the first provider that does, otherwise passthrough.
    """
    if isinstance(preferred, str):
        preferred = get_provider(preferred)
    if preferred is not None and preferred.matches(asset):
        return preferred

    for provider in PROVIDERS.values():
        if provider.matches(asset):
            if preferred is not None and provider is not preferred:
                logger.debug(f"Asset {asset} is served by {provider.name}, not requested {preferred.name}")
            return provider

    return fallback or PASSTHROUGH


def build_delivery_url(asset: str, params: DeliveryParams, provider: ProviderLike = None) -> str:
    return select_provider(asset, provider).build_delivery_url(asset, params)


def build_poster(asset: str, width: int, height: int, time_offset: float,
                 provider: ProviderLike = None) -> str:
    return select_provider(asset, provider).build_poster(asset, width, height, time_offset)


def build_thumbnails(asset: str, count: int, provider: ProviderLike = None,
                     width: int = THUMBNAIL_WIDTH, height: int = THUMBNAIL_HEIGHT) -> List[str]:
    return select_provider(asset, provider).build_thumbnails(asset, count, width, height)
