"""
Video delivery optimizer.

Coordinates format negotiation, URL/manifest building and size estimation
for an asset, and memoizes the result. Identical concurrent requests are
coalesced: the first caller computes, later callers wait on the same
Future, and nobody recomputes a cached key.
"""

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .capability_detector import CapabilityDetector, PlaybackProbe, ffmpeg_playback_probe
from .config_manager import ConfigManager
from .delivery_providers import DeliveryParams, PassthroughProvider, select_provider
from .manifest_builder import AdaptiveManifest, build_adaptive_manifest
from .optimization_options import InvalidOptionsError, OptimizationOptions
from .quality_adapter import NetworkConditions, QualityAdapter
from .size_estimator import baseline_size, compression_ratio, estimate_size
from .video_config import (
    CUSTOM_QUALITY_BITRATE,
    CUSTOM_QUALITY_CRF,
    DEFAULT_CDN_PROVIDER,
    DEFAULT_FRAMERATE,
    DEFAULT_HEIGHT,
    DEFAULT_THUMBNAIL_COUNT,
    DEFAULT_WIDTH,
    ESTIMATION_DURATION_SECONDS,
    POSTER_DEFAULT_OFFSET_SECONDS,
    POSTER_DURATION_FRACTION,
    POSTER_PLACEHOLDER,
    QUALITY_PRESETS,
    THUMBNAIL_HEIGHT,
    THUMBNAIL_WIDTH,
)

logger = logging.getLogger(__name__)

OptionsLike = Union[OptimizationOptions, Mapping[str, Any], None]
BatchItem = Union[Tuple[str, OptionsLike], Mapping[str, Any]]


@dataclass(frozen=True)
class PlaybackOptions:
    muted: bool
    autoplay: bool
    preload: str = 'metadata'
    controls: bool = True
    plays_inline: bool = True


@dataclass(frozen=True)
class ResultMetadata:
    original_src: str
    processing_time: float  # epoch seconds
    cdn_provider: str
    delivered_by: str
    quality_settings: Dict[str, Any]
    adaptive_streaming: bool
    cache_key: str


@dataclass(frozen=True)
class ProcessedResult:
    """Outcome of one optimization. Treat as read-only; it is shared by every caller of the key."""
    optimized_url: str
    adaptive_manifest: Optional[AdaptiveManifest]
    poster_url: str
    thumbnails: Tuple[str, ...]
    format: str
    container: str
    width: int
    height: int
    bitrate: float
    framerate: float
    duration: float
    estimated_size: float  # MB
    compression_ratio: float  # fraction of the baseline size saved
    playback_options: PlaybackOptions
    metadata: ResultMetadata

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['thumbnails'] = list(self.thumbnails)
        data['adaptive_manifest'] = self.adaptive_manifest.to_dict() if self.adaptive_manifest else None
        return data


@dataclass(frozen=True)
class OptimizerStats:
    cache_size: int
    in_flight: int
    computations: int
    cache_hits: int
    cache_misses: int
    coalesced: int
    format_distribution: Dict[str, int]
    average_compression_ratio: float
    total_estimated_size: float
    browser_capabilities: Dict[str, bool]
    network_conditions: NetworkConditions

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RuntimeContext:
    """Process-level signals one optimizer reads: capability table and network conditions."""
    capabilities: CapabilityDetector = field(default_factory=CapabilityDetector)
    network: QualityAdapter = field(default_factory=QualityAdapter)

    @classmethod
    def create(cls, probe: Optional[PlaybackProbe] = None,
               network_defaults: Optional[Mapping[str, Any]] = None) -> 'RuntimeContext':
        return cls(capabilities=CapabilityDetector(probe), network=QualityAdapter(network_defaults))


class VideoOptimizer:
    """Single-flight, memoizing front door for delivery optimization."""

    def __init__(self, context: Optional[RuntimeContext] = None,
                 config: Optional[ConfigManager] = None,
                 max_entries: Optional[int] = None,
                 max_workers: Optional[int] = None):
        self.context = context or RuntimeContext()
        self.config = config

        self.default_provider = self._config_value('delivery_optimizer.default_provider', DEFAULT_CDN_PROVIDER)
        self.thumbnail_count = self._config_value('delivery_optimizer.thumbnails.count', DEFAULT_THUMBNAIL_COUNT)
        self.thumbnail_size = (
            self._config_value('delivery_optimizer.thumbnails.width', THUMBNAIL_WIDTH),
            self._config_value('delivery_optimizer.thumbnails.height', THUMBNAIL_HEIGHT),
        )
        self.poster_offset = self._config_value('delivery_optimizer.poster.default_time_offset',
                                                POSTER_DEFAULT_OFFSET_SECONDS)
        self.passthrough = PassthroughProvider(
            self._config_value('delivery_optimizer.poster.placeholder', POSTER_PLACEHOLDER))
        self.max_entries = max_entries if max_entries is not None else \
            self._config_value('delivery_optimizer.cache.max_entries', None)
        self.max_workers = max_workers if max_workers is not None else \
            self._config_value('delivery_optimizer.batch.max_workers', None)

        self._lock = threading.Lock()
        self._cache: 'OrderedDict[str, ProcessedResult]' = OrderedDict()
        self._in_flight: Dict[str, Future] = {}

        self._computations = 0
        self._cache_hits = 0
        self._cache_misses = 0
        self._coalesced = 0

        if self.max_entries is None:
            logger.info("Result cache is unbounded; call clear_cache() to release entries")
        else:
            logger.info(f"Result cache bounded to {self.max_entries} entries (oldest evicted first)")

    def _config_value(self, key_path: str, default: Any) -> Any:
        if self.config is None:
            return default
        value = self.config.get(key_path, default)
        return default if value is None else value

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_optimal_format(self, requested_format: str = 'auto') -> str:
        return self.context.capabilities.get_optimal_format(requested_format)

    def build_options(self, options: OptionsLike = None) -> OptimizationOptions:
        """Coerce caller options into a validated OptimizationOptions (raises InvalidOptionsError)."""
        if isinstance(options, OptimizationOptions):
            return options
        if options is not None and not isinstance(options, Mapping):
            raise InvalidOptionsError('options', options, "must be a mapping or OptimizationOptions")
        return OptimizationOptions.from_dict(options, cdn_provider=self.default_provider,
                                             thumbnail_count=self.thumbnail_count)

    @staticmethod
    def generate_cache_key(src: str, options: OptimizationOptions) -> str:
        """Deterministic key: equal asset + equal option values give equal keys."""
        payload = {'src': src, 'options': options.cache_key_payload()}
        encoded = json.dumps(payload, sort_keys=True, separators=(',', ':'), default=str)
        return hashlib.sha256(encoded.encode('utf-8')).hexdigest()

    def process(self, src: str, options: OptionsLike = None) -> ProcessedResult:
        """
        Optimize one asset.

        Returns the cached result when the key was computed before, joins an
        identical computation already in flight, or computes it. A failure
        propagates to every waiter and is never cached.
        """
        _validate_src(src)
        opts = self.build_options(options)
        return self._process_validated(src, opts)

    def process_batch(self, requests: Iterable[BatchItem]) -> List[ProcessedResult]:
        """
        Optimize many assets concurrently; results keep the input order.

        Every item is validated before any work starts. The first failing
        item (in input order) re-raises its error after all items settle;
        failed items leave nothing in the cache.
        """
        prepared = []
        for index, item in enumerate(requests):
            src, options = _unpack_batch_item(item, index)
            _validate_src(src)
            prepared.append((src, self.build_options(options)))

        if not prepared:
            return []

        workers = min(self.max_workers, len(prepared)) if self.max_workers else None
        logger.debug(f"Processing batch of {len(prepared)} assets")
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='vidopt-batch') as executor:
            futures = [executor.submit(self._process_validated, src, opts) for src, opts in prepared]
            return [future.result() for future in futures]

    def clear_cache(self) -> None:
        """Drop cached results. Capabilities and network conditions are untouched."""
        with self._lock:
            cleared = len(self._cache)
            self._cache.clear()
        logger.info(f"Cleared {cleared} cached optimization results")

    def stats(self) -> OptimizerStats:
        with self._lock:
            cached = list(self._cache.values())
            in_flight = len(self._in_flight)
            counters = (self._computations, self._cache_hits, self._cache_misses, self._coalesced)

        distribution: Dict[str, int] = {}
        for result in cached:
            distribution[result.format] = distribution.get(result.format, 0) + 1

        total_ratio = sum(result.compression_ratio for result in cached)
        total_size = sum(result.estimated_size for result in cached)

        return OptimizerStats(
            cache_size=len(cached),
            in_flight=in_flight,
            computations=counters[0],
            cache_hits=counters[1],
            cache_misses=counters[2],
            coalesced=counters[3],
            format_distribution=distribution,
            average_compression_ratio=total_ratio / len(cached) if cached else 0.0,
            total_estimated_size=round(total_size, 2),
            browser_capabilities=self.context.capabilities.snapshot(),
            network_conditions=self.context.network.current_conditions(),
        )

    def update_network_conditions(self, conditions: Optional[Mapping[str, Any]] = None, **kwargs) -> NetworkConditions:
        return self.context.network.update(conditions, **kwargs)

    # ------------------------------------------------------------------
    # Single-flight machinery
    # ------------------------------------------------------------------

    def _process_validated(self, src: str, opts: OptimizationOptions) -> ProcessedResult:
        cache_key = self.generate_cache_key(src, opts)

        with self._lock:
            cached = self._cache.get(cache_key)
            if cached is not None:
                self._cache_hits += 1
                logger.debug(f"Cache hit for {src} ({cache_key[:12]})")
                return cached

            pending = self._in_flight.get(cache_key)
            if pending is None:
                self._cache_misses += 1
                pending = Future()
                self._in_flight[cache_key] = pending
                owner = True
            else:
                self._coalesced += 1
                owner = False

        if not owner:
            logger.debug(f"Joining in-flight optimization for {src} ({cache_key[:12]})")
            return pending.result()

        result = None
        error = None
        try:
            result = self._perform_processing(src, opts, cache_key)
            with self._lock:
                self._store_result(cache_key, result)
            return result
        except BaseException as e:
            error = e
            logger.error(f"Optimization failed for {src}: {e}")
            raise
        finally:
            with self._lock:
                self._in_flight.pop(cache_key, None)
            if error is not None:
                pending.set_exception(error)
            else:
                pending.set_result(result)

    def _store_result(self, cache_key: str, result: ProcessedResult) -> None:
        """Caller holds the lock."""
        self._cache[cache_key] = result
        if self.max_entries is not None:
            while len(self._cache) > self.max_entries:
                evicted_key, _ = self._cache.popitem(last=False)
                logger.info(f"Evicted cached result {evicted_key[:12]} (max_entries={self.max_entries})")

    # ------------------------------------------------------------------
    # The computation itself
    # ------------------------------------------------------------------

    def _resolve_quality(self, opts: OptimizationOptions) -> Dict[str, Any]:
        quality = opts.quality
        if isinstance(quality, str):
            return dict(QUALITY_PRESETS[quality].to_dict(), source='explicit')
        if quality is not None:
            return {'key': 'custom', 'bitrate': quality, 'crf': CUSTOM_QUALITY_CRF,
                    'name': 'Custom', 'source': 'explicit'}
        if opts.bitrate is not None:
            return {'key': 'custom', 'bitrate': opts.bitrate, 'crf': CUSTOM_QUALITY_CRF,
                    'name': 'Custom', 'source': 'bitrate'}

        recommended = self.context.network.recommended_quality()
        logger.debug(f"No quality requested, network recommends {recommended}")
        return dict(QUALITY_PRESETS[recommended].to_dict(), source='network')

    def _perform_processing(self, src: str, opts: OptimizationOptions, cache_key: str) -> ProcessedResult:
        with self._lock:
            self._computations += 1

        optimal_format = self.get_optimal_format(opts.format)
        quality_settings = self._resolve_quality(opts)
        bitrate = quality_settings.get('bitrate') or CUSTOM_QUALITY_BITRATE
        provider = select_provider(src, opts.cdn_provider, fallback=self.passthrough)

        width = opts.width or DEFAULT_WIDTH
        height = opts.height or DEFAULT_HEIGHT

        optimized_url = provider.build_delivery_url(src, DeliveryParams(
            width=opts.width,
            height=opts.height,
            codec=optimal_format,
            container=opts.container,
            bitrate=bitrate,
            framerate=opts.framerate,
            start_time=opts.start_time,
            end_time=opts.end_time,
        ))

        adaptive_manifest = build_adaptive_manifest(src, optimal_format, provider) \
            if opts.adaptive_streaming else None

        if opts.poster:
            poster_url = opts.poster
        else:
            # 10% into the video, or a fixed offset when the duration is unknown
            time_offset = round(opts.duration * POSTER_DURATION_FRACTION, 3) if opts.duration else self.poster_offset
            poster_url = provider.build_poster(src, width, height, time_offset)

        thumbnails = tuple(provider.build_thumbnails(src, opts.thumbnail_count, *self.thumbnail_size)) \
            if opts.generate_thumbnails else ()

        estimation_duration = opts.duration or ESTIMATION_DURATION_SECONDS
        original_size = baseline_size(width, height, estimation_duration)
        optimized_size = estimate_size(width, height, estimation_duration, optimal_format, bitrate)
        ratio = compression_ratio(original_size, optimized_size)

        logger.info(f"Optimized {src}: {optimal_format}/{opts.container} @ {bitrate}kbps via {provider.name}, "
                    f"~{optimized_size}MB ({ratio:.0%} saved)")

        return ProcessedResult(
            optimized_url=optimized_url,
            adaptive_manifest=adaptive_manifest,
            poster_url=poster_url,
            thumbnails=thumbnails,
            format=optimal_format,
            container=opts.container,
            width=width,
            height=height,
            bitrate=bitrate,
            framerate=opts.framerate or DEFAULT_FRAMERATE,
            duration=opts.duration or 0,
            estimated_size=optimized_size,
            compression_ratio=ratio,
            playback_options=PlaybackOptions(muted=opts.muted, autoplay=opts.autoplay),
            metadata=ResultMetadata(
                original_src=src,
                processing_time=time.time(),
                cdn_provider=opts.cdn_provider,
                delivered_by=provider.name,
                quality_settings=quality_settings,
                adaptive_streaming=opts.adaptive_streaming,
                cache_key=cache_key,
            ),
        )


def _validate_src(src: Any) -> None:
    if not isinstance(src, str) or not src.strip():
        raise InvalidOptionsError('src', src, "must be a non-empty asset reference string")


def _unpack_batch_item(item: BatchItem, index: int) -> Tuple[str, OptionsLike]:
    if isinstance(item, Mapping):
        if 'src' not in item:
            raise InvalidOptionsError(f'requests[{index}]', item, "missing 'src'")
        return item['src'], item.get('options')
    if isinstance(item, Sequence) and not isinstance(item, str) and len(item) == 2:
        return item[0], item[1]
    raise InvalidOptionsError(f'requests[{index}]', item, "must be (src, options) or {'src': ..., 'options': ...}")


def create_video_optimizer(config_manager: Optional[ConfigManager] = None,
                           probe: Optional[PlaybackProbe] = None) -> VideoOptimizer:
    """
    Wire a VideoOptimizer from configuration.

    Without an explicit probe the local ffmpeg build is probed when
    `delivery_optimizer.capabilities.use_ffmpeg` is enabled; otherwise every
    codec counts as unsupported and negotiation settles on the safe fallback.
    """
    config = config_manager or ConfigManager()

    if probe is None and config.get('delivery_optimizer.capabilities.use_ffmpeg', False):
        probe = ffmpeg_playback_probe(
            config.get('delivery_optimizer.capabilities.ffmpeg_path', 'ffmpeg'),
            timeout=config.get('delivery_optimizer.capabilities.probe_timeout_seconds', 15),
        )

    context = RuntimeContext.create(probe=probe, network_defaults=config.get_network_defaults())
    return VideoOptimizer(context=context, config=config)
