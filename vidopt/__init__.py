"""vidopt package root.

Export primary classes and CLI for convenience when installed via pip.
"""

from .cli import main as cli_main  # noqa: F401
from .video_optimizer import VideoOptimizer, ProcessedResult, OptimizerStats, RuntimeContext, create_video_optimizer  # noqa: F401
from .optimization_options import OptimizationOptions, InvalidOptionsError  # noqa: F401
from .capability_detector import CapabilityDetector, ffmpeg_playback_probe, static_playback_probe  # noqa: F401
from .quality_adapter import QualityAdapter, NetworkConditions, recommend_quality, conditions_from_client_hints  # noqa: F401
from .delivery_providers import DeliveryParams, build_delivery_url, build_poster, build_thumbnails, select_provider  # noqa: F401
from .manifest_builder import AdaptiveManifest, AdaptiveVariant, build_adaptive_manifest, render_manifest  # noqa: F401
from .size_estimator import estimate_size, compression_ratio  # noqa: F401
from .config_manager import ConfigManager  # noqa: F401
