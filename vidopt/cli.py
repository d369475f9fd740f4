"""
Command Line Interface for the delivery optimizer
Main entry point with argument parsing and command execution
"""

import argparse
import json
import sys
from typing import Any, Dict, List, Optional, Union

from .logger_setup import setup_logging, get_logger
from .config_manager import ConfigManager
from .capability_detector import ffmpeg_playback_probe
from .manifest_builder import build_adaptive_manifest, render_manifest
from .optimization_options import InvalidOptionsError
from .quality_adapter import NetworkConditions, recommend_quality
from .video_config import CDN_PROVIDERS, CONTAINERS, EFFECTIVE_CONNECTION_TYPES, FORMATS, QUALITY_PRESETS
from .video_optimizer import create_video_optimizer

logger = get_logger(__name__)


def _quality_arg(value: str) -> Union[str, float]:
    """Preset name or explicit bitrate in kbps"""
    if value in QUALITY_PRESETS:
        return value
    try:
        return float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"must be one of {', '.join(QUALITY_PRESETS)} or a bitrate in kbps") from None


class DeliveryOptimizerCLI:
    def __init__(self, stdout=None):
        self.stdout = stdout or sys.stdout
        self.config = None

    def main(self, argv: Optional[List[str]] = None) -> int:
        """Main entry point; returns the process exit code"""
        args = self._parse_arguments(argv)

        effective_level = 'DEBUG' if args.debug else args.log_level
        setup_logging(log_level=effective_level)

        self.config = ConfigManager(args.config_dir)
        if not self.config.validate_config():
            logger.error("Configuration is invalid, aborting")
            return 2
        if args.debug:
            self.config.log_active_configuration()

        try:
            if args.command == 'optimize':
                return self._optimize(args)
            if args.command == 'manifest':
                return self._manifest(args)
            if args.command == 'quality':
                return self._quality(args)
            if args.command == 'capabilities':
                return self._capabilities(args)
        except InvalidOptionsError as e:
            logger.error(str(e))
            return 2

        return 1

    def _parse_arguments(self, argv: Optional[List[str]] = None) -> argparse.Namespace:
        """Parse command line arguments"""
        parser = argparse.ArgumentParser(
            prog='vidopt',
            description="Delivery optimizer - plan adaptive video delivery for CDN-hosted assets",
            epilog="Examples:\n"
                   "  %(prog)s optimize https://videodelivery.net/abc123 --width 1280 --height 720 -q medium\n"
                   "  %(prog)s manifest https://stream.mux.com/xyz --format vp9\n"
                   "  %(prog)s quality --ect 3g --downlink 2.5\n"
                   "  %(prog)s capabilities --ffmpeg-probe\n",
            formatter_class=argparse.RawDescriptionHelpFormatter
        )

        # Global options
        parser.add_argument('--config-dir', default='config',
                            help='Configuration directory (packaged defaults are used for missing files)')
        parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                            default=None, help='Override logging level (default: WARNING)')
        parser.add_argument('-v', '--debug', action='store_true',
                            help='Enable verbose debug output')

        subparsers = parser.add_subparsers(dest='command', required=True)

        optimize = subparsers.add_parser('optimize', aliases=['o'], help='Optimize a single asset')
        optimize.add_argument('src', help='Asset reference (provider URL or path)')
        optimize.add_argument('--width', type=int)
        optimize.add_argument('--height', type=int)
        optimize.add_argument('-q', '--quality', type=_quality_arg,
                              help='Preset name or bitrate in kbps (default: network recommendation)')
        optimize.add_argument('-f', '--format', choices=FORMATS + ('auto',), default='auto')
        optimize.add_argument('-c', '--container', choices=CONTAINERS, default='mp4')
        optimize.add_argument('--framerate', type=float)
        optimize.add_argument('--duration', type=float, help='Duration in seconds, improves size estimates')
        optimize.add_argument('--start', dest='start_time', type=float, help='Trim start (seconds)')
        optimize.add_argument('--end', dest='end_time', type=float, help='Trim end (seconds)')
        optimize.add_argument('-p', '--provider', dest='cdn_provider', choices=list(CDN_PROVIDERS))
        optimize.add_argument('--no-adaptive', dest='adaptive_streaming', action='store_false')
        optimize.add_argument('--thumbnails', dest='thumbnail_count', type=int, metavar='N')
        optimize.add_argument('--no-thumbnails', dest='generate_thumbnails', action='store_false')
        optimize.add_argument('--muted', action='store_true')
        optimize.add_argument('--autoplay', action='store_true')
        optimize.add_argument('--ffmpeg-probe', action='store_true',
                              help='Detect playable codecs from the local ffmpeg build')

        manifest = subparsers.add_parser('manifest', aliases=['m'], help='Render an adaptive streaming manifest')
        manifest.add_argument('src', help='Asset reference (provider URL or path)')
        manifest.add_argument('-f', '--format', choices=FORMATS + ('auto',), default='auto')
        manifest.add_argument('-p', '--provider', dest='cdn_provider', choices=list(CDN_PROVIDERS))
        manifest.add_argument('--duration', type=float)
        manifest.add_argument('--json', action='store_true', help='Print the manifest structure instead')
        manifest.add_argument('--ffmpeg-probe', action='store_true',
                              help='Detect playable codecs from the local ffmpeg build')

        quality = subparsers.add_parser('quality', aliases=['q'], help='Recommend a quality preset for a network')
        quality.add_argument('--ect', choices=EFFECTIVE_CONNECTION_TYPES, default='4g',
                             help='Effective connection type')
        quality.add_argument('--downlink', type=float, default=10.0, help='Downlink estimate in Mbps')
        quality.add_argument('--rtt', type=float, default=50.0, help='Round-trip time in ms')

        capabilities = subparsers.add_parser('capabilities', aliases=['c'],
                                             help='Show detected playback support and host information')
        capabilities.add_argument('--json', action='store_true', help='Print a JSON report instead')
        capabilities.add_argument('--ffmpeg-probe', action='store_true',
                                  help='Detect playable codecs from the local ffmpeg build')

        args = parser.parse_args(argv)
        aliases = {'o': 'optimize', 'm': 'manifest', 'q': 'quality', 'c': 'capabilities'}
        args.command = aliases.get(args.command, args.command)
        return args

    def _build_probe(self, args: argparse.Namespace):
        if not getattr(args, 'ffmpeg_probe', False):
            return None
        return ffmpeg_playback_probe(
            self.config.get('delivery_optimizer.capabilities.ffmpeg_path', 'ffmpeg'),
            timeout=self.config.get('delivery_optimizer.capabilities.probe_timeout_seconds', 15),
        )

    def _create_optimizer(self, args: argparse.Namespace):
        return create_video_optimizer(self.config, probe=self._build_probe(args))

    def _optimize(self, args: argparse.Namespace) -> int:
        optimizer = self._create_optimizer(args)
        option_names = ['width', 'height', 'quality', 'format', 'container', 'framerate', 'duration',
                        'start_time', 'end_time', 'cdn_provider', 'adaptive_streaming',
                        'generate_thumbnails', 'thumbnail_count', 'muted', 'autoplay']
        options: Dict[str, Any] = {name: getattr(args, name) for name in option_names}

        result = optimizer.process(args.src, options)
        self._print_json(result.to_dict())
        return 0

    def _manifest(self, args: argparse.Namespace) -> int:
        optimizer = self._create_optimizer(args)
        codec = optimizer.get_optimal_format(args.format)
        provider = args.cdn_provider or self.config.get('delivery_optimizer.default_provider')
        manifest = build_adaptive_manifest(args.src, codec, provider)

        if args.json:
            self._print_json(manifest.to_dict())
        else:
            self.stdout.write(render_manifest(manifest, args.duration))
        return 0

    def _quality(self, args: argparse.Namespace) -> int:
        conditions = NetworkConditions(effective_type=args.ect, downlink=args.downlink, rtt=args.rtt)
        preset = QUALITY_PRESETS[recommend_quality(conditions)]
        self._print_json({'network_conditions': conditions.to_dict(), 'recommended': preset.to_dict()})
        return 0

    def _capabilities(self, args: argparse.Namespace) -> int:
        detector = self._create_optimizer(args).context.capabilities
        if args.json:
            self._print_json({
                'capabilities': detector.snapshot(),
                'preferred_format': detector.get_optimal_format(),
                'runtime': detector.runtime_info(),
            })
        else:
            self.stdout.write(detector.get_capability_report() + "\n")
        return 0

    def _print_json(self, data: Dict[str, Any]):
        self.stdout.write(json.dumps(data, indent=2, default=str) + "\n")


def main(argv: Optional[List[str]] = None):
    """Entry point for the CLI application"""
    cli = DeliveryOptimizerCLI()
    sys.exit(cli.main(argv))


if __name__ == '__main__':
    main()
