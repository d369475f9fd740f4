"""
Configuration Manager for the delivery optimizer
Handles loading and managing configuration from YAML files and CLI arguments
"""

import os
import yaml
import logging
from typing import Dict, Any, List

from . import video_config

logger = logging.getLogger(__name__)

CONFIG_FILES = [
    'delivery_optimizer.yaml',
    'logging.yaml',
]


class ConfigManager:
    def __init__(self, config_dir: str = "config"):
        self.config_dir = config_dir
        self.config = {}
        self._config_file_timestamps = {}  # Track file modification times
        self._load_all_configs()

    def _load_all_configs(self):
        """Load all configuration files, external directory first, packaged defaults second"""
        for config_file in CONFIG_FILES:
            # 1) Prefer explicit external config dir
            config_path = os.path.join(self.config_dir, config_file)
            if os.path.exists(config_path):
                self._load_file(config_file, config_path)
                logger.debug(f"Loaded config from {config_path}")
                continue

            # 2) Fall back to packaged defaults under installed package dir
            package_dir = os.path.abspath(os.path.dirname(__file__))
            packaged_path = os.path.join(package_dir, 'config', config_file)
            if os.path.exists(packaged_path):
                self._load_file(config_file, packaged_path)
                logger.debug(f"Loaded packaged default config from {packaged_path}")
                continue

            # 3) If neither found, keep existing defaults
            logger.warning(f"Config file not found in '{self.config_dir}' or packaged defaults: {config_file}")

    def _load_file(self, config_file: str, path: str):
        try:
            with open(path, 'r', encoding='utf-8') as file:
                config_data = yaml.safe_load(file)
        except yaml.YAMLError as e:
            logger.error(f"Error loading configuration from {path}: {e}")
            raise
        if config_data:
            self.config.update(config_data)
        self._config_file_timestamps[config_file] = os.path.getmtime(path)

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation
        Example: get('delivery_optimizer.cache.max_entries')
        """
        keys = key_path.split('.')
        value = self.config

        try:
            for key in keys:
                value = value[key]
            return value
        except (KeyError, TypeError):
            logger.debug(f"Configuration key '{key_path}' not found, using default: {default}")
            return default

    def update_from_args(self, args_dict: Dict[str, Any]):
        """Update configuration with command line arguments"""
        overrides_applied = []
        for key, value in args_dict.items():
            if value is not None:
                old_value = self.get(key)
                self._set_nested_value(key, value)
                overrides_applied.append(f"{key}: {old_value} → {value}")
                logger.info(f"Configuration override applied: {key} = {value} (was: {old_value})")

        if overrides_applied:
            logger.info(f"Applied {len(overrides_applied)} CLI configuration overrides")
        else:
            logger.debug("No CLI configuration overrides to apply")

    def _set_nested_value(self, key_path: str, value: Any):
        """Set nested configuration value using dot notation"""
        keys = key_path.split('.')
        config_section = self.config

        # Navigate to the parent of the target key
        for key in keys[:-1]:
            if key not in config_section or not isinstance(config_section[key], dict):
                config_section[key] = {}
            config_section = config_section[key]

        config_section[keys[-1]] = value

    def validate_config(self) -> bool:
        """Validate that required configuration values are present and sane"""
        required_keys = [
            'delivery_optimizer.default_provider',
            'delivery_optimizer.thumbnails.count',
            'delivery_optimizer.network.defaults.effective_type',
        ]

        for key in required_keys:
            if self.get(key) is None:
                logger.error(f"Required configuration key missing: {key}")
                return False

        issues = self.validate_configuration_values()
        if issues:
            for issue in issues:
                logger.error(f"Configuration issue: {issue}")
            return False

        logger.info("Configuration validation passed")
        return True

    def validate_configuration_values(self) -> List[str]:
        """Validate configuration values and return list of issues"""
        issues = []

        provider = self.get('delivery_optimizer.default_provider')
        if provider is not None and provider not in video_config.CDN_PROVIDERS:
            issues.append(f"Invalid default_provider: {provider} "
                          f"(must be one of: {', '.join(video_config.CDN_PROVIDERS)})")

        # Thumbnails
        count = self.get('delivery_optimizer.thumbnails.count')
        if count is not None and (not _is_int(count) or count < 0):
            issues.append(f"Invalid thumbnails.count: {count} (must be a non-negative integer)")
        for dim in ('width', 'height'):
            value = self.get(f'delivery_optimizer.thumbnails.{dim}')
            if value is not None and (not _is_int(value) or value <= 0):
                issues.append(f"Invalid thumbnails.{dim}: {value} (must be positive integer)")

        # Poster
        offset = self.get('delivery_optimizer.poster.default_time_offset')
        if offset is not None and (not _is_number(offset) or offset < 0):
            issues.append(f"Invalid poster.default_time_offset: {offset} (must be non-negative number)")

        # Cache policy: null means unbounded, caller-managed
        max_entries = self.get('delivery_optimizer.cache.max_entries')
        if max_entries is not None and (not _is_int(max_entries) or max_entries <= 0):
            issues.append(f"Invalid cache.max_entries: {max_entries} (must be positive integer or null)")

        workers = self.get('delivery_optimizer.batch.max_workers')
        if workers is not None and (not _is_int(workers) or workers <= 0):
            issues.append(f"Invalid batch.max_workers: {workers} (must be positive integer or null)")

        # Network defaults
        effective_type = self.get('delivery_optimizer.network.defaults.effective_type')
        if effective_type is not None and effective_type not in video_config.EFFECTIVE_CONNECTION_TYPES:
            issues.append(f"Invalid network.defaults.effective_type: {effective_type} "
                          f"(must be one of: {', '.join(video_config.EFFECTIVE_CONNECTION_TYPES)})")
        for field in ('downlink', 'rtt'):
            value = self.get(f'delivery_optimizer.network.defaults.{field}')
            if value is not None and (not _is_number(value) or value < 0):
                issues.append(f"Invalid network.defaults.{field}: {value} (must be non-negative number)")

        issues.extend(self._validate_static_tables())
        return issues

    def _validate_static_tables(self) -> List[str]:
        """Sanity checks on the built-in presets, ladder and codec factors"""
        issues = []

        for key, preset in video_config.QUALITY_PRESETS.items():
            if preset.bitrate <= 0:
                issues.append(f"Quality preset {key} has non-positive bitrate: {preset.bitrate}")
            if not 0 <= preset.crf <= 51:
                issues.append(f"Quality preset {key} has invalid CRF: {preset.crf} (must be between 0-51)")

        ladder = video_config.RESOLUTIONS
        for higher, lower in zip(ladder, ladder[1:]):
            if higher.height <= lower.height or higher.bitrate <= lower.bitrate:
                issues.append(f"Bitrate ladder out of order: {higher.label} before {lower.label}")

        factors = [video_config.COMPRESSION_FACTORS.get(codec) for codec in video_config.FORMATS]
        for codec, factor in zip(video_config.FORMATS, factors):
            if factor is None or not 0 < factor <= 1:
                issues.append(f"Invalid compression factor for {codec}: {factor} (must be in (0, 1])")

        # Negotiation order and size model must agree on which codec is more efficient
        for (codec, factor), (next_codec, next_factor) in zip(zip(video_config.FORMATS, factors),
                                                              zip(video_config.FORMATS[1:], factors[1:])):
            if factor is not None and next_factor is not None and factor > next_factor:
                issues.append(f"Codec order disagrees with compression factors: {codec} ({factor}) "
                              f"listed before {next_codec} ({next_factor})")

        return issues

    def get_network_defaults(self) -> Dict[str, Any]:
        """Initial network conditions for a fresh quality adapter"""
        return {
            'effective_type': self.get('delivery_optimizer.network.defaults.effective_type', '4g'),
            'downlink': self.get('delivery_optimizer.network.defaults.downlink', 10),
            'rtt': self.get('delivery_optimizer.network.defaults.rtt', 50),
        }

    def log_active_configuration(self):
        """Log active configuration values for debugging"""
        logger.info("=== Active Configuration Values ===")
        logger.info(f"Configuration directory: {self.config_dir}")
        if self._config_file_timestamps:
            import datetime
            logger.info("Loaded configuration files:")
            for config_file, timestamp in self._config_file_timestamps.items():
                dt = datetime.datetime.fromtimestamp(timestamp)
                logger.info(f"  {config_file}: {dt.strftime('%Y-%m-%d %H:%M:%S')}")

        logger.info("Delivery Settings:")
        logger.info(f"  Default provider: {self.get('delivery_optimizer.default_provider', 'not set')}")
        logger.info(f"  Thumbnails: {self.get('delivery_optimizer.thumbnails.count', 'not set')}")
        max_entries = self.get('delivery_optimizer.cache.max_entries')
        logger.info(f"  Cache policy: {'unbounded' if max_entries is None else f'max {max_entries} entries'}")
        logger.info(f"  Batch workers: {self.get('delivery_optimizer.batch.max_workers') or 'auto'}")

        network = self.get_network_defaults()
        logger.info(f"  Network defaults: {network['effective_type']}, "
                    f"{network['downlink']}Mbps, {network['rtt']}ms")
        logger.info("=== End Configuration ===")


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
