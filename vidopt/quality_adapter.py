"""
Network Quality Adapter
Tracks client network signals and maps them to a quality preset
"""

import logging
import threading
from dataclasses import dataclass, asdict, replace
from typing import Any, Dict, Mapping, Optional

from .video_config import EFFECTIVE_CONNECTION_TYPES

logger = logging.getLogger(__name__)

# camelCase names used by the Network Information API change events
_FIELD_ALIASES = {
    'effectiveType': 'effective_type',
    'effective_type': 'effective_type',
    'downlink': 'downlink',
    'rtt': 'rtt',
}


@dataclass(frozen=True)
class NetworkConditions:
    """Snapshot of the client's network signals."""
    effective_type: str = '4g'
    downlink: float = 10.0  # Mbps
    rtt: float = 50.0  # ms

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def recommend_quality(conditions: NetworkConditions) -> str:
    """
    Map network conditions to a quality preset name.

    Thresholds are checked most restrictive first and the first match wins.
    """
    effective_type = conditions.effective_type
    downlink = conditions.downlink

    if effective_type == 'slow-2g' or downlink < 0.5:
        return 'mobile'
    if effective_type == '2g' or downlink < 1.5:
        return 'low'
    if effective_type == '3g' or downlink < 5:
        return 'medium'
    if downlink >= 10:
        return 'high'

    return 'medium'


def normalize_conditions(partial: Mapping[str, Any]) -> Dict[str, Any]:
    """Translate event/hint keys to NetworkConditions fields and validate values"""
    normalized = {}
    for key, value in partial.items():
        field = _FIELD_ALIASES.get(key)
        if field is None:
            raise ValueError(f"Unknown network condition: {key}")
        if value is None:
            continue
        if field == 'effective_type':
            if value not in EFFECTIVE_CONNECTION_TYPES:
                raise ValueError(f"Invalid effective connection type: {value} "
                                 f"(must be one of: {', '.join(EFFECTIVE_CONNECTION_TYPES)})")
        else:
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise ValueError(f"Invalid {field}: {value} (must be non-negative number)")
            value = float(value)
        normalized[field] = value
    return normalized


def conditions_from_client_hints(headers: Mapping[str, str]) -> Dict[str, Any]:
    """
    Parse HTTP Client Hints (ECT, Downlink, RTT) into a partial update.

    Missing or malformed hints are left out so the adapter keeps its
    previous values.
    """
    lowered = {str(k).lower(): v for k, v in headers.items()}
    update: Dict[str, Any] = {}

    ect = lowered.get('ect')
    if ect and ect.strip() in EFFECTIVE_CONNECTION_TYPES:
        update['effective_type'] = ect.strip()

    for header, field in (('downlink', 'downlink'), ('rtt', 'rtt')):
        raw = lowered.get(header)
        if raw is None:
            continue
        try:
            value = float(raw)
        except (TypeError, ValueError):
            logger.debug(f"Ignoring malformed {header} client hint: {raw!r}")
            continue
        if value >= 0:
            update[field] = value

    return update


class QualityAdapter:
    """Holds the current NetworkConditions; updates are last-write-wins per field."""

    def __init__(self, initial: Optional[Mapping[str, Any]] = None):
        self._lock = threading.Lock()
        self._conditions = NetworkConditions()
        if initial:
            self._conditions = replace(self._conditions, **normalize_conditions(initial))

    def update(self, conditions: Optional[Mapping[str, Any]] = None, **kwargs) -> NetworkConditions:
        """Merge new signal values; fields not present are retained."""
        partial = dict(conditions or {})
        partial.update(kwargs)
        normalized = normalize_conditions(partial)

        with self._lock:
            self._conditions = replace(self._conditions, **normalized)
            current = self._conditions

        logger.debug(f"Network conditions updated: {current.effective_type}, "
                     f"{current.downlink}Mbps, {current.rtt}ms")
        return current

    def handle_change_event(self, event: Mapping[str, Any]) -> NetworkConditions:
        """Apply a network-change notification (only the known signal fields are read)"""
        return self.update({k: v for k, v in event.items() if k in _FIELD_ALIASES})

    def update_from_client_hints(self, headers: Mapping[str, str]) -> NetworkConditions:
        return self.update(conditions_from_client_hints(headers))

    def current_conditions(self) -> NetworkConditions:
        return self._conditions

    def recommended_quality(self) -> str:
        return recommend_quality(self._conditions)
