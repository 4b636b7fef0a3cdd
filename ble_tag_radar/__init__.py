"""BLE Tag Radar package.

Locates a BLE tag relative to a handheld scanner from RSSI samples and compass
headings:
- RobustFilter: median/MAD clipping + EMA smoothing for RSSI and distance
- DistanceCalculator: log-distance path-loss model with calibration constants
- BearingEstimator: circular-statistics bearing from a rotating observer
- GuidanceEngine: hysteresis-gated turn-by-turn instructions
- SweepHitDetector: radar sweep hit detection
- RadarPipeline: single-writer façade wiring the estimators together
- MQTTRadarProcessor: MQTT transport adapter
"""

from .config_manager import ConfigManager
from .filters import RobustFilter
from .calculator import DistanceCalculator
from .bearing import BearingEstimator
from .guidance import GuidanceEngine
from .sweep import SweepHitDetector
from .calibration import CalibrationRoutine
from .pipeline import RadarPipeline
from .mqtt_processor import MQTTRadarProcessor

__all__ = [
    "ConfigManager",
    "RobustFilter",
    "DistanceCalculator",
    "BearingEstimator",
    "GuidanceEngine",
    "SweepHitDetector",
    "CalibrationRoutine",
    "RadarPipeline",
    "MQTTRadarProcessor",
]
