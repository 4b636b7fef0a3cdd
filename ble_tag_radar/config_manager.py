from __future__ import annotations

import copy
import logging
import os
import yaml

from typing import Callable, Any, Dict

logger = logging.getLogger(__name__)


def _env_or_default(env_key: str, default: Any, cast: Callable[[str], Any] = str) -> Any:
    v = os.environ.get(env_key)
    if v is not None:
        try:
            return cast(v)
        except ValueError:
            logger.warning("环境变量 %s=%r 无法转换，使用默认值 %r", env_key, v, default)
    return default


DEFAULT_CONFIG_PATH = _env_or_default(
    "BLE_RADAR_CONFIG",
    os.path.join(".", "config", "config.yaml"),
)


class ConfigManager:
    """配置管理类，负责读写YAML配置文件"""

    def __init__(self, config_file: str | None = None):
        self.config_file = config_file or DEFAULT_CONFIG_PATH
        self.default_config = {
            "mqtt": {
                "ip": _env_or_default("BLE_RADAR_MQTT_IP", "localhost"),
                "port": _env_or_default("BLE_RADAR_MQTT_PORT", 1883, int),
                "beacon_topic": _env_or_default("BLE_RADAR_BEACON_TOPIC", "/radar/beacon/+"),
                "heading_topic": _env_or_default("BLE_RADAR_HEADING_TOPIC", "/radar/heading"),
                "uplink_topic": _env_or_default("BLE_RADAR_UPLINK_TOPIC", "/radar/guidance/{tag}"),
                "hit_topic": _env_or_default("BLE_RADAR_HIT_TOPIC", "/radar/hit/{tag}"),
            },
            "tag": {
                "code": _env_or_default("BLE_RADAR_TAG", "TAG01"),
            },
            "rssi_model": {
                "tx_power": _env_or_default("BLE_RADAR_TX_POWER", -61.0, float),
                "path_loss_exponent": _env_or_default("BLE_RADAR_PATH_LOSS", 2.5, float),
            },
            "filters": {
                "rssi_window": 25,
                "rssi_alpha": 0.25,
                "outlier_k": 3.0,
                "distance_window": 25,
                "distance_alpha": 0.15,
                "distance_deadband": 0.1,
                "max_distance": 100.0,
            },
            "bearing": {
                "window_s": 6.0,
                "min_samples": 12,
                "min_spread_deg": 60.0,
                "confidence_gate": _env_or_default("BLE_RADAR_CONFIDENCE_GATE", 0.35, float),
                "blend": 0.18,
            },
            "sweep": {
                "rate_deg_s": 120.0,
                "tolerance_deg": 10.0,
                "min_interval_s": 0.5,
                "tick_hz": 30.0,
                "max_meters": 20.0,
            },
            "guidance": {
                "arrived_m": 1.5,
                "straight_deg": 15.0,
                "slight_deg": 35.0,
                "turn_deg": 100.0,
                "hysteresis_deg": 6.0,
                "dwell_s": 1.2,
                "announce_s": 2.0,
            },
            "calibration": {
                "duration_s": 3.0,
                "min_samples": 10,
            },
        }
        self.load_config()

    def load_config(self) -> None:
        """加载配置文件，如果不存在则创建默认配置"""
        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r", encoding="utf-8") as f:
                    self.config = yaml.safe_load(f) or {}
                if not isinstance(self.config, dict):
                    logger.warning("配置文件格式错误，使用默认配置: %s", self.config_file)
                    self.config = {}
                self._merge_default_config()
            else:
                self.config = copy.deepcopy(self.default_config)
                self.save_config()
        except (OSError, yaml.YAMLError) as e:
            # 发生异常时回退到默认配置
            logger.warning("加载配置文件失败，使用默认配置: %s", e)
            self.config = copy.deepcopy(self.default_config)
            self.save_config()

    def _merge_default_config(self) -> None:
        def merge_dict(default, current):
            for key, value in default.items():
                if key not in current:
                    current[key] = copy.deepcopy(value)
                elif isinstance(value, dict):
                    if not isinstance(current[key], dict):
                        logger.warning("配置项 %s 格式错误，使用默认值", key)
                        current[key] = copy.deepcopy(value)
                    else:
                        merge_dict(value, current[key])

        merge_dict(self.default_config, self.config)

    def save_config(self) -> None:
        try:
            os.makedirs(os.path.dirname(self.config_file) or ".", exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                yaml.dump(
                    self.config,
                    f,
                    default_flow_style=False,
                    allow_unicode=True,
                    indent=2,
                )
        except OSError as e:
            logger.warning("保存配置文件失败: %s", e)

    # ---------- Accessors ----------
    def get_mqtt_config(self) -> Dict[str, Any]:
        return self.config["mqtt"]

    def get_tag_code(self) -> str:
        return str(self.config["tag"]["code"])

    def get_rssi_model_config(self) -> Dict[str, Any]:
        return self.config["rssi_model"]

    def get_filters_config(self) -> Dict[str, Any]:
        return self.config["filters"]

    def get_bearing_config(self) -> Dict[str, Any]:
        return self.config["bearing"]

    def get_sweep_config(self) -> Dict[str, Any]:
        return self.config["sweep"]

    def get_guidance_config(self) -> Dict[str, Any]:
        return self.config["guidance"]

    def get_calibration_config(self) -> Dict[str, Any]:
        return self.config["calibration"]

    def set_mqtt_config(self, ip, port, beacon_topic=None, heading_topic=None):
        self.config["mqtt"]["ip"] = ip
        self.config["mqtt"]["port"] = port
        if beacon_topic is not None:
            self.config["mqtt"]["beacon_topic"] = beacon_topic
        if heading_topic is not None:
            self.config["mqtt"]["heading_topic"] = heading_topic
        self.save_config()

    def set_tag_code(self, code: str) -> None:
        self.config["tag"]["code"] = code
        self.save_config()

    def set_rssi_model_config(self, tx_power: float, path_loss_exponent: float):
        # 两个常数一次性写入
        self.config["rssi_model"] = {
            "tx_power": float(tx_power),
            "path_loss_exponent": float(path_loss_exponent),
        }
        self.save_config()
