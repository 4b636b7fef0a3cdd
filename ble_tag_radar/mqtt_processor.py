from __future__ import annotations

import json
import logging
import threading
from typing import Any, Dict, List, Optional

import paho.mqtt.client as mqtt
from paho.mqtt.client import MQTTMessage

from .angles import heading_from_magnetometer
from .config_manager import ConfigManager
from .models import BeaconFrame, CalibrationResult, GuidanceUpdate, HitEvent
from .pipeline import RadarPipeline


logger = logging.getLogger(__name__)


def parse_heading(payload: str) -> Optional[float]:
    """朝向消息：角度值，或磁力计原始向量 x,y[,z]"""
    fields = [f.strip() for f in payload.strip().split(",") if f.strip()]
    try:
        values = [float(f) for f in fields]
    except ValueError:
        return None
    if len(values) == 1:
        return values[0]
    if len(values) in (2, 3):
        return heading_from_magnetometer(values[0], values[1])
    return None


class MQTTRadarProcessor:
    """MQTT 传输层：信标/罗盘消息送入流水线，导航结果发布回上行主题"""

    def __init__(self, config_manager: ConfigManager, pipeline: Optional[RadarPipeline] = None):
        self.config_manager = config_manager
        self.pipeline = pipeline or RadarPipeline(config_manager)
        self.tag_code = config_manager.get_tag_code()
        self.client: Optional[mqtt.Client] = None

        mqtt_config = self.config_manager.get_mqtt_config()
        self.uplink_topic = mqtt_config.get("uplink_topic", "/radar/guidance/{tag}").format(tag=self.tag_code)
        self.hit_topic = mqtt_config.get("hit_topic", "/radar/hit/{tag}").format(tag=self.tag_code)

        sweep_config = self.config_manager.get_sweep_config()
        self.tick_interval = 1.0 / max(float(sweep_config.get("tick_hz", 30.0)), 1.0)
        self._stop = threading.Event()
        self._ticker: Optional[threading.Thread] = None

        self.pipeline.on_hit(self._publish_hit)
        self.pipeline.on_calibration(self._publish_calibration)

    # ---------- Publishing ----------
    def _publish(self, topic: str, data: Dict[str, Any]) -> None:
        if self.client is None:
            return
        self.client.publish(topic, json.dumps(data, ensure_ascii=False))

    def _publish_hit(self, hit: HitEvent) -> None:
        self._publish(self.hit_topic, hit.to_dict())

    def _publish_calibration(self, result: CalibrationResult) -> None:
        self._publish(self.uplink_topic, {"calibration": result.to_dict()})

    def _publish_state(self, guidance: Optional[GuidanceUpdate]) -> None:
        data = self.pipeline.snapshot()
        if guidance is not None:
            data["should_announce"] = guidance.should_announce
        self._publish(self.uplink_topic, data)

    # ---------- Core processing ----------
    def handle_beacon_payload(self, payload: str) -> int:
        """处理一条信标消息，返回送入流水线的帧数"""
        frames: List[BeaconFrame] = BeaconFrame.parse(payload)
        if not frames:
            logger.warning("消息解析无有效信标数据: %s", payload)
            return 0
        accepted = 0
        for frame in frames:
            if not frame.matches(self.tag_code):
                continue
            if frame.timestamp is not None:
                logger.debug("信标 %s 设备时间戳 %.3f", frame.name, frame.timestamp)
            # 设备时间戳与本机单调时钟不同源，采样时间一律由流水线时钟给出
            update = self.pipeline.on_beacon_sample(frame.rssi)
            if update is not None:
                accepted += 1
                self._publish_state(update.guidance)
        return accepted

    def handle_heading_payload(self, payload: str) -> Optional[float]:
        heading = parse_heading(payload)
        if heading is None:
            logger.warning("朝向消息无法解析: %s", payload)
            return None
        guidance = self.pipeline.on_heading_sample(heading)
        if guidance is not None and guidance.should_announce:
            self._publish_state(guidance)
        return heading

    # ---------- Sweep clock ----------
    def _run_ticker(self) -> None:
        # 与标定截止时间使用同一时钟
        clock = self.pipeline.clock
        last = clock()
        while not self._stop.wait(self.tick_interval):
            now = clock()
            self.pipeline.on_clock_tick(now - last, now)
            last = now

    def start_ticker(self) -> None:
        if self._ticker is not None and self._ticker.is_alive():
            return
        self._stop.clear()
        self._ticker = threading.Thread(target=self._run_ticker, name="sweep-clock", daemon=True)
        self._ticker.start()

    # ---------- MQTT ----------
    def connect(self) -> None:
        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self.client.on_connect = self.on_connect
        self.client.on_message = self.on_message
        mqtt_config = self.config_manager.get_mqtt_config()
        self.client.connect(mqtt_config["ip"], int(mqtt_config["port"]), 60)
        logger.info("连接到MQTT服务器 %s:%s", mqtt_config["ip"], mqtt_config["port"])

    def start_mqtt_client(self):
        try:
            self.connect()
        except OSError as e:
            logger.error("MQTT连接错误: %s", e)
            return
        self.pipeline.start_session()
        self.start_ticker()
        self.client.loop_forever()

    def calibrate(self, timeout: float = 10.0) -> Optional[CalibrationResult]:
        """联网执行一次 1 米标定，返回结果（超时则为取消结果）"""
        done = threading.Event()
        results: List[CalibrationResult] = []

        def _on_result(result: CalibrationResult) -> None:
            results.append(result)
            done.set()

        try:
            self.connect()
        except OSError as e:
            logger.error("MQTT连接错误: %s", e)
            return CalibrationResult(accepted=False, reason=f"mqtt connection failed: {e}")

        self.pipeline.on_calibration(_on_result)
        self.client.loop_start()
        self.pipeline.start_session()
        self.start_ticker()
        try:
            self.pipeline.begin_calibration()
            if not done.wait(timeout):
                logger.warning("标定超时 (%.1f 秒)", timeout)
        finally:
            self.stop_mqtt_client()
            self.pipeline.remove_listener(_on_result)
        return results[0] if results else None

    def stop_mqtt_client(self):
        self._stop.set()
        if self._ticker is not None and self._ticker is not threading.current_thread():
            self._ticker.join(timeout=1.0)
        self._ticker = None
        self.pipeline.stop_session()
        if self.client is not None:
            try:
                self.client.disconnect()
                self.client.loop_stop()
                logger.info("MQTT连接已断开")
            except Exception as e:
                logger.error("断开MQTT连接时出错: %s", e)

    # ---------- MQTT handlers ----------
    def on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error("连接失败，返回码: %s", reason_code)
            return
        logger.info("成功连接到MQTT服务器")
        mqtt_config = self.config_manager.get_mqtt_config()
        for key in ("beacon_topic", "heading_topic"):
            topic = mqtt_config[key]
            client.subscribe(topic)
            logger.info("已订阅主题: %s", topic)

    def on_message(self, client, userdata, msg: MQTTMessage):
        try:
            payload = msg.payload.decode("utf-8")
            mqtt_config = self.config_manager.get_mqtt_config()
            if mqtt.topic_matches_sub(mqtt_config["heading_topic"], msg.topic):
                self.handle_heading_payload(payload)
            elif mqtt.topic_matches_sub(mqtt_config["beacon_topic"], msg.topic):
                self.handle_beacon_payload(payload)
            else:
                logger.debug("忽略未知主题: %s", msg.topic)
        except Exception as e:
            logger.exception("处理消息时出错: %s", e)
