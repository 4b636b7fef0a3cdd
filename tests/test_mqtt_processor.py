"""Tests for ble_tag_radar.mqtt_processor: MQTT transport adapter."""
import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from ble_tag_radar.config_manager import ConfigManager
from ble_tag_radar.mqtt_processor import MQTTRadarProcessor, parse_heading
from ble_tag_radar.pipeline import RadarPipeline


@pytest.fixture
def processor(tmp_path):
    config = ConfigManager(str(tmp_path / "config.yaml"))
    proc = MQTTRadarProcessor(config, RadarPipeline(config, clock=lambda: 0.0))
    proc.client = MagicMock()
    proc.pipeline.start_session()
    return proc


def published(proc, topic):
    return [json.loads(c.args[1]) for c in proc.client.publish.call_args_list if c.args[0] == topic]


class TestParseHeading:
    @pytest.mark.parametrize(
        "payload,expected",
        [
            ("90", 90.0),
            (" 45.5 ", 45.5),
            ("0,1", 90.0),
            ("1,0,0.5", 0.0),
            ("-1,0", 180.0),
        ],
    )
    def test_valid(self, payload, expected):
        assert parse_heading(payload) == pytest.approx(expected)

    @pytest.mark.parametrize("payload", ["", "north", "1,2,3,4", "1,x"])
    def test_invalid(self, payload):
        assert parse_heading(payload) is None


class TestBeaconHandling:
    def test_matching_frame_published(self, processor):
        assert processor.handle_beacon_payload("xx-tag01-yy,-61;OTHER,-40") == 1
        states = published(processor, "/radar/guidance/TAG01")
        assert len(states) == 1
        assert states[0]["meters"] == pytest.approx(1.0)
        assert states[0]["instruction"] == "awaiting_fix"
        assert states[0]["should_announce"] is False

    def test_non_matching_frames(self, processor):
        assert processor.handle_beacon_payload("OTHER,-40;ANOTHER,-50") == 0
        processor.client.publish.assert_not_called()

    def test_unparseable_payload(self, processor):
        assert processor.handle_beacon_payload("garbage") == 0

    def test_inactive_pipeline(self, processor):
        processor.pipeline.stop_session()
        assert processor.handle_beacon_payload("TAG01,-61") == 0

    def test_hit_published(self, processor):
        processor.handle_beacon_payload("TAG01,-61")
        processor.pipeline.on_clock_tick(0.01, now=0.0)
        hits = published(processor, "/radar/hit/TAG01")
        assert len(hits) == 1
        assert hits[0]["timestamp"] == 0.0


class TestHeadingHandling:
    def test_heading_forwarded(self, processor):
        assert processor.handle_heading_payload("90") == 90.0
        assert processor.pipeline.heading == 90.0

    def test_bad_heading(self, processor):
        assert processor.handle_heading_payload("north") is None


class TestMqttCallbacks:
    def test_on_connect_subscribes(self, processor):
        client = MagicMock()
        processor.on_connect(client, None, None, SimpleNamespace(is_failure=False))
        topics = [c.args[0] for c in client.subscribe.call_args_list]
        assert topics == ["/radar/beacon/+", "/radar/heading"]

    def test_on_connect_failure(self, processor):
        client = MagicMock()
        processor.on_connect(client, None, None, SimpleNamespace(is_failure=True))
        client.subscribe.assert_not_called()

    def test_on_message_dispatch(self, processor):
        processor.on_message(None, None, SimpleNamespace(topic="/radar/heading", payload=b"45"))
        processor.on_message(None, None, SimpleNamespace(topic="/radar/beacon/scanner1", payload=b"TAG01,-61"))
        assert processor.pipeline.heading == 45.0
        assert processor.pipeline.distance is not None

    def test_on_message_bad_bytes(self, processor):
        processor.on_message(None, None, SimpleNamespace(topic="/radar/beacon/x", payload=b"\xff\xfe"))
        assert processor.pipeline.distance is None

    def test_unknown_topic_ignored(self, processor):
        processor.on_message(None, None, SimpleNamespace(topic="/other", payload=b"TAG01,-61"))
        assert processor.pipeline.distance is None

    def test_stop_disconnects(self, processor):
        client = processor.client
        processor.stop_mqtt_client()
        client.disconnect.assert_called_once()
        assert not processor.pipeline.active

    def test_stop_joins_sweep_clock(self, processor):
        processor.start_ticker()
        ticker = processor._ticker
        processor.stop_mqtt_client()
        assert not ticker.is_alive()
        assert processor._ticker is None


class TestCalibrate:
    def test_connection_refused(self, processor, monkeypatch):
        def refuse():
            raise ConnectionRefusedError(111, "Connection refused")

        monkeypatch.setattr(processor, "connect", refuse)
        result = processor.calibrate(timeout=0.1)
        assert result.accepted is False
        assert "connection" in result.reason
        assert processor.pipeline._listeners["calibration"] == [processor._publish_calibration]

    def test_timeout_reports_cancel_and_cleans_up(self, processor, monkeypatch):
        client = processor.client
        monkeypatch.setattr(processor, "connect", lambda: None)
        result = processor.calibrate(timeout=0.05)
        assert result.accepted is False
        assert result.reason == "session stopped"
        assert processor.pipeline._listeners["calibration"] == [processor._publish_calibration]
        assert processor._ticker is None
        client.loop_start.assert_called_once()
        client.disconnect.assert_called_once()


class TestDeviceTimestamps:
    def test_pipeline_clock_used(self, processor):
        assert processor.handle_beacon_payload("TAG01,-61,123456.0") == 1
        assert processor.pipeline.last_guidance.timestamp == 0.0
