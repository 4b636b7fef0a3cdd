"""Tests for ble_tag_radar.guidance: instruction state machine."""
import pytest

from ble_tag_radar.guidance import GuidanceEngine, arrow_for_delta
from ble_tag_radar.models import ArrowSymbol, BearingEstimate, Instruction


def fix(angle, confidence=0.8):
    return BearingEstimate(angle_deg=angle, confidence=confidence)


class TestArrowForDelta:
    @pytest.mark.parametrize(
        "delta,arrow",
        [
            (0.0, ArrowSymbol.AHEAD),
            (22.4, ArrowSymbol.AHEAD),
            (22.5, ArrowSymbol.AHEAD_RIGHT),
            (90.0, ArrowSymbol.RIGHT),
            (135.0, ArrowSymbol.BEHIND_RIGHT),
            (180.0, ArrowSymbol.BEHIND),
            (-90.0, ArrowSymbol.LEFT),
            (-157.5, ArrowSymbol.BEHIND_LEFT),
            (-22.6, ArrowSymbol.AHEAD_LEFT),
            (None, ArrowSymbol.NONE),
        ],
    )
    def test_octants(self, delta, arrow):
        assert arrow_for_delta(delta) is arrow


class TestDecide:
    def setup_method(self):
        self.engine = GuidanceEngine()

    def test_awaiting_fix(self):
        assert self.engine.decide(0.0, fix(10.0), None)[0] is Instruction.AWAITING_FIX
        assert self.engine.decide(0.0, BearingEstimate(), 5.0)[0] is Instruction.AWAITING_FIX
        assert self.engine.decide(0.0, None, 5.0)[0] is Instruction.AWAITING_FIX

    def test_rotate_when_unconfident(self):
        assert self.engine.decide(0.0, fix(10.0, 0.2), 5.0) == (Instruction.ROTATE_360, None)

    def test_arrived(self):
        instruction, delta = self.engine.decide(0.0, fix(90.0), 1.0)
        assert instruction is Instruction.ARRIVED
        assert delta == pytest.approx(90.0)

    @pytest.mark.parametrize(
        "bearing,instruction",
        [
            (10.0, Instruction.GO_STRAIGHT),
            (15.0, Instruction.GO_STRAIGHT),
            (345.0, Instruction.GO_STRAIGHT),
            (25.0, Instruction.SLIGHT_RIGHT),
            (335.0, Instruction.SLIGHT_LEFT),
            (60.0, Instruction.TURN_RIGHT),
            (300.0, Instruction.TURN_LEFT),
            (100.0, Instruction.TURN_RIGHT),
            (150.0, Instruction.BEHIND),
            (210.0, Instruction.BEHIND),
        ],
    )
    def test_bands(self, bearing, instruction):
        assert self.engine.decide(0.0, fix(bearing), 5.0)[0] is instruction

    def test_delta_relative_to_heading(self):
        _, delta = self.engine.decide(350.0, fix(20.0), 5.0)
        assert delta == pytest.approx(30.0)


class TestHysteresis:
    def setup_method(self):
        self.engine = GuidanceEngine()

    def decide_from(self, previous, bearing):
        self.engine.state.instruction = previous
        return self.engine.decide(0.0, fix(bearing), 5.0)[0]

    @pytest.mark.parametrize(
        "previous,bearing,expected",
        [
            (Instruction.SLIGHT_RIGHT, 12.0, Instruction.SLIGHT_RIGHT),
            (Instruction.SLIGHT_RIGHT, 8.0, Instruction.GO_STRAIGHT),
            (Instruction.SLIGHT_RIGHT, 39.0, Instruction.SLIGHT_RIGHT),
            (Instruction.SLIGHT_RIGHT, 42.0, Instruction.TURN_RIGHT),
            (Instruction.TURN_RIGHT, 104.0, Instruction.TURN_RIGHT),
            (Instruction.TURN_RIGHT, 30.0, Instruction.TURN_RIGHT),
            (Instruction.TURN_RIGHT, 28.0, Instruction.SLIGHT_RIGHT),
            (Instruction.SLIGHT_LEFT, 348.0, Instruction.SLIGHT_LEFT),
            (Instruction.GO_STRAIGHT, 16.0, Instruction.SLIGHT_RIGHT),
            (Instruction.SLIGHT_RIGHT, 348.0, Instruction.GO_STRAIGHT),
        ],
    )
    def test_hold_near_boundary(self, previous, bearing, expected):
        assert self.decide_from(previous, bearing) is expected


class TestUpdate:
    def test_dwell_and_announce(self):
        engine = GuidanceEngine()

        first = engine.update(0.0, fix(10.0), 5.0, now=0.0)
        assert first.instruction is Instruction.GO_STRAIGHT
        assert first.arrow is ArrowSymbol.AHEAD
        assert first.should_announce is True

        held = engine.update(0.0, fix(60.0), 5.0, now=0.5)
        assert held.instruction is Instruction.GO_STRAIGHT
        assert held.should_announce is False
        assert held.delta_deg == pytest.approx(60.0)

        turned = engine.update(0.0, fix(60.0), 5.0, now=1.3)
        assert turned.instruction is Instruction.TURN_RIGHT
        assert turned.arrow is ArrowSymbol.AHEAD_RIGHT
        assert turned.should_announce is False

        back = engine.update(0.0, fix(5.0), 5.0, now=2.6)
        assert back.instruction is Instruction.GO_STRAIGHT
        assert back.should_announce is True

    def test_unchanged_instruction_never_announces(self):
        engine = GuidanceEngine()
        engine.update(0.0, fix(10.0), 5.0, now=0.0)
        again = engine.update(0.0, fix(12.0), 5.0, now=10.0)
        assert again.instruction is Instruction.GO_STRAIGHT
        assert again.should_announce is False

    def test_reset(self):
        engine = GuidanceEngine()
        engine.update(0.0, fix(10.0), 5.0, now=0.0)
        engine.reset()
        assert engine.state.instruction is Instruction.AWAITING_FIX
        assert engine.state.arrow is ArrowSymbol.NONE
        assert engine.state.last_change_time is None


class TestConstruction:
    def test_threshold_order(self):
        with pytest.raises(ValueError):
            GuidanceEngine(straight_deg=40.0, slight_deg=35.0)
        with pytest.raises(ValueError):
            GuidanceEngine(turn_deg=190.0)

    def test_from_config(self):
        engine = GuidanceEngine.from_config({"arrived_m": 2.0, "dwell_s": 0.5}, confidence_gate=0.4)
        assert engine.arrived_m == 2.0
        assert engine.dwell_s == 0.5
        assert engine.confidence_gate == 0.4
        assert engine.thresholds == (15.0, 35.0, 100.0)
