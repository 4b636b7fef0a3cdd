"""Tests for ble_tag_radar.bearing: rotating-observer bearing estimation."""
import pytest

from ble_tag_radar.angles import abs_angular_diff
from ble_tag_radar.bearing import BearingEstimator
from ble_tag_radar.models import Sample


def sweep_samples(peak_deg, count=108, dt=0.16, step_deg=10.0):
    """Observer turning in place; the signal is strong only near peak_deg."""
    samples = []
    for i in range(count):
        heading = (i * step_deg) % 360.0
        rssi = -60.0 if abs_angular_diff(heading, peak_deg) <= 20.0 else -80.0
        samples.append(Sample(timestamp=i * dt, rssi=rssi, heading=heading))
    return samples


class TestBearingEstimatorGating:
    def test_too_few_samples(self):
        est = BearingEstimator()
        for s in sweep_samples(90.0, count=11):
            result = est.update(s)
        assert result.confidence == 0.0
        assert result.angle_deg is None

    def test_insufficient_rotation(self):
        est = BearingEstimator()
        for i in range(20):
            result = est.update(Sample(timestamp=i * 0.1, rssi=-60.0 - i, heading=i * 2.5))
        assert result.confidence == 0.0
        assert result.angle_deg is None

    def test_low_confidence_keeps_angle_unset(self):
        est = BearingEstimator(confidence_gate=0.99)
        for s in sweep_samples(90.0):
            result = est.update(s)
        assert result.angle_deg is None
        assert result.confidence > 0.0

    def test_invalid_parameters(self):
        with pytest.raises(ValueError):
            BearingEstimator(window_s=0)
        with pytest.raises(ValueError):
            BearingEstimator(blend=0.0)


class TestBearingEstimatorConvergence:
    def test_converges_on_signal_peak(self):
        est = BearingEstimator()
        for s in sweep_samples(90.0):
            result = est.update(s)
        assert result.has_fix
        assert abs_angular_diff(result.angle_deg, 90.0) < 15.0
        assert result.confidence > 0.35

    def test_peak_across_north(self):
        est = BearingEstimator()
        for s in sweep_samples(0.0):
            result = est.update(s)
        assert abs_angular_diff(result.angle_deg, 0.0) < 15.0
        assert 0.0 <= result.angle_deg < 360.0

    def test_estimate_property_tracks_last_update(self):
        est = BearingEstimator()
        for s in sweep_samples(180.0):
            result = est.update(s)
        assert est.estimate == result


class TestBearingEstimatorWindow:
    def test_old_samples_evicted(self):
        est = BearingEstimator(window_s=6.0)
        for i in range(10):
            est.update(Sample(timestamp=float(i) * 0.1, rssi=-70.0, heading=i * 10.0))
        est.update(Sample(timestamp=10.0, rssi=-70.0, heading=0.0))
        assert len(est.samples) == 1

    def test_reset(self):
        est = BearingEstimator()
        for s in sweep_samples(90.0):
            est.update(s)
        est.reset()
        assert len(est.samples) == 0
        assert est.estimate.angle_deg is None
        assert est.estimate.confidence == 0.0

    def test_from_config(self):
        est = BearingEstimator.from_config({"window_s": 4, "min_samples": 8, "confidence_gate": 0.5})
        assert est.window_s == 4.0
        assert est.min_samples == 8
        assert est.confidence_gate == 0.5
        assert est.blend == 0.18
