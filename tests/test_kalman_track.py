"""Tests for the constant-velocity Kalman track."""
import numpy as np
import pytest
from filterpy.kalman import KalmanFilter

from casa_tracker.core.kalman_track import KalmanTrack


class TestInitialState:
    def test_state_and_covariance(self):
        trk = KalmanTrack(1, 10.0, 20.0, t=0.0, frame=0)
        np.testing.assert_array_equal(trk.kf.x, [10.0, 20.0, 0.0, 0.0])
        np.testing.assert_array_equal(trk.kf.P, np.eye(4))
        np.testing.assert_array_almost_equal(np.diag(trk.kf.Q), [1e-2, 1e-2, 1e-1, 1e-1])
        np.testing.assert_array_almost_equal(trk.kf.R, np.eye(2) * 1e-1)
        assert trk.point_count == 1
        assert trk.missed_frames == 0
        assert trk.quality_score == 0.0
        assert trk.duration() == 0.0
        assert not trk.last_point.has_velocity


class TestPredictCorrect:
    def test_predict_without_velocity_keeps_position(self):
        trk = KalmanTrack(1, 5.0, 5.0, t=0.0)
        assert trk.predict() == (5.0, 5.0)
        # F I F^T + Q
        assert trk.kf.P[0, 0] == pytest.approx(2.0 + 1e-2)
        np.testing.assert_array_almost_equal(trk.kf.P, trk.kf.P.T)

    def test_correct_pulls_towards_measurement(self):
        trk = KalmanTrack(1, 0.0, 0.0, t=0.0)
        trk.predict()
        trk.correct(10.0, 0.0, t=0.04)
        assert 0.0 < trk.kf.x[0] < 10.0
        assert trk.kf.x[2] > 0.0

    def test_point_velocity_from_timestamps(self):
        trk = KalmanTrack(1, 0.0, 0.0, t=0.0)
        trk.predict()
        point = trk.correct(1.0, 2.0, t=0.04, frame=1)
        assert point.vx == pytest.approx(25.0)
        assert point.vy == pytest.approx(50.0)
        assert point.frame == 1
        assert trk.point_count == 2
        assert trk.duration() == pytest.approx(0.04)

    def test_repeated_timestamp_has_no_velocity(self):
        trk = KalmanTrack(1, 0.0, 0.0, t=1.0)
        trk.predict()
        point = trk.correct(1.0, 1.0, t=1.0)
        assert not point.has_velocity
        assert trk.quality_score == 0.0

    def test_velocity_converges_on_constant_motion(self):
        trk = KalmanTrack(1, 0.0, 0.0, t=0.0)
        for k in range(1, 40):
            trk.predict()
            trk.correct(2.0 * k, -1.0 * k, t=k * 0.04)
        vx, vy = trk.current_velocity()
        assert vx == pytest.approx(2.0, abs=0.05)
        assert vy == pytest.approx(-1.0, abs=0.05)
        assert trk.position[0] == pytest.approx(78.0, abs=0.5)

    def test_covariance_stays_symmetric_positive_definite(self):
        rng = np.random.default_rng(0)
        trk = KalmanTrack(1, 0.0, 0.0, t=0.0)
        for k in range(1, 100):
            trk.predict()
            if k % 7:
                trk.correct(*rng.normal(k, 1.0, size=2), t=k * 0.04)
            else:
                trk.mark_missed()
        np.testing.assert_allclose(trk.kf.P, trk.kf.P.T, atol=1e-12)
        assert np.all(np.linalg.eigvalsh(trk.kf.P) > 0)


class TestBookkeeping:
    def test_missed_frames_reset_on_correct(self):
        trk = KalmanTrack(1, 0.0, 0.0, t=0.0)
        trk.mark_missed()
        trk.mark_missed()
        assert trk.missed_frames == 2
        trk.predict()
        trk.correct(0.5, 0.5, t=0.1)
        assert trk.missed_frames == 0

    def test_quality_score_against_reference_speed(self):
        trk = KalmanTrack(1, 0.0, 0.0, t=0.0, quality_reference_speed=50.0)
        for k in range(1, 5):
            trk.predict()
            trk.correct(float(k), 0.0, t=k * 0.04)  # 25 px/s
        assert trk.quality_score == pytest.approx(0.5)

    def test_quality_score_uses_speed_scale_and_saturates(self):
        trk = KalmanTrack(1, 0.0, 0.0, t=0.0, quality_reference_speed=50.0, speed_scale=4.0)
        trk.predict()
        trk.correct(1.0, 0.0, t=0.04)  # 100 um/s
        assert trk.quality_score == 1.0

    def test_path_length_and_record(self):
        trk = KalmanTrack(7, 0.0, 0.0, t=0.0)
        for k, (x, y) in enumerate([(3.0, 4.0), (3.0, 10.0)], start=1):
            trk.predict()
            trk.correct(x, y, t=k * 0.1)
        assert trk.path_length() == pytest.approx(11.0)
        record = trk.to_record()
        assert record.track_id == 7
        assert record.point_count == 3
        assert record.duration == pytest.approx(0.2)
        assert record.points == trk.points


class TestFilterBackend:
    """The track state lives in a filterpy KalmanFilter."""

    def test_track_owns_filterpy_filter(self):
        trk = KalmanTrack(1, 3.0, 4.0, t=0.0)
        assert isinstance(trk.kf, KalmanFilter)
        np.testing.assert_array_equal(trk.kf.F, KalmanTrack.transition_matrix(1.0))
        np.testing.assert_array_equal(trk.kf.H, [[1, 0, 0, 0], [0, 1, 0, 0]])

    def test_matches_reference_filter(self):
        ref = KalmanFilter(dim_x=4, dim_z=2)
        ref.x = np.array([0.0, 0.0, 0.0, 0.0])
        ref.F = KalmanTrack.transition_matrix(1.0)
        ref.H = np.array([[1.0, 0.0, 0.0, 0.0], [0.0, 1.0, 0.0, 0.0]])
        ref.P = np.eye(4)
        ref.Q = np.diag([1e-2, 1e-2, 1e-1, 1e-1])
        ref.R = np.eye(2) * 1e-1

        trk = KalmanTrack(1, 0.0, 0.0, t=0.0)
        for k in range(1, 20):
            ref.predict()
            ref.update([3.0 * k, 1.0 * k])
            trk.predict()
            trk.correct(3.0 * k, 1.0 * k, t=k * 0.04)

        np.testing.assert_allclose(trk.kf.x, ref.x)
        np.testing.assert_allclose(trk.kf.P, ref.P)
        np.testing.assert_allclose(trk.current_velocity(), ref.x[2:])

    def test_predict_with_longer_step(self):
        trk = KalmanTrack(1, 0.0, 0.0, t=0.0)
        for k in range(1, 30):
            trk.predict()
            trk.correct(2.0 * k, 0.0, t=k * 0.04)
        x0, _ = trk.position
        vx, _ = trk.current_velocity()
        x2, _ = trk.predict(dt=2.0)
        assert x2 == pytest.approx(x0 + 2.0 * vx)
        # the per-frame F is left untouched
        np.testing.assert_array_equal(trk.kf.F, KalmanTrack.transition_matrix(1.0))
