"""
Tests for the median + adaptive exponential gaze filter
"""

import pytest

from vor_rehab.data_acquisition.gaze_filter import GazeFilter, GazeFilterConfig, median


def test_median_odd():
    """Odd count returns the middle value"""
    assert median([10, 50, 20]) == 20


def test_median_even():
    """Even count returns the mean of the two middle values"""
    assert median([10, 50, 20, 40]) == 30


def test_median_empty():
    with pytest.raises(ValueError):
        median([])


class TestGazeFilter:
    """Tests for the GazeFilter class"""

    def test_uninitialized(self):
        """No sample yet means no gaze, not the origin"""
        gaze_filter = GazeFilter()
        assert gaze_filter.current is None
        assert gaze_filter.is_initialized is False

    def test_first_sample_passes_through(self):
        gaze_filter = GazeFilter()
        assert gaze_filter.filter((120.0, 80.0), 0) == (120.0, 80.0)
        assert gaze_filter.last_alpha == 1.0
        assert gaze_filter.is_initialized is True

    def test_single_frame_outlier_rejected(self):
        """A one-frame spike is removed by the median"""
        gaze_filter = GazeFilter()
        gaze_filter.filter((100.0, 100.0), 0)
        gaze_filter.filter((100.0, 100.0), 33)
        result = gaze_filter.filter((1000.0, 1000.0), 66)
        assert result == pytest.approx((100.0, 100.0))

    def test_fast_alpha_on_large_jump(self):
        gaze_filter = GazeFilter()
        gaze_filter.filter((0.0, 0.0), 0)
        x, y = gaze_filter.filter((200.0, 0.0), 33)
        # median of [0, 200] is 100, jump 100 > 50
        assert gaze_filter.last_alpha == 0.6
        assert x == pytest.approx(60.0)
        assert y == pytest.approx(0.0)

    def test_slow_alpha_on_small_jump(self):
        gaze_filter = GazeFilter()
        gaze_filter.filter((0.0, 0.0), 0)
        x, _ = gaze_filter.filter((20.0, 0.0), 33)
        assert gaze_filter.last_alpha == 0.2
        assert x == pytest.approx(2.0)

    def test_non_finite_rejected(self):
        """NaN input leaves the filter untouched"""
        gaze_filter = GazeFilter()
        assert gaze_filter.filter((float('nan'), 0.0), 0) is None
        gaze_filter.filter((10.0, 10.0), 10)
        assert gaze_filter.filter((float('inf'), 5.0), 20) == (10.0, 10.0)
        assert gaze_filter.last_timestamp == 10

    def test_buffer_size_from_config(self):
        gaze_filter = GazeFilter(GazeFilterConfig.from_dict({'buffer_size': 5, 'unknown': 1}))
        assert gaze_filter.config.buffer_size == 5

    def test_invalid_buffer_size(self):
        with pytest.raises(ValueError):
            GazeFilter(GazeFilterConfig(buffer_size=0))

    def test_set_smoothing_clamps(self):
        gaze_filter = GazeFilter()
        gaze_filter.set_smoothing(alpha_fast=1.5, alpha_slow=-0.1)
        assert gaze_filter.config.alpha_fast == 1.0
        assert gaze_filter.config.alpha_slow == 0.0

    def test_reset(self):
        gaze_filter = GazeFilter()
        gaze_filter.filter((10.0, 10.0), 0)
        gaze_filter.reset()
        assert gaze_filter.current is None
        assert gaze_filter.last_timestamp is None
