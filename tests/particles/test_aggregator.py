import random

import pytest
import numpy as np
from datetime import datetime, timedelta, timezone

pytestmark = pytest.mark.unit

from holoarchive.contracts import ContractViolation
from holoarchive.particles import AggregatorState, TimeBinAggregator, TimeRange, midnight_utc


@pytest.fixture
def epoch(t0):
    return midnight_utc(t0)


@pytest.fixture
def started(t0, epoch):
    agg = TimeBinAggregator()
    agg.start(TimeRange(t0, t0 + timedelta(seconds=2)), [10, 20, 30], epoch)
    return agg


def test_time_axis_is_whole_seconds(started, t0, epoch):
    first = int((t0 - epoch).total_seconds())
    np.testing.assert_array_equal(started.time, [first, first + 1, first + 2])
    assert started.counts.shape == (3, 2)
    assert started.state is AggregatorState.ACCUMULATING


def test_reference_scenario(started, t0, detection_factory):
    """Two holograms in the first second, one empty hologram in the last."""
    started.add_hologram_detections(1, t0, [detection_factory(15), detection_factory(25)])
    started.add_hologram_detections(2, t0 + timedelta(seconds=0.5),
                                    [detection_factory(15), detection_factory(12, accepted=False)])
    started.add_hologram_detections(3, t0 + timedelta(seconds=2), [])

    np.testing.assert_array_equal(started.counts, [[2, 1], [0, 0], [0, 0]])
    np.testing.assert_array_equal(started.holograms, [2, 0, 1])

    sv = 1e-5
    started.normalize(sv)
    expected_first = np.array([2, 1]) / (10 / 1e6) / (2 * sv)
    np.testing.assert_allclose(started.concentration[0], expected_first)
    np.testing.assert_array_equal(started.concentration[1:], 0.0)

    started.compute_bulk_moments()
    result = started.result()
    assert result.moments.nt[0] == pytest.approx(1.5 / sv)
    assert result.moments.nt[2] == 0.0


def test_accumulation_is_order_independent(t0, epoch, detection_factory):
    rng = random.Random(7)
    holograms = [
        (hid, t0 + timedelta(seconds=rng.uniform(0, 4.9)),
         [detection_factory(rng.uniform(10, 30)) for _ in range(rng.randint(0, 5))])
        for hid in range(1, 30)
    ]

    def build(order):
        agg = TimeBinAggregator()
        agg.start(TimeRange(t0, t0 + timedelta(seconds=5)), [10, 15, 20, 30], epoch)
        for hid, t, dets in order:
            agg.add_hologram_detections(hid, t, dets)
        agg.normalize(1e-5)
        agg.compute_bulk_moments()
        return agg.result()

    shuffled = holograms[:]
    rng.shuffle(shuffled)
    a, b = build(holograms), build(shuffled)

    np.testing.assert_allclose(a.concentration, b.concentration)
    np.testing.assert_array_equal(a.holograms, b.holograms)
    np.testing.assert_allclose(a.moments.mvd, b.moments.mvd)


def test_duplicate_hologram_is_contract_violation(started, t0):
    started.add_hologram_detections(1, t0, [])
    with pytest.raises(ContractViolation, match="already aggregated"):
        started.add_hologram_detections(1, t0, [])


def test_out_of_range_hologram_is_dropped(started, t0, detection_factory):
    added = started.add_hologram_detections(9, t0 + timedelta(seconds=10), [detection_factory(15)])
    assert added is False
    assert started.dropped == 1
    assert started.counts.sum() == 0
    assert started.holograms.sum() == 0


def test_diameters_outside_edges_not_counted(started, t0, detection_factory):
    started.add_hologram_detections(1, t0, [detection_factory(5), detection_factory(45)])
    assert started.counts.sum() == 0
    assert started.holograms[0] == 1


def test_custom_rejection_predicate(started, t0, detection_factory):
    started.add_hologram_detections(1, t0, [detection_factory(15, accepted=False)],
                                    rejection_predicate=lambda d: True)
    assert started.counts[0, 0] == 1


def test_round_channel(t0, epoch, detection_factory):
    agg = TimeBinAggregator(round_enabled=True)
    agg.start(TimeRange(t0, t0), [10, 20, 30], epoch)
    agg.add_hologram_detections(1, t0, [detection_factory(15, accepted_round=True),
                                        detection_factory(25)])
    agg.normalize(1e-5)
    agg.compute_bulk_moments()
    result = agg.result()

    assert result.concentration_round[0, 0] > 0
    assert result.concentration_round[0, 1] == 0
    assert result.moments_round.mvd[0] == pytest.approx(20.0)


class TestStateMachine:

    def test_add_before_start(self, t0):
        with pytest.raises(ContractViolation, match="state empty"):
            TimeBinAggregator().add_hologram_detections(1, t0, [])

    def test_start_twice(self, started, t0, epoch):
        with pytest.raises(ContractViolation):
            started.start(TimeRange(t0, t0), [10, 20], epoch)

    def test_result_before_finalize(self, started):
        with pytest.raises(ContractViolation):
            started.result()

    def test_moments_before_normalize(self, started):
        with pytest.raises(ContractViolation):
            started.compute_bulk_moments()

    def test_add_after_normalize(self, started, t0):
        started.normalize(1e-5)
        with pytest.raises(ContractViolation):
            started.add_hologram_detections(1, t0, [])

    def test_non_positive_sample_volume(self, started):
        with pytest.raises(ContractViolation, match="positive"):
            started.normalize(0.0)


def test_time_range_rejects_reversed(t0):
    with pytest.raises(ValueError):
        TimeRange(t0, t0 - timedelta(seconds=1))


def test_time_range_from_times(t0):
    times = [t0 + timedelta(seconds=s) for s in (3, 1, 2)]
    assert TimeRange.from_times(times) == TimeRange(t0 + timedelta(seconds=1), t0 + timedelta(seconds=3))


def test_midnight_utc(t0):
    assert midnight_utc(t0).isoformat() == "2021-06-04T00:00:00+00:00"


class TestThreeFrameScenario:
    """Three frames at 10:00:00.0, 00.5 and 01.0, one 20 um particle each."""

    START = datetime(2021, 6, 4, 10, 0, 0, tzinfo=timezone.utc)

    def _finalized(self, detection_factory, sample_volume):
        agg = TimeBinAggregator()
        times = [self.START + timedelta(seconds=s) for s in (0.0, 0.5, 1.0)]
        agg.start(TimeRange.from_times(times), [10, 20, 30], self.START)
        for hid, t in enumerate(times, start=1):
            agg.add_hologram_detections(hid, t, [detection_factory(20, capture_time=t)])
        agg.normalize(sample_volume)
        agg.compute_bulk_moments()
        return agg

    def test_counts_and_holograms(self, detection_factory):
        agg = self._finalized(detection_factory, 1e-5)

        np.testing.assert_array_equal(agg.time, [0, 1])
        np.testing.assert_array_equal(agg.holograms, [2, 1])
        # Bins are half-open except the last, so 20 um falls in [20, 30]
        np.testing.assert_array_equal(agg.counts, [[0, 2], [0, 1]])

    def test_concentration_and_nt_scale_inversely_with_sample_volume(self, detection_factory):
        small = self._finalized(detection_factory, 1e-5).result()
        large = self._finalized(detection_factory, 2e-5).result()

        np.testing.assert_allclose(small.concentration[:, 1], 1.0 / (10e-6 * 1e-5))
        np.testing.assert_allclose(small.moments.nt, [1.0 / 1e-5, 1.0 / 1e-5])
        np.testing.assert_allclose(large.concentration, small.concentration / 2)
        np.testing.assert_allclose(large.moments.nt, small.moments.nt / 2)


def test_last_edge_is_inclusive(started, t0, detection_factory):
    started.add_hologram_detections(1, t0, [detection_factory(10), detection_factory(30)])
    np.testing.assert_array_equal(started.counts[0], [1, 1])


def test_naive_times_are_rejected(started, t0):
    naive = t0.replace(tzinfo=None)
    with pytest.raises(ValueError, match="timezone-aware"):
        TimeRange(naive, naive + timedelta(seconds=1))
    with pytest.raises(ValueError, match="timezone-aware"):
        started.add_hologram_detections(1, naive, [])
    assert started.holograms.sum() == 0
