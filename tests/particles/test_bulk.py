import pytest
import numpy as np

pytestmark = pytest.mark.unit

from holoarchive.particles import compute_bulk


EDGES = np.array([10.0, 20.0, 30.0, 40.0])
MID = np.array([15.0, 25.0, 35.0])
MASS = np.pi / 6 * (MID / 1e4) ** 3


def test_uniform_distribution_matches_analytic():
    conc = np.full((1, 3), 1e9)  # #/m4
    bulk = compute_bulk(conc, EDGES)

    per_bin = 1e9 * 10 / 1e6  # #/m3
    assert bulk.nt[0] == pytest.approx(3 * per_bin)
    assert bulk.lwc[0] == pytest.approx(per_bin * MASS.sum())
    assert bulk.dmean[0] == pytest.approx(25.0)
    assert bulk.dmassw[0] == pytest.approx((MASS * MID).sum() / MASS.sum())


def test_unnormalized_input():
    bulk = compute_bulk(np.array([[1.0, 2.0, 3.0]]), EDGES, normalized=False)
    assert bulk.nt[0] == pytest.approx(6.0)


def test_all_mass_in_first_bin_mvd_is_its_upper_edge():
    bulk = compute_bulk(np.array([[1e9, 0.0, 0.0]]), EDGES)
    assert bulk.mvd[0] == pytest.approx(20.0)


def test_mvd_interpolates_into_next_bin():
    bulk = compute_bulk(np.array([[0.0, 1e9, 0.0]]), EDGES)
    # Half the mass is reached halfway across bin 1
    assert bulk.mvd[0] == pytest.approx(25.0)


def test_single_bin_mvd_is_upper_edge():
    bulk = compute_bulk(np.array([[5e8]]), np.array([10.0, 20.0]))
    assert bulk.mvd[0] == pytest.approx(20.0)


def test_empty_rows_are_zero():
    bulk = compute_bulk(np.zeros((2, 3)), EDGES)
    for name in ("lwc", "nt", "dmean", "dmassw", "mvd"):
        np.testing.assert_array_equal(getattr(bulk, name), [0.0, 0.0])


def test_size_limits_crop_bins():
    conc = np.array([[1e9, 1e9, 1e9]])
    bulk = compute_bulk(conc, EDGES, min_size=20, max_size=40)
    assert bulk.nt[0] == pytest.approx(2 * 1e9 * 10 / 1e6)
    assert bulk.dmean[0] == pytest.approx(30.0)


def test_empty_size_range_gives_zeros():
    bulk = compute_bulk(np.ones((2, 3)), EDGES, min_size=22, max_size=28)
    np.testing.assert_array_equal(bulk.nt, [0.0, 0.0])
    np.testing.assert_array_equal(bulk.mvd, [0.0, 0.0])


def test_one_row_per_time():
    bulk = compute_bulk(np.ones((5, 3)), EDGES)
    assert bulk.lwc.shape == (5,)


def test_bin_count_mismatch_raises():
    with pytest.raises(ValueError, match="bins"):
        compute_bulk(np.ones((1, 2)), EDGES)
