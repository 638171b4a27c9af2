"""Archive writer and reader: layout, particle streaming, lifecycle."""

import pytest
import numpy as np
import netCDF4
from datetime import timedelta

pytestmark = pytest.mark.unit

from holoarchive.archive import (
    ArchiveClosedError,
    ArchiveMetadata,
    ArchiveOpenError,
    ArchiveSchema,
    ArchiveWriter,
    read_archive,
)
from holoarchive.archive.writer import partial_path
from holoarchive.contracts import ContractViolation
from holoarchive.particles import TimeBinAggregator, TimeRange, midnight_utc, to_particle_batch


EDGES = [10.0, 20.0, 30.0]


@pytest.fixture
def epoch(t0):
    return midnight_utc(t0)


@pytest.fixture
def finalized(t0, epoch, batch_factory):
    """Finalized aggregator with three holograms over three seconds."""
    def _build(round_enabled=False):
        agg = TimeBinAggregator(round_enabled=round_enabled)
        agg.start(TimeRange(t0, t0 + timedelta(seconds=2)), EDGES, epoch)
        batches = [
            batch_factory(1, t0, (15, 25), accepted_round=True),
            batch_factory(2, t0 + timedelta(seconds=0.5), (15,)),
            batch_factory(3, t0 + timedelta(seconds=2)),
        ]
        for b in batches:
            agg.add_hologram_detections(b.hologram_id, b.capture_time, b.detections)
        agg.normalize(1e-5)
        agg.compute_bulk_moments()
        return agg, batches
    return _build


def _metadata(internal_config, agg, t0):
    return ArchiveMetadata(
        start_epoch=agg.start_epoch,
        time_range=agg.time_range,
        ruleset=internal_config.archive.ruleset,
        sample_volume=internal_config.sample_volume,
        source="unit test",
        project="SPICULE",
    )


def test_round_trip(temp_dir, finalized, internal_config, t0, epoch):
    agg, batches = finalized()
    path = temp_dir / "RF04_20210604_HOLODEC.nc"
    writer = ArchiveWriter.open(path, ArchiveSchema(agg.time, agg.bin_edges))

    assert partial_path(path).exists() and not path.exists()
    for b in batches:
        writer.append_particles(to_particle_batch(b, epoch))
    assert writer.offset == 3

    writer.write_binned_arrays(agg.result())
    assert writer.close(_metadata(internal_config, agg, t0)) == path
    assert path.exists() and not partial_path(path).exists()

    contents = read_archive(path)
    np.testing.assert_array_equal(contents.time, agg.time)
    np.testing.assert_array_equal(contents.bin_edges, EDGES)
    np.testing.assert_array_equal(contents.bin_centers, [15.0, 25.0])
    np.testing.assert_allclose(contents.concentration, agg.concentration)
    np.testing.assert_allclose(contents.nt, agg.moments.nt)
    np.testing.assert_array_equal(contents.particles.hid, [1, 1, 2])
    np.testing.assert_array_equal(contents.particles.d, [15.0, 25.0, 15.0])
    assert contents.total_particles == 3
    assert contents.round_channel is None
    assert contents.aircraft is None

    attrs = contents.attrs
    assert attrs["ProbeName"] == "HOLODEC"
    assert attrs["FlightDate"] == "2021/06/04"
    assert attrs["TimeInterval"] == "17:25:03-17:25:05"
    assert attrs["Ruleset"] == 8
    assert attrs["ProjectName"] == "SPICULE"
    assert "RoundRuleset" not in attrs
    assert attrs["samplevolume_m3"] == pytest.approx(internal_config.sample_volume.total_m3, rel=1e-6)


def test_variable_types_and_units(temp_dir, finalized, internal_config, t0):
    agg, _ = finalized()
    path = temp_dir / "a.nc"
    with ArchiveWriter.open(path, ArchiveSchema(agg.time, agg.bin_edges)) as writer:
        writer.write_binned_arrays(agg.result())
        writer.close(_metadata(internal_config, agg, t0))

    with netCDF4.Dataset(str(path)) as ds:
        assert ds.dimensions["particle"].isunlimited()
        assert ds.variables["hid"].dtype == np.int32
        assert ds.variables["concentration"].dimensions == ("time", "bin_centers")
        assert ds.variables["concentration"].units == "#/m4"
        assert ds.variables["d"].longname == "Particle diameter"
        assert ds.variables["d"].filters()["zlib"]


def test_round_channel_written(temp_dir, finalized, internal_config, t0):
    agg, _ = finalized(round_enabled=True)
    path = temp_dir / "round.nc"
    schema = ArchiveSchema(agg.time, agg.bin_edges, round_enabled=True)
    writer = ArchiveWriter.open(path, schema)
    writer.write_binned_arrays(agg.result())
    writer.close(_metadata(internal_config, agg, t0))

    contents = read_archive(path)
    assert set(contents.round_channel) == {"concentration_round", "lwc_round", "mvd_round", "dmean_round"}
    expected = agg.result().moments_round.mvd[0]
    assert contents.round_channel["mvd_round"][0] == pytest.approx(expected)
    assert 20.0 < expected < 30.0


def test_read_slice_and_time_window(temp_dir, finalized, internal_config, t0, epoch):
    agg, batches = finalized()
    path = temp_dir / "slice.nc"
    writer = ArchiveWriter.open(path, ArchiveSchema(agg.time, agg.bin_edges))
    for b in batches:
        writer.append_particles(to_particle_batch(b, epoch))
    writer.write_binned_arrays(agg.result())
    writer.close(_metadata(internal_config, agg, t0))

    assert len(read_archive(path, start=1, count=1).particles) == 1
    first_second = (t0 - epoch).total_seconds()
    windowed = read_archive(path, start_time=first_second + 0.25)
    np.testing.assert_array_equal(windowed.particles.hid, [2])


def test_abort_removes_partial(temp_dir, finalized, epoch):
    agg, batches = finalized()
    path = temp_dir / "aborted.nc"
    writer = ArchiveWriter.open(path, ArchiveSchema(agg.time, agg.bin_edges))
    writer.append_particles(to_particle_batch(batches[0], epoch))

    writer.abort()
    writer.abort()

    assert not path.exists()
    assert not partial_path(path).exists()
    with pytest.raises(ArchiveClosedError):
        writer.append_particles(to_particle_batch(batches[0], epoch))


def test_context_manager_aborts_on_error(temp_dir, finalized):
    agg, _ = finalized()
    path = temp_dir / "ctx.nc"
    with pytest.raises(RuntimeError, match="boom"):
        with ArchiveWriter.open(path, ArchiveSchema(agg.time, agg.bin_edges)):
            raise RuntimeError("boom")
    assert not path.exists()
    assert not partial_path(path).exists()


def test_close_twice_is_error(temp_dir, finalized, internal_config, t0):
    agg, _ = finalized()
    writer = ArchiveWriter.open(temp_dir / "twice.nc", ArchiveSchema(agg.time, agg.bin_edges))
    writer.write_binned_arrays(agg.result())
    writer.close(_metadata(internal_config, agg, t0))
    with pytest.raises(ArchiveClosedError):
        writer.close(_metadata(internal_config, agg, t0))


def test_existing_archive_is_replaced(temp_dir, finalized):
    agg, _ = finalized()
    path = temp_dir / "old.nc"
    path.write_text("stale")
    writer = ArchiveWriter.open(path, ArchiveSchema(agg.time, agg.bin_edges))
    assert not path.exists()
    writer.abort()


def test_open_in_missing_directory(temp_dir, finalized):
    agg, _ = finalized()
    with pytest.raises(ArchiveOpenError):
        ArchiveWriter.open(temp_dir / "no" / "such" / "dir.nc", ArchiveSchema(agg.time, agg.bin_edges))


def test_mismatched_result_is_contract_violation(temp_dir, finalized):
    agg, _ = finalized()
    schema = ArchiveSchema(agg.time, [10.0, 20.0, 40.0])
    writer = ArchiveWriter.open(temp_dir / "mismatch.nc", schema)
    with pytest.raises(ContractViolation, match="bin edges"):
        writer.write_binned_arrays(agg.result())
    writer.abort()


def test_binned_arrays_written_once(temp_dir, finalized):
    agg, _ = finalized()
    writer = ArchiveWriter.open(temp_dir / "once.nc", ArchiveSchema(agg.time, agg.bin_edges))
    writer.write_binned_arrays(agg.result())
    with pytest.raises(ContractViolation, match="already written"):
        writer.write_binned_arrays(agg.result())
    writer.abort()
