"""
Tests of nsxio.io.nsxio
"""

import os
import stat
import tempfile
import unittest

import numpy as np
import quantities as pq
from numpy.testing import assert_array_equal

from nsxio.core.errors import EncodingSizeMismatch, NsxReadWriteError, PrecisionUpgradeWarning
from nsxio.core.options import ChannelSelection, DecodeOptions, WindowRequest
from nsxio.core.recording import DecodedBlock, NsxRecording
from nsxio.io.nsxio import NsxIO, open_nsx, read_nsx, write_nsx, atomic_output, write_checked
from nsxio.test.rawiotest.tools import (
    make_header,
    make_ptp_header,
    make_samples,
    ptp_timestamps,
    write_legacy_file,
    write_ptp_file,
    write_v21_file,
)


def read_bytes(filename):
    with open(filename, "rb") as fid:
        return fid.read()


class BaseNsxIOTest(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.filename = os.path.join(self.tmpdir.name, "source.ns5")
        self.out_filename = os.path.join(self.tmpdir.name, "copy.ns5")

    def tearDown(self):
        self.tmpdir.cleanup()

    def assert_no_temporary_file(self):
        self.assertEqual([f for f in os.listdir(self.tmpdir.name) if f.endswith(".tmp")], [])


class TestRoundTrip(BaseNsxIOTest):
    def assert_round_trip(self, **options):
        recording = read_nsx(self.filename, options=DecodeOptions(**options))
        nbytes = write_nsx(recording, self.out_filename)
        source = read_bytes(self.filename)
        self.assertEqual(nbytes, len(source))
        self.assertEqual(read_bytes(self.out_filename), source)
        self.assert_no_temporary_file()

    def test_v21(self):
        write_v21_file(self.filename, make_header("2.1", channel_count=3, period=30), make_samples(3, 250))
        self.assert_round_trip()

    def test_legacy(self):
        for spec in ("2.2", "2.3", "3.0"):
            header = make_header(spec, channel_count=5)
            segments = [(12, make_samples(5, 300)), (90000, make_samples(5, 120, first=300))]
            write_legacy_file(self.filename, header, segments)
            self.assert_round_trip()
            os.remove(self.out_filename)

    def test_ptp(self):
        header = make_ptp_header(channel_count=3)
        timestamps = ptp_timestamps(1500, header.ticks_per_sample, first=10**12, pauses={700: 10**6})
        write_ptp_file(self.filename, header, timestamps, make_samples(3, 1500))
        self.assert_round_trip()

    def test_physical_units(self):
        write_legacy_file(self.filename, make_header("2.3", channel_count=2), [(0, make_samples(2, 100))])
        with self.assertWarns(PrecisionUpgradeWarning):
            self.assert_round_trip(units="physical")

    def test_float_precision(self):
        write_legacy_file(self.filename, make_header("3.0", channel_count=2), [(0, make_samples(2, 100))])
        self.assert_round_trip(precision="float64")


class TestWriteNsx(BaseNsxIOTest):
    def setUp(self):
        BaseNsxIOTest.setUp(self)
        self.header = make_header("2.3", channel_count=4)
        self.data = make_samples(4, 600)
        write_legacy_file(self.filename, self.header, [(100, self.data)])

    def test_overwrite(self):
        recording = read_nsx(self.filename)
        write_nsx(recording, self.out_filename)
        with self.assertRaises(FileExistsError):
            write_nsx(recording, self.out_filename)
        window = WindowRequest(start=1, end=10)
        write_nsx(read_nsx(self.filename, window=window), self.out_filename, overwrite=True)
        assert_array_equal(read_nsx(self.out_filename).blocks[0].data, self.data[:, :10])
        self.assert_no_temporary_file()

    def test_failed_write_leaves_nothing(self):
        recording = read_nsx(self.filename)
        recording.blocks[0].data = recording.blocks[0].data[:3]
        with self.assertRaises(EncodingSizeMismatch):
            write_nsx(recording, self.out_filename)
        self.assertFalse(os.path.exists(self.out_filename))
        self.assert_no_temporary_file()

        # an existing file is kept as it was
        write_nsx(read_nsx(self.filename), self.out_filename)
        before = read_bytes(self.out_filename)
        with self.assertRaises(EncodingSizeMismatch):
            write_nsx(recording, self.out_filename, overwrite=True)
        self.assertEqual(read_bytes(self.out_filename), before)
        self.assert_no_temporary_file()

    def test_channel_subset(self):
        recording = read_nsx(self.filename, channels=ChannelSelection(channel_ids=[3, 1]))
        write_nsx(recording, self.out_filename)
        reader = open_nsx(self.out_filename)
        self.assertEqual(reader.nsx_header.electrode_ids, [3, 1])
        self.assertEqual(reader.nsx_header.bytes_in_headers, 314 + 2 * 66)
        assert_array_equal(reader.read_blocks().blocks[0].data, self.data[[2, 0], :])

    def test_decimated(self):
        recording = read_nsx(self.filename, options=DecodeOptions(skip_factor=3))
        write_nsx(recording, self.out_filename)
        reread = read_nsx(self.out_filename)
        self.assertEqual(reread.header.period, 3)
        self.assertEqual(float(reread.blocks[0].sampling_rate), 10000.0)
        assert_array_equal(reread.blocks[0].data, self.data[:, ::3])

    def test_mixed_skip_factors(self):
        recording = read_nsx(self.filename)
        recording.blocks.append(read_nsx(self.filename, options=DecodeOptions(skip_factor=2)).blocks[0])
        with self.assertRaises(ValueError):
            write_nsx(recording, self.out_filename)

    def test_sync_shift_keeps_source(self):
        source = read_bytes(self.filename)
        shifted = read_nsx(self.filename).with_sync_shift(300)
        write_nsx(shifted, self.out_filename)
        self.assertEqual(read_bytes(self.filename), source)
        reread = read_nsx(self.out_filename)
        self.assertEqual(reread.blocks[0].timestamp, 400)
        assert_array_equal(reread.blocks[0].data, self.data)

    def test_sync_shift_out_of_range(self):
        recording = read_nsx(self.filename)
        with self.assertRaises(ValueError):
            recording.with_sync_shift(-300)
        with self.assertRaises(ValueError):
            recording.with_sync_shift(2**32)
        self.assertEqual(recording.blocks[0].timestamp, 100)
        self.assertEqual(recording.with_sync_shift(-100).blocks[0].timestamp, 0)

        # a block built with a negative timestamp is refused by the writer
        recording.blocks[0].timestamp = -200
        with self.assertRaises(ValueError):
            write_nsx(recording, self.out_filename)
        self.assertFalse(os.path.exists(self.out_filename))
        self.assert_no_temporary_file()

    def test_ptp_sync_shift_out_of_range(self):
        header = make_ptp_header(channel_count=2)
        ptp_filename = os.path.join(self.tmpdir.name, "source.ns6")
        timestamps = ptp_timestamps(50, header.ticks_per_sample, first=1000)
        write_ptp_file(ptp_filename, header, timestamps, make_samples(2, 50))
        recording = read_nsx(ptp_filename)
        with self.assertRaises(ValueError):
            recording.with_sync_shift(-1001)
        shifted = recording.with_sync_shift(-1000)
        self.assertEqual(int(shifted.blocks[0].timestamps[0]), 0)

    def test_ptp_sync_shift(self):
        header = make_ptp_header(channel_count=2)
        timestamps = ptp_timestamps(50, header.ticks_per_sample, first=10**9)
        ptp_filename = os.path.join(self.tmpdir.name, "source.ns6")
        write_ptp_file(ptp_filename, header, timestamps, make_samples(2, 50))

        recording = read_nsx(ptp_filename)
        shifted = recording.with_sync_shift(-500)
        assert_array_equal(recording.blocks[0].timestamps, timestamps)
        write_nsx(shifted, self.out_filename)
        reread = read_nsx(self.out_filename)
        assert_array_equal(reread.blocks[0].timestamps, timestamps - np.uint64(500))
        self.assertEqual(reread.blocks[0].timestamp, 10**9 - 500)

    def test_ptp_without_timestamps(self):
        header = make_ptp_header(channel_count=2)
        block = DecodedBlock(
            data=make_samples(2, 20),
            timestamp=1000,
            sampling_rate=header.sampling_rate * pq.Hz,
            timestamp_resolution=header.timestamp_resolution,
        )
        write_nsx(NsxRecording(header=header, blocks=[block], is_ptp=True), self.out_filename)
        reread = read_nsx(self.out_filename)
        self.assertTrue(reread.is_ptp)
        expected = 1000 + np.arange(20, dtype="uint64") * np.uint64(header.ticks_per_sample)
        assert_array_equal(reread.blocks[0].timestamps, expected)

    def test_out_of_range_values_are_clipped(self):
        recording = read_nsx(self.filename, options=DecodeOptions(precision="float64"))
        recording.blocks[0].data[0, 0] = 1e6
        recording.blocks[0].data[1, 0] = -1e6
        recording.blocks[0].data[2, 0] = 10.6
        write_nsx(recording, self.out_filename)
        data = read_nsx(self.out_filename).blocks[0].data
        self.assertEqual(data[0, 0], 32767)
        self.assertEqual(data[1, 0], -32768)
        self.assertEqual(data[2, 0], 11)


class TestAtomicOutput(BaseNsxIOTest):
    def test_replace_on_success(self):
        with atomic_output(self.out_filename) as fid:
            write_checked(fid, b"abcd", "payload", 4)
            self.assertFalse(os.path.exists(self.out_filename))
        self.assertEqual(read_bytes(self.out_filename), b"abcd")

    def test_default_permissions(self):
        with atomic_output(self.out_filename) as fid:
            fid.write(b"abcd")
        umask = os.umask(0)
        os.umask(umask)
        self.assertEqual(stat.S_IMODE(os.stat(self.out_filename).st_mode), 0o666 & ~umask)

    def test_cleanup_on_error(self):
        with self.assertRaises(RuntimeError):
            with atomic_output(self.out_filename) as fid:
                fid.write(b"partial")
                raise RuntimeError("interrupted")
        self.assertFalse(os.path.exists(self.out_filename))
        self.assert_no_temporary_file()

    def test_write_checked(self):
        with self.assertRaises(EncodingSizeMismatch) as cm:
            with atomic_output(self.out_filename) as fid:
                write_checked(fid, b"abc", "label", 16)
        self.assertEqual(cm.exception.field, "label")
        self.assertEqual(cm.exception.expected, 16)
        self.assertEqual(cm.exception.actual, 3)


class TestNsxIO(BaseNsxIOTest):
    def test_read_write(self):
        write_legacy_file(self.filename, make_header("2.3", channel_count=2), [(0, make_samples(2, 100))])
        io = NsxIO(self.filename, options=DecodeOptions(skip_factor=2))
        recordings = io.read()
        self.assertEqual(len(recordings), 1)
        self.assertEqual(recordings[0].blocks[0].sample_count, 50)

        recording = io.read_recording(window=WindowRequest(start=1, end=10))
        out_io = NsxIO(self.out_filename)
        nbytes = out_io.write(recording)
        self.assertEqual(nbytes, os.path.getsize(self.out_filename))
        self.assertEqual(out_io.read_recording().blocks[0].sample_count, 5)

    def test_attributes(self):
        self.assertIn("ns5", NsxIO.extensions)
        self.assertTrue(NsxIO.is_readable)
        self.assertTrue(NsxIO.is_writable)
        self.assertTrue(issubclass(EncodingSizeMismatch, NsxReadWriteError))


if __name__ == "__main__":
    unittest.main()
