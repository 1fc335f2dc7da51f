"""
Tests of nsxio.utils.split
"""

import os
import tempfile
import unittest

from numpy.testing import assert_array_equal

from nsxio.core.errors import UnsupportedFormat
from nsxio.io.nsxio import read_nsx
from nsxio.utils import split_nsx, split_nsx_pauses
from nsxio.test.rawiotest.tools import (
    make_header,
    make_ptp_header,
    make_samples,
    ptp_timestamps,
    write_legacy_file,
    write_ptp_file,
    write_v21_file,
)


class TestSplit(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.filename = os.path.join(self.tmpdir.name, "rec.ns5")

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_split_at_pauses(self):
        header = make_header("3.0", channel_count=3)
        segments = [(0, make_samples(3, 100)), (9000, make_samples(3, 40, first=100)), (20000, make_samples(3, 7))]
        write_legacy_file(self.filename, header, segments)

        filenames = split_nsx_pauses(self.filename)
        self.assertEqual([os.path.basename(f) for f in filenames], ["rec-s001.ns5", "rec-s002.ns5", "rec-s003.ns5"])
        for filename, (timestamp, data) in zip(filenames, segments):
            recording = read_nsx(filename)
            self.assertEqual(recording.header, header)
            self.assertEqual(recording.segment_count, 1)
            self.assertEqual(recording.blocks[0].timestamp, timestamp)
            assert_array_equal(recording.blocks[0].data, data)

        with self.assertRaises(FileExistsError):
            split_nsx_pauses(self.filename)
        self.assertEqual(len(split_nsx_pauses(self.filename, overwrite=True)), 3)

    def test_output_dir(self):
        write_legacy_file(self.filename, make_header("2.2", channel_count=2), [(0, make_samples(2, 10))])
        output_dir = os.path.join(self.tmpdir.name, "pieces")
        os.mkdir(output_dir)
        filenames = split_nsx_pauses(self.filename, output_dir=output_dir)
        self.assertEqual(filenames, [os.path.join(output_dir, "rec-s001.ns5")])

    def test_split_in_equal_pieces(self):
        header = make_header("2.3", channel_count=2, period=3)
        data = make_samples(2, 1000)
        write_legacy_file(self.filename, header, [(60, data)])

        filenames = split_nsx(self.filename, split_count=3)
        self.assertEqual(len(filenames), 3)
        pieces = [read_nsx(filename).blocks[0] for filename in filenames]
        self.assertEqual([piece.sample_count for piece in pieces], [333, 333, 334])
        # 3 ticks of the 30 kHz clock per sample
        self.assertEqual([piece.timestamp for piece in pieces], [60, 60 + 999, 60 + 1998])
        assert_array_equal(pieces[1].data, data[:, 333:666])
        assert_array_equal(pieces[2].data, data[:, 666:])

    def test_split_paused_file(self):
        header = make_header("2.3", channel_count=2)
        write_legacy_file(self.filename, header, [(0, make_samples(2, 100)), (5000, make_samples(2, 50))])
        filenames = split_nsx(self.filename, split_count=4)
        self.assertEqual(len(filenames), 2)

    def test_invalid_split_count(self):
        write_legacy_file(self.filename, make_header("2.3", channel_count=2), [(0, make_samples(2, 10))])
        with self.assertRaises(ValueError):
            split_nsx(self.filename, split_count=0)
        with self.assertRaises(ValueError):
            split_nsx(self.filename, split_count=20)

    def test_unsupported(self):
        write_v21_file(self.filename, make_header("2.1", channel_count=2), make_samples(2, 10))
        with self.assertRaises(UnsupportedFormat):
            split_nsx_pauses(self.filename)

        header = make_ptp_header(channel_count=2)
        write_ptp_file(self.filename, header, ptp_timestamps(20, header.ticks_per_sample), make_samples(2, 20))
        with self.assertRaises(UnsupportedFormat):
            split_nsx(self.filename)


if __name__ == "__main__":
    unittest.main()
