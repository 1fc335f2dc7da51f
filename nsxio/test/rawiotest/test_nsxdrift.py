"""
Tests of nsxio.rawio.nsxdrift
"""

import unittest

import numpy as np
import quantities as pq
from numpy.testing import assert_array_equal

from nsxio.core.errors import DriftCorrectionWarning
from nsxio.core.recording import DecodedBlock, Segment
from nsxio.rawio.nsxdrift import round_half_away, compute_drift_adjustment, correct_drift
from nsxio.test.rawiotest.tools import make_ptp_header, make_samples


class TestDriftAdjustment(unittest.TestCase):
    def setUp(self):
        self.header = make_ptp_header(channel_count=2)
        self.tps = self.header.ticks_per_sample

    def make_segment(self, sample_count, duration_samples):
        return Segment(
            timestamp=0,
            sample_count=sample_count,
            data_offset=0,
            end_offset=0,
            duration_ticks=duration_samples * self.tps,
        )

    def make_block(self, sample_count, timestamps=True):
        ts = None
        if timestamps:
            ts = np.arange(sample_count, dtype="uint64") * np.uint64(self.tps)
        return DecodedBlock(
            data=make_samples(2, sample_count),
            timestamp=0,
            sampling_rate=self.header.sampling_rate * pq.Hz,
            timestamp_resolution=self.header.timestamp_resolution,
            timestamps=ts,
        )

    def test_round_half_away(self):
        self.assertEqual(round_half_away(2.5), 3)
        self.assertEqual(round_half_away(-2.5), -3)
        self.assertEqual(round_half_away(0.5), 1)
        self.assertEqual(round_half_away(0.49), 0)
        self.assertEqual(round_half_away(-1.2), -1)

    def test_compute_adjustment(self):
        self.assertEqual(compute_drift_adjustment(self.make_segment(100, 100), self.header), (0, 100))
        self.assertEqual(compute_drift_adjustment(self.make_segment(100, 103), self.header), (3, 25))
        self.assertEqual(compute_drift_adjustment(self.make_segment(100, 97), self.header), (-3, 25))
        segment = Segment(timestamp=0, sample_count=100, data_offset=0, end_offset=0)
        self.assertEqual(compute_drift_adjustment(segment, self.header), (0, 100))

    def test_no_drift(self):
        block = self.make_block(100)
        self.assertIs(correct_drift(block, self.make_segment(100, 100), self.header), block)

    def test_add_one_sample_at_midpoint(self):
        block = self.make_block(10)
        with self.assertWarnsRegex(DriftCorrectionWarning, "Added 1 sample to the data"):
            corrected = correct_drift(block, self.make_segment(10, 11), self.header)
        self.assertEqual(corrected.sample_count, 11)
        expected = np.concatenate([block.data[:, :5], block.data[:, 4:5], block.data[:, 5:]], axis=1)
        assert_array_equal(corrected.data, expected)

    def test_remove_one_sample_at_midpoint(self):
        block = self.make_block(10)
        with self.assertWarnsRegex(DriftCorrectionWarning, "Removed 1 sample from the data"):
            corrected = correct_drift(block, self.make_segment(10, 9), self.header)
        self.assertEqual(corrected.sample_count, 9)
        assert_array_equal(corrected.data, np.delete(block.data, 4, axis=1))

    def test_evenly_spaced(self):
        block = self.make_block(100)
        with self.assertWarnsRegex(DriftCorrectionWarning, "evenly spaced"):
            corrected = correct_drift(block, self.make_segment(100, 103), self.header, segment_label="data segment 1/2")
        self.assertEqual(corrected.sample_count, 103)
        # a copy of samples 24, 49 and 74 follows each of them
        for position, source in ((25, 24), (51, 49), (77, 74)):
            assert_array_equal(corrected.data[:, position], block.data[:, source])
        assert_array_equal(corrected.data[:, -25:], block.data[:, -25:])

        with self.assertWarns(DriftCorrectionWarning):
            corrected = correct_drift(block, self.make_segment(100, 97), self.header)
        assert_array_equal(corrected.data, np.delete(block.data, [24, 49, 74], axis=1))

    def test_scaled_to_decoded_length(self):
        # 3 samples over 100 on disk is 1 sample over the 20 decoded ones
        block = self.make_block(20)
        with self.assertWarns(DriftCorrectionWarning):
            corrected = correct_drift(block, self.make_segment(100, 103), self.header)
        self.assertEqual(corrected.sample_count, 21)
        assert_array_equal(corrected.data[:, 10], block.data[:, 9])

        block = self.make_block(10)
        self.assertIs(correct_drift(block, self.make_segment(100, 103), self.header), block)

    def test_timestamps_on_nominal_grid(self):
        block = self.make_block(10)
        block.timestamps = block.timestamps + np.uint64(5000)
        with self.assertWarns(DriftCorrectionWarning):
            corrected = correct_drift(block, self.make_segment(10, 11), self.header)
        expected = 5000 + np.arange(11, dtype="uint64") * np.uint64(self.tps)
        assert_array_equal(corrected.timestamps, expected)
        # the input block is left untouched
        self.assertEqual(block.sample_count, 10)

        block = self.make_block(10, timestamps=False)
        with self.assertWarns(DriftCorrectionWarning):
            corrected = correct_drift(block, self.make_segment(10, 11), self.header)
        self.assertIsNone(corrected.timestamps)


if __name__ == "__main__":
    unittest.main()
