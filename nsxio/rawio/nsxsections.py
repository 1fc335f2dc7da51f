"""
Objects to represent the contiguous segments of samples in an NSx file.

A recording that was paused and resumed is stored as several segments. How the
segments are found depends on the layout of the data:

  * file spec 2.1 has no segment header, the whole data area is one segment
    starting at timestamp 0.
  * file specs 2.2, 2.3 and 3.0 (legacy layout) prefix each segment with a
    header holding a 0x01 marker, the timestamp of the first sample and the
    number of samples. Walking from header to header gives the segments.
  * file spec 3.0 PTP recordings store one packet per sample with its own
    nanosecond timestamp and no explicit segment header. A pause is a jump of
    the timestamps larger than ``max_tick_multiple`` sampling periods.

Scanning the timestamps of a long PTP recording one by one would mean reading
the whole file. Instead the packets are processed in frames of
``packets_per_frame`` packets, overlapping by one packet, and only the first and
last timestamps of each frame are read. When a frame lasts longer than it
should without a pause, all its timestamps are read to locate the pause.

Some acquisition software versions did not write the sample count of the last
segment back into its header, or left garbage after the last segment. These
cases are recovered from, with a warning, rather than failing.
"""

from __future__ import annotations

import logging
import warnings

import numpy as np

from ..core.errors import (
    CorruptSegments,
    CorruptTrailerWarning,
    TruncatedSegmentWarning,
    ZeroLengthSegmentWarning,
)
from ..core.recording import NsxSpec, FormatHeader, Segment
from .nsxheader import data_header_dtype, ptp_packet_dtype

logger = logging.getLogger(__name__)


class NsxSections:
    """
    Ordered segments of an NSx file, as produced by the methods of NsxSectionsFactory.
    """

    def __init__(self, segments=(), is_ptp=False, packet_size=0):
        self.segments = tuple(segments)
        self.is_ptp = is_ptp
        # bytes per sample, all channels included
        self.packet_size = packet_size

    def __eq__(self, other):
        return (
            self.segments == other.segments
            and self.is_ptp == other.is_ptp
            and self.packet_size == other.packet_size
        )

    def __hash__(self):
        return hash((self.segments, self.is_ptp, self.packet_size))

    def __len__(self):
        return len(self.segments)

    def __iter__(self):
        return iter(self.segments)

    def __getitem__(self, index):
        return self.segments[index]

    def __repr__(self):
        return f"NsxSections({len(self.segments)} segments, ptp={self.is_ptp}, samples={self.sample_counts})"

    @property
    def sample_counts(self) -> list[int]:
        return [seg.sample_count for seg in self.segments]

    @property
    def total_samples(self) -> int:
        return sum(self.sample_counts)


class NsxSectionsFactory:
    """
    Factory methods which find the segments of an NSx file from its header and
    a binary file object. Only segment headers and timestamps are read, never
    the samples.
    """

    @staticmethod
    def build_for_nsx(
        fid,
        header: FormatHeader,
        data_offset: int,
        file_size: int,
        is_ptp: bool = False,
        packets_per_frame: int = 1000,
        max_tick_multiple: float = 2,
    ) -> NsxSections:
        """
        Build the NsxSections of an opened NSx file.

        Parameters
        ----------
        fid:
            file object opened in binary mode
        header: FormatHeader
            parsed header of the file
        data_offset: int
            byte offset of the end of the headers
        file_size: int
            size of the file in bytes
        is_ptp: bool
            True when the data is stored one packet per sample (see ``nsxheader.is_ptp_layout``)
        packets_per_frame: int
            frame size used for the PTP pause scan
        max_tick_multiple: float
            a timestamp jump larger than this many sampling periods is a pause (PTP only)

        Returns
        -------
        An NsxSections holding the segments in file order
        """
        if header.spec is NsxSpec.V21:
            sections = NsxSectionsFactory._build_v21_sections(header, data_offset, file_size)
        elif is_ptp:
            sections = NsxSectionsFactory._build_ptp_sections(
                fid, header, data_offset, file_size, packets_per_frame, max_tick_multiple
            )
        else:
            sections = NsxSectionsFactory._build_legacy_sections(fid, header, data_offset, file_size)

        logger.debug(f"Found {len(sections)} segment(s) with sample counts {sections.sample_counts}")
        return sections

    @staticmethod
    def _build_v21_sections(header, data_offset, file_size):
        packet_size = 2 * header.channel_count
        sample_count = max(file_size - data_offset, 0) // packet_size
        segments = []
        if sample_count > 0:
            segments.append(
                Segment(
                    timestamp=0,
                    sample_count=sample_count,
                    data_offset=data_offset,
                    end_offset=data_offset + sample_count * packet_size,
                )
            )
        return NsxSections(segments, is_ptp=False, packet_size=packet_size)

    @staticmethod
    def _build_legacy_sections(fid, header, data_offset, file_size):
        """
        Walk the segment headers. Segments whose declared sample count is zero are
        dropped, a declared count larger than what the file holds is truncated.
        """
        packet_size = 2 * header.channel_count
        dt = data_header_dtype(header.spec)

        # [timestamp, sample_count, data_offset] of each segment header read
        entries = []
        offset = data_offset
        while offset < file_size:
            fid.seek(offset)
            buf = fid.read(dt.itemsize)
            if len(buf) < dt.itemsize or buf[0] != 1:
                entries = NsxSectionsFactory._recover_trailing_segment(entries, data_offset, file_size, packet_size)
                break
            data_header = np.frombuffer(buf, dtype=dt)[0]
            seg_offset = offset + dt.itemsize
            sample_count = int(data_header["nb_data_points"])
            available = (file_size - seg_offset) // packet_size
            if sample_count > available:
                warnings.warn(
                    f"Segment {len(entries)} declares {sample_count} samples but only {available} are "
                    "present in the file, it is truncated",
                    TruncatedSegmentWarning,
                )
                entries.append([int(data_header["timestamp"]), available, seg_offset])
                break
            entries.append([int(data_header["timestamp"]), sample_count, seg_offset])
            offset = seg_offset + sample_count * packet_size

        segments = []
        for i, (timestamp, sample_count, seg_offset) in enumerate(entries):
            if sample_count == 0:
                warnings.warn(
                    f"Segment {i} at byte {seg_offset} holds no sample, it is ignored",
                    ZeroLengthSegmentWarning,
                )
                continue
            segments.append(
                Segment(
                    timestamp=timestamp,
                    sample_count=sample_count,
                    data_offset=seg_offset,
                    end_offset=seg_offset + sample_count * packet_size,
                )
            )
        return NsxSections(segments, is_ptp=False, packet_size=packet_size)

    @staticmethod
    def _recover_trailing_segment(entries, data_offset, file_size, packet_size):
        """
        Called when a segment header does not start with the 0x01 marker. The last
        segment read is extended to the end of the file, its sample count being
        recomputed from the bytes present. If no segment was read the whole data
        area becomes a single segment at timestamp 0.
        """
        if entries:
            timestamp, _, seg_offset = entries[-1]
            sample_count = (file_size - seg_offset) // packet_size
            entries = entries[:-1] + [[timestamp, sample_count, seg_offset]]
            message = f"Invalid segment header after segment {len(entries) - 1}, it is extended to the end of the file"
        else:
            sample_count = (file_size - data_offset) // packet_size
            entries = [[0, sample_count, data_offset]]
            message = "Invalid first segment header, the whole data area is read as one segment"
        warnings.warn(f"{message} ({sample_count} samples)", CorruptTrailerWarning)
        return entries

    @staticmethod
    def _build_ptp_sections(fid, header, data_offset, file_size, packets_per_frame, max_tick_multiple):
        ptp_dt = ptp_packet_dtype(header.channel_count)
        packet_size = ptp_dt.itemsize
        n_packets = (file_size - data_offset) // packet_size
        if n_packets == 0:
            return NsxSections((), is_ptp=True, packet_size=packet_size)

        ticks_per_sample = header.ticks_per_sample
        minimum_pause_length = max_tick_multiple * ticks_per_sample
        timestamp_offset = ptp_dt.fields["timestamps"][1]

        def read_timestamp(packet_index):
            fid.seek(data_offset + packet_index * packet_size + timestamp_offset)
            return int(np.frombuffer(fid.read(8), dtype="uint64")[0])

        def read_frame_timestamps(packet_index, count):
            fid.seek(data_offset + packet_index * packet_size)
            packets = np.frombuffer(fid.read(count * packet_size), dtype=ptp_dt, count=count)
            return packets["timestamps"].astype("int64")

        # index of the first packet of each segment
        segment_starts = [0]
        gap_indices = []
        frame_start = 0
        num_packets_processed = 0
        timestamp_first = read_timestamp(0)
        timestamp_last = timestamp_first
        n_rescanned = 0
        # frames overlap by one packet: the last packet of a frame is the first of the next one
        while frame_start + 1 < n_packets:
            frame_num_packets = min(packets_per_frame, n_packets - frame_start)
            timestamp_last = read_timestamp(frame_start + frame_num_packets - 1)

            expected_ticks_elapsed_nopause = (frame_num_packets - 1) * ticks_per_sample
            expected_ticks_elapsed_minpause = expected_ticks_elapsed_nopause + (minimum_pause_length - ticks_per_sample)
            actual_ticks_elapsed = timestamp_last - timestamp_first
            if actual_ticks_elapsed >= expected_ticks_elapsed_minpause:
                n_rescanned += 1
                timestamps = read_frame_timestamps(frame_start, frame_num_packets)
                for ind in np.flatnonzero(np.diff(timestamps) > minimum_pause_length):
                    segment_starts.append(frame_start + int(ind) + 1)
                    gap_indices.append(frame_start + int(ind))

            timestamp_first = timestamp_last
            num_packets_processed += frame_num_packets - 1
            frame_start += frame_num_packets - 1
        # the last packet of the file is not the first packet of another frame
        num_packets_processed += 1

        logger.debug(f"PTP scan: {n_rescanned} frame(s) of {packets_per_frame} packets read in full")
        if num_packets_processed * packet_size != file_size - data_offset:
            raise CorruptSegments(
                f"Inconsistent number of packets processed ({num_packets_processed}) versus number of "
                f"packets in file ({(file_size - data_offset) / packet_size})"
            )

        segment_stops = segment_starts[1:] + [n_packets]
        segments = []
        for start, stop in zip(segment_starts, segment_stops):
            first_ts = read_timestamp(start)
            last_ts = read_timestamp(stop - 1)
            segments.append(
                Segment(
                    timestamp=first_ts,
                    sample_count=stop - start,
                    data_offset=data_offset + start * packet_size,
                    end_offset=data_offset + stop * packet_size,
                    duration_ticks=last_ts - first_ts + ticks_per_sample,
                )
            )

        if gap_indices:
            NsxSectionsFactory._report_timestamp_gaps(header, gap_indices, segments, minimum_pause_length)
        return NsxSections(segments, is_ptp=True, packet_size=packet_size)

    @staticmethod
    def _report_timestamp_gaps(header, gap_indices, segments, minimum_pause_length):
        """
        Log a table with the position and length of each pause found in a PTP recording.
        """
        resolution = float(header.timestamp_resolution)
        first_ts = segments[0].timestamp
        gap_detail_lines = []
        for gap_index, before, after in zip(gap_indices, segments[:-1], segments[1:]):
            last_before = before.timestamp + before.duration_ticks - header.ticks_per_sample
            pos = (last_before - first_ts) / resolution
            dur = (after.timestamp - last_before) / resolution * 1000
            gap_detail_lines.append(f"| {gap_index:>15,} | {pos:>21.6f} | {dur:>21.3f} |\n")

        threshold_ms = minimum_pause_length / resolution * 1000
        logger.info(
            f"\nFound {len(gap_indices)} pauses where samples are more than {threshold_ms:.3f} ms apart.\n"
            f"Data is segmented at these locations into {len(segments)} segments.\n\n"
            "Gap Details:\n"
            "+-----------------+-----------------------+-----------------------+\n"
            "| Sample Index    | Sample at (Seconds)   | Gap Jump (ms)         |\n"
            "+-----------------+-----------------------+-----------------------+\n"
            + "".join(gap_detail_lines)
            + "+-----------------+-----------------------+-----------------------+\n"
        )
