"""
Resolution of the channels and of the time window requested by a caller into
what has to be read on disk.
"""

from __future__ import annotations

import math
import warnings
from dataclasses import dataclass

import quantities as pq

from ..core.errors import ChannelOutOfRange, InvalidRange, RangeExceedsFile, RangeClampedWarning
from ..core.options import ChannelSelection, DecodeOptions, WindowRequest
from ..core.recording import ChannelInfo, FormatHeader, SegmentWindow, TimeWindow

_time_units = {
    "sec": pq.s,
    "secs": pq.s,
    "second": pq.s,
    "seconds": pq.s,
    "s": pq.s,
    "min": pq.min,
    "mins": pq.min,
    "minute": pq.min,
    "minutes": pq.min,
    "hour": pq.hour,
    "hours": pq.hour,
}

_sample_units = ("sample", "samples", "packet", "packets")


@dataclass(frozen=True)
class ChannelResolution:
    """
    Rows of the requested channels, in the requested order, and the span of rows
    ``[read_start, read_stop)`` that has to be read from each sample on disk.
    """

    rows: tuple[int, ...]
    channels: tuple[ChannelInfo, ...]
    read_start: int
    read_stop: int

    @property
    def span_rows(self) -> list[int]:
        """Position of each requested row inside the span that is read."""
        return [row - self.read_start for row in self.rows]

    @property
    def read_count(self) -> int:
        return self.read_stop - self.read_start


def resolve_channels(header: FormatHeader, selection: ChannelSelection | None = None) -> ChannelResolution:
    """
    Turn a ChannelSelection into the rows of the channels in the file.

    Samples of all channels are interleaved on disk, so the rows between the first
    and the last requested ones are read too and dropped in memory. Requesting
    two channels far apart, for instance the first and the last of 256, costs as
    much memory during the read as requesting all the channels in between.

    Raises
    ------
    ChannelOutOfRange
        for a row outside the file, an unknown channel id, or an electrode that
        maps to an unknown channel id
    """
    if selection is None:
        selection = ChannelSelection()
    channel_count = header.channel_count
    electrode_ids = header.electrode_ids

    rows = []
    if selection.rows is not None:
        for row in selection.rows:
            row = int(row)
            if row < 0 or row >= channel_count:
                raise ChannelOutOfRange(row, f"Row {row} is out of range, the file has {channel_count} channels")
            rows.append(row)
    elif selection.channel_ids is not None:
        for channel_id in selection.channel_ids:
            if channel_id not in electrode_ids:
                raise ChannelOutOfRange(channel_id)
            rows.append(electrode_ids.index(channel_id))
    elif selection.electrodes is not None:
        for electrode in selection.electrodes:
            try:
                channel_id = selection.electrode_map(electrode)
            except LookupError as e:
                raise ChannelOutOfRange(electrode, f"Electrode {electrode!r} is not in the electrode map") from e
            if channel_id not in electrode_ids:
                raise ChannelOutOfRange(
                    electrode, f"Electrode {electrode!r} maps to channel {channel_id!r} which is not in this file"
                )
            rows.append(electrode_ids.index(channel_id))

    if len(rows) == 0:
        rows = list(range(channel_count))
    # a channel requested twice is read once
    rows = list(dict.fromkeys(rows))

    return ChannelResolution(
        rows=tuple(rows),
        channels=tuple(header.channels[row] for row in rows),
        read_start=min(rows),
        read_stop=max(rows) + 1,
    )


def _to_sample_position(value, unit, sampling_rate):
    """Number of samples elapsed at ``value`` expressed in ``unit``."""
    if unit in _sample_units:
        return value
    if unit not in _time_units:
        raise ValueError(f"Unknown time unit {unit!r}, use one of {list(_sample_units) + list(_time_units)}")
    seconds = float((value * _time_units[unit]).rescale(pq.s).magnitude)
    # rounding absorbs float error such as 2.3 * 30000 = 68999.99999999999
    return math.floor(round(seconds * sampling_rate, 6))


def resolve_window(
    segment_counts,
    sampling_rate: float,
    window: WindowRequest | None = None,
    options: DecodeOptions | None = None,
) -> TimeWindow:
    """
    Turn a WindowRequest into a 1-based inclusive sample range and distribute it
    over the segments.

    Parameters
    ----------
    segment_counts: list of int
        number of samples of each segment, in file order
    sampling_rate: float
        sampling rate of the file in Hz, used to convert times into samples
    window: WindowRequest | None
        requested range, the whole file when None
    options: DecodeOptions | None
        ``confirm_truncation`` tells what to do when the end is beyond the file

    Raises
    ------
    InvalidRange
        if start is after end, or end is before the first sample
    RangeExceedsFile
        if start is beyond the file, or end is beyond the file and truncation
        was not confirmed
    """
    if window is None:
        window = WindowRequest()
    if options is None:
        options = DecodeOptions()
    segment_counts = [int(n) for n in segment_counts]
    total = sum(segment_counts)

    if window.start is None and window.end is None and total == 0:
        return TimeWindow(start=1, end=0, segments=())

    unit = window.unit.lower()
    if window.start is None:
        start = 1
    elif unit in _sample_units:
        start = int(window.start)
    else:
        start = _to_sample_position(window.start, unit, sampling_rate) + 1
    if window.end is None:
        end = total
    else:
        end = int(_to_sample_position(window.end, unit, sampling_rate))

    if start > end:
        raise InvalidRange(f"Start sample ({start}) must not be after the end sample ({end})")
    if end < 1:
        raise InvalidRange(f"End sample ({end}) is before the first sample of the file")
    if start <= 0:
        warnings.warn(
            f"Start sample ({start}) must be greater than or equal to 1; updating to comply",
            RangeClampedWarning,
        )
        start = 1
    if end > total:
        if start > total:
            raise RangeExceedsFile(
                start, total, f"Start sample ({start}) is beyond the total number of samples ({total})"
            )
        if not options.truncation_confirmed(end, total):
            raise RangeExceedsFile(end, total)
        warnings.warn(
            f"End sample ({end}) is beyond the total number of samples ({total}); reading up to the last sample",
            RangeClampedWarning,
        )
        end = total

    segments = []
    first_sample = 1
    for seg_index, count in enumerate(segment_counts):
        last_sample = first_sample + count - 1
        lo = max(start, first_sample)
        hi = min(end, last_sample)
        if lo <= hi:
            segments.append(SegmentWindow(segment_index=seg_index, start_offset=lo - first_sample, sample_count=hi - lo + 1))
        first_sample = last_sample + 1

    return TimeWindow(start=start, end=end, segments=tuple(segments))
