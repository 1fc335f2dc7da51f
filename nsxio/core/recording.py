"""
In-memory model of an NSx recording.

An NSx file is made of a basic header, an extended header with one record per
channel (absent in file spec 2.1) and one or more data segments. Multiple
segments mean the recording was paused and resumed.

These classes only hold metadata and decoded sample matrices. Segments carry
byte offsets into the file, never sample buffers, so that a window of a very
large file can be decoded without touching the rest of it.
"""

from __future__ import annotations

import datetime
import enum
from dataclasses import dataclass, field, replace

import numpy as np
import quantities as pq
from packaging.version import Version

# The Blackrock systems define the sampling period as a number of ticks of a 30 kHz clock
MAIN_SAMPLING_RATE = 30000.0


class NsxSpec(enum.Enum):
    """
    The four supported NSx file specifications.
    """

    V21 = "2.1"
    V22 = "2.2"
    V23 = "2.3"
    V30 = "3.0"

    @classmethod
    def from_file_id(cls, file_id: str, ver_major: int | None = None, ver_minor: int | None = None) -> "NsxSpec":
        if file_id == "NEURALSG":
            return cls.V21
        if file_id in FILE_IDS_BY_MAJOR.values():
            try:
                spec = cls(f"{ver_major}.{ver_minor}")
            except ValueError:
                raise ValueError(f"Unsupported NSx file spec {ver_major}.{ver_minor} for file type {file_id}")
            if spec.file_id != file_id:
                raise ValueError(f"File type {file_id} does not match file spec {spec.value}")
            return spec
        raise ValueError(f"Unsupported NSx file type {file_id!r}")

    @property
    def version(self) -> Version:
        return Version(self.value)

    @property
    def file_id(self) -> str:
        if self is NsxSpec.V21:
            return "NEURALSG"
        return FILE_IDS_BY_MAJOR[self.version.major]

    @property
    def timestamp_bytes(self) -> int:
        # 64-bit timestamps from file spec 3.0 on
        return 8 if self.version >= Version("3.0") else 4

    @property
    def has_extended_header(self) -> bool:
        return self is not NsxSpec.V21

    @property
    def basic_header_size(self) -> int:
        return 32 if self is NsxSpec.V21 else 314


FILE_IDS_BY_MAJOR = {2: "NEURALCD", 3: "BRSMPGRP"}

# one extended header record per channel
EXT_HEADER_SIZE = 66


@dataclass(frozen=True)
class ChannelInfo:
    """
    Metadata of one channel, taken from its extended header record.

    For file spec 2.1 only ``electrode_id`` is stored on disk, all the other
    fields are left to their defaults and the channel is not scaled.
    """

    electrode_id: int
    label: str = ""
    physical_connector: int | None = None
    connector_pin: int | None = None
    min_digital_val: int | None = None
    max_digital_val: int | None = None
    min_analog_val: int | None = None
    max_analog_val: int | None = None
    units: str = ""
    hi_freq_corner: int | None = None
    hi_freq_order: int | None = None
    hi_freq_type: int | None = None
    lo_freq_corner: int | None = None
    lo_freq_order: int | None = None
    lo_freq_type: int | None = None

    @property
    def is_scaled(self) -> bool:
        if None in (self.min_digital_val, self.max_digital_val, self.min_analog_val, self.max_analog_val):
            return False
        return self.max_digital_val != self.min_digital_val

    @property
    def gain(self) -> float:
        """Physical units per raw count."""
        if not self.is_scaled:
            return 1.0
        # digital and analog bounds are int16 on disk, cast before doing arithmetic
        return (float(self.max_analog_val) - float(self.min_analog_val)) / (
            float(self.max_digital_val) - float(self.min_digital_val)
        )

    @property
    def offset(self) -> float:
        if not self.is_scaled:
            return 0.0
        return -float(self.min_digital_val) * self.gain + float(self.min_analog_val)

    @property
    def resolution(self) -> float:
        return self.gain

    @property
    def connector_bank(self) -> str:
        if not self.physical_connector:
            return ""
        return chr(ord("A") + self.physical_connector - 1)


@dataclass(frozen=True)
class FormatHeader:
    """
    Basic header of an NSx file plus the ordered channel metadata.

    ``period`` is the number of 1/30000 s ticks between two samples and
    ``timestamp_resolution`` the number of timestamp ticks per second
    (1e9 for PTP recordings).
    """

    spec: NsxSpec
    label: str
    period: int
    channels: tuple[ChannelInfo, ...]
    timestamp_resolution: int = int(MAIN_SAMPLING_RATE)
    comment: str | None = None
    time_origin: tuple[int, ...] | None = None

    @property
    def channel_count(self) -> int:
        return len(self.channels)

    @property
    def sampling_rate(self) -> float:
        return MAIN_SAMPLING_RATE / self.period

    @property
    def ticks_per_sample(self) -> float:
        return self.timestamp_resolution / self.sampling_rate

    @property
    def timestamp_bytes(self) -> int:
        return self.spec.timestamp_bytes

    @property
    def max_timestamp(self) -> int:
        return 2 ** (8 * self.timestamp_bytes) - 1

    @property
    def bytes_in_headers(self) -> int:
        if self.spec is NsxSpec.V21:
            return self.spec.basic_header_size + 4 * self.channel_count
        return self.spec.basic_header_size + EXT_HEADER_SIZE * self.channel_count

    @property
    def electrode_ids(self) -> list[int]:
        return [chan.electrode_id for chan in self.channels]

    @property
    def rec_datetime(self) -> datetime.datetime | None:
        if self.time_origin is None:
            return None
        year, month, _weekday, day, hour, minute, second, millisecond = self.time_origin
        try:
            return datetime.datetime(
                year=year,
                month=month,
                day=day,
                hour=hour,
                minute=minute,
                second=second,
                microsecond=int(millisecond) * 1000,
            )
        except ValueError:
            return None

    def with_channels(self, channels) -> "FormatHeader":
        return replace(self, channels=tuple(channels))


@dataclass(frozen=True)
class Segment:
    """
    A contiguous run of packets recorded without interruption.

    ``data_offset`` is the byte offset of the first sample of the segment and
    ``end_offset`` the offset just after its last sample. For PTP recordings,
    where every packet has its own timestamp, the offsets are packet boundaries
    and ``duration_ticks`` holds the time covered by the segment.
    """

    timestamp: int
    sample_count: int
    data_offset: int
    end_offset: int
    duration_ticks: float | None = None


@dataclass(frozen=True)
class SegmentWindow:
    segment_index: int
    start_offset: int
    sample_count: int


@dataclass(frozen=True)
class TimeWindow:
    """
    Resolved sample range, 1-based and inclusive, and the part of each segment it covers.
    """

    start: int
    end: int
    segments: tuple[SegmentWindow, ...] = ()

    @property
    def sample_count(self) -> int:
        return self.end - self.start + 1


@dataclass
class DecodedBlock:
    """
    Samples decoded from one segment, shaped (channels, samples).

    ``sampling_rate`` is the rate of the returned samples, that is the file
    sampling rate divided by ``skip_factor``.
    """

    data: np.ndarray
    timestamp: int
    sampling_rate: pq.Quantity
    timestamp_resolution: float
    segment_index: int = 0
    skip_factor: int = 1
    units: str = "raw"
    timestamps: np.ndarray | None = None

    @property
    def channel_count(self) -> int:
        return self.data.shape[0]

    @property
    def sample_count(self) -> int:
        return self.data.shape[1]

    @property
    def duration(self) -> pq.Quantity:
        return (self.sample_count / self.sampling_rate).rescale(pq.s)

    @property
    def t_start(self) -> pq.Quantity:
        return self.timestamp / float(self.timestamp_resolution) * pq.s


@dataclass
class NsxRecording:
    """
    Header and decoded blocks of a recording, as returned by the reader and
    consumed by the writer.
    """

    header: FormatHeader
    blocks: list[DecodedBlock] = field(default_factory=list)
    is_ptp: bool = False
    file_origin: str | None = None

    @property
    def segment_count(self) -> int:
        return len(self.blocks)

    def with_sync_shift(self, ticks: int) -> "NsxRecording":
        """
        Return a copy of the recording whose timestamps are shifted by ``ticks``.

        This is how recordings of several synchronized devices are aligned:
        the shift is applied to the model only and persisted by writing the copy.

        Raises ValueError if a shifted timestamp does not fit the timestamp field
        of the file, for instance when it becomes negative.
        """
        ticks = int(ticks)
        blocks = []
        for block in self.blocks:
            first = int(block.timestamp)
            last = first
            if block.timestamps is not None and block.timestamps.size > 0:
                first = min(first, int(block.timestamps.min()))
                last = max(last, int(block.timestamps.max()))
            if first + ticks < 0 or last + ticks > self.header.max_timestamp:
                raise ValueError(
                    f"Shifting segment {block.segment_index} by {ticks} ticks moves its timestamps out of "
                    f"[0, {self.header.max_timestamp}]"
                )
            timestamps = None
            if block.timestamps is not None:
                timestamps = block.timestamps + np.asarray(ticks).astype(block.timestamps.dtype)
            blocks.append(replace(block, timestamp=int(block.timestamp) + ticks, timestamps=timestamps))
        return replace(self, blocks=blocks)
