"""
Module for reading the continuous signals of Blackrock (Cerebus) NSx files.

The possible file extensions and their content:
    ns1: contains analog data; sampled at 500 Hz (+ digital filters)
    ns2: contains analog data; sampled at 1000 Hz (+ digital filters)
    ns3: contains analog data; sampled at 2000 Hz (+ digital filters)
    ns4: contains analog data; sampled at 10000 Hz (+ digital filters)
    ns5: contains analog data; sampled at 30000 Hz (+ digital filters)
    ns6: contains analog data; sampled at 30000 Hz (no digital filters)

This IO can handle the following file specifications:
  * 2.1
  * 2.2
  * 2.3
  * 3.0
  * 3.0 with PTP timestamps (Gemini systems)

Reading a file goes through these steps:
  1. the headers are parsed (nsxheader)
  2. the segments are located from the segment headers or the PTP timestamps (nsxsections)
  3. the requested channels and time window are resolved into rows and sample ranges (nsxselection)
  4. the samples are read through a strided memory map of the touched region only
  5. the clock drift of PTP recordings is corrected (nsxdrift)
  6. the units are converted, the first segment is zero padded and the timestamps are shifted
"""

from __future__ import annotations

import math
import os
import warnings

import numpy as np
import quantities as pq

from .baserawio import BaseRawIO, _signal_channel_dtype, error_header
from .nsxheader import parse_header, is_ptp_layout, ptp_packet_dtype
from .nsxsections import NsxSectionsFactory
from .nsxselection import resolve_channels, resolve_window
from .nsxdrift import correct_drift
from .utils import get_file_size, get_strided_chunk_from_opened_file, get_strided_field_from_opened_file

from ..core.errors import InvalidRange, NsxWarning, TruncatedSegmentWarning, UnscaledChannelWarning
from ..core.options import DecodeOptions, ChannelSelection, WindowRequest
from ..core.recording import NsxSpec, DecodedBlock, NsxRecording, TimeWindow, SegmentWindow


class NsxRawIO(BaseRawIO):
    """
    Class for reading the continuous signals of one NSx file.

    Parameters
    ----------
    filename: str | Path
        The .ns1 to .ns6 file
    options: DecodeOptions | None, default: None
        Decoding options, the defaults of DecodeOptions when None

    Examples
    --------
    >>> reader = NsxRawIO(filename="FileSpec2.3001.ns5")
    >>> reader.parse_header()
    >>> print(reader)
    >>> raw_chunk = reader.get_analogsignal_chunk(seg_index=0, i_start=0, i_stop=1024, channel_indexes=[0, 2])
    >>> recording = reader.read_blocks(
    ...     channels=ChannelSelection(channel_ids=[1, 5]), window=WindowRequest(start=0, end=2, unit="sec")
    ... )
    """

    extensions = ["ns1", "ns2", "ns3", "ns4", "ns5", "ns6"]
    rawmode = "one-file"

    def __init__(self, filename="", options: DecodeOptions | None = None):
        BaseRawIO.__init__(self)
        self.filename = str(filename)
        if options is None:
            options = DecodeOptions()
        self.options = options

    def _source_name(self):
        return self.filename

    def _parse_header(self):
        options = self.options
        with open(self.filename, "rb") as fid:
            self._file_size = get_file_size(fid)
            self.nsx_header, self._data_offset = parse_header(fid)
            self.is_ptp = is_ptp_layout(fid, self.nsx_header, self._data_offset, self._file_size)
            self._sections = NsxSectionsFactory.build_for_nsx(
                fid,
                self.nsx_header,
                self._data_offset,
                self._file_size,
                is_ptp=self.is_ptp,
                packets_per_frame=options.packets_per_frame,
                max_tick_multiple=options.max_tick_multiple,
            )

        if self.is_ptp:
            self._sample_offset = ptp_packet_dtype(self.nsx_header.channel_count).fields["samples"][1]
        else:
            self._sample_offset = 0

        sampling_rate = self.nsx_header.sampling_rate
        signal_channels = []
        for chan in self.nsx_header.channels:
            ch_id = str(chan.electrode_id)
            ch_name = chan.label if chan.label else f"ch{ch_id}"
            signal_channels.append((ch_name, ch_id, sampling_rate, "int16", chan.units, chan.gain, chan.offset))
        signal_channels = np.array(signal_channels, dtype=_signal_channel_dtype)

        self.header = {}
        self.header["nb_segment"] = len(self._sections)
        self.header["signal_channels"] = signal_channels

        self.logger.debug(
            f"{self.filename}: file spec {self.nsx_header.spec.value}, ptp={self.is_ptp}, "
            f"{self.nsx_header.channel_count} channels at {sampling_rate} Hz, {len(self._sections)} segment(s)"
        )

    @property
    def sections(self):
        if not self.is_header_parsed:
            raise RuntimeError(error_header)
        return self._sections

    def _get_signal_size(self, seg_index):
        return self.sections[seg_index].sample_count

    def _get_signal_t_start(self, seg_index):
        return self.sections[seg_index].timestamp / float(self.nsx_header.timestamp_resolution)

    def _get_analogsignal_chunk(self, seg_index, i_start, i_stop, channel_indexes):
        segment = self.sections[seg_index]
        if i_start is None:
            i_start = 0
        if i_stop is None:
            i_stop = segment.sample_count
        if not 0 <= i_start <= i_stop <= segment.sample_count:
            raise InvalidRange(
                f"Sample range [{i_start}, {i_stop}) is outside segment {seg_index} of {segment.sample_count} samples"
            )

        channel_count = self.nsx_header.channel_count
        if channel_indexes is None:
            channel_indexes = slice(None)
        rows = np.arange(channel_count)[channel_indexes]
        if rows.size == 0:
            return np.empty((i_stop - i_start, 0), dtype="int16")
        first_row, last_row = int(rows.min()), int(rows.max())

        packet_size = self._sections.packet_size
        with open(self.filename, "rb") as fid:
            sig_chunk = get_strided_chunk_from_opened_file(
                fid,
                packet_size,
                i_stop - i_start,
                first_row,
                last_row - first_row + 1,
                dtype="int16",
                file_offset=segment.data_offset + i_start * packet_size + self._sample_offset,
                rows=list(rows - first_row),
            )
        return sig_chunk

    def read_blocks(
        self,
        channels: ChannelSelection | None = None,
        window: WindowRequest | None = None,
    ) -> NsxRecording:
        """
        Decode the requested channels over the requested time window.

        Parameters
        ----------
        channels: ChannelSelection | None
            channels to decode, all when None
        window: WindowRequest | None
            time window to decode, the whole file when None

        Returns
        -------
        recording: NsxRecording
            one DecodedBlock, shaped (channels, samples), per segment touched by
            the window, and the header restricted to the decoded channels
        """
        if not self.is_header_parsed:
            self.parse_header()
        options = self.options

        resolution = resolve_channels(self.nsx_header, channels)
        time_window = resolve_window(self._sections.sample_counts, self.nsx_header.sampling_rate, window, options)

        blocks = []
        with open(self.filename, "rb") as fid:
            for seg_window in time_window.segments:
                blocks.append(self._decode_segment(fid, seg_window, resolution))

        blocks = [self._postprocess_block(block, resolution, time_window) for block in blocks]

        return NsxRecording(
            header=self.nsx_header.with_channels(resolution.channels),
            blocks=blocks,
            is_ptp=self.is_ptp,
            file_origin=os.path.basename(self.filename),
        )

    def _decode_segment(self, fid, seg_window: SegmentWindow, resolution) -> DecodedBlock:
        """
        Read the samples of one segment covered by the window, keeping one sample
        every ``skip_factor``.
        """
        options = self.options
        header = self.nsx_header
        segment = self._sections[seg_window.segment_index]
        packet_size = self._sections.packet_size
        skip = options.skip_factor

        num_samples = seg_window.sample_count // skip
        first_packet = segment.data_offset + seg_window.start_offset * packet_size
        span_offset = first_packet + self._sample_offset

        # the file may be shorter than its segment headers say
        last_needed = self._file_size - span_offset - resolution.read_stop * 2
        on_disk = last_needed // (packet_size * skip) + 1 if last_needed >= 0 else 0
        if on_disk < num_samples:
            warnings.warn(
                f"Segment {seg_window.segment_index}: {num_samples} samples requested but only {on_disk} "
                "are present in the file",
                TruncatedSegmentWarning,
            )
            num_samples = on_disk

        data = get_strided_chunk_from_opened_file(
            fid,
            packet_size,
            num_samples,
            resolution.read_start,
            resolution.read_count,
            dtype="int16",
            file_offset=span_offset,
            step=skip,
            rows=resolution.span_rows,
        )
        data = np.ascontiguousarray(data.T)
        if options.precision == "float64":
            data = data.astype("float64")

        timestamps = None
        timestamp = segment.timestamp + round(seg_window.start_offset * header.ticks_per_sample)
        if self.is_ptp:
            timestamps = get_strided_field_from_opened_file(
                fid, packet_size, num_samples, "uint64", file_offset=first_packet + 1, step=skip
            )
            if timestamps.size > 0:
                timestamp = int(timestamps[0])

        self.logger.debug(
            f"Segment {seg_window.segment_index}: {data.shape[1]} samples of {data.shape[0]} channels "
            f"from sample {seg_window.start_offset} (skip factor {skip})"
        )

        return DecodedBlock(
            data=data,
            timestamp=int(timestamp),
            sampling_rate=header.sampling_rate / skip * pq.Hz,
            timestamp_resolution=header.timestamp_resolution,
            segment_index=seg_window.segment_index,
            skip_factor=skip,
            units="raw",
            timestamps=timestamps,
        )

    def _postprocess_block(self, block: DecodedBlock, resolution, time_window: TimeWindow) -> DecodedBlock:
        """
        Drift correction, unit conversion, zero padding and timestamp shift of a decoded block.
        """
        options = self.options
        header = self.nsx_header
        segment = self._sections[block.segment_index]
        nb_segment = len(self._sections)

        if self.is_ptp and options.align:
            if nb_segment == 1:
                label = "the data"
            else:
                label = f"data segment {block.segment_index + 1}/{nb_segment}"
            block = correct_drift(block, segment, header, segment_label=label)

        if options.units == "physical":
            if header.spec is NsxSpec.V21:
                warnings.warn(
                    "File spec 2.1 stores no scaling information, physical units are the raw values",
                    UnscaledChannelWarning,
                )
            gains = np.array([chan.gain for chan in resolution.channels], dtype="float64")
            offsets = np.array([chan.offset for chan in resolution.channels], dtype="float64")
            block.data = block.data.astype("float64") * gains[:, None] + offsets[:, None]
            block.units = "physical"

        if options.zeropad:
            self._zeropad_block(block, time_window, nb_segment)

        if options.sync_shift:
            block.timestamp = block.timestamp + int(options.sync_shift)
            if block.timestamps is not None:
                block.timestamps = block.timestamps + np.asarray(options.sync_shift).astype(block.timestamps.dtype)

        return block

    def _zeropad_block(self, block: DecodedBlock, time_window: TimeWindow, nb_segment: int):
        """
        Prepend zeros so that the first segment starts at timestamp 0. Only done
        for a file without pause read from its first sample.
        """
        if self.is_ptp:
            warnings.warn(
                "PTP timestamps have nanosecond precision, zero padding would create too many samples; "
                "it is skipped. Align the data with the segment timestamps instead.",
                NsxWarning,
            )
            return
        if nb_segment != 1 or time_window.start != 1 or block.segment_index != 0:
            return
        pad = math.floor(block.timestamp / self.nsx_header.ticks_per_sample / block.skip_factor)
        if pad > 0:
            zeros = np.zeros((block.channel_count, pad), dtype=block.data.dtype)
            block.data = np.concatenate([zeros, block.data], axis=1)
            self.logger.debug(f"Prepended {pad} zero samples to the first segment")
        block.timestamp = 0
