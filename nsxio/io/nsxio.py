"""
Reading and writing of Blackrock NSx files (.ns1 to .ns6).

Reading is done by :class:`nsxio.rawio.NsxRawIO`; this module adds the encoder
that serializes an :class:`NsxRecording` back to a file and the functional
entry points:

    >>> recording = read_nsx("FileSpec2.3001.ns5", channels=ChannelSelection(channel_ids=[1, 2]))
    >>> write_nsx(recording, "FileSpec2.3001-ch1-2.ns5")

A file is always written to a temporary file in the destination directory
which is renamed once complete, so a failed write never leaves a partial file.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from dataclasses import replace

import numpy as np

from .baseio import BaseIO
from ..core.errors import EncodingSizeMismatch
from ..core.options import DecodeOptions, ChannelSelection, WindowRequest
from ..core.recording import NsxSpec, NsxRecording, DecodedBlock, FormatHeader
from ..rawio.nsxheader import encode_header, data_header_dtype, ptp_packet_dtype
from ..rawio.nsxrawio import NsxRawIO

_int16_info = np.iinfo("int16")


def open_nsx(filename, options: DecodeOptions | None = None) -> NsxRawIO:
    """
    Open an NSx file and parse its header, channel metadata and segments.
    No sample is read.
    """
    reader = NsxRawIO(filename=filename, options=options)
    reader.parse_header()
    return reader


def read_nsx(
    filename,
    channels: ChannelSelection | None = None,
    window: WindowRequest | None = None,
    options: DecodeOptions | None = None,
) -> NsxRecording:
    """
    Decode the requested channels and time window of an NSx file.

    Parameters
    ----------
    filename: str | Path
        the NSx file
    channels: ChannelSelection | None, default: None
        channels to decode, all channels when None
    window: WindowRequest | None, default: None
        time window to decode, the whole file when None
    options: DecodeOptions | None, default: None
        skip factor, precision, units, zero padding, drift correction...

    Returns
    -------
    recording: NsxRecording
        the header restricted to the decoded channels and one DecodedBlock per segment
    """
    reader = open_nsx(filename, options=options)
    return reader.read_blocks(channels=channels, window=window)


decode = read_nsx


@contextlib.contextmanager
def atomic_output(filename, overwrite: bool = False):
    """
    Context manager giving a binary file object that replaces ``filename`` when
    the block exits without error. The data goes to a temporary file of the
    same directory, deleted on any failure.
    """
    filename = os.path.abspath(str(filename))
    if os.path.exists(filename) and not overwrite:
        raise FileExistsError(f"{filename} already exists, use overwrite=True to replace it")
    directory, basename = os.path.split(filename)
    fd, tmp_filename = tempfile.mkstemp(prefix=f".{basename}.", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, "wb") as fid:
            yield fid
        # mkstemp creates the file readable by its owner only
        umask = os.umask(0)
        os.umask(umask)
        os.chmod(tmp_filename, 0o666 & ~umask)
        os.replace(tmp_filename, filename)
    finally:
        if os.path.exists(tmp_filename):
            os.remove(tmp_filename)


def write_checked(fid, buf: bytes, field: str, expected: int | None = None) -> int:
    """Write ``buf`` and check that exactly ``expected`` bytes went to the file."""
    if expected is None:
        expected = len(buf)
    if len(buf) != expected:
        raise EncodingSizeMismatch(field, expected, len(buf))
    written = fid.write(buf)
    if written != expected:
        raise EncodingSizeMismatch(field, expected, written)
    return written


def _raw_samples(block: DecodedBlock, header: FormatHeader) -> np.ndarray:
    """Samples of a block as int16 counts, shaped (samples, channels)."""
    data = block.data
    if block.units == "physical":
        gains = np.array([chan.gain for chan in header.channels], dtype="float64")
        offsets = np.array([chan.offset for chan in header.channels], dtype="float64")
        data = (data - offsets[:, None]) / gains[:, None]
    if data.dtype != np.int16:
        data = np.clip(np.round(data), _int16_info.min, _int16_info.max).astype("int16")
    return np.ascontiguousarray(data.T, dtype="<i2")


def _encode_block(fid, header: FormatHeader, block: DecodedBlock, is_ptp: bool) -> int:
    if block.channel_count != header.channel_count:
        raise EncodingSizeMismatch("channel_count", header.channel_count, block.channel_count)
    samples = _raw_samples(block, header)
    n_samples = samples.shape[0]
    samples_size = n_samples * header.channel_count * 2

    if header.spec is NsxSpec.V21:
        return write_checked(fid, samples.tobytes(), "samples", samples_size)

    if not 0 <= block.timestamp <= header.max_timestamp:
        raise ValueError(
            f"Timestamp {block.timestamp} of segment {block.segment_index} does not fit a "
            f"{header.timestamp_bytes}-byte timestamp field"
        )

    if is_ptp:
        ptp_dt = ptp_packet_dtype(header.channel_count)
        packets = np.zeros(n_samples, dtype=ptp_dt)
        packets["reserved"] = 1
        if block.timestamps is not None and block.timestamps.size == n_samples:
            packets["timestamps"] = block.timestamps
        else:
            step = header.ticks_per_sample * block.skip_factor
            packets["timestamps"] = block.timestamp + np.round(np.arange(n_samples) * step).astype("uint64")
        packets["num_data_points"] = 1
        packets["samples"] = samples
        return write_checked(fid, packets.tobytes(), "packets", n_samples * ptp_dt.itemsize)

    dt = data_header_dtype(header.spec)
    data_header = np.zeros(1, dtype=dt)
    data_header["header_flag"] = 1
    data_header["timestamp"] = block.timestamp
    data_header["nb_data_points"] = n_samples
    n = write_checked(fid, data_header.tobytes(), "data_header", dt.itemsize)
    n += write_checked(fid, samples.tobytes(), "samples", samples_size)
    return n


def write_nsx(recording: NsxRecording, filename, overwrite: bool = False) -> int:
    """
    Write a recording to an NSx file of the file spec of its header.

    Decimated blocks are written with the sampling period of the decimated
    data. Blocks in physical units are converted back to raw counts with the
    gain and offset of their channel.

    Parameters
    ----------
    recording: NsxRecording
        header and blocks to write
    filename: str | Path
        destination file
    overwrite: bool, default: False
        replace an existing file

    Returns
    -------
    nbytes: int
        number of bytes written

    Raises
    ------
    FileExistsError
        if the file exists and overwrite is False
    EncodingSizeMismatch
        if a field does not fit its size on disk, or a write was short
    """
    header = recording.header
    skip_factors = {block.skip_factor for block in recording.blocks}
    if len(skip_factors) > 1:
        raise ValueError(f"All blocks must share the same skip factor, not {sorted(skip_factors)}")
    if skip_factors and skip_factors != {1}:
        header = replace(header, period=header.period * skip_factors.pop())

    nbytes = 0
    with atomic_output(filename, overwrite=overwrite) as fid:
        nbytes += write_checked(fid, encode_header(header), "header", header.bytes_in_headers)
        for block in recording.blocks:
            nbytes += _encode_block(fid, header, block, recording.is_ptp)
    return nbytes


encode = write_nsx


class NsxIO(BaseIO):
    """
    Class for reading and writing Blackrock NSx files.

    Parameters
    ----------
    filename: str | Path
        The NSx file to read or write
    options: DecodeOptions | None, default: None
        Decoding options used by read_recording

    Examples
    --------
    >>> io = NsxIO("FileSpec2.3001.ns5")
    >>> recording = io.read_recording(window=WindowRequest(start=10, end=20, unit="sec"))
    >>> NsxIO("shifted.ns5").write_recording(recording.with_sync_shift(300))
    """

    is_readable = True
    is_writable = True

    supported_objects = [NsxRecording]
    readable_objects = [NsxRecording]
    writeable_objects = [NsxRecording]

    name = "Blackrock NSx"
    description = "Continuous signals of Blackrock (Cerebus) systems"
    extensions = ["ns1", "ns2", "ns3", "ns4", "ns5", "ns6"]

    mode = "file"

    def __init__(self, filename, options: DecodeOptions | None = None):
        BaseIO.__init__(self, filename)
        self.options = options

    def read_recording(
        self, channels: ChannelSelection | None = None, window: WindowRequest | None = None
    ) -> NsxRecording:
        self.logger.debug(f"Reading {self.filename}")
        return read_nsx(self.filename, channels=channels, window=window, options=self.options)

    def write_recording(self, recording: NsxRecording, overwrite: bool = False) -> int:
        nbytes = write_nsx(recording, self.filename, overwrite=overwrite)
        self.logger.debug(f"Wrote {nbytes} bytes to {self.filename}")
        return nbytes
