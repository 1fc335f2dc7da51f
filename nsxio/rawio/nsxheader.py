"""
Reading and writing of the NSx file headers.

Every file starts with a basic header whose layout depends on the file spec:

  * 2.1 (``NEURALSG``): 32 bytes, followed by one uint32 electrode id per channel.
  * 2.2, 2.3 (``NEURALCD``) and 3.0 (``BRSMPGRP``): 314 bytes, followed by one
    66 byte extended header record per channel.

The layouts are described by the numpy structured dtypes below, so that reading
a header is one ``np.frombuffer`` call and writing it is the inverse ``tobytes``.
"""

from __future__ import annotations

import numpy as np

from ..core.errors import (
    UnsupportedFormat,
    MalformedHeader,
    MalformedExtendedHeader,
    EncodingSizeMismatch,
)
from ..core.recording import NsxSpec, ChannelInfo, FormatHeader


_NSX_BASIC_HEADER_V2X = [
    ("file_id", "S8"),
    ("ver_major", "uint8"),
    ("ver_minor", "uint8"),
    ("bytes_in_headers", "uint32"),
    ("label", "S16"),
    ("comment", "S256"),
    ("period", "uint32"),
    ("timestamp_resolution", "uint32"),
    ("year", "uint16"),
    ("month", "uint16"),
    ("weekday", "uint16"),
    ("day", "uint16"),
    ("hour", "uint16"),
    ("minute", "uint16"),
    ("second", "uint16"),
    ("millisecond", "uint16"),
    ("channel_count", "uint32"),
]

_NSX_EXT_HEADER_V2X = [
    ("type", "S2"),
    ("electrode_id", "uint16"),
    ("electrode_label", "S16"),
    ("physical_connector", "uint8"),
    ("connector_pin", "uint8"),
    ("min_digital_val", "int16"),
    ("max_digital_val", "int16"),
    ("min_analog_val", "int16"),
    ("max_analog_val", "int16"),
    ("units", "S16"),
    ("hi_freq_corner", "uint32"),
    ("hi_freq_order", "uint32"),
    ("hi_freq_type", "uint16"),
    ("lo_freq_corner", "uint32"),
    ("lo_freq_order", "uint32"),
    ("lo_freq_type", "uint16"),
]

# Basic header types for the different NSx file specifications
NSX_BASIC_HEADER_TYPES = {
    "2.1": [
        ("file_id", "S8"),
        ("label", "S16"),
        ("period", "uint32"),
        ("channel_count", "uint32"),
    ],
    "2.2": _NSX_BASIC_HEADER_V2X,
    "2.3": _NSX_BASIC_HEADER_V2X,
    "3.0": _NSX_BASIC_HEADER_V2X,
}

# Extended header types, one record per channel
NSX_EXT_HEADER_TYPES = {
    "2.1": [
        ("electrode_id", "uint32"),
    ],
    "2.2": _NSX_EXT_HEADER_V2X,
    "2.3": _NSX_EXT_HEADER_V2X,
    "3.0": _NSX_EXT_HEADER_V2X,
}

# Header of a data segment. 2.1 files have none, the data follows the header directly.
NSX_DATA_HEADER_TYPES = {
    "2.1": None,
    "2.2": [("header_flag", "uint8"), ("timestamp", "uint32"), ("nb_data_points", "uint32")],
    "2.3": [("header_flag", "uint8"), ("timestamp", "uint32"), ("nb_data_points", "uint32")],
    "3.0": [("header_flag", "uint8"), ("timestamp", "uint64"), ("nb_data_points", "uint32")],
    # PTP recordings store one packet per sample, each with its own timestamp
    "3.0-ptp": lambda channel_count: [
        ("reserved", "uint8"),
        ("timestamps", "uint64"),
        ("num_data_points", "uint32"),
        ("samples", "int16", (channel_count,)),
    ],
}

_TIME_ORIGIN_FIELDS = ("year", "month", "weekday", "day", "hour", "minute", "second", "millisecond")

_CHANNEL_FIELDS = (
    "physical_connector",
    "connector_pin",
    "min_digital_val",
    "max_digital_val",
    "min_analog_val",
    "max_analog_val",
    "hi_freq_corner",
    "hi_freq_order",
    "hi_freq_type",
    "lo_freq_corner",
    "lo_freq_order",
    "lo_freq_type",
)

# A timestamp resolution above this means nanosecond (PTP) timestamps
PTP_MIN_TIMESTAMP_RESOLUTION = 1e5
# Number of packets checked when deciding if a file is PTP
PTP_CHECKED_PACKETS = 10


def data_header_dtype(spec: NsxSpec) -> np.dtype | None:
    header_type = NSX_DATA_HEADER_TYPES[spec.value]
    if header_type is None:
        return None
    return np.dtype(header_type)


def ptp_packet_dtype(channel_count: int) -> np.dtype:
    return np.dtype(NSX_DATA_HEADER_TYPES["3.0-ptp"](channel_count))


def _decode_string(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("latin-1")


def _encode_string(value: str | None, field: str, size: int) -> bytes:
    raw = (value or "").encode("latin-1")
    if len(raw) > size:
        raise EncodingSizeMismatch(field, size, len(raw))
    return raw


def read_file_spec(fid) -> NsxSpec:
    """
    Extract the file specification from the first bytes of an opened NSx file.
    """
    # For files 2.1 the entries ver_major and ver_minor do not exist
    dt0 = np.dtype([("file_id", "S8"), ("ver_major", "uint8"), ("ver_minor", "uint8")])
    fid.seek(0)
    buf = fid.read(dt0.itemsize)
    if len(buf) < 8:
        raise UnsupportedFormat(f"File is too short to be an NSx file ({len(buf)} bytes)")
    buf = buf.ljust(dt0.itemsize, b"\x00")
    nsx_file_id = np.frombuffer(buf, dtype=dt0)[0]
    file_id = nsx_file_id["file_id"].decode("latin-1")
    try:
        return NsxSpec.from_file_id(file_id, int(nsx_file_id["ver_major"]), int(nsx_file_id["ver_minor"]))
    except ValueError as e:
        raise UnsupportedFormat(str(e)) from e


def parse_header(fid) -> tuple[FormatHeader, int]:
    """
    Parse the basic and extended headers of an opened NSx file.

    Parameters
    ----------
    fid: file object
        File opened in binary mode

    Returns
    -------
    header: FormatHeader
        The header, with one ChannelInfo per channel in file order
    data_offset: int
        Byte offset of the end of the headers, where the first data segment starts
    """
    spec = read_file_spec(fid)

    basic_dtype = np.dtype(NSX_BASIC_HEADER_TYPES[spec.value])
    fid.seek(0)
    buf = fid.read(basic_dtype.itemsize)
    if len(buf) < basic_dtype.itemsize:
        raise MalformedHeader(
            f"Basic header of file spec {spec.value} needs {basic_dtype.itemsize} bytes, only {len(buf)} found"
        )
    basic_header = np.frombuffer(buf, dtype=basic_dtype)[0]

    channel_count = int(basic_header["channel_count"])
    period = int(basic_header["period"])
    if channel_count == 0:
        raise MalformedHeader("Basic header declares zero channels")
    if period == 0:
        raise MalformedHeader("Basic header declares a sampling period of zero")

    ext_dtype = np.dtype(NSX_EXT_HEADER_TYPES[spec.value])
    ext_size = ext_dtype.itemsize * channel_count
    buf = fid.read(ext_size)
    if len(buf) < ext_size:
        raise MalformedExtendedHeader(
            f"{channel_count} channels need {ext_size} bytes of extended header, only {len(buf)} found"
        )
    ext_header = np.frombuffer(buf, dtype=ext_dtype, count=channel_count)

    electrode_ids = [int(e) for e in ext_header["electrode_id"]]
    if len(set(electrode_ids)) != channel_count:
        duplicated = sorted({e for e in electrode_ids if electrode_ids.count(e) > 1})
        raise MalformedExtendedHeader(f"Electrode ids {duplicated} appear more than once")

    if spec is NsxSpec.V21:
        channels = [ChannelInfo(electrode_id=e) for e in electrode_ids]
        header = FormatHeader(
            spec=spec,
            label=_decode_string(basic_header["label"]),
            period=period,
            channels=tuple(channels),
        )
        return header, header.bytes_in_headers

    bad_types = [i for i, t in enumerate(ext_header["type"]) if t != b"CC"]
    if bad_types:
        raise MalformedExtendedHeader(f"Extended header records {bad_types} are not of type 'CC'")

    channels = []
    for record in ext_header:
        kwargs = {name: int(record[name]) for name in _CHANNEL_FIELDS}
        channels.append(
            ChannelInfo(
                electrode_id=int(record["electrode_id"]),
                label=_decode_string(record["electrode_label"]),
                units=_decode_string(record["units"]),
                **kwargs,
            )
        )

    header = FormatHeader(
        spec=spec,
        label=_decode_string(basic_header["label"]),
        period=period,
        channels=tuple(channels),
        timestamp_resolution=int(basic_header["timestamp_resolution"]),
        comment=_decode_string(basic_header["comment"]),
        time_origin=tuple(int(basic_header[name]) for name in _TIME_ORIGIN_FIELDS),
    )

    bytes_in_headers = int(basic_header["bytes_in_headers"])
    if bytes_in_headers != header.bytes_in_headers:
        raise MalformedHeader(
            f"Header declares {bytes_in_headers} bytes but {channel_count} channels need {header.bytes_in_headers}"
        )
    if header.timestamp_resolution == 0:
        raise MalformedHeader("Basic header declares a timestamp resolution of zero")
    return header, bytes_in_headers


def encode_header(header: FormatHeader) -> bytes:
    """
    Serialize the basic and extended headers. This is the exact inverse of
    :func:`parse_header`, strings are zero padded to their field size and
    ``bytes_in_headers`` and ``channel_count`` follow the current channels.
    """
    spec = header.spec
    basic_header = np.zeros(1, dtype=np.dtype(NSX_BASIC_HEADER_TYPES[spec.value]))
    basic_header["file_id"] = _encode_string(spec.file_id, "file_id", 8)
    basic_header["label"] = _encode_string(header.label, "label", 16)
    basic_header["period"] = header.period
    basic_header["channel_count"] = header.channel_count

    ext_header = np.zeros(header.channel_count, dtype=np.dtype(NSX_EXT_HEADER_TYPES[spec.value]))
    ext_header["electrode_id"] = header.electrode_ids

    if spec is not NsxSpec.V21:
        basic_header["ver_major"] = spec.version.major
        basic_header["ver_minor"] = spec.version.minor
        basic_header["bytes_in_headers"] = header.bytes_in_headers
        basic_header["comment"] = _encode_string(header.comment, "comment", 256)
        basic_header["timestamp_resolution"] = header.timestamp_resolution
        time_origin = header.time_origin or (0,) * len(_TIME_ORIGIN_FIELDS)
        for name, value in zip(_TIME_ORIGIN_FIELDS, time_origin):
            basic_header[name] = value

        ext_header["type"] = b"CC"
        for i, chan in enumerate(header.channels):
            ext_header["electrode_label"][i] = _encode_string(chan.label, "electrode_label", 16)
            ext_header["units"][i] = _encode_string(chan.units, "units", 16)
            for name in _CHANNEL_FIELDS:
                value = getattr(chan, name)
                ext_header[name][i] = 0 if value is None else value

    buf = basic_header.tobytes() + ext_header.tobytes()
    if len(buf) != header.bytes_in_headers:
        raise EncodingSizeMismatch("header", header.bytes_in_headers, len(buf))
    return buf


def is_ptp_layout(fid, header: FormatHeader, data_offset: int, file_size: int) -> bool:
    """
    Tell if the data of a file spec 3.0 file is stored one packet per sample with
    nanosecond (PTP) timestamps, rather than in segments.

    The first packets are read with the PTP layout and must all declare one sample.
    """
    if header.timestamp_bytes != 8 or header.timestamp_resolution <= PTP_MIN_TIMESTAMP_RESOLUTION:
        return False
    ptp_dt = ptp_packet_dtype(header.channel_count)
    n_packets = (file_size - data_offset) // ptp_dt.itemsize
    n_checked = min(PTP_CHECKED_PACKETS, n_packets)
    if n_checked == 0:
        return False
    fid.seek(data_offset)
    packets = np.frombuffer(fid.read(n_checked * ptp_dt.itemsize), dtype=ptp_dt, count=n_checked)
    return bool(np.all(packets["num_data_points"] == 1))
