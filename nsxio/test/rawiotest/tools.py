"""
Tools to generate small synthetic NSx files for the tests.

Every file spec can be produced, with pauses, truncated or corrupted segment
headers, and PTP recordings with pauses or clock drift.
"""

import numpy as np

from nsxio.core.recording import MAIN_SAMPLING_RATE, NsxSpec, ChannelInfo, FormatHeader
from nsxio.rawio.nsxheader import encode_header, data_header_dtype, ptp_packet_dtype

# a nanosecond clock, as used by the PTP recordings
PTP_RESOLUTION = 1_000_000_000


def make_header(spec="2.3", channel_count=4, period=1, timestamp_resolution=None, label="raw 30 kS/s"):
    """
    Header with ``channel_count`` channels, with electrode ids 1 to ``channel_count``.
    Channels are scaled by 0.25 uV per count with no offset.
    """
    spec = NsxSpec(spec)
    if spec is NsxSpec.V21:
        channels = tuple(ChannelInfo(electrode_id=i + 1) for i in range(channel_count))
        return FormatHeader(spec=spec, label=label, period=period, channels=channels)

    if timestamp_resolution is None:
        timestamp_resolution = int(MAIN_SAMPLING_RATE)
    channels = tuple(
        ChannelInfo(
            electrode_id=i + 1,
            label=f"elec{i + 1}",
            physical_connector=1,
            connector_pin=i + 1,
            min_digital_val=-32764,
            max_digital_val=32764,
            min_analog_val=-8191,
            max_analog_val=8191,
            units="uV",
            hi_freq_corner=300,
            hi_freq_order=1,
            hi_freq_type=1,
            lo_freq_corner=7500000,
            lo_freq_order=3,
            lo_freq_type=1,
        )
        for i in range(channel_count)
    )
    return FormatHeader(
        spec=spec,
        label=label,
        period=period,
        channels=channels,
        timestamp_resolution=timestamp_resolution,
        comment="synthetic recording",
        time_origin=(2024, 3, 6, 2, 14, 30, 5, 250),
    )


def make_ptp_header(channel_count=4, period=3):
    # period 3 gives 10 kHz, that is exactly 100000 ns between two samples
    return make_header("3.0", channel_count=channel_count, period=period, timestamp_resolution=PTP_RESOLUTION)


def make_samples(channel_count, sample_count, first=0):
    """
    Samples shaped (channels, samples). Channel ``c`` holds ``1000 * (c + 1)``
    plus the sample position modulo 1000, so any misplaced value is noticed.
    """
    positions = (np.arange(sample_count) + first) % 1000
    data = 1000 * (np.arange(channel_count)[:, None] + 1) + positions[None, :]
    return data.astype("int16")


def write_v21_file(filename, header, data):
    with open(filename, "wb") as fid:
        fid.write(encode_header(header))
        fid.write(np.ascontiguousarray(data.T, dtype="<i2").tobytes())


def write_legacy_file(filename, header, segments, declared_counts=None, trailer=b""):
    """
    Write a file spec 2.2, 2.3 or 3.0 file made of ``segments``, a list of
    (timestamp, data) with data shaped (channels, samples).

    ``declared_counts`` overrides the sample count written in each segment header
    and ``trailer`` is appended after the last segment.
    """
    dt = data_header_dtype(header.spec)
    with open(filename, "wb") as fid:
        fid.write(encode_header(header))
        for i, (timestamp, data) in enumerate(segments):
            data_header = np.zeros(1, dtype=dt)
            data_header["header_flag"] = 1
            data_header["timestamp"] = timestamp
            if declared_counts is None:
                data_header["nb_data_points"] = data.shape[1]
            else:
                data_header["nb_data_points"] = declared_counts[i]
            fid.write(data_header.tobytes())
            fid.write(np.ascontiguousarray(data.T, dtype="<i2").tobytes())
        fid.write(trailer)


def ptp_timestamps(sample_count, ticks_per_sample, first=0, pauses=None, drift=1.0):
    """
    PTP timestamps of ``sample_count`` samples. ``pauses`` maps the index of the
    last sample before a pause to the extra ticks elapsed during the pause and
    ``drift`` is the ratio between the actual and the nominal sampling period.
    """
    timestamps = first + np.round(np.arange(sample_count) * ticks_per_sample * drift)
    for index, extra in (pauses or {}).items():
        timestamps[index + 1 :] += extra
    return timestamps.astype("uint64")


def write_ptp_file(filename, header, timestamps, data, trailer=b""):
    packets = np.zeros(data.shape[1], dtype=ptp_packet_dtype(header.channel_count))
    packets["reserved"] = 1
    packets["timestamps"] = timestamps
    packets["num_data_points"] = 1
    packets["samples"] = data.T
    with open(filename, "wb") as fid:
        fid.write(encode_header(header))
        fid.write(packets.tobytes())
        fid.write(trailer)
