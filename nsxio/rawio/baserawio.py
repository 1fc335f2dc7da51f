"""
Low level reader interface shared by the NSx readers.

A reader parses the file header once, then serves raw int16 chunks of any
segment and channel subset without reading the rest of the file. Channels are
addressed by their position in the file, their electrode id or their label.
All channels share one sampling rate and the same segments.

Subclasses fill ``self.header`` in ``_parse_header()`` with:
  * ``nb_segment``: number of segments
  * ``signal_channels``: structured array of ``_signal_channel_dtype``
"""

from __future__ import annotations

import logging
import numpy as np

from nsxio import logging_handler

from ..core.errors import ChannelOutOfRange


error_header = "Header is not read yet, do parse_header() first"

_signal_channel_dtype = [
    ("name", "U64"),  # not necessarily unique
    ("id", "U64"),  # must be unique
    ("sampling_rate", "float64"),
    ("dtype", "U16"),
    ("units", "U64"),
    ("gain", "float64"),
    ("offset", "float64"),
]


class BaseRawIO:
    """
    Reader of a file made of segments of interleaved int16 channels.
    """

    name = "BaseRawIO"
    description = ""
    extensions = []

    rawmode = None

    def __init__(self, **kargs):
        # create a logger for the IO class
        fullname = self.__class__.__module__ + "." + self.__class__.__name__
        self.logger = logging.getLogger(fullname)
        # Create a logger for 'nsxio' and add a handler to it if it doesn't have one already.
        # (it will also not add one if the root logger has a handler)
        corename = self.__class__.__module__.split(".")[0]
        corelogger = logging.getLogger(corename)
        rootlogger = logging.getLogger()
        if not corelogger.handlers and not rootlogger.handlers:
            corelogger.addHandler(logging_handler)

        self.header = None
        self.is_header_parsed = False

    def parse_header(self):
        """Read the headers and locate the segments, no sample is read."""
        self._parse_header()
        self._check_signal_channel_characteristics()
        self.is_header_parsed = True

    def source_name(self):
        """Name of the file read"""
        return self._source_name()

    def __repr__(self):
        txt = f"{self.__class__.__name__}: {self.source_name()}\n"
        if self.header is not None:
            txt += f"nb_segment:  {self.segment_count()}\n"
            v = pprint_vector(self.header["signal_channels"]["name"])
            txt += f"signal_channels: {v}\n"
        return txt

    def segment_count(self) -> int:
        """Returns the number of segments"""
        if not self.is_header_parsed:
            raise RuntimeError(error_header)
        return self.header["nb_segment"]

    def signal_channels_count(self) -> int:
        """Returns the number of signal channels, the same for all segments."""
        return self.header["signal_channels"].size

    def _check_signal_channel_characteristics(self):
        signal_channels = self.header["signal_channels"]
        if signal_channels.size > 0:
            if np.unique(signal_channels["id"]).size != signal_channels.size:
                raise ValueError("Signal channel ids are not unique")
            for key in ("sampling_rate", "dtype"):
                if np.unique(signal_channels[key]).size != 1:
                    raise ValueError(f"All signal channels must share the same {key}")

    def channel_id_to_index(self, channel_ids: list) -> np.ndarray:
        """
        Transform channel_ids to channel_indexes, the zero-based position of the
        channels in the file. Based on self.header['signal_channels']

        Raises
        ------
        ChannelOutOfRange
            for an id that is not in the file
        """
        chan_ids = list(self.header["signal_channels"]["id"])
        channel_indexes = []
        for chan_id in channel_ids:
            if str(chan_id) not in chan_ids:
                raise ChannelOutOfRange(chan_id)
            channel_indexes.append(chan_ids.index(str(chan_id)))
        return np.array(channel_indexes, dtype="int64")

    def channel_name_to_index(self, channel_names: list[str]) -> np.ndarray:
        chan_names = list(self.header["signal_channels"]["name"])
        if len(chan_names) != np.unique(chan_names).size:
            raise ValueError("Channel names are not unique")
        channel_indexes = []
        for name in channel_names:
            if name not in chan_names:
                raise ChannelOutOfRange(name)
            channel_indexes.append(chan_names.index(name))
        return np.array(channel_indexes, dtype="int64")

    def _get_channel_indexes(
        self,
        channel_indexes: list[int] | None,
        channel_names: list[str] | None,
        channel_ids: list | None,
    ):
        """
        Select channel_indexes based on channel_indexes/channel_names/channel_ids
        depending on which one is not None.
        """
        if channel_indexes is None and channel_names is not None:
            channel_indexes = self.channel_name_to_index(channel_names)
        elif channel_indexes is None and channel_ids is not None:
            channel_indexes = self.channel_id_to_index(channel_ids)
        return channel_indexes

    def get_signal_size(self, seg_index: int) -> int:
        """
        Retrieves the number of samples of a segment.

        Parameters
        ----------
        seg_index: int
            The desired segment

        Returns
        -------
        signal_size: int
            The number of samples of the segment, the same for all channels
        """
        return self._get_signal_size(seg_index)

    def get_signal_t_start(self, seg_index: int) -> float:
        """
        Retrieves the start time of a segment, in seconds.
        """
        return self._get_signal_t_start(seg_index)

    def get_signal_sampling_rate(self) -> float:
        """Retrieves the sampling rate shared by all channels."""
        return float(self.header["signal_channels"][0]["sampling_rate"])

    def get_analogsignal_chunk(
        self,
        seg_index: int = 0,
        i_start: int | None = None,
        i_stop: int | None = None,
        channel_indexes: list[int] | None = None,
        channel_names: list[str] | None = None,
        channel_ids: list | None = None,
    ):
        """
        Returns a chunk of raw signal as a Numpy array.

        Parameters
        ----------
        seg_index: int, default: 0
            The segment containing the desired analog signal
        i_start: int | None, default: None
            The index of the first sample (not time) of the desired analog signal
        i_stop: int | None, default: None
            The index of one past the last sample (not time) of the desired analog signal
        channel_indexes: list[int] | np.array[int] | slice | None, default: None
            The list of indexes of channels to retrieve
        channel_names: list[str] | None, default: None
            The list of channel names to retrieve
        channel_ids: list | None, default: None
            The list of channel_ids to retrieve

        Returns
        -------
        raw_chunk: np.array (n_samples, n_channels)
            The array with the raw signal samples

        Notes
        -----
        channel_indexes wins over channel_names, which wins over channel_ids.
        All channels are returned when none is given.
        """
        if not self.is_header_parsed:
            raise RuntimeError(error_header)
        if self.header["signal_channels"].size == 0:
            raise AttributeError("get_analogsignal_chunk can't be called on a file with no signal channels")

        channel_indexes = self._get_channel_indexes(channel_indexes, channel_names, channel_ids)

        # some check on channel_indexes
        if isinstance(channel_indexes, list):
            channel_indexes = np.asarray(channel_indexes)

        if isinstance(channel_indexes, np.ndarray):
            if channel_indexes.dtype == "bool":
                if self.signal_channels_count() != channel_indexes.size:
                    raise ValueError(
                        "If channel_indexes is a boolean it must have be the same length as the "
                        f"number of channels {self.signal_channels_count()}"
                    )
                (channel_indexes,) = np.nonzero(channel_indexes)

        raw_chunk = self._get_analogsignal_chunk(seg_index, i_start, i_stop, channel_indexes)

        return raw_chunk

    def rescale_signal_raw_to_float(
        self,
        raw_signal: np.ndarray,
        dtype: np.dtype = "float32",
        channel_indexes: list[int] | None = None,
        channel_names: list[str] | None = None,
        channel_ids: list | None = None,
    ):
        """
        Apply the gain and offset of each channel to a chunk returned by
        get_analogsignal_chunk.

        Parameters
        ----------
        raw_signal: np.array (n_samples, n_channels)
            The numpy array of samples with columns being samples for a single channel
        dtype: np.dype, default: "float32"
            The datatype for returning scaled samples, must be acceptable by the numpy dtype constructor
        channel_indexes: list[int], np.array[int], slice | None, default: None
            The list of indexes of channels to retrieve
        channel_names: list[str] | None, default: None
            The list of channel names to retrieve
        channel_ids: list | None, default: None
            list of channel_ids to retrieve

        Returns
        -------
        float_signal: np.array (n_samples, n_channels)
            The rescaled signal
        """
        channel_indexes = self._get_channel_indexes(channel_indexes, channel_names, channel_ids)
        if channel_indexes is None:
            channel_indexes = slice(None)

        channels = self.header["signal_channels"][channel_indexes]

        float_signal = raw_signal.astype(dtype)

        if np.any(channels["gain"] != 1.0):
            float_signal *= channels["gain"]

        if np.any(channels["offset"] != 0.0):
            float_signal += channels["offset"]

        return float_signal

    def _parse_header(self):
        raise (NotImplementedError)

    def _source_name(self):
        raise (NotImplementedError)

    def _get_signal_size(self, seg_index: int):
        raise (NotImplementedError)

    def _get_signal_t_start(self, seg_index: int):
        raise (NotImplementedError)

    def _get_analogsignal_chunk(
        self,
        seg_index: int,
        i_start: int | None,
        i_stop: int | None,
        channel_indexes: list[int] | None,
    ):
        """
        Return the samples of the channels indexed by channel_indexes.

        RETURNS
        -------
            array of samples, with each requested channel in a column
        """
        raise (NotImplementedError)


def pprint_vector(vector, lim: int = 8):
    vector = np.asarray(vector)
    if vector.ndim != 1:
        raise ValueError(f"`vector` must have a dimension of 1 and not {vector.ndim}")
    if len(vector) > lim:
        part1 = ", ".join(e for e in vector[: lim // 2])
        part2 = " , ".join(e for e in vector[-lim // 2 :])
        txt = f"[{part1} ... {part2}]"
    else:
        part1 = ", ".join(e for e in vector)
        txt = f"[{part1}]"
    return txt
