"""
Explicit configuration objects passed to each read operation.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Callable, Sequence

from .errors import PrecisionUpgradeWarning

possible_precisions = ["int16", "float64"]
possible_units = ["raw", "physical"]


@dataclass
class DecodeOptions:
    """
    Parameters
    ----------
    skip_factor: int, default: 1
        Keep one sample out of ``skip_factor``
    precision: "int16" | "float64", default: "int16"
        dtype of the decoded data
    units: "raw" | "physical", default: "raw"
        "physical" rescales the raw counts with the gain/offset of each channel.
        This needs float64 precision, which is forced with a warning.
    zeropad: bool, default: False
        Prepend zeros to the first segment so that it starts at timestamp 0
    align: bool, default: True
        Correct clock drift of PTP recordings by adding or removing samples
    packets_per_frame: int, default: 1000
        Frame size used when scanning PTP recordings for pauses
    max_tick_multiple: float, default: 2
        A gap larger than this many sampling periods is a pause (PTP only)
    confirm_truncation: bool | callable, default: False
        What to do when the requested end is beyond the end of the file.
        A callable receives (requested_end, available_samples) and returns a bool.
    sync_shift: int, default: 0
        Timestamp shift, in ticks, applied to the decoded segments
    """

    skip_factor: int = 1
    precision: str = "int16"
    units: str = "raw"
    zeropad: bool = False
    align: bool = True
    packets_per_frame: int = 1000
    max_tick_multiple: float = 2
    confirm_truncation: bool | Callable[[int, int], bool] = False
    sync_shift: int = 0

    def __post_init__(self):
        if int(self.skip_factor) != self.skip_factor or self.skip_factor < 1:
            raise ValueError(f"skip_factor must be a positive integer, not {self.skip_factor}")
        self.skip_factor = int(self.skip_factor)
        if self.precision in ("short",):
            self.precision = "int16"
        elif self.precision == "double":
            self.precision = "float64"
        if self.precision not in possible_precisions:
            raise ValueError(f"precision must be one of {possible_precisions}, not {self.precision!r}")
        if self.units == "uV":
            self.units = "physical"
        if self.units not in possible_units:
            raise ValueError(f"units must be one of {possible_units}, not {self.units!r}")
        if self.units == "physical" and self.precision != "float64":
            warnings.warn(
                f"Conversion to physical units requires float64 precision; updating from {self.precision} to comply",
                PrecisionUpgradeWarning,
            )
            self.precision = "float64"
        if self.packets_per_frame < 2:
            raise ValueError("packets_per_frame must be at least 2")
        if self.max_tick_multiple <= 1:
            raise ValueError("max_tick_multiple must be greater than 1")

    def truncation_confirmed(self, requested_end: int, available: int) -> bool:
        if callable(self.confirm_truncation):
            return bool(self.confirm_truncation(requested_end, available))
        return bool(self.confirm_truncation)


@dataclass
class ChannelSelection:
    """
    Which channels to decode. Give at most one of ``rows`` (0-based positions in the
    file), ``channel_ids`` or ``electrodes``. Electrodes are translated to channel
    ids by ``electrode_map``. When nothing is given all channels are selected.
    """

    rows: Sequence[int] | None = None
    channel_ids: Sequence[int] | None = None
    electrodes: Sequence[int] | None = None
    electrode_map: Callable[[int], int] | None = None

    def __post_init__(self):
        given = [v is not None for v in (self.rows, self.channel_ids, self.electrodes)]
        if sum(given) > 1:
            raise ValueError("Give only one of rows, channel_ids or electrodes")
        if self.electrodes is not None and self.electrode_map is None:
            raise ValueError("Selecting by electrodes needs an electrode_map")


@dataclass
class WindowRequest:
    """
    Time range to decode. With ``unit="sample"`` start and end are 1-based inclusive
    sample indexes, otherwise they are times from the start of the file expressed in
    ``unit`` (seconds, minutes or hours). ``None`` means the start/end of the file.
    """

    start: float | None = None
    end: float | None = None
    unit: str = "sample"
