"""
Clock drift correction of PTP recordings.

With PTP timestamps the time actually covered by a segment can be measured. When
the acquisition clock ran slightly fast or slow, the segment holds a few samples
more or less than its duration at the nominal sampling rate. The correction
adds (duplicates) or removes samples at evenly spaced points so that the decoded
data matches the nominal sampling rate again.
"""

from __future__ import annotations

import logging
import math
import warnings
from dataclasses import replace

import numpy as np

from ..core.errors import DriftCorrectionWarning
from ..core.recording import DecodedBlock, FormatHeader, Segment

logger = logging.getLogger(__name__)


def round_half_away(x: float) -> int:
    """Round to the nearest integer, halves away from zero (python rounds halves to even)."""
    return int(math.copysign(math.floor(abs(x) + 0.5), x))


def compute_drift_adjustment(segment: Segment, header: FormatHeader) -> tuple[int, int]:
    """
    Number of samples to add (positive) or remove (negative) over the whole
    segment and the spacing between two adjustments.

    The ratio between the measured and the nominal sampling rate is 1 for a
    recording without drift.
    """
    n_file = segment.sample_count
    if segment.duration_ticks is None or n_file == 0:
        return 0, n_file
    rate_ratio = segment.duration_ticks / n_file / header.timestamp_resolution * header.sampling_rate
    adjust = round_half_away((rate_ratio - 1) * n_file)
    gap = max(round_half_away(n_file / (abs(adjust) + 1)), 1)
    return adjust, gap


def correct_drift(
    block: DecodedBlock,
    segment: Segment,
    header: FormatHeader,
    segment_label: str = "the data",
) -> DecodedBlock:
    """
    Return ``block`` with samples added or removed to compensate the clock drift
    measured on ``segment``. The adjustment count is scaled to the number of
    samples decoded from the segment. The block is returned unchanged when there
    is nothing to correct.
    """
    adjust, gap = compute_drift_adjustment(segment, header)
    n = block.sample_count
    if adjust == 0 or n == 0:
        return block

    adjust = round_half_away(adjust * n / segment.sample_count)
    if adjust == 0:
        return block

    if gap >= n:
        if abs(adjust) > 1:
            warnings.warn(f"Expected to add or remove only one sample, not {abs(adjust)}", DriftCorrectionWarning)
        half = round_half_away(n / 2)
        sizes = [half, n - half]
        where = "at midpoint"
        n_changed = 1
    else:
        n_changed = min(abs(adjust), n // gap)
        sizes = [gap] * n_changed + [n - gap * n_changed]
        where = "at midpoint" if n_changed == 1 else "evenly spaced"

    # end of each sub-block, the last one is left untouched
    ends = np.cumsum(sizes)[:-1]
    if adjust > 0:
        data = np.insert(block.data, ends, block.data[:, ends - 1], axis=1)
        action = "Added"
        preposition = "to"
    else:
        data = np.delete(block.data, ends - 1, axis=1)
        action = "Removed"
        preposition = "from"

    sample_string = "1 sample" if n_changed == 1 else f"{n_changed} samples"
    warnings.warn(
        f"{action} {sample_string} {preposition} {segment_label} ({where}) for clock drift alignment",
        DriftCorrectionWarning,
    )
    logger.debug(f"Drift correction of {segment_label}: {n} -> {data.shape[1]} samples, one every {gap}")

    timestamps = block.timestamps
    if timestamps is not None and data.shape[1] > 0:
        # corrected samples sit on the nominal sampling grid
        step = header.ticks_per_sample * block.skip_factor
        timestamps = timestamps[0] + np.round(np.arange(data.shape[1]) * step).astype(timestamps.dtype)

    return replace(block, data=data, timestamps=timestamps)
