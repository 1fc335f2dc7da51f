"""
:mod:`nsxio.core` provides the in-memory model of an NSx recording, the
configuration objects of the read operations and the error taxonomy.

Classes:

.. autoclass:: NsxRecording
.. autoclass:: FormatHeader
.. autoclass:: ChannelInfo
.. autoclass:: Segment
.. autoclass:: DecodedBlock
.. autoclass:: TimeWindow
.. autoclass:: DecodeOptions

"""

from nsxio.core.errors import (
    NsxReadWriteError,
    UnsupportedFormat,
    MalformedHeader,
    MalformedExtendedHeader,
    ChannelOutOfRange,
    InvalidRange,
    RangeExceedsFile,
    CorruptSegments,
    EncodingSizeMismatch,
    NsxWarning,
    TruncatedSegmentWarning,
    ZeroLengthSegmentWarning,
    CorruptTrailerWarning,
    RangeClampedWarning,
    PrecisionUpgradeWarning,
    DriftCorrectionWarning,
    UnscaledChannelWarning,
)
from nsxio.core.recording import (
    MAIN_SAMPLING_RATE,
    NsxSpec,
    ChannelInfo,
    FormatHeader,
    Segment,
    SegmentWindow,
    TimeWindow,
    DecodedBlock,
    NsxRecording,
)
from nsxio.core.options import DecodeOptions, ChannelSelection, WindowRequest
