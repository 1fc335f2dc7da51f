"""
Errors and warnings raised while reading or writing NSx files.

Fatal conditions are exceptions deriving from :class:`NsxReadWriteError`.
Recoverable conditions are emitted with :func:`warnings.warn` using one of the
warning categories below, so callers can filter or escalate them with the
standard :mod:`warnings` machinery.
"""


class NsxReadWriteError(IOError):
    """
    Base class for every fatal error raised while decoding or encoding a file.
    """

    pass


class UnsupportedFormat(NsxReadWriteError):
    """The 8-byte file type tag (or its version) is not a known NSx generation."""

    pass


class MalformedHeader(NsxReadWriteError):
    """The basic header is truncated or inconsistent."""

    pass


class MalformedExtendedHeader(MalformedHeader):
    """An extended (per-channel) header record is truncated or invalid."""

    pass


class ChannelOutOfRange(NsxReadWriteError):
    def __init__(self, channel, message=None):
        self.channel = channel
        if message is None:
            message = f"Channel {channel!r} does not exist in this file"
        super().__init__(message)


class InvalidRange(NsxReadWriteError):
    pass


class RangeExceedsFile(NsxReadWriteError):
    def __init__(self, requested, available, message=None):
        self.requested = requested
        self.available = available
        if message is None:
            message = (
                f"End sample ({requested}) is beyond the total number of samples ({available}). "
                "Pass confirm_truncation=True to read up to the last available sample."
            )
        super().__init__(message)


class CorruptSegments(NsxReadWriteError):
    """
    The packets counted while scanning for segments do not add up to the packets
    present in the file. Every byte offset computed afterwards would be wrong.
    """

    pass


class EncodingSizeMismatch(NsxReadWriteError):
    def __init__(self, field, expected, actual):
        self.field = field
        self.expected = expected
        self.actual = actual
        super().__init__(f"Field '{field}' should take {expected} bytes but {actual} were written")


class NsxWarning(UserWarning):
    pass


class TruncatedSegmentWarning(NsxWarning):
    pass


class ZeroLengthSegmentWarning(NsxWarning):
    pass


class CorruptTrailerWarning(NsxWarning):
    pass


class RangeClampedWarning(NsxWarning):
    pass


class PrecisionUpgradeWarning(NsxWarning):
    pass


class DriftCorrectionWarning(NsxWarning):
    pass


class UnscaledChannelWarning(NsxWarning):
    pass
