"""
:mod:`nsxio.rawio` provides the low-level API reading NSx files: header
parsing, segment location, channel and window resolution, decoding and drift
correction.

Classes:

.. autoclass:: nsxio.rawio.NsxRawIO

    .. autoattribute:: extensions

"""

from .nsxrawio import NsxRawIO

rawiolist = [NsxRawIO]
