"""
:mod:`nsxio.io` provides classes and functions for reading and writing NSx files.

Functions:

.. autofunction:: nsxio.io.open_nsx
.. autofunction:: nsxio.io.read_nsx
.. autofunction:: nsxio.io.write_nsx


Classes:

.. autoclass:: nsxio.io.NsxIO

    .. autoattribute:: extensions

"""

from nsxio.io.nsxio import NsxIO, open_nsx, read_nsx, decode, write_nsx, encode

iolist = [NsxIO]

__all__ = ["NsxIO", "open_nsx", "read_nsx", "decode", "write_nsx", "encode", "iolist"]
