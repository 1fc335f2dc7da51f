"""
nsxio is a package for reading and writing the continuous-signal NSx files
(.ns1 to .ns6) recorded by Blackrock/Cerebus neural acquisition systems
"""
from nsxio.version import version as __version__

import logging

logging_handler = logging.StreamHandler()

from nsxio.core import *
from nsxio.io import *
from nsxio.rawio import NsxRawIO
