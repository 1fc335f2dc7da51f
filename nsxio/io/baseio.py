"""
baseio
======

Classes
-------

BaseIO        - abstract class which should be overridden, managing how a
                file will load/write its data
"""

from __future__ import annotations
from pathlib import Path
import logging

from nsxio import logging_handler
from nsxio.core import NsxRecording, NsxReadWriteError

read_error = "This type is not supported by this file format for reading"
write_error = "This type is not supported by this file format for writing"


class BaseIO:
    """
    Generic class to handle the file read/write methods of the in-memory model.

    This is an abstract class that will be subclassed for each format.
    The key methods of the class are:
        - ``read()`` - Read the whole file, return a list of NsxRecording objects
        - ``read_recording(**params)`` - Read one NsxRecording with some parameters
        - ``write()`` - Write a whole recording
        - ``write_recording(**params)`` - Write an NsxRecording to the file with
                some parameters

    Each class declares what can be read or written with **readable_objects**
    and **writeable_objects**.
    """

    is_readable = False
    is_writable = False

    supported_objects = []
    readable_objects = []
    writeable_objects = []

    name = "BaseIO"
    description = ""
    extensions = []

    mode = "file"

    def __init__(self, filename: str | Path = None, **kargs):
        self.filename = str(filename)
        # create a logger for the IO class
        fullname = self.__class__.__module__ + "." + self.__class__.__name__
        self.logger = logging.getLogger(fullname)
        # create a logger for 'nsxio' and add a handler to it if it doesn't
        # have one already.
        # (it will also not add one if the root logger has a handler)
        corename = self.__class__.__module__.split(".")[0]
        corelogger = logging.getLogger(corename)
        rootlogger = logging.getLogger()
        if not corelogger.handlers and not rootlogger.handlers:
            corelogger.addHandler(logging_handler)

    def read(self, **kargs):
        """
        Return all data from the file as a list of NsxRecording

        Parameters
        ----------
        kargs: dict
            IO specific additional arguments
        """
        if NsxRecording in self.readable_objects:
            return [self.read_recording(**kargs)]
        raise NotImplementedError

    def write(self, recording, **kargs):
        """
        Writes a given recording if IO supports writing

        Parameters
        ----------
        recording: NsxRecording
            The recording to be written
        kargs: dict
            IO specific additional arguments
        """
        if NsxRecording in self.writeable_objects:
            return self.write_recording(recording, **kargs)
        raise NotImplementedError

    def read_recording(self, **kargs):
        if NsxRecording not in self.readable_objects:
            raise NsxReadWriteError(read_error)

    def write_recording(self, recording, **kargs):
        if NsxRecording not in self.writeable_objects:
            raise NsxReadWriteError(write_error)
