"""
Utilities working on whole NSx files.
"""

from .split import split_nsx, split_nsx_pauses
