"""
Splitting of NSx files into smaller, valid NSx files.

``split_nsx_pauses`` writes one file per segment, so that each file holds a
recording without pause. ``split_nsx`` cuts a recording without pause into
pieces of equal length, for tools that cannot handle large files.

The samples are copied as bytes, in bounded chunks, without being decoded.
Each output file gets the header of the source file and a fresh segment header.
Output files are named after the source file: ``name.ns5`` gives
``name-s001.ns5``, ``name-s002.ns5``...
"""

from __future__ import annotations

import logging
import os

import numpy as np

from ..core.errors import UnsupportedFormat
from ..core.recording import NsxSpec
from ..io.nsxio import atomic_output, write_checked
from ..rawio.nsxheader import parse_header, is_ptp_layout, data_header_dtype
from ..rawio.nsxsections import NsxSectionsFactory
from ..rawio.utils import get_file_size

logger = logging.getLogger(__name__)

# bytes copied at once
CHUNK_SIZE = 64 * 1024 * 1024


def _output_filename(filename, index, output_dir):
    directory, basename = os.path.split(os.path.abspath(str(filename)))
    stem, ext = os.path.splitext(basename)
    if output_dir is not None:
        directory = str(output_dir)
    return os.path.join(directory, f"{stem}-s{index + 1:03d}{ext}")


def _open_source(fid):
    file_size = get_file_size(fid)
    header, data_offset = parse_header(fid)
    if header.spec is NsxSpec.V21:
        raise UnsupportedFormat("File spec 2.1 has no segment header, it cannot be split")
    if is_ptp_layout(fid, header, data_offset, file_size):
        raise UnsupportedFormat("PTP recordings have no segment header, they cannot be split")
    sections = NsxSectionsFactory.build_for_nsx(fid, header, data_offset, file_size)
    fid.seek(0)
    header_bytes = fid.read(data_offset)
    return header, header_bytes, sections


def _write_piece(fid, out_filename, header, header_bytes, timestamp, data_offset, sample_count, packet_size, overwrite):
    dt = data_header_dtype(header.spec)
    data_header = np.zeros(1, dtype=dt)
    data_header["header_flag"] = 1
    data_header["timestamp"] = timestamp
    data_header["nb_data_points"] = sample_count

    remaining = sample_count * packet_size
    fid.seek(data_offset)
    with atomic_output(out_filename, overwrite=overwrite) as fout:
        write_checked(fout, header_bytes, "header")
        write_checked(fout, data_header.tobytes(), "data_header", dt.itemsize)
        while remaining > 0:
            buf = fid.read(min(CHUNK_SIZE, remaining))
            if not buf:
                raise EOFError(f"Unexpected end of file while copying to {out_filename}")
            write_checked(fout, buf, "samples")
            remaining -= len(buf)
    logger.info(f"Wrote {sample_count} samples to {out_filename}")


def split_nsx_pauses(filename, output_dir=None, overwrite: bool = False) -> list[str]:
    """
    Write each segment of a paused recording to its own file.

    Parameters
    ----------
    filename: str | Path
        NSx file of file spec 2.2, 2.3 or 3.0 (not PTP)
    output_dir: str | Path | None, default: None
        directory of the output files, the directory of ``filename`` when None
    overwrite: bool, default: False
        replace existing output files

    Returns
    -------
    filenames: list of str
        the files written, in segment order
    """
    out_filenames = []
    with open(filename, "rb") as fid:
        header, header_bytes, sections = _open_source(fid)
        logger.info(f"Splitting {filename} in {len(sections)} pieces")
        for i, segment in enumerate(sections):
            out_filename = _output_filename(filename, i, output_dir)
            _write_piece(
                fid,
                out_filename,
                header,
                header_bytes,
                segment.timestamp,
                segment.data_offset,
                segment.sample_count,
                sections.packet_size,
                overwrite,
            )
            out_filenames.append(out_filename)
    return out_filenames


def split_nsx(filename, split_count: int = 2, output_dir=None, overwrite: bool = False) -> list[str]:
    """
    Split a recording into ``split_count`` files of equal length.

    The samples left over by the division go to the last file. The timestamp of
    each piece is the one of its first sample. A recording with pauses is split
    at its pauses instead, as :func:`split_nsx_pauses` does.

    Parameters
    ----------
    filename: str | Path
        NSx file of file spec 2.2, 2.3 or 3.0 (not PTP)
    split_count: int, default: 2
        number of pieces
    output_dir: str | Path | None, default: None
        directory of the output files, the directory of ``filename`` when None
    overwrite: bool, default: False
        replace existing output files

    Returns
    -------
    filenames: list of str
        the files written, in time order
    """
    if int(split_count) != split_count or split_count < 1:
        raise ValueError(f"split_count must be a positive integer, not {split_count}")
    split_count = int(split_count)

    with open(filename, "rb") as fid:
        header, header_bytes, sections = _open_source(fid)
        if len(sections) != 1:
            logger.info("The file contains pauses. Splitting into pause-less segments.")
            return split_nsx_pauses(filename, output_dir=output_dir, overwrite=overwrite)

        segment = sections[0]
        piece_count = segment.sample_count // split_count
        if piece_count == 0:
            raise ValueError(f"Cannot split {segment.sample_count} samples in {split_count} pieces")
        logger.info(f"Splitting {filename} in {split_count} pieces")

        out_filenames = []
        for i in range(split_count):
            first = i * piece_count
            count = piece_count if i < split_count - 1 else segment.sample_count - first
            out_filename = _output_filename(filename, i, output_dir)
            _write_piece(
                fid,
                out_filename,
                header,
                header_bytes,
                segment.timestamp + round(first * header.ticks_per_sample),
                segment.data_offset + first * sections.packet_size,
                count,
                sections.packet_size,
                overwrite,
            )
            out_filenames.append(out_filename)
    return out_filenames
