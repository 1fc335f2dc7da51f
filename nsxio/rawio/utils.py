import mmap
import numpy as np


def get_file_size(fid):
    """Size in bytes of an opened file, the current position is kept."""
    position = fid.tell()
    fid.seek(0, 2)
    file_size = fid.tell()
    fid.seek(position)
    return file_size


def get_strided_chunk_from_opened_file(
    fid,
    packet_size,
    num_samples,
    first_row,
    num_rows,
    dtype="int16",
    file_offset=0,
    step=1,
    rows=None,
):
    """
    Read a decimated chunk of channel-interleaved samples directly from an opened file.

    Only the bytes between the first and the last sample kept are mapped. The
    array is a strided view on the map: ``step`` packets between two rows, and
    ``num_rows`` consecutive values starting at ``first_row`` in each packet.
    The values are copied out before the map is closed.

    Parameters
    ----------
    fid:
        file opened in binary mode
    packet_size: int
        bytes from one sample to the next one, all channels and any per-sample header included
    num_samples: int
        number of samples to return
    first_row, num_rows: int
        span of values read in each packet, counted in ``dtype`` items
    file_offset: int
        byte offset of the first value of the span of the first sample
    step: int
        keep one sample every ``step``
    rows: list of int | None
        positions inside the span to keep, all when None

    Returns
    -------
    chunk: np.ndarray
        shape (num_samples, len(rows))
    """
    dtype = np.dtype(dtype)
    if rows is None:
        rows = slice(None)
    if num_samples == 0:
        return np.empty((0, num_rows), dtype=dtype)[:, rows]

    stride = packet_size * step
    start_byte = file_offset + first_row * dtype.itemsize
    end_byte = start_byte + (num_samples - 1) * stride + num_rows * dtype.itemsize

    # Calculate the length of the data chunk to load into memory
    length = end_byte - start_byte

    # The mmap offset must be a multiple of mmap.ALLOCATIONGRANULARITY
    memmap_offset, start_offset = divmod(start_byte, mmap.ALLOCATIONGRANULARITY)
    memmap_offset *= mmap.ALLOCATIONGRANULARITY

    # Adjust the length so it includes the extra data from rounding down
    # the memmap offset to a multiple of ALLOCATIONGRANULARITY
    length += start_offset

    with mmap.mmap(fid.fileno(), length=length, access=mmap.ACCESS_READ, offset=memmap_offset) as memmap_obj:
        arr = np.ndarray(
            shape=(num_samples, num_rows),
            dtype=dtype,
            buffer=memmap_obj,
            offset=start_offset,
            strides=(stride, dtype.itemsize),
        )
        chunk = np.array(arr[:, rows], copy=True)
        del arr

    return chunk


def get_strided_field_from_opened_file(fid, packet_size, num_samples, dtype, file_offset=0, step=1):
    """
    Read one fixed-size field repeated every ``packet_size`` bytes, such as the
    per-sample timestamp of PTP packets.
    """
    chunk = get_strided_chunk_from_opened_file(
        fid, packet_size, num_samples, 0, 1, dtype=dtype, file_offset=file_offset, step=step
    )
    return chunk[:, 0]
