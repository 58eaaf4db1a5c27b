import logging
from typing import BinaryIO, Iterator

import numpy as np
import nibabel as nib

from .nd2_chunks import Nd2Error, read_exact
from .nd2_descriptor import ImageDescriptor

# Configure logging for this module
logger = logging.getLogger(__name__)
if not logger.hasHandlers(): # Avoid adding multiple handlers if already configured
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

# Width of the NIfTI-1 'descrip' field
DESCRIPTION_FIELD_SIZE = 80
NIFTI_SINGLE_FILE_VOX_OFFSET = 352


def build_affine(descriptor: ImageDescriptor) -> np.ndarray:
    """
    Builds the voxel-to-world affine for the volume.

    Voxel sizes sit on the diagonal and the translation centres the volume
    on the origin: offset = -(voxel_size * dim) / 2 along x, y and z.
    """
    zooms = np.array([descriptor.pixel_size_um, descriptor.pixel_size_um,
                      descriptor.slice_thickness_um], dtype=np.float64)
    dims = np.array([descriptor.width, descriptor.height, descriptor.slice_count], dtype=np.float64)

    affine = np.eye(4)
    affine[:3, :3] = np.diag(zooms)
    affine[:3, 3] = -(zooms * dims) / 2
    return affine


def _description_bytes(description: str) -> bytes:
    # One byte per character, same convention as the metadata strings.
    return description.encode('latin-1', errors='replace')[:DESCRIPTION_FIELD_SIZE]


def build_nifti_header(descriptor: ImageDescriptor) -> nib.Nifti1Header:
    """
    Maps an ImageDescriptor onto a single-file NIfTI-1 header.

    Args:
        descriptor (ImageDescriptor): The completed scan result.

    Returns:
        nib.Nifti1Header: Little-endian header with shape
        (width, height, slices, components), uint8 or uint16 datatype,
        micron voxel sizes, a centred affine (qform and sform) and the
        description truncated to 80 bytes.
    """
    header = nib.Nifti1Header(endianness='<')
    header.set_data_dtype(descriptor.sample_dtype.type)
    header.set_data_shape((descriptor.width, descriptor.height,
                           descriptor.slice_count, descriptor.component_count))

    affine = build_affine(descriptor)
    header.set_qform(affine, code=1)
    header.set_sform(affine, code=1)
    header.set_zooms((descriptor.pixel_size_um, descriptor.pixel_size_um,
                      descriptor.slice_thickness_um, 1.0))
    header.set_xyzt_units(xyz='micron')

    header['descrip'] = _description_bytes(descriptor.description)
    header['vox_offset'] = NIFTI_SINGLE_FILE_VOX_OFFSET
    return header


def expected_nifti_size(descriptor: ImageDescriptor) -> int:
    """Size in bytes of the uncompressed .nii produced for `descriptor`."""
    return (NIFTI_SINGLE_FILE_VOX_OFFSET
            + descriptor.plane_size * descriptor.slice_count
            * descriptor.component_count * descriptor.sample_dtype.itemsize)


def read_slice_samples(stream: BinaryIO, offset: int, descriptor: ImageDescriptor) -> np.ndarray:
    """
    Reads the interleaved samples of one slice.

    Returns:
        np.ndarray: 1D array of `width*height*component_count` samples,
        pixel-major with the component index varying fastest.

    Raises:
        TruncatedReadError: If the slice data runs past the end of the file.
    """
    dtype = descriptor.sample_dtype
    stream.seek(offset)
    raw = read_exact(stream, descriptor.samples_per_slice * dtype.itemsize)
    return np.frombuffer(raw, dtype=dtype)


def iter_channel_planes(stream: BinaryIO, descriptor: ImageDescriptor) -> Iterator[np.ndarray]:
    """
    Yields the planes of the volume in channel-major order.

    All slices of component 0 come first (in `slice_data_offsets` order),
    then all slices of component 1, and so on. Each slice is re-read from
    the source once per component so that only one slice is in memory.

    Yields:
        np.ndarray: Contiguous plane of `width*height` samples.
    """
    n_components = descriptor.component_count
    for component in range(n_components):
        for offset in descriptor.slice_data_offsets:
            samples = read_slice_samples(stream, offset, descriptor)
            yield np.ascontiguousarray(samples[component::n_components])


def _write_header(out_stream: BinaryIO, header: nib.Nifti1Header) -> int:
    # write_to() also emits the 4-byte extension flag of single-file images
    header.write_to(out_stream)
    vox_offset = int(header['vox_offset'])
    written = out_stream.tell()
    if written < vox_offset:
        out_stream.write(b'\x00' * (vox_offset - written))
    return vox_offset


def _write_planes_single_pass(in_stream: BinaryIO, out_stream: BinaryIO,
                              descriptor: ImageDescriptor, data_start: int):
    n_components = descriptor.component_count
    plane_bytes = descriptor.plane_size * descriptor.sample_dtype.itemsize
    for slice_index, offset in enumerate(descriptor.slice_data_offsets):
        samples = read_slice_samples(in_stream, offset, descriptor)
        for component in range(n_components):
            plane_index = component * descriptor.slice_count + slice_index
            out_stream.seek(data_start + plane_index * plane_bytes)
            out_stream.write(np.ascontiguousarray(samples[component::n_components]).tobytes())
    out_stream.seek(data_start + plane_bytes * descriptor.slice_count * n_components)


def write_nifti_stream(in_stream: BinaryIO, out_stream: BinaryIO,
                       descriptor: ImageDescriptor, single_pass: bool = False) -> nib.Nifti1Header:
    """
    Writes the NIfTI header and the channel-major pixel data.

    Args:
        in_stream (BinaryIO): Seekable stream of the source ND2 file.
        out_stream (BinaryIO): Output stream. Must be seekable if `single_pass` is set.
        descriptor (ImageDescriptor): Result of the chunk scan.
        single_pass (bool, optional): Read every slice once and scatter its
            components to their final positions in the output instead of
            re-reading the slice once per component. Defaults to False.

    Returns:
        nib.Nifti1Header: The header that was written.
    """
    header = build_nifti_header(descriptor)
    data_start = _write_header(out_stream, header)

    if single_pass:
        logger.debug("Writing planes in a single pass over the source slices")
        _write_planes_single_pass(in_stream, out_stream, descriptor, data_start)
    else:
        for plane in iter_channel_planes(in_stream, descriptor):
            out_stream.write(plane.tobytes())

    end = out_stream.tell()
    expected = expected_nifti_size(descriptor)
    if end != expected:
        raise Nd2Error(f"wrote {end} bytes of NIfTI data, expected {expected}")
    return header
