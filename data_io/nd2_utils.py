import os
import logging
from typing import BinaryIO, Callable

import numpy as np
from nibabel.openers import ImageOpener

from .nd2_chunks import Chunk, FormatError, iter_chunks
from .nd2_metadata import MetadataEntry, iter_metadata_entries
from .nd2_descriptor import ImageDescriptor, ImageDescriptorBuilder, summarize_descriptor
from .nifti_writer import build_affine, iter_channel_planes, write_nifti_stream

# Configure logging for this module
logger = logging.getLogger(__name__)
if not logger.hasHandlers(): # Avoid adding multiple handlers if already configured
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

ChunkCallback = Callable[[Chunk], None]
EntryCallback = Callable[[MetadataEntry], None]


def scan_nd2_layout(stream: BinaryIO,
                    chunk_callback: ChunkCallback | None = None,
                    entry_callback: EntryCallback | None = None) -> ImageDescriptor:
    """
    Scans an ND2 stream once and collects the image description.

    Metadata chunks are decoded entry by entry and folded into an
    ImageDescriptorBuilder. Pixel chunks are not decoded; only their data
    offsets are recorded, in the order they appear in the file.

    Args:
        stream (BinaryIO): Seekable binary stream of the ND2 file.
        chunk_callback (callable, optional): Called with every Chunk.
        entry_callback (callable, optional): Called with every entry that has
            a key or a value. Together with `chunk_callback` this feeds the
            info dump.

    Returns:
        ImageDescriptor: The finished, immutable description.

    Raises:
        FormatError: If a chunk header is invalid.
        TruncatedReadError: If a metadata entry is cut off by the end of the file.
    """
    builder = ImageDescriptorBuilder()
    for chunk in iter_chunks(stream):
        if chunk_callback is not None:
            chunk_callback(chunk)
        if chunk.is_pixel_chunk:
            builder.add_chunk(chunk)
            continue

        stream.seek(chunk.data_offset)
        for entry in iter_metadata_entries(stream, chunk.next_offset):
            if entry_callback is not None and not entry.is_empty:
                entry_callback(entry)
            builder.apply_entry(entry)

    return builder.build()


def validate_descriptor(descriptor: ImageDescriptor):
    """Raises FormatError if the descriptor cannot be turned into a volume."""
    if descriptor.width == 0 or descriptor.height == 0:
        raise FormatError(f"missing image size (width={descriptor.width}, height={descriptor.height})")
    if descriptor.component_count == 0:
        raise FormatError("image reports zero components")
    if descriptor.slice_count == 0:
        raise FormatError("no image data chunks found")


def read_nd2_descriptor(nd2_filepath: str,
                        chunk_callback: ChunkCallback | None = None,
                        entry_callback: EntryCallback | None = None) -> ImageDescriptor:
    """
    Opens an ND2 file and scans its layout.

    Args:
        nd2_filepath (str): Path to the ND2 file.
        chunk_callback (callable, optional): See `scan_nd2_layout`.
        entry_callback (callable, optional): See `scan_nd2_layout`.

    Returns:
        ImageDescriptor: The description of the image stored in the file.

    Raises:
        FileNotFoundError: If the file does not exist.
        FormatError: If the file is not a valid ND2 container.
    """
    if not os.path.exists(nd2_filepath):
        raise FileNotFoundError(f"ND2 file not found: {nd2_filepath}")

    logger.info(f"Scanning ND2 file: {nd2_filepath}")
    with open(nd2_filepath, 'rb') as nd2:
        descriptor = scan_nd2_layout(nd2, chunk_callback=chunk_callback, entry_callback=entry_callback)
    logger.info(summarize_descriptor(descriptor))
    return descriptor


def read_nd2_data(nd2_filepath: str) -> tuple[np.ndarray, np.ndarray, ImageDescriptor]:
    """
    Reads a whole ND2 volume into memory.

    Intended for files that fit in memory; `convert_nd2_to_nifti` streams
    instead.

    Args:
        nd2_filepath (str): Path to the ND2 file.

    Returns:
        tuple:
            - image_data (np.ndarray): Array of shape (width, height, slices, components)
              with uint8 or uint16 samples, matching the NIfTI voxel order.
            - affine (np.ndarray): The centred 4x4 affine, in microns.
            - descriptor (ImageDescriptor): The scanned description.
    """
    descriptor = read_nd2_descriptor(nd2_filepath)
    validate_descriptor(descriptor)

    volume = np.empty((descriptor.component_count, descriptor.slice_count,
                       descriptor.height, descriptor.width), dtype=descriptor.sample_dtype)
    with open(nd2_filepath, 'rb') as nd2:
        planes = iter_channel_planes(nd2, descriptor)
        for component in range(descriptor.component_count):
            for slice_index in range(descriptor.slice_count):
                volume[component, slice_index] = next(planes).reshape(descriptor.height, descriptor.width)

    image_data = volume.transpose(3, 2, 1, 0)
    logger.info(f"Data shape: {image_data.shape}, dtype: {image_data.dtype}")
    return image_data, build_affine(descriptor), descriptor


def convert_nd2_to_nifti(nd2_filepath: str,
                         output_nifti_file: str,
                         single_pass: bool = False,
                         chunk_callback: ChunkCallback | None = None,
                         entry_callback: EntryCallback | None = None) -> ImageDescriptor:
    """
    Converts an ND2 file to a single-file NIfTI-1 volume.

    The ND2 layout is scanned completely before the output is opened, so an
    invalid input never leaves output bytes behind. Pixel data is streamed
    plane by plane. A failure while writing pixels can leave a truncated
    output file, which the caller is responsible for removing.

    Args:
        nd2_filepath (str): Path to the input ND2 file.
        output_nifti_file (str): Path of the output `.nii` (or `.nii.gz`) file.
        single_pass (bool, optional): Read each slice once and scatter the
            components into the output. Requires an uncompressed `.nii`
            output. Defaults to False.
        chunk_callback (callable, optional): Info dump sink for chunks.
        entry_callback (callable, optional): Info dump sink for metadata entries.

    Returns:
        ImageDescriptor: The description the output was built from.

    Raises:
        FileNotFoundError: If the input file does not exist.
        FormatError: If the input is not a usable ND2 container.
        TruncatedReadError: If pixel data is cut off by the end of the file.
        ValueError: If `single_pass` is requested for a compressed output.
    """
    logger.info(f"Starting ND2 to NIfTI conversion for: {nd2_filepath}")
    if single_pass and output_nifti_file.endswith('.gz'):
        raise ValueError("single_pass conversion needs a seekable, uncompressed .nii output")

    descriptor = read_nd2_descriptor(nd2_filepath, chunk_callback=chunk_callback,
                                     entry_callback=entry_callback)
    validate_descriptor(descriptor)

    output_dir = os.path.dirname(output_nifti_file)
    if output_dir and not os.path.exists(output_dir):
        os.makedirs(output_dir, exist_ok=True)
        logger.info(f"Created output directory: {output_dir}")

    try:
        with open(nd2_filepath, 'rb') as nd2, ImageOpener(output_nifti_file, 'wb') as nii:
            write_nifti_stream(nd2, nii, descriptor, single_pass=single_pass)
    except Exception as e:
        logger.error(f"Failed to write NIfTI file {output_nifti_file}: {e}")
        raise

    logger.info(f"NIfTI file saved successfully: {output_nifti_file}")
    return descriptor
