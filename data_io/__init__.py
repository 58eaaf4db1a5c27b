# __init__.py for nd2nifti.data_io

from .nd2_chunks import (
    Chunk,
    Nd2Error,
    FormatError,
    TruncatedReadError,
    read_chunk_header,
    iter_chunks
)

from .nd2_metadata import (
    MetadataEntry,
    read_wide_string,
    read_entry,
    iter_metadata_entries
)

from .nd2_descriptor import (
    ImageDescriptor,
    ImageDescriptorBuilder,
    summarize_descriptor
)

from .nifti_writer import (
    build_affine,
    build_nifti_header,
    expected_nifti_size,
    iter_channel_planes,
    write_nifti_stream
)

from .nd2_utils import (
    scan_nd2_layout,
    read_nd2_descriptor,
    read_nd2_data,
    convert_nd2_to_nifti
)

# Optionally, define __all__ to specify public API
__all__ = [
    'Chunk',
    'Nd2Error',
    'FormatError',
    'TruncatedReadError',
    'read_chunk_header',
    'iter_chunks',
    'MetadataEntry',
    'read_wide_string',
    'read_entry',
    'iter_metadata_entries',
    'ImageDescriptor',
    'ImageDescriptorBuilder',
    'summarize_descriptor',
    'build_affine',
    'build_nifti_header',
    'expected_nifti_size',
    'iter_channel_planes',
    'write_nifti_stream',
    'scan_nd2_layout',
    'read_nd2_descriptor',
    'read_nd2_data',
    'convert_nd2_to_nifti'
]
