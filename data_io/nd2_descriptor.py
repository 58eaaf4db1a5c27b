import logging
from dataclasses import dataclass, field
from typing import Iterable

import numpy as np

from .nd2_chunks import Chunk
from .nd2_metadata import MetadataEntry

# Configure logging for this module
logger = logging.getLogger(__name__)
if not logger.hasHandlers(): # Avoid adding multiple handlers if already configured
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')


@dataclass(frozen=True)
class ImageDescriptor:
    """
    Everything needed to write the NIfTI volume, gathered in one scan of the ND2 file.

    Attributes:
        width (int): Tile width in pixels (`uiTileWidth`).
        height (int): Tile height in pixels (`uiTileHeight`).
        bits_per_channel (int): Bits per sample in memory (`uiBpcInMemory`).
        component_count (int): Interleaved samples per pixel (`uiVirtualComponents`).
        pixel_size_um (float): In-plane pixel size in microns (`dCalibration`).
        slice_thickness_um (float): Z step in microns (`dZStep`).
        description (str): Free text (`sDescription`).
        slice_data_offsets (tuple[int, ...]): Absolute data offsets of the
            pixel chunks, in file order. This order is the output z order.
    """
    width: int = 0
    height: int = 0
    bits_per_channel: int = 8
    component_count: int = 1
    pixel_size_um: float = 1.0
    slice_thickness_um: float = 1.0
    description: str = ""
    slice_data_offsets: tuple[int, ...] = ()

    @property
    def slice_count(self) -> int:
        return len(self.slice_data_offsets)

    @property
    def sample_dtype(self) -> np.dtype:
        """Little-endian uint16 for 16-bit data, uint8 for everything else."""
        return np.dtype('<u2') if self.bits_per_channel == 16 else np.dtype('u1')

    @property
    def plane_size(self) -> int:
        """Samples in one component of one slice."""
        return self.width * self.height

    @property
    def samples_per_slice(self) -> int:
        return self.width * self.height * self.component_count


def _parse_unsigned(text: str) -> int:
    value = int(text)
    if value < 0:
        raise ValueError(f"negative value {value}")
    return value


def _parse_voxel_size(text: str) -> float:
    value = float(text)
    if not np.isfinite(value) or value <= 0:
        raise ValueError(f"voxel size must be positive, got {value}")
    return value


# Metadata key -> (descriptor field, parser)
RECOGNISED_KEYS = {
    "uiTileWidth": ("width", _parse_unsigned),
    "uiTileHeight": ("height", _parse_unsigned),
    "uiBpcInMemory": ("bits_per_channel", _parse_unsigned),
    "uiVirtualComponents": ("component_count", _parse_unsigned),
    "dCalibration": ("pixel_size_um", _parse_voxel_size),
    "dZStep": ("slice_thickness_um", _parse_voxel_size),
    "sDescription": ("description", str),
}


@dataclass
class ImageDescriptorBuilder:
    """
    Accumulates an ImageDescriptor while the chunk scan runs.

    Values that fail to parse keep whatever the field held before (the
    default if the key was never seen) and a warning is logged.
    """
    fields: dict = field(default_factory=dict)
    slice_data_offsets: list = field(default_factory=list)

    def apply_entry(self, entry: MetadataEntry) -> bool:
        """Folds one entry into the descriptor. Returns True if the key was recognised."""
        target = RECOGNISED_KEYS.get(entry.key)
        if target is None:
            return False

        name, parse = target
        try:
            self.fields[name] = parse(entry.value)
        except ValueError as e:
            logger.warning(f"Could not parse value '{entry.value}' for key '{entry.key}' ({e}); "
                           f"keeping {name}={self.fields.get(name, getattr(ImageDescriptor, name))!r}")
        return True

    def add_slice(self, data_offset: int):
        self.slice_data_offsets.append(data_offset)

    def add_chunk(self, chunk: Chunk, entries: Iterable[MetadataEntry] = ()):
        """Records a pixel chunk's data offset, or folds the entries of a metadata chunk."""
        if chunk.is_pixel_chunk:
            self.add_slice(chunk.data_offset)
            return
        for entry in entries:
            self.apply_entry(entry)

    def build(self) -> ImageDescriptor:
        return ImageDescriptor(slice_data_offsets=tuple(self.slice_data_offsets), **self.fields)


def summarize_descriptor(descriptor: ImageDescriptor) -> str:
    """One-line description of the image, as printed by nd2tonii."""
    return (f"found {descriptor.slice_count} slices of size {descriptor.width} x {descriptor.height}, "
            f"with {descriptor.component_count} channels and {descriptor.bits_per_channel} bits per pixel")
