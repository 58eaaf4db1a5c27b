import unittest

import numpy as np

from data_io.nd2_chunks import Chunk
from data_io.nd2_metadata import MetadataEntry
from data_io.nd2_descriptor import ImageDescriptor, ImageDescriptorBuilder, summarize_descriptor


def text_entry(key, value, value_type="uint32"):
    return MetadataEntry(key=key, value=value, value_type=value_type, tag=3)


class TestImageDescriptorBuilder(unittest.TestCase):

    def test_defaults(self):
        descriptor = ImageDescriptorBuilder().build()
        self.assertEqual(descriptor, ImageDescriptor())
        self.assertEqual(descriptor.pixel_size_um, 1.0)
        self.assertEqual(descriptor.slice_thickness_um, 1.0)
        self.assertEqual(descriptor.description, "")
        self.assertEqual(descriptor.slice_data_offsets, ())

    def test_recognised_keys(self):
        builder = ImageDescriptorBuilder()
        for e in [text_entry("uiTileWidth", "512"),
                  text_entry("uiTileHeight", "256"),
                  text_entry("uiBpcInMemory", "16"),
                  text_entry("uiVirtualComponents", "3"),
                  text_entry("dCalibration", "0.25", "double"),
                  text_entry("dZStep", "2.5", "double"),
                  text_entry("sDescription", "Camera: DS-Qi2", "ws")]:
            self.assertTrue(builder.apply_entry(e))

        d = builder.build()
        self.assertEqual((d.width, d.height, d.bits_per_channel, d.component_count), (512, 256, 16, 3))
        self.assertEqual((d.pixel_size_um, d.slice_thickness_um), (0.25, 2.5))
        self.assertEqual(d.description, "Camera: DS-Qi2")
        self.assertEqual(d.sample_dtype, np.dtype('<u2'))
        self.assertEqual(d.samples_per_slice, 512 * 256 * 3)

    def test_unrelated_key_changes_nothing(self):
        builder = ImageDescriptorBuilder()
        builder.apply_entry(text_entry("uiTileWidth", "512"))
        before = builder.build()

        self.assertFalse(builder.apply_entry(text_entry("uiSomethingElse", "7")))
        self.assertFalse(builder.apply_entry(text_entry("uiWidth", "1024")))

        self.assertEqual(builder.build(), before)
        self.assertEqual(before.width, 512)

    def test_later_value_wins(self):
        builder = ImageDescriptorBuilder()
        builder.apply_entry(text_entry("uiTileWidth", "512"))
        builder.apply_entry(text_entry("uiTileWidth", "128"))
        self.assertEqual(builder.build().width, 128)

    def test_unparseable_value_keeps_previous(self):
        builder = ImageDescriptorBuilder()
        builder.apply_entry(text_entry("uiTileWidth", "512"))
        with self.assertLogs('data_io.nd2_descriptor', level='WARNING') as log_watcher:
            builder.apply_entry(text_entry("uiTileWidth", "abc"))
            builder.apply_entry(text_entry("uiTileHeight", "-4", "int32"))
            builder.apply_entry(text_entry("dCalibration", "0", "double"))

        d = builder.build()
        self.assertEqual(d.width, 512)
        self.assertEqual(d.height, 0)
        self.assertEqual(d.pixel_size_um, 1.0)
        self.assertEqual(len(log_watcher.output), 3)
        self.assertIn("keeping width=512", log_watcher.output[0])

    def test_pixel_chunks_keep_encounter_order(self):
        builder = ImageDescriptorBuilder()
        offsets = [90000, 4128, 50000]
        for i, offset in enumerate(offsets):
            builder.add_chunk(Chunk(offset - 32, offset, offset + 8, f"ImageDataSeq|{i}!"))
        builder.add_chunk(Chunk(0, 16, 40, "ImageAttributesLV!"), [text_entry("uiTileWidth", "4")])

        d = builder.build()
        self.assertEqual(d.slice_data_offsets, tuple(offsets))
        self.assertEqual(d.slice_count, 3)
        self.assertEqual(d.width, 4)

    def test_pixel_chunk_entries_are_ignored(self):
        builder = ImageDescriptorBuilder()
        builder.add_chunk(Chunk(0, 16, 40, "ImageDataSeq|0!"), [text_entry("uiTileWidth", "4")])
        self.assertEqual(builder.build().width, 0)

    def test_descriptor_is_immutable(self):
        d = ImageDescriptorBuilder().build()
        with self.assertRaises(AttributeError):
            d.width = 10


class TestSummarizeDescriptor(unittest.TestCase):

    def test_summary_line(self):
        d = ImageDescriptor(width=512, height=256, bits_per_channel=16, component_count=2,
                            slice_data_offsets=(1, 2, 3))
        self.assertEqual(summarize_descriptor(d),
                         "found 3 slices of size 512 x 256, with 2 channels and 16 bits per pixel")


if __name__ == '__main__':
    unittest.main()
