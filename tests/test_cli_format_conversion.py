import unittest
from unittest import mock
import io
import os
import json
import tempfile
import contextlib

import numpy as np
import nibabel as nib

# Adjust import path based on actual project structure
from cli import run_format_conversion
from tests.nd2_fixtures import make_nd2_image

SLICES = [
    [1, 10, 2, 20, 3, 30, 4, 40],
    [5, 50, 6, 60, 7, 70, 8, 80],
]


class TestCliFormatConversion(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmpdir = self._tmp.name
        blob, _ = make_nd2_image(SLICES, width=2, height=2, components=2, bits=16,
                                 calibration=0.5, description="cli test")
        self.input_nd2 = os.path.join(self.tmpdir, "input.nd2")
        with open(self.input_nd2, 'wb') as f:
            f.write(blob)
        self.output_nifti = os.path.join(self.tmpdir, "output.nii")

    def tearDown(self):
        self._tmp.cleanup()

    def run_cli(self, cli_args):
        stdout, stderr = io.StringIO(), io.StringIO()
        with contextlib.redirect_stdout(stdout), contextlib.redirect_stderr(stderr):
            code = run_format_conversion.main(cli_args)
        return code, stdout.getvalue(), stderr.getvalue()

    def test_cli_nd2_to_nifti(self):
        cli_args = ['nd2nii', '--input_nd2', self.input_nd2, '--output_nifti', self.output_nifti]

        try:
            code, out, _ = self.run_cli(cli_args)
        except SystemExit as e:
            self.fail(f"CLI script exited unexpectedly with code {e.code} for args: {cli_args}")

        self.assertEqual(code, 0)
        self.assertIn("found 2 slices of size 2 x 2, with 2 channels and 16 bits per pixel", out)
        img = nib.load(self.output_nifti)
        self.assertEqual(img.shape, (2, 2, 2, 2))
        np.testing.assert_array_equal(np.asanyarray(img.dataobj)[:, :, 0, 1], [[10, 30], [20, 40]])

    def test_cli_info_dump(self):
        code, out, _ = self.run_cli(['nd2nii', '--input_nd2', self.input_nd2,
                                     '--output_nifti', self.output_nifti, '--info'])
        self.assertEqual(code, 0)
        self.assertIn("Section: ImageAttributesLV!, at offset 4096,", out)
        self.assertIn("Section: ImageDataSeq|1!", out)
        self.assertIn("  uiTileWidth: 2", out)
        self.assertIn("  sDescription: cli test", out)

    def test_cli_nd2info_does_not_write(self):
        code, out, _ = self.run_cli(['nd2info', '--input_nd2', self.input_nd2])
        self.assertEqual(code, 0)
        self.assertIn("  uiVirtualComponents: 2", out)
        self.assertTrue(out.rstrip().endswith("with 2 channels and 16 bits per pixel"))
        self.assertFalse(os.path.exists(self.output_nifti))

    def test_cli_existing_output_declined(self):
        with open(self.output_nifti, 'wb') as f:
            f.write(b'keep me')

        with mock.patch('builtins.input', return_value='n'):
            code, _, err = self.run_cli(['nd2nii', '--input_nd2', self.input_nd2,
                                         '--output_nifti', self.output_nifti])

        self.assertEqual(code, 0)
        self.assertIn("already exists - overwrite (y/N)?", err)
        self.assertIn("aborting", err)
        with open(self.output_nifti, 'rb') as f:
            self.assertEqual(f.read(), b'keep me')

    def test_cli_existing_output_accepted(self):
        with open(self.output_nifti, 'wb') as f:
            f.write(b'replace me')

        with mock.patch('builtins.input', return_value='y'):
            code, _, _ = self.run_cli(['nd2nii', '--input_nd2', self.input_nd2,
                                       '--output_nifti', self.output_nifti])

        self.assertEqual(code, 0)
        self.assertEqual(nib.load(self.output_nifti).shape, (2, 2, 2, 2))

    @mock.patch('builtins.input')
    def test_cli_force_skips_prompt(self, mock_input):
        with open(self.output_nifti, 'wb') as f:
            f.write(b'replace me')
        code, _, _ = self.run_cli(['nd2nii', '--input_nd2', self.input_nd2,
                                   '--output_nifti', self.output_nifti, '--force'])
        self.assertEqual(code, 0)
        mock_input.assert_not_called()

    def test_cli_config_file(self):
        config_path = os.path.join(self.tmpdir, "options.json")
        with open(config_path, 'w') as f:
            json.dump({'info': True, 'single_pass': True, 'log_level': 'warning'}, f)

        with mock.patch('cli.run_format_conversion.convert_nd2_to_nifti',
                        wraps=run_format_conversion.convert_nd2_to_nifti) as mock_convert:
            code, out, _ = self.run_cli(['nd2nii', '--input_nd2', self.input_nd2,
                                         '--output_nifti', self.output_nifti, '--config', config_path])

        self.assertEqual(code, 0)
        self.assertIn("Section: ImageDataSeq|0!", out)
        self.assertTrue(mock_convert.call_args[1]['single_pass'])

    def test_cli_bad_file_exits_nonzero(self):
        with open(self.input_nd2, 'wb') as f:
            f.write(b'\x00' * 64)

        with self.assertRaises(SystemExit) as cm:
            self.run_cli(['nd2nii', '--input_nd2', self.input_nd2,
                          '--output_nifti', self.output_nifti, '--force'])
        self.assertEqual(cm.exception.code, 1)
        self.assertFalse(os.path.exists(self.output_nifti))

    def test_cli_missing_input_exits_nonzero(self):
        with self.assertRaises(SystemExit) as cm:
            self.run_cli(['nd2info', '--input_nd2', os.path.join(self.tmpdir, "absent.nd2")])
        self.assertEqual(cm.exception.code, 1)

    def test_cli_no_arguments(self):
        with self.assertRaises(SystemExit) as cm:
            self.run_cli([])
        self.assertEqual(cm.exception.code, 1)

    def test_cli_missing_output_argument(self):
        with self.assertRaises(SystemExit) as cm:
            self.run_cli(['nd2nii', '--input_nd2', self.input_nd2])
        self.assertNotEqual(cm.exception.code, 0)


if __name__ == '__main__':
    unittest.main()
