import argparse
import logging
import sys
import os

from data_io.nd2_chunks import Nd2Error
from data_io.nd2_descriptor import summarize_descriptor
from data_io.nd2_utils import read_nd2_descriptor, convert_nd2_to_nifti
from cli.cli_utils import (
    add_common_input_args,
    add_config_arg,
    add_logging_arg,
    confirm_overwrite,
    load_config_from_json_yaml,
    print_chunk,
    print_entry
)

logger = logging.getLogger(__name__)

# Options that may be given in a --config file, with their defaults
CONFIG_DEFAULTS = {
    'info': False,
    'force': False,
    'single_pass': False,
    'log_level': 'INFO',
}


def resolve_options(args) -> dict:
    """Merges --config file values with command-line flags (flags win)."""
    options = dict(CONFIG_DEFAULTS)
    if getattr(args, 'config', None):
        config = load_config_from_json_yaml(args.config)
        for key, value in config.items():
            if key in CONFIG_DEFAULTS:
                options[key] = value
            else:
                logger.warning(f"Ignoring unknown option '{key}' in {args.config}")
    for key in CONFIG_DEFAULTS:
        value = getattr(args, key, None)
        if value is not None:
            options[key] = value
    return options


def configure_logging(level_name: str):
    level = getattr(logging, str(level_name).upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"Invalid log level: {level_name}")
    logging.getLogger().setLevel(level)


def setup_nd2_to_nifti_parser(parser: argparse.ArgumentParser):
    add_common_input_args(parser)
    parser.add_argument('--output_nifti', required=True, help="Path to save the output NIfTI file (.nii or .nii.gz).")
    parser.add_argument('--info', action='store_true', default=None, help="Print every chunk and metadata entry while scanning.")
    parser.add_argument('--force', action='store_true', default=None, help="Overwrite the output file without asking.")
    parser.add_argument('--single_pass', action='store_true', default=None,
                        help="Read each slice once and scatter channels into the output (uncompressed .nii only).")
    add_config_arg(parser)
    add_logging_arg(parser)
    parser.set_defaults(func=run_nd2_to_nifti)

def run_nd2_to_nifti(args) -> int:
    try:
        options = resolve_options(args)
        configure_logging(options['log_level'])
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    input_nd2 = os.path.abspath(args.input_nd2)
    output_nifti = os.path.abspath(args.output_nifti)

    if not options['force'] and not confirm_overwrite(output_nifti):
        print("aborting", file=sys.stderr)
        return 0

    print(f"Converting ND2 file: {input_nd2} to NIfTI: {output_nifti}")
    try:
        descriptor = convert_nd2_to_nifti(
            input_nd2,
            output_nifti,
            single_pass=options['single_pass'],
            chunk_callback=print_chunk if options['info'] else None,
            entry_callback=print_entry if options['info'] else None
        )
    except (Nd2Error, OSError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    print(summarize_descriptor(descriptor))
    print("ND2 to NIfTI conversion successful.")
    return 0


def setup_nd2_info_parser(parser: argparse.ArgumentParser):
    add_common_input_args(parser)
    add_logging_arg(parser)
    parser.set_defaults(func=run_nd2_info)

def run_nd2_info(args) -> int:
    configure_logging(args.log_level or CONFIG_DEFAULTS['log_level'])
    try:
        descriptor = read_nd2_descriptor(
            os.path.abspath(args.input_nd2),
            chunk_callback=print_chunk,
            entry_callback=print_entry
        )
    except (Nd2Error, OSError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    print(summarize_descriptor(descriptor))
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="nd2nifti",
        description="Convert Nikon ND2 microscopy files to NIfTI-1.",
        formatter_class=argparse.RawTextHelpFormatter
    )
    subparsers = parser.add_subparsers(title="Available Commands", dest="command_format_conversion")
    subparsers.required = True

    nd2_to_nii_parser = subparsers.add_parser(
        "nd2nii",
        help="Convert an ND2 file to NIfTI format.",
        description="Converts ND2 to a 4D NIfTI volume (x, y, z, channel), optionally dumping the parsed metadata."
    )
    setup_nd2_to_nifti_parser(nd2_to_nii_parser)

    nd2_info_parser = subparsers.add_parser(
        "nd2info",
        help="Print the chunks and metadata of an ND2 file.",
        description="Scans an ND2 file without converting it and prints every chunk, metadata entry and a summary."
    )
    setup_nd2_info_parser(nd2_info_parser)

    if argv is None:
        argv = sys.argv[1:]
    if len(argv) == 0:
        parser.print_help(sys.stderr)
        sys.exit(1)

    args = parser.parse_args(argv)
    return args.func(args)

if __name__ == '__main__':
    sys.exit(main())
