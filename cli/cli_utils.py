import argparse
import json
import sys
import os
import yaml # Requires PyYAML to be installed

# --- Argument Parsing Helpers ---

def add_common_input_args(parser: argparse.ArgumentParser):
    """Adds the ND2 input file argument to an ArgumentParser."""
    parser.add_argument('--input_nd2', required=True, help="Path to the input ND2 file.")
    return parser

def add_logging_arg(parser: argparse.ArgumentParser):
    """Adds a --log_level argument."""
    parser.add_argument(
        '--log_level',
        type=str.upper,
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help="Logging level for the conversion (default: INFO, or 'log_level' from --config)."
    )
    return parser

def add_config_arg(parser: argparse.ArgumentParser):
    """Adds a --config argument pointing to a JSON or YAML options file."""
    parser.add_argument('--config', help="JSON or YAML file with default options. Command-line flags take precedence.")
    return parser


# --- Info Dump Formatting ---

def format_chunk(chunk) -> str:
    """One line describing a chunk, in the nd2tonii dump format."""
    return (f"Section: {chunk.name}, at offset {chunk.offset}, data at {chunk.data_offset}, "
            f"next section at {chunk.next_offset}")

def format_entry(entry) -> str:
    """One indented 'key: value' line for a metadata entry."""
    return f"  {entry.key}: {entry.value}"

def print_chunk(chunk):
    print(format_chunk(chunk))

def print_entry(entry):
    print(format_entry(entry))


# --- Interaction ---

def confirm_overwrite(filepath: str) -> bool:
    """
    Asks on stderr whether an existing output file may be replaced.

    Returns True if the file does not exist or the user answers 'y'/'Y'.
    """
    if not os.path.exists(filepath):
        return True
    sys.stderr.write(f"WARNING: output file \"{filepath}\" already exists - overwrite (y/N)? ")
    sys.stderr.flush()
    try:
        response = input().strip()
    except EOFError:
        response = ""
    return response in ('y', 'Y')


# --- Configuration File Loading ---

def load_config_from_json_yaml(filepath: str) -> dict:
    """Loads parameters from a JSON or YAML configuration file."""
    if not os.path.exists(filepath):
        raise FileNotFoundError(f"Configuration file not found: {filepath}")

    ext = os.path.splitext(filepath)[1].lower()
    config = {}
    with open(filepath, 'r') as f:
        if ext == '.json':
            config = json.load(f)
        elif ext in ['.yaml', '.yml']:
            try:
                config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Error parsing YAML file {filepath}: {e}")
        else:
            raise ValueError(f"Unsupported configuration file format: {ext}. Use .json or .yaml.")
    if config is None: # Empty YAML document
        config = {}
    if not isinstance(config, dict):
        raise ValueError(f"Configuration file {filepath} must contain a mapping of options.")
    return config
