"""
Utility functions for reading captures and writing results.
"""

import json
import os
import re
from typing import Dict, Any


def read_har_file(file_path: str) -> Dict[str, Any]:
    """
    Read HAR data from a file.

    Args:
        file_path: Path to the HAR file

    Returns:
        Dictionary containing HAR data

    Raises:
        FileNotFoundError: If the file does not exist
        json.JSONDecodeError: If the file is not valid JSON
    """
    with open(file_path, 'r', encoding='utf-8') as f:
        return json.load(f)


def ensure_parent_dir(file_path: str) -> None:
    """Create the directory holding ``file_path`` if it does not exist"""
    output_dir = os.path.dirname(file_path)
    if output_dir and not os.path.exists(output_dir):
        os.makedirs(output_dir)


def write_har_file(file_path: str, har_data: Dict[str, Any]) -> None:
    """
    Write HAR data to a file.

    Args:
        file_path: Path to write the HAR file
        har_data: HAR data to write

    Raises:
        PermissionError: If the file cannot be written
    """
    ensure_parent_dir(file_path)

    with open(file_path, 'w', encoding='utf-8') as f:
        json.dump(har_data, f, indent=2)


def get_default_output_filename(input_file: str, suffix: str = "_sanitised") -> str:
    """
    Generate a default output filename based on the input filename.

    Args:
        input_file: Input file path
        suffix: Text appended to the file stem

    Returns:
        Default output file path
    """
    input_base = os.path.basename(input_file)
    input_name, input_ext = os.path.splitext(input_base)
    return f"{input_name}{suffix}{input_ext}"


def pascal_case(text: str) -> str:
    """Turn ``get /items/{id}`` into ``GetItemsId``"""
    words = re.split(r'[^A-Za-z0-9]+', text)
    return ''.join(word[:1].upper() + word[1:] for word in words if word)


def snake_case(text: str) -> str:
    """Turn ``GET /items/{id}`` into ``get_items_id``"""
    words = re.split(r'[^A-Za-z0-9]+', text)
    return '_'.join(word.lower() for word in words if word)


def format_duration(seconds: float) -> str:
    """
    Format a duration in seconds to a human-readable string.

    Args:
        seconds: Duration in seconds

    Returns:
        Human-readable duration string
    """
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)

    if hours > 0:
        return f"{int(hours)}h {int(minutes)}m {seconds:.2f}s"
    elif minutes > 0:
        return f"{int(minutes)}m {seconds:.2f}s"
    else:
        return f"{seconds:.2f}s"
