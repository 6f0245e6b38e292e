"""TOML file handling utilities."""

import tomllib
from pathlib import Path
from typing import Any, Dict

import toml


def load_toml(file_path: str) -> Dict[str, Any]:
    """Load a TOML file and return a dictionary.

    Args:
        file_path: Path to the TOML file to load

    Returns:
        Dictionary containing the parsed TOML data

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the TOML is invalid
    """
    try:
        with open(file_path, 'rb') as f:
            data: Dict[str, Any] = tomllib.load(f)
            return data

    except FileNotFoundError as err:
        raise FileNotFoundError(f"Configuration file not found: {file_path}") from err
    except tomllib.TOMLDecodeError as err:
        raise ValueError(f"Invalid TOML format in {file_path}: {str(err)}") from err


def save_toml(file_path: str, data: Dict[str, Any]) -> None:
    """Save a dictionary to a TOML file.

    Args:
        file_path: Path to save the TOML file
        data: Dictionary containing the data to save

    Raises:
        RuntimeError: For errors during saving
    """
    try:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            toml.dump(data, f)
    except OSError as err:
        raise RuntimeError(f"Error saving configuration file: {str(err)}") from err
