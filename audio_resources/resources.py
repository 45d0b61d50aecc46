"""Resource path helper for PyInstaller compatibility."""

import sys
import os


def resource_path(relative_path: str) -> str:
    """
    Absolute path to a bundled resource, in development or a frozen build.

    When packaged with PyInstaller, resources are extracted to the
    ``_MEIPASS`` temp folder. In development the project root (the folder
    above this package) is used, falling back to the current directory.
    Absolute paths are returned unchanged.

    Args:
        relative_path: Path relative to the project root (e.g. "assets/sounds")

    Returns:
        str: Absolute path with the separators of the current OS
    """
    normalized_path = os.path.normpath(relative_path)
    if os.path.isabs(normalized_path):
        return normalized_path

    if is_frozen():
        base_path = sys._MEIPASS
    else:
        base_path = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

        if not os.path.exists(os.path.join(base_path, normalized_path)):
            base_path = os.path.abspath(".")

    return os.path.join(base_path, normalized_path)


def is_frozen() -> bool:
    """True when running as a PyInstaller bundle."""
    return getattr(sys, 'frozen', False) and hasattr(sys, '_MEIPASS')
