"""Path utilities for the audit history service."""

from pathlib import Path


def get_project_root() -> Path:
    """Get the project root directory.

    Returns:
        Path to the project root

    """
    return Path(__file__).parent.parent.parent


def ensure_directory_exists(directory_path: str) -> None:
    """Create directory if it doesn't exist.

    Args:
        directory_path: Path to the directory to create

    """
    Path(directory_path).mkdir(parents=True, exist_ok=True)


def get_config_path(filename: str = "settings.yaml") -> Path:
    """Get the path to a config file.

    Args:
        filename: Name of the config file (default: settings.yaml)

    Returns:
        Path to the config file, relative to the directory that holds config/

    """
    current = Path.cwd()

    # Look for config directory in current and parent directories
    for parent in [current] + list(current.parents):
        config_dir = parent / "config"
        if config_dir.exists() and (config_dir / filename).exists():
            return config_dir / filename

    # Fallback: the config directory shipped next to the package
    return get_project_root() / "config" / filename


def get_export_dir() -> Path:
    """Get the default directory for exported reports.

    Returns:
        Path to data/exports under the project root

    """
    return get_project_root() / "data" / "exports"
