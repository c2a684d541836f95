"""
octo - Container engine resource management and live log viewing.

This package wraps the local container engine's control API with a
domain-typed service and a keyboard-driven log viewer.

Features:
  - Listings of containers, images, volumes and networks
  - Disk usage with reclaimable space per category
  - Targeted removals and prunes, each with a dry-run confirmation
  - Live container logs with filtering, follow mode and export

Main Components:
  - backend.py: DockerService, the engine service
  - transport.py: engine connection (docker-py APIClient)
  - logstream.py: log framing, timestamp parsing and live follow
  - logviewer.py: message-driven log viewer model
  - app.py: Textual host for the log viewer
  - model.py: Data structures (ContainerInfo, ImageInfo, ...)

Usage:
  octo logs CONTAINER
  python -m octo df

Dependencies:
  - docker>=7.0.0
  - PyYAML
  - textual
  - Python 3.10+
"""

import os
from pathlib import Path

__version__ = "0.1.0"


def get_log_path() -> str:
    """
    Get the log file path following the XDG Base Directory layout.

    Returns XDG_DATA_HOME/octo/logs/octo.log with fallback to /tmp.
    Creates directory if it doesn't exist.

    Returns:
        str: Absolute path to log file (/tmp/octo.log as fallback)
    """
    xdg_data_home = os.environ.get('XDG_DATA_HOME')
    if not xdg_data_home:
        xdg_data_home = Path.home() / '.local' / 'share'
    else:
        xdg_data_home = Path(xdg_data_home)

    log_dir = xdg_data_home / 'octo' / 'logs'

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        return str(log_dir / 'octo.log')
    except (PermissionError, OSError):
        return '/tmp/octo.log'
