"""Centralized names and locations used by liveserve.

Bundled assets live inside the package:

    liveserve/
    └── ssl/
        ├── dev-cert.pem    # Self-signed localhost certificate
        └── dev-key.pem     # Its private key

The configuration file (.liveserve.toml) is looked up in the current
directory, then the home directory.
"""

from __future__ import annotations

from pathlib import Path

PACKAGE_DIR = Path(__file__).resolve().parent

SSL_DIR = PACKAGE_DIR / "ssl"
DEV_CERT_FILE = SSL_DIR / "dev-cert.pem"
DEV_KEY_FILE = SSL_DIR / "dev-key.pem"

CONFIG_FILE = ".liveserve.toml"

# Well-known livereload port, shared with the browser extensions
LIVERELOAD_PORT = 35729

# Control-channel endpoints, served on the reload port and the main port
LIVERELOAD_SCRIPT_PATH = "/livereload.js"
LIVERELOAD_SOCKET_PATH = "/livereload"


def get_config_locations(config_path: Path | None = None) -> list[Path]:
    """List config file candidates in priority order.

    Args:
        config_path: Explicit config file, checked first when given

    Returns:
        Candidate paths, highest priority first
    """
    locations = []
    if config_path:
        locations.append(config_path)
    locations.extend(
        [
            Path.cwd() / CONFIG_FILE,
            Path.home() / CONFIG_FILE,
        ]
    )
    return locations
