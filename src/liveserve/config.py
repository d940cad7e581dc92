"""Configuration models for liveserve.

User-facing options (`ServerOptions`) accept the loose shapes people write
in config files and on the command line: boolean shorthands, nested option
objects and the camelCase names of the gulp plugin this tool mirrors.
`resolve_config` turns them into an immutable `ServerConfig`.
"""

from __future__ import annotations

import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from liveserve.errors import ConfigError
from liveserve.paths import DEV_CERT_FILE, DEV_KEY_FILE, LIVERELOAD_PORT, get_config_locations

# camelCase option names accepted for compatibility with gulp-webserver configs
OPTION_ALIASES = {
    "defaultFile": "default_file",
    "directoryListing": "directory_listing",
}


# =============================================================================
# User-facing options
# =============================================================================


class HttpsOptions(BaseModel):
    """Explicit certificate and key file paths."""

    cert: Path = Field(description="PEM certificate file")
    key: Path = Field(description="PEM private key file")


class DirectoryListingOptions(BaseModel):
    """Directory listing settings."""

    enable: bool = Field(default=False, description="Render listings for index-less directories")


class LiveReloadOptions(BaseModel):
    """Livereload settings."""

    enable: bool = Field(default=False, description="Start the livereload server")
    port: int = Field(default=LIVERELOAD_PORT, description="Livereload listener port")
    debounce_ms: int = Field(
        default=100,
        description="Window in which repeated changes to one file are merged",
    )


class ProxyOptions(BaseModel):
    """Forwarding options for one proxy rule."""

    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Headers set on forwarded requests, overriding incoming ones",
    )
    timeout: float = Field(default=30.0, description="Upstream timeout in seconds")


class ProxySpec(BaseModel):
    """A proxy rule as written by the user."""

    source: str = Field(description="URL path prefix on this server")
    target: str = Field(description="Origin URL that handles matching requests")
    options: ProxyOptions = Field(default_factory=ProxyOptions)


class ServerOptions(BaseSettings):
    """liveserve options, loadable from TOML and LIVESERVE_* variables."""

    model_config = SettingsConfigDict(
        env_prefix="LIVESERVE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    port: int = Field(default=8000, description="HTTP(S) port")
    host: str = Field(default="localhost", description="Bind address")
    https: bool | HttpsOptions = Field(
        default=False,
        description="true for the bundled dev certificate, or {cert, key}",
    )
    default_file: str = Field(default="index.html", description="Directory index file")
    directory_listing: bool | DirectoryListingOptions = Field(default=False)
    livereload: bool | LiveReloadOptions = Field(default=False)
    proxies: list[ProxySpec] = Field(default_factory=list)
    open: bool | str = Field(
        default=False,
        description="Open a browser on start; a string selects the path to open",
    )

    @classmethod
    def load(cls, config_path: Path | None = None, **overrides: Any) -> ServerOptions:
        """Load options from file and environment.

        Resolution order (highest to lowest priority):
        1. Keyword overrides (command-line flags)
        2. Provided config file path
        3. .liveserve.toml in current directory
        4. .liveserve.toml in home directory
        5. Environment variables
        6. Built-in defaults

        Raises:
            ConfigError: If the file is not valid TOML or holds invalid values
        """
        config_data: dict[str, Any] = {}

        for loc in get_config_locations(config_path):
            if loc.exists():
                try:
                    with open(loc, "rb") as f:
                        config_data = tomllib.load(f)
                except tomllib.TOMLDecodeError as e:
                    raise ConfigError(f"Invalid config file {loc}: {e}", path=str(loc)) from e
                break

        config_data = _normalize_keys(config_data)
        config_data.update({k: v for k, v in _normalize_keys(overrides).items() if v is not None})

        try:
            return cls(**config_data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e


# =============================================================================
# Canonical configuration
# =============================================================================


class TLSConfig(BaseModel):
    """Certificate material for the HTTPS listeners."""

    model_config = ConfigDict(frozen=True)

    cert_file: Path
    key_file: Path
    bundled: bool = False


class ProxyRule(BaseModel):
    """A resolved proxy rule: source prefix to target origin."""

    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    headers: dict[str, str] = Field(default_factory=dict)
    timeout: float = 30.0


class LiveReloadConfig(BaseModel):
    """Resolved livereload settings."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    port: int = LIVERELOAD_PORT
    debounce_ms: int = 100


class ServerConfig(BaseModel):
    """Canonical, immutable server configuration.

    Attributes:
        host: Bind address for every listener
        port: Main listener port
        tls: Certificate material, None for plain HTTP
        default_file: File served for directory requests
        directory_listing: Render listings when the default file is missing
        proxies: Proxy rules in declared order
        livereload: Reload channel settings
        open_browser: Open a browser tab after start
        open_path: Path opened in the browser
    """

    model_config = ConfigDict(frozen=True)

    host: str = "localhost"
    port: int = 8000
    tls: TLSConfig | None = None
    default_file: str = "index.html"
    directory_listing: bool = False
    proxies: tuple[ProxyRule, ...] = ()
    livereload: LiveReloadConfig = Field(default_factory=LiveReloadConfig)
    open_browser: bool = False
    open_path: str = "/"

    @property
    def scheme(self) -> str:
        return "https" if self.tls else "http"

    @property
    def url(self) -> str:
        """Base URL of the main listener."""
        return f"{self.scheme}://{self.host}:{self.port}"

    @property
    def reload_url(self) -> str:
        """Base URL of the livereload listener."""
        return f"{self.scheme}://{self.host}:{self.livereload.port}"


# =============================================================================
# Resolution
# =============================================================================


def _normalize_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    return {OPTION_ALIASES.get(key, key): value for key, value in data.items()}


def _check_port(port: int, option: str) -> int:
    if not 1 <= port <= 65535:
        raise ConfigError(f"{option} must be between 1 and 65535, got {port}", option=option)
    return port


def _resolve_tls(https: bool | HttpsOptions) -> TLSConfig | None:
    if https is False:
        return None
    if https is True:
        tls = TLSConfig(cert_file=DEV_CERT_FILE, key_file=DEV_KEY_FILE, bundled=True)
    else:
        tls = TLSConfig(
            cert_file=https.cert.expanduser().resolve(),
            key_file=https.key.expanduser().resolve(),
        )

    for label, path in (("certificate", tls.cert_file), ("key", tls.key_file)):
        try:
            path.read_bytes()
        except OSError as e:
            raise ConfigError(f"Cannot read TLS {label} {path}: {e.strerror}", path=str(path)) from e
    return tls


def _resolve_proxy(spec: ProxySpec) -> ProxyRule:
    if not spec.source.startswith("/"):
        raise ConfigError(
            f"Proxy source must start with '/', got {spec.source!r}",
            source=spec.source,
        )
    try:
        target = httpx.URL(spec.target)
    except httpx.InvalidURL as e:
        raise ConfigError(f"Invalid proxy target {spec.target!r}: {e}", target=spec.target) from e
    if target.scheme not in ("http", "https") or not target.host:
        raise ConfigError(
            f"Proxy target must be an absolute http(s) URL, got {spec.target!r}",
            target=spec.target,
        )
    return ProxyRule(
        source=spec.source,
        target=spec.target,
        headers=dict(spec.options.headers),
        timeout=spec.options.timeout,
    )


def resolve_config(options: ServerOptions | Mapping[str, Any] | None = None) -> ServerConfig:
    """Normalize user options into a canonical `ServerConfig`.

    Boolean shorthands expand into the same objects their long forms
    produce: `livereload=True` is `{"enable": True}` with default port.

    Args:
        options: Options object, plain mapping, or None for defaults

    Returns:
        Immutable server configuration

    Raises:
        ConfigError: On out-of-range ports, malformed proxy rules,
            unreadable TLS material or any other invalid value
    """
    if options is None:
        options = {}
    if not isinstance(options, ServerOptions):
        try:
            options = ServerOptions.model_validate(_normalize_keys(options))
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    listing = options.directory_listing
    if isinstance(listing, bool):
        listing = DirectoryListingOptions(enable=listing)

    livereload = options.livereload
    if isinstance(livereload, bool):
        livereload = LiveReloadOptions(enable=livereload)

    if livereload.debounce_ms < 0:
        raise ConfigError("livereload.debounce_ms must not be negative")

    open_path = "/"
    open_browser = bool(options.open)
    if isinstance(options.open, str):
        open_path = options.open if options.open.startswith("/") else f"/{options.open}"

    return ServerConfig(
        host=options.host,
        port=_check_port(options.port, "port"),
        tls=_resolve_tls(options.https),
        default_file=options.default_file,
        directory_listing=listing.enable,
        proxies=tuple(_resolve_proxy(spec) for spec in options.proxies),
        livereload=LiveReloadConfig(
            enabled=livereload.enable,
            port=_check_port(livereload.port, "livereload.port"),
            debounce_ms=livereload.debounce_ms,
        ),
        open_browser=open_browser,
        open_path=open_path,
    )


def get_default_config_toml() -> str:
    """Generate default .liveserve.toml content."""
    return f"""# liveserve configuration

port = 8000
host = "localhost"
default_file = "index.html"
directory_listing = false
open = false  # Or a path such as "/docs/"

# https = true  # Bundled development certificate
# [https]
# cert = "certs/dev-cert.pem"
# key = "certs/dev-key.pem"

[livereload]
enable = false
port = {LIVERELOAD_PORT}
debounce_ms = 100

# [[proxies]]
# source = "/api"
# target = "http://localhost:3000"
# options = {{ headers = {{ "X-Forwarded-Host" = "localhost:8000" }} }}
"""


__all__ = [
    "ServerOptions",
    "HttpsOptions",
    "DirectoryListingOptions",
    "LiveReloadOptions",
    "ProxyOptions",
    "ProxySpec",
    "ServerConfig",
    "TLSConfig",
    "ProxyRule",
    "LiveReloadConfig",
    "resolve_config",
    "get_default_config_toml",
]
