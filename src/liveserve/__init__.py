"""liveserve - development static file server with livereload, proxies and TLS."""

__version__ = "0.1.0"
