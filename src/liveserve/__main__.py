"""Allow running as `python -m liveserve`."""

from liveserve.cli import main

main()
