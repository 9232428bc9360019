"""
Entry point for running mp4mobile as a module: python -m mp4mobile

    python -m mp4mobile clip.mkv
    python -m mp4mobile --help
"""

import sys

from mp4mobile.cli import main

if __name__ == "__main__":
    sys.exit(main())
