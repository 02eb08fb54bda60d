"""
`python -m buildprep` entrypoint.

The installed console script `buildprep` calls the same `buildprep.cli:main`.
"""

from .cli import main


if __name__ == "__main__":
    raise SystemExit(main())
