"""Entry point for running the filter as a module.

Usage:
    python -m mailfilter run
    python -m mailfilter --help
"""

from mailfilter.cli import main

if __name__ == "__main__":
    main()
