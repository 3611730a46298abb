"""Run the packclone command line with ``python -m packclone``."""

from . import cli

if __name__ == "__main__":
    cli._main()
