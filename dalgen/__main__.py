# File: dalgen/__main__.py
"""
dalgen - Module entry point.

Allows running the generator directly via::

    python -m dalgen psql --output ./models
"""

from __future__ import annotations


def main() -> None:
    """Delegate to the CLI main function."""
    from dalgen.cli import cli_main
    cli_main()


if __name__ == "__main__":
    main()
