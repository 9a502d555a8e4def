"""Entry point for the Kiln CLI when run as ``python -m kiln``."""

from .cli import main

if __name__ == "__main__":  # pragma: no cover
    main()
