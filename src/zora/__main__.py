"""Allow running zora as ``python -m zora``."""

from zora.cli import main

if __name__ == "__main__":
    main()
