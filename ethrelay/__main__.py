"""Entry point for ``python -m ethrelay``."""

from ethrelay.cli.main import main

if __name__ == "__main__":
    main()
