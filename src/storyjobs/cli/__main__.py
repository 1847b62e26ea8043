"""CLI entry point for storyjobs.cli module.

Enables execution via: python -m storyjobs.cli COMMAND
"""

from storyjobs.cli.jobs import main

if __name__ == "__main__":
    main()
