"""
Entry point for running autonomy_governor as a module.

Usage:
    python -m autonomy_governor status acme

This is equivalent to:
    python -m autonomy_governor.cli.governor_cli status acme
"""

from autonomy_governor.cli.governor_cli import main

if __name__ == "__main__":
    main()
