"""Main entry point when executing tmdbgov as a package.

This allows running the package using python -m tmdbgov.
"""

from tmdbgov.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
