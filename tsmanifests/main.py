# tsmanifests/main.py
"""Main entry point for the tsmanifests CLI application."""

from tsmanifests.cli.interface import main_cli


def entrypoint():
    """Function to be called by the script defined in pyproject.toml."""
    main_cli(prog_name="tsmanifests")

if __name__ == '__main__':
    entrypoint()
