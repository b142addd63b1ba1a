"""
Entry point for running Browser Oracle as a module.

Enables execution via:
    python -m browser_oracle [command] [options]

This is equivalent to running the installed CLI:
    browser-oracle [command] [options]

Examples:
    python -m browser_oracle --help
    python -m browser_oracle ask "Summarize this" --file notes.md
    python -m browser_oracle detect
"""

from browser_oracle.cli import app

if __name__ == "__main__":
    app()
