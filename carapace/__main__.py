"""Allow running as ``python -m carapace``."""

from carapace.cli.commands import app

if __name__ == "__main__":
    app()
