"""cdxtrace — run a codex agent session and record it in the repository trace journal."""

__version__ = "0.1.0"
