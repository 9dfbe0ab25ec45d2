"""Session-oriented streaming chat gateway for command-line agents."""

__version__ = "0.1.0"
