"""cuehall: table reservation and game-session service."""

__version__ = "1.0.0"
