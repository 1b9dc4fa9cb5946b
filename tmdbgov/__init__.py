"""tmdbgov: a rate-limit governor for outbound TMDb API requests."""

__version__ = "0.1.0"
