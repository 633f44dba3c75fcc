"""WChic lead intake, qualification and Podio synchronization service."""

__version__ = "1.0.0"
