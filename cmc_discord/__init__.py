"""CMC Discord interface: bridges Discord into the CMC command/event bus."""

__version__ = "0.4.0"
