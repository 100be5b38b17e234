"""ChatFlux: real-time chat message distribution and durability pipeline."""

__version__ = "1.0.0"
