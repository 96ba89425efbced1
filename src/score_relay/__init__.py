"""Score relay: polls live events for scores and publishes them to a message bus."""

__version__ = "0.1.0"
