"""Game-review statistics and a replicated delivery-app server."""

__version__ = "0.1.0"