"""PushFeed: push fan-out and live in-app notification feed."""

__version__ = "1.0.0"
