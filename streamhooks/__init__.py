"""StreamHooks: Twitch webhook subscription service."""

__version__ = "0.1.0"
