"""gpt-pr: drive a chat model to patch a repository, one iteration at a time."""

from gptpr.identity import __codename__, __tagline__, __version__

__all__ = ["__codename__", "__tagline__", "__version__"]
