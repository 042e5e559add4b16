"""In-memory connection pipes and listeners, and building blocks for serving static files."""

__version__ = "0.1.0"

__all__ = ["fscache", "fsopen", "fsutil", "inmemory_listener", "pipeconns"]