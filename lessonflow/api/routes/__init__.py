from . import review, sessions

__all__ = ["review", "sessions"]
