from . import pages, settings, submissions

__all__ = [
    "pages",
    "settings",
    "submissions",
]
