# Database models

from .feed_entry import FeedEntry

__all__ = [
    "FeedEntry",
]
