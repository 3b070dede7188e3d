"""Feed handling.

Provides functionality for:
- Reading the upstream webcast activity feed
- Loading, updating and republishing the podcast feed
"""

from .source_reader import SourceFeedReader, SourceItem
from .output_feed import Episode, OutputFeed, OutputFeedStore, is_new

__all__ = [
    "SourceFeedReader",
    "SourceItem",
    "Episode",
    "OutputFeed",
    "OutputFeedStore",
    "is_new",
]
