"""
noticewatch: announcement watcher.

Fetches candidate announcements, filters and classifies them, drops the ones
already delivered, and pushes the rest to notification channels.
"""

__version__ = "0.1.0"
