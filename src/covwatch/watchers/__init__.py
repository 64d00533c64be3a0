"""File system watchers."""

from covwatch.watchers.file_watcher import FileChangeMonitor, WatchError

__all__ = ["FileChangeMonitor", "WatchError"]
