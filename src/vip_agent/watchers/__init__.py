"""Watcher implementations used by the vip agent."""

from .file import FileServiceWatcher  # noqa: F401

__all__ = ["FileServiceWatcher"]
