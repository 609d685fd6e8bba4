"""
Folder grouping of TableDB tables.
"""

from .hierarchy import Folder, FolderHierarchy, FolderNode

__all__ = ["Folder", "FolderHierarchy", "FolderNode"]
