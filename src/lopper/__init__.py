"""Obsolete git branch cleanup.

Features:
- Find branches merged into a reference branch
- Find unmerged branches whose changes the reference already has
- Flag branches with no commits within an age threshold
- Delete selected branches locally and on a remote in one batch each
"""

__version__ = "0.1.0"
