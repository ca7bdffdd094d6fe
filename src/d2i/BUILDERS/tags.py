"""
Additional tags applied when an image is published.
"""
from typing import Iterable, List, Optional


class TagManager:
    """
    Collects additional tags in the order given. Duplicates are kept and tag
    syntax is left for the engine to judge.
    """
    def __init__(self, tags: Optional[Iterable[str]] = None):
        self._tags: List[str] = []
        for tag in tags or []:
            self.add(tag)

    def add(self, tag: str) -> "TagManager":
        self._tags.append(tag)
        return self

    @property
    def tags(self) -> List[str]:
        return list(self._tags)

    def __len__(self) -> int:
        return len(self._tags)
