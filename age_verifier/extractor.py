"""
Handle extraction from page content.

Parses HTML or plain-text snapshots with BeautifulSoup and finds Reddit user
handles in old-Reddit author anchors, profile links and u/ mentions in text.
"""

import re
import logging
from typing import Iterator, Iterable, FrozenSet, Optional

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from age_verifier.models import normalize_handle


NAME = r'[A-Za-z0-9_-]{3,20}'

# Profile links: reddit.com/user/name, /user/name/, /u/name
PROFILE_HREF_PATTERN = re.compile(r'/u(?:ser)?/(' + NAME + r')(?:[/?#]|$)', re.IGNORECASE)

# Mentions in text: u/name, /u/name
MENTION_PATTERN = re.compile(
    r'(?<![A-Za-z0-9_])u(?:ser)?/(' + NAME + r')(?![A-Za-z0-9_-])',
    re.IGNORECASE
)

SKIPPED_TAGS = ('script', 'style', 'noscript', 'template')


def _anchor_handle(anchor: Tag) -> Optional[str]:
    """Handle named by an author anchor or profile link, if any."""
    if 'author' in (anchor.get('class') or ()):
        return anchor.get_text(strip=True)

    match = PROFILE_HREF_PATTERN.search(anchor.get('href') or '')
    return match.group(1) if match else None


def _scan(snapshot: str) -> Iterator[str]:
    """Yield raw handle candidates in document order."""
    soup = BeautifulSoup(snapshot, 'html.parser')

    for element in soup.descendants:
        if isinstance(element, Tag):
            if element.name == 'a':
                handle = _anchor_handle(element)
                if handle:
                    yield handle
        elif isinstance(element, NavigableString) and not isinstance(element, Comment):
            if element.parent is not None and element.parent.name in SKIPPED_TAGS:
                continue
            for match in MENTION_PATTERN.finditer(element):
                yield match.group(1)


class Extraction:
    """
    Handles found in one content snapshot.

    Iterating scans the snapshot lazily; every iteration is a fresh pass,
    deduplicated case-insensitively in order of first appearance.
    """

    def __init__(self, snapshot: str, ignored: FrozenSet[str] = frozenset()):
        self.snapshot = snapshot
        self.ignored = ignored

    def __iter__(self) -> Iterator[str]:
        if not self.snapshot:
            return

        seen = set(self.ignored)
        for candidate in _scan(self.snapshot):
            try:
                handle = normalize_handle(candidate)
            except ValueError:
                continue
            if handle in seen:
                continue
            seen.add(handle)
            yield handle

    def __bool__(self) -> bool:
        return next(iter(self), None) is not None


class HandleExtractor:
    """Produces Extractions from content snapshots."""

    def __init__(self, ignored: Iterable[str] = ('AutoModerator',)):
        """
        Args:
            ignored: Handles that are never annotated
        """
        self.ignored = frozenset(h.lower() for h in ignored)

    def extract(self, snapshot) -> Extraction:
        """
        Extract handles from a snapshot.

        Never raises: anything that is not text yields an empty extraction.

        Args:
            snapshot: HTML or plain text (bytes are decoded as UTF-8)

        Returns:
            Restartable iterable of normalized handles
        """
        if isinstance(snapshot, bytes):
            snapshot = snapshot.decode('utf-8', errors='replace')
        elif not isinstance(snapshot, str):
            logging.debug(f"Ignoring non-text snapshot of type {type(snapshot).__name__}")
            snapshot = ''

        return Extraction(snapshot, self.ignored)
