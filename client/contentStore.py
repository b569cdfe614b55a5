import logging
from typing import Dict, Iterable, List, Optional

from feed.contentClassifier import get_content_author_id
from feed.contentSources import ContentQuery
from feed.timeUtils import parse_timestamp
from feed.types import ContentType, CursorPosition


class InMemoryContentStore:
    """
    Document store for one content type, kept in memory

    Documents are plain dicts with at least '_id' and 'createdAt'. Serves the
    find_recent / count / find_by_id contract the content sources rely on.
    """

    def __init__(self, content_type: ContentType, documents: Optional[Iterable[Dict]] = None):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.content_type = ContentType(content_type)
        self.contents: Dict[str, Dict] = {}
        self.positions: Dict[str, CursorPosition] = {}

        for document in documents or []:
            self.add_content(document)

    def add_content(self, document: Dict) -> bool:
        content_id = document.get('_id')
        created_at = parse_timestamp(document.get('createdAt'))
        if content_id is None or created_at is None:
            self.logger.warning(f"Rejected {self.content_type.value} document without id or createdAt: {content_id!r}")
            return False

        content_id = str(content_id)
        self.contents[content_id] = document
        self.positions[content_id] = CursorPosition(created_at, self.content_type, content_id)
        return True

    def remove_content(self, content_id: str) -> bool:
        self.positions.pop(content_id, None)
        return self.contents.pop(content_id, None) is not None

    def _matches(self, content_id: str, query: ContentQuery) -> bool:
        document = self.contents[content_id]
        position = self.positions[content_id]

        if query.before is not None and not position.is_beyond(query.before):
            return False
        if query.after is not None and not query.after.is_beyond(position):
            return False

        if query.author_ids is not None or query.exclude_author_ids is not None:
            author_id = get_content_author_id(document)
            if query.author_ids is not None and author_id not in query.author_ids:
                return False
            if query.exclude_author_ids is not None and author_id in query.exclude_author_ids:
                return False

        status = document.get('status')
        if query.statuses is not None and status not in query.statuses:
            return False
        if status in query.excluded_statuses:
            return False

        if query.active_at is not None:
            expires_at = parse_timestamp(document.get('expiresAt'))
            if expires_at is not None and expires_at <= query.active_at:
                return False

        return True

    def _sorted_matches(self, query: ContentQuery) -> List[str]:
        matching = [content_id for content_id in self.contents if self._matches(content_id, query)]
        matching.sort(key=lambda content_id: self.positions[content_id].sort_key(), reverse=True)
        return matching

    async def find_recent(self, query: ContentQuery, limit: int) -> List[Dict]:
        """Newest matching documents first, at most limit of them"""
        return [self.contents[content_id] for content_id in self._sorted_matches(query)[:limit]]

    async def count(self, query: ContentQuery) -> int:
        return sum(1 for content_id in self.contents if self._matches(content_id, query))

    async def find_by_id(self, content_id: str) -> Optional[Dict]:
        return self.contents.get(content_id)
