import logging
from typing import Dict, Iterable, Optional

from feed.types import AuthorProfile


class InMemoryAuthorDirectory:
    """Author profiles by user id, used for feed author snapshots and popularity"""

    def __init__(self, profiles: Optional[Iterable[AuthorProfile]] = None, follow_graph=None):
        """
        Args:
            profiles: Known author profiles
            follow_graph: Optional follow graph; when given, follower counts are
                computed from it instead of the stored profile value
        """
        self.logger = logging.getLogger(self.__class__.__name__)
        self.profiles: Dict[str, AuthorProfile] = {}
        self.follow_graph = follow_graph
        for profile in profiles or []:
            self.add_profile(profile)

    def add_profile(self, profile: AuthorProfile):
        self.profiles[profile.id] = profile

    async def get_authors(self, author_ids: Iterable[str]) -> Dict[str, AuthorProfile]:
        """
        Batch lookup of author profiles

        Returns:
            Mapping of author id to profile; unknown ids are left out
        """
        author_ids = list(author_ids)
        authors = {}
        for author_id in author_ids:
            profile = self.profiles.get(author_id)
            if profile is None:
                continue
            if self.follow_graph is not None:
                followers = await self.follow_graph.follower_count(author_id)
                profile = AuthorProfile(profile.id, profile.username, profile.profile_image, followers)
            authors[author_id] = profile

        self.logger.debug(f"Resolved {len(authors)} of {len(author_ids)} authors")
        return authors
