import uuid
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, List, Optional

from images import StoryImage

logger = logging.getLogger(__name__)

TITLE_LENGTH = 30


class StoryNotFound(KeyError):
    """Raised when a story id is not in the store."""


@dataclass
class Story:
    id: str
    title: str
    content: str
    created_at: datetime
    image_url: Optional[str] = None
    image_alt: Optional[str] = None


def title_from_prompt(prompt: str) -> str:
    """Derive a story title from the first characters of the prompt."""
    return prompt[:TITLE_LENGTH] + "..."


class StoryStore:
    """In-memory ordered list of stories. Nothing is persisted."""

    def __init__(self):
        self._stories: List[Story] = []

    def __len__(self) -> int:
        return len(self._stories)

    def __iter__(self) -> Iterator[Story]:
        return iter(list(self._stories))

    def __contains__(self, story_id: str) -> bool:
        return self.get(story_id) is not None

    def _new_id(self) -> str:
        while True:
            story_id = str(uuid.uuid4())[:8]
            if story_id not in self:
                return story_id

    def create(self, title: str, content: str, image: Optional[StoryImage] = None) -> Story:
        """Append a new story."""
        story = Story(
            id=self._new_id(),
            title=title,
            content=content,
            created_at=datetime.now(),
            image_url=image.url if image else None,
            image_alt=image.alt if image else None
        )
        self._stories.append(story)
        logger.info(f"Created story {story.id}: '{story.title}'")
        return story

    def get(self, story_id: str) -> Optional[Story]:
        for story in self._stories:
            if story.id == story_id:
                return story
        return None

    def list(self) -> List[Story]:
        """All stories in insertion order."""
        return list(self._stories)

    def rename(self, story_id: str, new_title: str) -> bool:
        """Rename a story. Blank titles leave the old title in place."""
        story = self.get(story_id)
        if story is None:
            raise StoryNotFound(story_id)

        title = new_title.strip()
        if not title:
            return False

        story.title = title
        return True

    def delete(self, story_id: str) -> Optional[Story]:
        """Remove a story and return it, or None if it was not present."""
        story = self.get(story_id)
        if story is None:
            return None
        self._stories.remove(story)
        logger.info(f"Deleted story {story_id}")
        return story
