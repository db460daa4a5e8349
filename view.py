"""View model for the story page: rendering plus dispatch of user actions."""
import logging
from typing import Optional

import completion
import images
from playback import PlaybackState, SpeechController, split_paragraphs
from speech import SpeechDevice, VoiceCatalog
from stories import Story, StoryNotFound, StoryStore, title_from_prompt

logger = logging.getLogger(__name__)

ENTER = "Enter"
RATE_STEP = 0.1

SPEECH_BUTTON_TITLES = {
    PlaybackState.STOPPED: "Start Reading",
    PlaybackState.PLAYING: "Pause",
    PlaybackState.PAUSED: "Resume",
}


class StoryView:
    def __init__(self, store: StoryStore, device: SpeechDevice, catalog: VoiceCatalog):
        self.store = store
        self.catalog = catalog
        self.speech = SpeechController(device, catalog)
        self.selected_id: Optional[str] = None
        self.editing_id: Optional[str] = None
        self.edit_draft = ""
        self.delete_candidate: Optional[str] = None
        self.is_dark_theme = True
        self.is_generating = False

    @property
    def selected(self) -> Optional[Story]:
        if self.selected_id is None:
            return None
        return self.store.get(self.selected_id)

    def _require(self, story_id: str) -> Story:
        story = self.store.get(story_id)
        if story is None:
            raise StoryNotFound(story_id)
        return story

    def can_generate(self, prompt: str) -> bool:
        return bool(prompt.strip()) and not self.is_generating

    async def generate(self, prompt: str) -> Optional[Story]:
        """Generate, illustrate, store and select a new story.

        Returns None without doing anything when the prompt is blank or a
        generation is already running. GenerationFailure propagates and
        leaves the store untouched.
        """
        if not self.can_generate(prompt):
            return None

        self.is_generating = True
        try:
            content = await completion.generate_story(prompt)
            image = await images.find_image(prompt)
            story = self.store.create(title_from_prompt(prompt), content, image)
            self.select(story.id)
            return story
        finally:
            self.is_generating = False

    async def prompt_key(self, key: str, prompt: str) -> Optional[Story]:
        if key != ENTER:
            return None
        return await self.generate(prompt)

    def select(self, story_id: str):
        self._require(story_id)
        if story_id != self.selected_id:
            self.speech.selection_changed()
        self.selected_id = story_id

    def start_editing(self, story_id: str):
        story = self._require(story_id)
        if self.editing_id is not None and self.editing_id != story_id:
            # Leaving one title for another blurs it, which commits the draft
            self.commit_edit()
        self.editing_id = story_id
        self.edit_draft = story.title

    def edit_title(self, text: str):
        self.edit_draft = text

    def commit_edit(self) -> bool:
        if self.editing_id is None:
            return False
        story_id, self.editing_id = self.editing_id, None
        if self.store.get(story_id) is None:
            return False
        return self.store.rename(story_id, self.edit_draft)

    def title_key(self, key: str) -> bool:
        if key != ENTER:
            return False
        return self.commit_edit()

    def blur_title(self) -> bool:
        return self.commit_edit()

    def request_delete(self, story_id: str):
        self._require(story_id)
        self.delete_candidate = story_id

    def cancel_delete(self):
        self.delete_candidate = None

    def confirm_delete(self) -> Optional[Story]:
        story_id, self.delete_candidate = self.delete_candidate, None
        if story_id is None:
            return None
        story = self.store.delete(story_id)
        if story_id == self.selected_id:
            self.selected_id = None
            self.speech.stop()
        if story_id == self.editing_id:
            self.editing_id = None
        return story

    def toggle_theme(self):
        self.is_dark_theme = not self.is_dark_theme

    # Speech dispatch

    def toggle_speech(self) -> bool:
        story = self.selected
        if story is None:
            return False
        return self.speech.toggle(story.content)

    def stop_speech(self):
        self.speech.stop()

    def play_paragraph(self, index: int) -> bool:
        story = self.selected
        if story is None:
            return False
        return self.speech.play_paragraph(story.content, index)

    def set_rate(self, rate: float) -> float:
        return self.speech.set_rate(rate)

    def change_rate(self, delta: float) -> float:
        return self.speech.set_rate(round(self.speech.rate + delta, 2))

    def select_voice(self, name: str) -> bool:
        return self.catalog.select(name) is not None

    # Rendering

    def _render_story_item(self, story: Story) -> dict:
        return {
            "id": story.id,
            "title": story.title,
            "created": story.created_at.date().isoformat(),
            "selected": story.id == self.selected_id,
            "editing": story.id == self.editing_id,
        }

    def _render_selected(self) -> Optional[dict]:
        story = self.selected
        if story is None:
            return None

        speaking = self.speech.active
        paragraphs = [
            {"index": i, "text": text, "active": speaking and i == self.speech.cursor}
            for i, text in enumerate(split_paragraphs(story.content))
        ]
        image = None
        if story.image_url:
            image = {"url": story.image_url, "alt": story.image_alt or "Story illustration"}

        return {
            "id": story.id,
            "title": story.title,
            "image": image,
            "paragraphs": paragraphs,
        }

    def render(self) -> dict:
        speech = self.speech
        selected_voice = self.catalog.selected
        return {
            "theme": "dark" if self.is_dark_theme else "light",
            "is_generating": self.is_generating,
            "stories": [self._render_story_item(story) for story in self.store],
            "selected": self._render_selected(),
            "editing": {"id": self.editing_id, "draft": self.edit_draft} if self.editing_id else None,
            "delete_candidate": self.delete_candidate,
            "speech": {
                "state": speech.state.value,
                "cursor": speech.cursor,
                "rate": speech.rate,
                "rate_label": f"{speech.rate:.1f}x",
                "button_title": SPEECH_BUTTON_TITLES[speech.state],
                "utterance_id": speech.utterance.id if speech.utterance else None,
            },
            "voices": {
                "ready": self.catalog.ready,
                "selected": selected_voice.name if selected_voice else None,
                "options": [
                    {"name": voice.name, "gender": voice.gender, "label": voice.label}
                    for voice in self.catalog.voices
                ],
            },
        }
