import asyncio
from typing import List

import httpx
import pytest

from playback import SpeechController
from speech import SpeechDevice, Utterance, VoiceCatalog
from stories import StoryStore
from view import StoryView

# Fixtures shared by the test modules: a speech device that records what it
# was asked to do instead of rendering audio, and a voice catalog loaded from
# a fixed voice list.

VOICE_ENTRIES = [
    {"ShortName": "en-US-AriaNeural", "Gender": "Female", "Locale": "en-US",
     "FriendlyName": "Microsoft Aria Online (Natural) - English (United States)"},
    {"ShortName": "fr-FR-DeniseNeural", "Gender": "Female", "Locale": "fr-FR",
     "FriendlyName": "Microsoft Denise Online (Natural) - French (France)"},
    {"ShortName": "en-GB-RyanNeural", "Gender": "Male", "Locale": "en-GB",
     "FriendlyName": "Microsoft Ryan Online (Natural) - English (United Kingdom)"},
]

THREE_PARAGRAPHS = (
    "Ember the dragon lived on the tallest mountain.\n"
    "\n"
    "Every morning she looked down and trembled.\n"
    "\n"
    "One day a sparrow taught her that flying starts with a single hop."
)


class FakeSpeechDevice(SpeechDevice):
    """Records utterances instead of rendering them."""

    def __init__(self):
        super().__init__()
        self.spoken: List[Utterance] = []
        self.discarded: List[Utterance] = []
        self.pause_calls = 0

    def _render(self, utterance):
        self.spoken.append(utterance)

    def _discard(self, utterance):
        self.discarded.append(utterance)

    def pause(self):
        self.pause_calls += 1
        super().pause()


async def fake_voice_loader():
    return VOICE_ENTRIES


def run(coro):
    """Run a coroutine on a private loop, leaving the current loop alone."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@pytest.fixture
def catalog() -> VoiceCatalog:
    catalog = VoiceCatalog(loader=fake_voice_loader)
    run(catalog.load())
    return catalog


@pytest.fixture
def device() -> FakeSpeechDevice:
    return FakeSpeechDevice()


@pytest.fixture
def controller(device, catalog) -> SpeechController:
    return SpeechController(device, catalog)


@pytest.fixture
def store() -> StoryStore:
    return StoryStore()


@pytest.fixture
def view(store, device, catalog) -> StoryView:
    return StoryView(store, device, catalog)


@pytest.fixture
def stub_services(monkeypatch):
    """Replace the completion and image clients with canned async results."""
    import completion
    import images

    calls = {"prompts": [], "queries": []}
    result = {"story": THREE_PARAGRAPHS, "image": images.StoryImage(url="https://images.example/dragon.jpg", alt="A red dragon")}

    async def generate_story(prompt):
        calls["prompts"].append(prompt)
        story = result["story"]
        if isinstance(story, Exception):
            raise story
        return story

    async def find_image(query):
        calls["queries"].append(query)
        return result["image"]

    monkeypatch.setattr(completion, "generate_story", generate_story)
    monkeypatch.setattr(images, "find_image", find_image)
    calls["result"] = result
    return calls


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))
