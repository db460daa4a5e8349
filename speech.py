"""Speech-synthesis device and voice catalog.

The device renders one utterance at a time with Microsoft Edge neural voices
(edge-tts). Audio is played by the page's audio element, which reports
progress back as boundary/end/error events through `deliver()`.
"""
import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import edge_tts

logger = logging.getLogger(__name__)

ENGLISH_PREFIX = "en-"
DEFAULT_LANG = "en-US"
TICKS_PER_SECOND = 10_000_000

EVENT_TYPES = ("start", "boundary", "end", "error", "pause", "resume")


class SpeechDeviceFailure(Exception):
    """Raised when the device cannot render or play an utterance."""


def infer_gender(label: str) -> str:
    return "female" if "female" in label.lower() else "male"


@dataclass(frozen=True)
class Voice:
    name: str
    handle: str
    gender: str

    @property
    def label(self) -> str:
        return f"{self.name} ({self.gender})"


def voice_from_edge(entry: dict) -> Voice:
    short_name = entry["ShortName"]
    description = f"{entry.get('FriendlyName', short_name)} {entry.get('Gender', '')}"
    return Voice(name=short_name, handle=short_name, gender=infer_gender(description))


def english_voices(entries: List[dict]) -> List[Voice]:
    """Keep only English variants, in the order the device lists them."""
    return [
        voice_from_edge(entry)
        for entry in entries
        if entry.get("Locale", "").startswith(ENGLISH_PREFIX)
    ]


@dataclass
class SpeechEvent:
    type: str
    utterance: "Utterance"
    char_index: int = 0


_utterance_ids = itertools.count(1)


@dataclass
class Utterance:
    text: str
    voice: Optional[Voice]
    rate: float = 1.0
    pitch: float = 1.0
    volume: float = 1.0
    lang: str = DEFAULT_LANG
    handlers: Dict[str, Callable[[SpeechEvent], None]] = field(default_factory=dict)
    id: int = field(default_factory=lambda: next(_utterance_ids))

    def fire(self, event_type: str, char_index: int = 0):
        handler = self.handlers.get(event_type)
        if handler is not None:
            handler(SpeechEvent(type=event_type, utterance=self, char_index=char_index))


@dataclass
class Boundary:
    time: float
    char_index: int


@dataclass
class RenderedUtterance:
    audio: bytes
    boundaries: List[Boundary]


class SpeechDevice:
    """One active utterance at a time; speaking replaces the current one."""

    def __init__(self):
        self._current: Optional[Utterance] = None
        self._paused = False

    @property
    def current(self) -> Optional[Utterance]:
        return self._current

    @property
    def speaking(self) -> bool:
        return self._current is not None

    @property
    def paused(self) -> bool:
        return self._paused

    def speak(self, utterance: Utterance):
        if self._current is not None:
            self.cancel()
        self._current = utterance
        self._paused = False
        self._render(utterance)
        utterance.fire("start")

    def pause(self):
        if self._current is None or self._paused:
            return
        self._paused = True
        self._current.fire("pause")

    def resume(self):
        if self._current is None or not self._paused:
            return
        self._paused = False
        self._current.fire("resume")

    def cancel(self):
        utterance = self._current
        self._current = None
        self._paused = False
        if utterance is not None:
            self._discard(utterance)

    def deliver(self, utterance_id: int, event_type: str, char_index: int = 0) -> bool:
        """Deliver a playback event reported for an utterance.

        Events for anything but the active utterance are dropped and False
        is returned.
        """
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown speech event: {event_type}")

        utterance = self._current
        if utterance is None or utterance.id != utterance_id:
            logger.debug(f"Dropping stale '{event_type}' event for utterance {utterance_id}")
            return False

        if event_type == "pause":
            self.pause()
        elif event_type == "resume":
            self.resume()
        else:
            if event_type in ("end", "error"):
                self._current = None
                self._paused = False
                self._discard(utterance)
            utterance.fire(event_type, char_index)
        return True

    def _fail(self, utterance: Utterance, error: Exception):
        logger.error(f"Speech device error on utterance {utterance.id}: {error}")
        self._discard(utterance)
        if self._current is utterance:
            self._current = None
            self._paused = False
            utterance.fire("error")

    def _render(self, utterance: Utterance):
        pass

    def _discard(self, utterance: Utterance):
        pass


def edge_rate(rate: float) -> str:
    return f"{round((rate - 1.0) * 100):+d}%"


class EdgeSpeechDevice(SpeechDevice):
    """Renders utterances with Edge TTS in a background task."""

    def __init__(self):
        super().__init__()
        self._tasks: Dict[int, asyncio.Task] = {}
        self._rendered: Dict[int, RenderedUtterance] = {}

    def _render(self, utterance: Utterance):
        self._tasks[utterance.id] = asyncio.create_task(self._synthesize(utterance))

    def _discard(self, utterance: Utterance):
        task = self._tasks.pop(utterance.id, None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._rendered.pop(utterance.id, None)

    async def _synthesize(self, utterance: Utterance):
        if utterance.voice is None:
            self._fail(utterance, SpeechDeviceFailure("No voice selected"))
            return

        logger.info(f"=== TTS RENDER === Utterance {utterance.id}, voice {utterance.voice.handle}, "
                    f"rate {utterance.rate}, {len(utterance.text)} characters")

        audio = bytearray()
        boundaries: List[Boundary] = []
        search_from = 0
        try:
            communicate = edge_tts.Communicate(
                utterance.text,
                utterance.voice.handle,
                rate=edge_rate(utterance.rate),
                boundary="SentenceBoundary"
            )
            async for chunk in communicate.stream():
                if chunk["type"] == "audio":
                    audio += chunk["data"]
                elif chunk["type"] in ("SentenceBoundary", "WordBoundary"):
                    position = utterance.text.find(chunk.get("text", ""), search_from)
                    if position < 0:
                        continue
                    search_from = position + 1
                    boundaries.append(Boundary(
                        time=float(chunk.get("offset", 0)) / TICKS_PER_SECOND,
                        char_index=position
                    ))
        except Exception as e:
            self._fail(utterance, SpeechDeviceFailure(str(e)))
            return

        if self._current is utterance:
            self._rendered[utterance.id] = RenderedUtterance(bytes(audio), boundaries)
            logger.info(f"=== TTS COMPLETE === Utterance {utterance.id}, {len(audio)} bytes, "
                        f"{len(boundaries)} boundaries")

    async def rendered(self, utterance_id: int) -> Optional[RenderedUtterance]:
        """Wait for the utterance's audio, or None if it is gone or failed."""
        task = self._tasks.get(utterance_id)
        if task is not None and not task.done():
            await asyncio.wait({task})
        return self._rendered.get(utterance_id)


async def list_edge_voices() -> List[dict]:
    return await edge_tts.list_voices()


class VoiceCatalog:
    """Voices available on the device, loaded once.

    Subscribers registered before the catalog is ready are called exactly
    once when loading completes; later subscribers are called immediately.
    """

    def __init__(self, loader: Callable = list_edge_voices):
        self._loader = loader
        self._voices: List[Voice] = []
        self._ready = False
        self._subscribers: List[Callable[["VoiceCatalog"], None]] = []
        self.selected: Optional[Voice] = None

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def voices(self) -> List[Voice]:
        return list(self._voices)

    async def load(self):
        if self._ready:
            return
        entries = await self._loader()
        self._voices = english_voices(entries)
        self._ready = True
        if self.selected is None and self._voices:
            self.selected = self._voices[0]
        logger.info(f"Loaded {len(self._voices)} English voices")

        subscribers, self._subscribers = self._subscribers, []
        for callback in subscribers:
            callback(self)

    def subscribe(self, callback: Callable[["VoiceCatalog"], None]):
        if self._ready:
            callback(self)
        else:
            self._subscribers.append(callback)

    def get(self, name: str) -> Optional[Voice]:
        for voice in self._voices:
            if voice.name == name:
                return voice
        return None

    def select(self, name: str) -> Optional[Voice]:
        voice = self.get(name)
        if voice is not None:
            self.selected = voice
        return voice


_catalog = None

def get_catalog() -> VoiceCatalog:
    global _catalog
    if _catalog is None:
        _catalog = VoiceCatalog()
    return _catalog
