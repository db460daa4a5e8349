"""Speech playback state machine and controller."""
import logging
from enum import Enum
from functools import partial
from typing import Dict, List, Optional, Tuple

from speech import SpeechDevice, SpeechEvent, Utterance, VoiceCatalog

logger = logging.getLogger(__name__)

MIN_RATE = 0.5
MAX_RATE = 2.0
NO_PARAGRAPH = -1


class PlaybackState(Enum):
    STOPPED = "stopped"
    PLAYING = "playing"
    PAUSED = "paused"


class Trigger(Enum):
    START = "start"
    START_PARAGRAPH = "start_paragraph"
    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"
    END = "end"
    ERROR = "error"
    SELECTION_CHANGED = "selection_changed"


STOPPED = PlaybackState.STOPPED
PLAYING = PlaybackState.PLAYING
PAUSED = PlaybackState.PAUSED

TRANSITIONS: Dict[Tuple[PlaybackState, Trigger], PlaybackState] = {
    (STOPPED, Trigger.START): PLAYING,
    (STOPPED, Trigger.START_PARAGRAPH): PLAYING,
    (PLAYING, Trigger.PAUSE): PAUSED,
    (PAUSED, Trigger.RESUME): PLAYING,
    (STOPPED, Trigger.STOP): STOPPED,
    (PLAYING, Trigger.STOP): STOPPED,
    (PAUSED, Trigger.STOP): STOPPED,
    (PLAYING, Trigger.END): STOPPED,
    (PAUSED, Trigger.END): STOPPED,
    (PLAYING, Trigger.ERROR): STOPPED,
    (PAUSED, Trigger.ERROR): STOPPED,
    (STOPPED, Trigger.SELECTION_CHANGED): STOPPED,
    (PLAYING, Trigger.SELECTION_CHANGED): STOPPED,
    (PAUSED, Trigger.SELECTION_CHANGED): STOPPED,
}


class InvalidTransition(Exception):
    def __init__(self, state: PlaybackState, trigger: Trigger):
        super().__init__(f"Cannot {trigger.value} while {state.value}")
        self.state = state
        self.trigger = trigger


def next_state(state: PlaybackState, trigger: Trigger) -> PlaybackState:
    try:
        return TRANSITIONS[(state, trigger)]
    except KeyError:
        raise InvalidTransition(state, trigger) from None


def split_paragraphs(content: str) -> List[str]:
    return [p for p in content.split("\n") if p.strip()]


def clamp_rate(rate: float) -> float:
    return max(MIN_RATE, min(MAX_RATE, rate))


class ParagraphTracker:
    """Map sentence-boundary offsets in the full text to a paragraph index.

    Keeps a running character count across paragraphs, each counted as its
    length plus one separator. Offsets are assumed to only move forward.
    Approximate: blank lines dropped by the split are not counted.
    """

    def __init__(self, paragraphs: List[str]):
        self._lengths = [len(p) for p in paragraphs]
        self._char_count = 0
        self._index = 0

    def advance(self, char_index: int) -> int:
        last = len(self._lengths) - 1
        while self._index < last and self._char_count + self._lengths[self._index] + 1 <= char_index:
            self._char_count += self._lengths[self._index] + 1
            self._index += 1
        return self._index


class SpeechController:
    """Drives the speech device through the playback state machine.

    Tracks the playback state and the paragraph cursor (-1 when nothing is
    being spoken). Device events for utterances other than the active one
    are ignored.
    """

    def __init__(self, device: SpeechDevice, catalog: VoiceCatalog):
        self.device = device
        self.catalog = catalog
        self.state = STOPPED
        self.cursor = NO_PARAGRAPH
        self.rate = 1.0
        self._utterance: Optional[Utterance] = None
        # Paragraphs of the whole story being read, None for single paragraphs
        self._paragraphs: Optional[List[str]] = None

    @property
    def utterance(self) -> Optional[Utterance]:
        return self._utterance

    @property
    def active(self) -> bool:
        return self.state is not STOPPED

    def _transition(self, trigger: Trigger):
        new_state = next_state(self.state, trigger)
        if new_state is not self.state:
            logger.info(f"Speech {self.state.value} -> {new_state.value} ({trigger.value})")
        self.state = new_state

    def _reset(self):
        self.device.cancel()
        self.cursor = NO_PARAGRAPH
        self._utterance = None
        self._paragraphs = None

    def _handlers(self, tracker: Optional[ParagraphTracker] = None) -> dict:
        handlers = {
            "end": self._on_end,
            "error": self._on_error,
            "pause": self._on_pause,
            "resume": self._on_resume,
        }
        if tracker is not None:
            handlers["boundary"] = partial(self._on_boundary, tracker)
        return handlers

    def _speak(self, text: str, handlers: dict):
        utterance = Utterance(text, self.catalog.selected, rate=self.rate, handlers=handlers)
        self._utterance = utterance
        self.device.speak(utterance)

    def start(self, content: str) -> bool:
        """Speak a whole story from the top."""
        paragraphs = split_paragraphs(content)
        if self.catalog.selected is None or not paragraphs:
            logger.warning("Cannot start speech without a voice and some text")
            return False

        self._transition(Trigger.START)
        self.device.cancel()
        self.cursor = 0
        self._paragraphs = paragraphs
        self._speak(content, self._handlers(ParagraphTracker(paragraphs)))
        return True

    def play_paragraph(self, content: str, index: int) -> bool:
        """Speak a single paragraph, stopping whatever is playing first."""
        paragraphs = split_paragraphs(content)
        if not 0 <= index < len(paragraphs):
            raise IndexError(f"No paragraph {index}")
        if self.catalog.selected is None:
            logger.warning("Cannot play a paragraph without a voice")
            return False

        if self.active:
            self.stop()
        self._transition(Trigger.START_PARAGRAPH)
        self.device.cancel()
        self.cursor = index
        self._paragraphs = None
        self._speak(paragraphs[index], self._handlers())
        return True

    def pause(self):
        self._transition(Trigger.PAUSE)
        self.device.pause()

    def resume(self):
        self._transition(Trigger.RESUME)
        self.device.resume()

    def toggle(self, content: str) -> bool:
        """Play, pause or resume depending on the current state."""
        if self.state is STOPPED:
            return self.start(content)
        if self.state is PLAYING:
            self.pause()
        else:
            self.resume()
        return True

    def stop(self):
        self._transition(Trigger.STOP)
        self._reset()

    def selection_changed(self):
        self._transition(Trigger.SELECTION_CHANGED)
        self._reset()

    def set_rate(self, rate: float) -> float:
        """Set the speaking rate, restarting the active utterance with it."""
        self.rate = clamp_rate(rate)

        current = self._utterance
        if current is None or not self.active:
            return self.rate

        was_paused = self.state is PAUSED
        if self._paragraphs is not None:
            # The new utterance reports offsets from the top of the story again
            handlers = self._handlers(ParagraphTracker(self._paragraphs))
            self.cursor = 0
        else:
            handlers = current.handlers
        replacement = Utterance(
            current.text,
            self.catalog.selected or current.voice,
            rate=self.rate,
            handlers=handlers
        )
        self.device.cancel()
        self._utterance = replacement
        self.device.speak(replacement)
        if was_paused:
            self.device.pause()
        return self.rate

    def _is_current(self, event: SpeechEvent) -> bool:
        return event.utterance is self._utterance and self.active

    def _on_boundary(self, tracker: ParagraphTracker, event: SpeechEvent):
        if self._is_current(event):
            self.cursor = tracker.advance(event.char_index)

    def _on_end(self, event: SpeechEvent):
        if not self._is_current(event):
            return
        self._transition(Trigger.END)
        self.cursor = NO_PARAGRAPH
        self._utterance = None
        self._paragraphs = None

    def _on_error(self, event: SpeechEvent):
        if not self._is_current(event):
            return
        self._transition(Trigger.ERROR)
        self._reset()

    def _on_pause(self, event: SpeechEvent):
        if self._is_current(event) and self.state is PLAYING:
            self._transition(Trigger.PAUSE)

    def _on_resume(self, event: SpeechEvent):
        if self._is_current(event) and self.state is PAUSED:
            self._transition(Trigger.RESUME)
