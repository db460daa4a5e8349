import os
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.staticfiles import StaticFiles
from fastapi.responses import FileResponse, JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from dotenv import load_dotenv

import completion
from completion import GenerationFailure
from playback import InvalidTransition
from speech import EdgeSpeechDevice, get_catalog
from stories import StoryNotFound, StoryStore
from view import StoryView

load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

GENERATE_ERROR = "Failed to generate story"
GENERATE_ALERT = "Failed to generate story. Please try again."

STATIC_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "static")


def create_view() -> StoryView:
    return StoryView(StoryStore(), EdgeSpeechDevice(), get_catalog())


view = create_view()


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await view.catalog.load()
    except Exception as e:
        logger.error(f"Could not load voices: {e}")
    yield


app = FastAPI(title="Story Speaker", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class GenerateRequest(BaseModel):
    prompt: str

class RenameRequest(BaseModel):
    title: str

class VoiceRequest(BaseModel):
    name: str

class RateRequest(BaseModel):
    rate: Optional[float] = None
    delta: Optional[float] = None

class SpeechEventRequest(BaseModel):
    utterance_id: int
    type: str
    char_index: int = 0


@app.get("/")
async def root():
    return FileResponse(os.path.join(STATIC_DIR, "index.html"))


@app.post("/api/generate")
async def generate(request: GenerateRequest):
    """Generate story text for a prompt."""
    try:
        story = await completion.generate_story(request.prompt)
    except GenerationFailure as e:
        logger.error(f"Error generating story: {e}")
        return JSONResponse({"error": GENERATE_ERROR}, status_code=500)
    return {"story": story}


@app.get("/api/state")
async def get_state():
    return view.render()


@app.post("/api/stories")
async def create_story(request: GenerateRequest):
    """Generate, illustrate and select a new story."""
    if not request.prompt.strip():
        raise HTTPException(status_code=400, detail="Prompt is empty")
    if view.is_generating:
        raise HTTPException(status_code=409, detail="A story is already being generated")

    try:
        await view.generate(request.prompt)
    except GenerationFailure as e:
        logger.error(f"Error: {e}")
        return JSONResponse({"error": GENERATE_ALERT}, status_code=500)
    return view.render()


def _story_action(action, story_id: str):
    try:
        action(story_id)
    except StoryNotFound:
        raise HTTPException(status_code=404, detail="Story not found")
    return view.render()


@app.post("/api/stories/{story_id}/select")
async def select_story(story_id: str):
    return _story_action(view.select, story_id)


@app.post("/api/stories/{story_id}/edit")
async def edit_story(story_id: str):
    return _story_action(view.start_editing, story_id)


@app.patch("/api/stories/{story_id}")
async def rename_story(story_id: str, data: RenameRequest):
    """Commit a title edit."""
    if story_id not in view.store:
        raise HTTPException(status_code=404, detail="Story not found")
    if view.editing_id != story_id:
        view.start_editing(story_id)
    view.edit_title(data.title)
    view.commit_edit()
    return view.render()


@app.post("/api/stories/{story_id}/delete")
async def request_delete(story_id: str):
    return _story_action(view.request_delete, story_id)


@app.post("/api/delete/confirm")
async def confirm_delete():
    view.confirm_delete()
    return view.render()


@app.post("/api/delete/cancel")
async def cancel_delete():
    view.cancel_delete()
    return view.render()


@app.post("/api/theme/toggle")
async def toggle_theme():
    view.toggle_theme()
    return view.render()


@app.get("/api/voices")
async def list_voices():
    """List the English voices available for narration."""
    catalog = view.catalog
    return {
        "ready": catalog.ready,
        "selected": catalog.selected.name if catalog.selected else None,
        "voices": [
            {"name": v.name, "gender": v.gender, "label": v.label}
            for v in catalog.voices
        ]
    }


@app.post("/api/speech/voice")
async def select_voice(request: VoiceRequest):
    if not view.select_voice(request.name):
        raise HTTPException(status_code=404, detail="Voice not found")
    return view.render()


def _speech_action(action, *args):
    try:
        action(*args)
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return view.render()


@app.post("/api/speech/toggle")
async def toggle_speech():
    return _speech_action(view.toggle_speech)


@app.post("/api/speech/stop")
async def stop_speech():
    return _speech_action(view.stop_speech)


@app.post("/api/speech/paragraphs/{index}")
async def play_paragraph(index: int):
    if view.selected is None:
        raise HTTPException(status_code=404, detail="No story selected")
    try:
        return _speech_action(view.play_paragraph, index)
    except IndexError:
        raise HTTPException(status_code=404, detail="Paragraph not found")


@app.post("/api/speech/rate")
async def set_rate(request: RateRequest):
    if request.rate is not None:
        view.set_rate(request.rate)
    elif request.delta is not None:
        view.change_rate(request.delta)
    else:
        raise HTTPException(status_code=400, detail="Provide a rate or a delta")
    return view.render()


@app.post("/api/speech/events")
async def speech_event(request: SpeechEventRequest):
    """Receive playback progress reported by the page's audio element."""
    try:
        delivered = view.speech.device.deliver(request.utterance_id, request.type, request.char_index)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    state = view.render()
    state["delivered"] = delivered
    return state


async def _rendered_utterance(utterance_id: int):
    device = view.speech.device
    if not isinstance(device, EdgeSpeechDevice):
        return None
    return await device.rendered(utterance_id)


@app.get("/api/speech/utterance")
async def current_utterance():
    """Describe the active utterance once its audio has been rendered."""
    utterance = view.speech.utterance
    if utterance is None:
        raise HTTPException(status_code=404, detail="Nothing is being spoken")

    rendered = await _rendered_utterance(utterance.id)
    return {
        "id": utterance.id,
        "text": utterance.text,
        "rate": utterance.rate,
        "paused": view.speech.device.paused,
        "ready": rendered is not None,
        "boundaries": [
            {"time": b.time, "char_index": b.char_index}
            for b in (rendered.boundaries if rendered else [])
        ]
    }


@app.get("/api/speech/audio/{utterance_id}")
async def utterance_audio(utterance_id: int):
    rendered = await _rendered_utterance(utterance_id)
    if rendered is None:
        raise HTTPException(status_code=404, detail="Audio not available")
    return Response(content=rendered.audio, media_type="audio/mpeg")


# Mount static files (must be after API routes)
app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=7501)
