import json

import httpx
import pytest

import completion
import images
from conftest import mock_client


@pytest.fixture
def groq(monkeypatch):
    monkeypatch.setattr(completion, "GROQ_API_KEY", "test-groq-key")

    def install(handler):
        monkeypatch.setattr(completion, "_client", mock_client(handler))

    return install


@pytest.fixture
def pexels(monkeypatch):
    monkeypatch.setattr(images, "PEXELS_API_KEY", "test-pexels-key")

    def install(handler):
        monkeypatch.setattr(images, "_client", mock_client(handler))

    return install


def completion_body(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


@pytest.mark.asyncio
async def test_generate_story_request_shape(groq):
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=completion_body("Once upon a time."))

    groq(handler)

    story = await completion.generate_story("A brave snail")

    assert story == "Once upon a time."
    assert seen["url"] == completion.GROQ_URL
    assert seen["auth"] == "Bearer test-groq-key"
    body = seen["body"]
    assert body["temperature"] == 0.7
    assert body["max_tokens"] == 1000
    assert body["messages"][0] == {"role": "system", "content": completion.SYSTEM_PROMPT}
    assert body["messages"][1] == {"role": "user", "content": "A brave snail"}


@pytest.mark.asyncio
async def test_generate_story_non_2xx_fails(groq):
    groq(lambda request: httpx.Response(503, text="overloaded"))

    with pytest.raises(completion.GenerationFailure):
        await completion.generate_story("Anything")


@pytest.mark.asyncio
async def test_generate_story_transport_error_fails(groq):
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    groq(handler)

    with pytest.raises(completion.GenerationFailure):
        await completion.generate_story("Anything")


@pytest.mark.asyncio
async def test_generate_story_unexpected_shape_returns_empty(groq):
    groq(lambda request: httpx.Response(200, json={"choices": []}))

    assert await completion.generate_story("Anything") == ""


@pytest.mark.asyncio
async def test_generate_story_without_credential(monkeypatch):
    monkeypatch.setattr(completion, "GROQ_API_KEY", None)

    with pytest.raises(completion.GenerationFailure):
        await completion.generate_story("Anything")


@pytest.mark.asyncio
async def test_find_image_returns_first_large_photo(pexels):
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"photos": [
            {"id": 1, "alt": "Mountain dragon", "src": {"large2x": "https://px/1-large2x.jpg", "large": "https://px/1.jpg"}},
        ]})

    pexels(handler)

    image = await images.find_image("dragon heights")

    assert image == images.StoryImage(url="https://px/1-large2x.jpg", alt="Mountain dragon")
    assert seen["params"] == {"query": "dragon heights", "per_page": "1"}
    assert seen["auth"] == "test-pexels-key"


@pytest.mark.asyncio
async def test_find_image_empty_results(pexels):
    pexels(lambda request: httpx.Response(200, json={"photos": []}))

    assert await images.find_image("nothing") is None


@pytest.mark.asyncio
async def test_find_image_swallows_errors(pexels):
    pexels(lambda request: httpx.Response(500, text="down"))

    assert await images.find_image("anything") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("photos", [{"first": 1}, 5, "photo", [None], [{"src": "flat"}]])
async def test_find_image_malformed_photos(pexels, photos):
    pexels(lambda request: httpx.Response(200, json={"photos": photos}))

    assert await images.find_image("dragon") is None


@pytest.mark.asyncio
async def test_find_image_without_credential(monkeypatch):
    monkeypatch.setattr(images, "PEXELS_API_KEY", "")

    assert await images.find_image("anything") is None
