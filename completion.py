import httpx
import os
import logging
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

GROQ_API_KEY = os.getenv("GROQ_API_KEY")
GROQ_URL = "https://api.groq.com/openai/v1/chat/completions"
STORY_MODEL = "llama-3.1-70b-versatile"
TEMPERATURE = 0.7
MAX_TOKENS = 1000

SYSTEM_PROMPT = "You are a creative story writer. Generate engaging, family-friendly stories based on the given prompt."


class GenerationFailure(Exception):
    """Raised when the completion endpoint cannot produce a story."""


# Reusable client for connection pooling
_client = None

async def get_client():
    global _client
    if _client is None:
        _client = httpx.AsyncClient(timeout=60.0)
    return _client


def build_messages(prompt: str) -> list:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": prompt}
    ]


async def generate_story(prompt: str) -> str:
    """Generate a story for the prompt.

    Returns the first completion's text, or an empty string when the
    response does not have the expected shape. Any transport error or
    non-2xx status raises GenerationFailure.
    """
    if not GROQ_API_KEY:
        logger.error("No GROQ_API_KEY set, cannot generate stories")
        raise GenerationFailure("Completion credential is not configured")

    logger.info(f"=== GENERATING STORY === Prompt: {prompt[:80]}")

    client = await get_client()
    try:
        response = await client.post(
            GROQ_URL,
            headers={
                "Authorization": f"Bearer {GROQ_API_KEY}",
                "Content-Type": "application/json"
            },
            json={
                "model": STORY_MODEL,
                "messages": build_messages(prompt),
                "temperature": TEMPERATURE,
                "max_tokens": MAX_TOKENS
            }
        )
    except httpx.HTTPError as e:
        logger.error(f"Story generation request failed: {e}")
        raise GenerationFailure(str(e)) from e

    if not response.is_success:
        logger.error(f"Story generation failed: {response.status_code} - {response.text[:200]}")
        raise GenerationFailure(f"Completion endpoint returned {response.status_code}")

    try:
        data = response.json()
    except ValueError as e:
        logger.error(f"Story generation returned invalid JSON: {e}")
        raise GenerationFailure("Completion endpoint returned invalid JSON") from e

    try:
        story = data["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError):
        logger.warning("Unexpected completion response shape, returning empty story")
        return ""

    logger.info(f"=== STORY GENERATED === {len(story)} characters")
    return story
