"""First-person product stories with optional narration."""

import json
import logging
from dataclasses import dataclass
from typing import Any

from dpp.client.backend import BackendClient
from dpp.client.cache import ResponseCache
from dpp.client.persona import normalize_language
from dpp.models.chat import ChatMessage

logger = logging.getLogger(__name__)

STORY_MODEL = "gpt-5-nano"
STORY_MAX_TOKENS = 500
STORY_TTS_MODEL = "tts-1"

STORYTELLER_PROMPT = (
    "You are a creative storyteller who brings clothing items to life "
    "through engaging first-person narratives."
)

STORY_INSTRUCTIONS = {
    "IT": "Scrivi in italiano un racconto in prima persona (massimo 200 parole)",
    "EN": "Write in English a first-person narrative (maximum 200 words)",
    "ES": "Escribe en español una narrativa en primera persona (máximo 200 palabras)",
    "FR": "Écris en français un récit à la première personne (maximum 200 mots)",
}

VOICE_BY_LANGUAGE = {
    "IT": "alloy",
    "EN": "nova",
    "ES": "shimmer",
    "FR": "alloy",
}


@dataclass
class NarratedStory:
    story: str
    audio: bytes


def story_cache_key(product_data: dict[str, Any], language: str) -> str:
    return (
        f"{product_data.get('batch_code')}_{product_data.get('item_code')}_"
        f"{product_data.get('productfamily_code')}_{language}"
    )


def audio_cache_key(text: str, language: str) -> str:
    return f"audio_{text[:50]}_{language}"


def create_story_prompt(product_data: dict[str, Any], language: str) -> str:
    """User prompt asking for a story told by the garment itself."""
    instruction = STORY_INSTRUCTIONS[normalize_language(language)]
    return (
        f"{instruction} che descrive questo capo di abbigliamento.\n"
        "Parla come se fossi il capo stesso, raccontando la tua storia, i materiali di cui sei fatto,\n"
        "le tue caratteristiche uniche e come puoi far sentire chi ti indossa.\n\n"
        "Dati del prodotto:\n"
        f"{json.dumps(product_data, indent=2, ensure_ascii=False)}\n\n"
        "Rendi il racconto emotivo, coinvolgente e personale. Non usare formattazioni markdown."
    )


class StoryService:
    """Generates product stories and narration through the bridge.

    Results are cached per product and language so repeated views do not
    hit the upstream again.
    """

    def __init__(
        self,
        client: BackendClient,
        story_cache: ResponseCache | None = None,
        audio_cache: ResponseCache | None = None,
    ) -> None:
        self.client = client
        self.story_cache = story_cache if story_cache is not None else ResponseCache()
        self.audio_cache = audio_cache if audio_cache is not None else ResponseCache(max_entries=32)

    async def generate_product_story(self, product_data: dict[str, Any], language: str) -> str:
        key = story_cache_key(product_data, language)
        cached = self.story_cache.get(key)
        if cached is not None:
            logger.debug(f"Story cache hit: {key}")
            return cached

        logger.info(f"Generating story for {key}")
        messages = [
            ChatMessage(role="system", content=STORYTELLER_PROMPT),
            ChatMessage(role="user", content=create_story_prompt(product_data, language)),
        ]
        story = await self.client.stream_chat(
            messages,
            model=STORY_MODEL,
            max_completion_tokens=STORY_MAX_TOKENS,
        )
        story = story.strip()

        self.story_cache.set(key, story)
        return story

    async def generate_speech(self, text: str, language: str) -> bytes:
        key = audio_cache_key(text, language)
        cached = self.audio_cache.get(key)
        if cached is not None:
            logger.debug("Audio cache hit")
            return cached

        voice = VOICE_BY_LANGUAGE.get(language.upper(), "alloy")
        audio = await self.client.synthesize_speech(
            text,
            voice=voice,
            model=STORY_TTS_MODEL,
            speed=1.0,
        )

        self.audio_cache.set(key, audio)
        return audio

    async def generate_story_with_audio(self, product_data: dict[str, Any], language: str) -> NarratedStory:
        """Story first, then narration of that story."""
        story = await self.generate_product_story(product_data, language)
        audio = await self.generate_speech(story, language)
        return NarratedStory(story=story, audio=audio)

    def clear_cache(self) -> None:
        self.story_cache.clear()
        self.audio_cache.clear()
        logger.info("Story cache cleared")
