"""Gemini-backed ClassifierPort implementation.

Every call goes through ``client.aio.models.generate_content``. Transport,
quota and configuration failures are raised as ClassifierUnavailable so the
core can degrade per signal; unparsable answers are normalized by
``classifier_payloads`` instead.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
from typing import Optional

import requests
from google import genai
from google.genai import types

from adapters import classifier_payloads as payloads
from core.errors import ClassifierUnavailable
from core.intents import keyword_intent
from core.models import CategorySimilarity, ImageSimilarity, IntentAnalysis, TextSimilarity
from core.taxonomy import COMPLAINT_TYPES, DEPARTMENTS, PRIORITIES

LOGGER = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"

INTENT_PROMPT = (
    "You are an intent analyzer for a municipal corporation's citizen helpline. "
    "Analyze the message and return ONLY a JSON object with these fields: "
    "intent (one of complaint, complaint_status, query, small_talk, location_sharing, greeting, other), "
    "context (what the user is talking about, max 50 chars), "
    "state (one of new_conversation, ongoing_complaint, information_seeking, casual_chat, urgent_request, "
    "status_inquiry), confidence (number between 0.1 and 1.0), language (ISO code or 'auto'). "
    "complaint: issues with municipal services such as water, roads, waste, street lights. "
    "complaint_status: the citizen wants to track or list complaints already filed. "
    "query: questions about services, office hours, procedures, fees."
)

TEXT_SIMILARITY_PROMPT = (
    "You are analyzing similarity between municipal complaints. Focus on: "
    "1. the core problem described (water, roads, waste, etc.); "
    "2. specific issue details (leak, pothole, overflow, etc.); "
    "3. severity or urgency indicators; "
    "4. infrastructure mentioned (pipes, street names, facilities). "
    "Different descriptions of the same problem should score HIGH similarity. "
    "Return ONLY a JSON object: "
    '{"score": 0.0-1.0, "reasoning": "brief explanation", "problem_match": boolean, '
    '"severity_match": boolean, "infrastructure_match": boolean}'
)

IMAGE_SIMILARITY_PROMPT = (
    "Compare these two images for municipal complaint similarity. Consider whether they show the same "
    "location and landmarks, the same type of problem, and the same infrastructure. "
    "Different photos of the same issue should score HIGH similarity. The first image belongs to the new "
    "complaint, the second to the existing one. Return ONLY a JSON object: "
    '{"score": 0.0-1.0, "reasoning": "brief explanation", "same_location": boolean, "same_problem": boolean}'
)

CATEGORY_PROMPT = (
    "Determine if these complaints are about the same TYPE of municipal issue "
    "(water supply, drainage, roads, street lighting, waste, sanitation, traffic, parks, tax, permits). "
    "Return ONLY a JSON object: "
    '{"score": 0.0-1.0, "same_type": boolean, "reasoning": "brief explanation"}'
)

DEPARTMENT_PROMPT = (
    "Categorize this municipal complaint into the most appropriate department. Departments: "
    + ", ".join(DEPARTMENTS)
    + ". Return ONLY the department name from the list."
)

PRIORITY_PROMPT = (
    "Assess the priority level of this municipal complaint. "
    "emergency: life-threatening, major safety hazards, complete service failure. "
    "high: significant impact on daily life, health risks. "
    "medium: standard civic issues, moderate inconvenience. "
    "low: minor issues, aesthetic concerns, suggestions. "
    "Return ONLY one word: " + ", ".join(PRIORITIES) + "."
)

CATEGORY_TYPE_PROMPT = (
    "Categorize this complaint into a specific type. Types: "
    + ", ".join(COMPLAINT_TYPES)
    + ". Return ONLY the complaint type from the list."
)

ETHICS_PROMPT = (
    "Rate the appropriateness of this message on a scale of 1-10. "
    "1-3: inappropriate, offensive, abusive, threatening. "
    "4-6: neutral, potentially problematic, rude. "
    "7-8: appropriate, respectful, constructive. "
    "9-10: very respectful, polite, constructive. "
    "Return ONLY a single number between 1 and 10."
)


class GeminiClassifier:
    """ClassifierPort over the Google Gen AI SDK."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        image_timeout_seconds: float = 10.0,
        client: Optional[genai.Client] = None,
    ) -> None:
        api_key = api_key or os.getenv("GEMINI_API_KEY")
        if client is None and api_key:
            client = genai.Client(api_key=api_key)
        self._client = client
        self._model = model
        self._image_timeout = image_timeout_seconds

    async def analyze_intent(self, text: str) -> IntentAnalysis:
        raw = await self._generate([INTENT_PROMPT, f'Message: "{text}"'], json_output=True)
        try:
            return payloads.intent_from(payloads.safe_json_loads(raw))
        except ClassifierUnavailable:
            LOGGER.warning("Unparsable intent answer, using keyword heuristic")
            return keyword_intent(text)

    async def compare_text(self, new_text: str, existing_text: str) -> TextSimilarity:
        raw = await self._generate(
            [TEXT_SIMILARITY_PROMPT, f'NEW COMPLAINT: "{new_text}"\n\nEXISTING COMPLAINT: "{existing_text}"'],
            json_output=True,
        )
        return payloads.text_similarity_from(payloads.safe_json_loads(raw))

    async def compare_images(self, new_ref: str, existing_ref: str) -> ImageSimilarity:
        new_image, existing_image = await asyncio.gather(
            asyncio.to_thread(self._load_image, new_ref),
            asyncio.to_thread(self._load_image, existing_ref),
        )
        raw = await self._generate(
            [
                IMAGE_SIMILARITY_PROMPT,
                types.Part.from_bytes(data=new_image[0], mime_type=new_image[1]),
                types.Part.from_bytes(data=existing_image[0], mime_type=existing_image[1]),
            ],
            json_output=True,
        )
        return payloads.image_similarity_from(payloads.safe_json_loads(raw))

    async def compare_category(self, new_text: str, existing_text: str) -> CategorySimilarity:
        raw = await self._generate(
            [CATEGORY_PROMPT, f'NEW: "{new_text}"\nEXISTING: "{existing_text}"'],
            json_output=True,
        )
        return payloads.category_similarity_from(payloads.safe_json_loads(raw))

    async def categorize_department(self, text: str) -> str:
        raw = await self._generate([DEPARTMENT_PROMPT, f'Complaint: "{text}"'])
        return payloads.normalize_department(raw)

    async def assess_priority(self, text: str) -> str:
        raw = await self._generate([PRIORITY_PROMPT, f'Complaint: "{text}"'])
        return payloads.normalize_priority(raw)

    async def categorize_type(self, text: str) -> str:
        raw = await self._generate([CATEGORY_TYPE_PROMPT, f'Complaint: "{text}"'])
        return payloads.normalize_category(raw)

    async def score_ethics(self, text: str) -> int:
        raw = await self._generate([ETHICS_PROMPT, f'Message: "{text}"'])
        return payloads.parse_ethics_score(raw)

    async def _generate(self, contents: list, json_output: bool = False) -> str:
        config = types.GenerateContentConfig(
            temperature=0.2,
            response_mime_type="application/json" if json_output else "text/plain",
        )
        if self._client is None:
            raise ClassifierUnavailable("GEMINI_API_KEY is not configured")
        try:
            response = await self._client.aio.models.generate_content(
                model=self._model,
                contents=contents,
                config=config,
            )
        except Exception as exc:
            raise ClassifierUnavailable(f"Gemini request failed: {exc}") from exc

        raw_text = (response.text or "").strip()
        if not raw_text:
            raise ClassifierUnavailable("Gemini returned an empty response")
        return raw_text

    def _load_image(self, ref: str) -> tuple[bytes, str]:
        """Fetch an image reference (URL or local path) as bytes plus MIME type."""

        mime_type = mimetypes.guess_type(ref)[0] or "image/jpeg"
        if ref.startswith(("http://", "https://")):
            try:
                response = requests.get(ref, timeout=self._image_timeout)
                response.raise_for_status()
            except requests.RequestException as exc:
                raise ClassifierUnavailable(f"Could not download image {ref}: {exc}") from exc
            content_type = response.headers.get("Content-Type", "").split(";")[0].strip()
            return response.content, content_type or mime_type
        try:
            with open(ref, "rb") as handle:
                return handle.read(), mime_type
        except OSError as exc:
            raise ClassifierUnavailable(f"Could not read image {ref}: {exc}") from exc
