"""
Gemini-backed vision steps for workout screenshots: text recognition (OCR) and structured workout
extraction. Blocking generate_content calls run in the threadpool with a timeout and retries on 429/5xx.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import date
from typing import Any

import google.generativeai as genai
from google.generativeai.types import HarmBlockThreshold, HarmCategory
from starlette.concurrency import run_in_threadpool

from app.config import settings
from app.services.errors import ExtractionError
from app.services.providers import OcrResult

logger = logging.getLogger(__name__)

OCR_GENERATION_CONFIG = {
    "temperature": 0.0,
    "max_output_tokens": 4096,
    "response_mime_type": "application/json",
}

EXTRACT_GENERATION_CONFIG = {
    "temperature": 0.1,
    "top_k": 1,
    "top_p": 1,
    "max_output_tokens": 8192,
}

SAFETY_SETTINGS = {
    HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_NONE,
    HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_NONE,
    HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_NONE,
    HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_NONE,
}

OCR_PROMPT = """Transcribe all text visible in this screenshot of a fitness app, line by line, exactly as shown.
Return a JSON object: {"text": "<all text, lines separated by \\n>", "confidence": <0-100, how legible the text is>}.
Output ONLY valid JSON, no markdown."""

EXTRACT_PROMPT = """You are a fitness tracking assistant. Analyze this screenshot of a workout and extract the following information in JSON format.

IMPORTANT: Today's date is {today}. If the screenshot only shows a day and month (e.g. "Tue 21 Oct") without a year, assume it is from the current year {year}, NOT from past years.

Text extracted from image:
{ocr_text}

Return a JSON object with this exact structure:
{{
  "date": "YYYY-MM-DD",
  "workoutType": "string (e.g. 'Outdoor Walk', 'Run', 'Cycling')",
  "workoutTime": "H:MM:SS",
  "elapsedTime": "H:MM:SS (optional)",
  "distanceKm": number,
  "activeKcal": number,
  "totalKcal": number,
  "elevationGainM": number,
  "avgPace": "string (e.g. '8'49\\"/km')",
  "avgHeartRateBpm": number,
  "effortLevel": number (1-10),
  "effortDescription": "string (Easy/Moderate/Hard)",
  "splits": [
    {{"splitNumber": number, "time": "MM:SS", "pace": "MM'SS\\"", "heartRateBpm": number}}
  ]
}}

Rules:
1. Extract ALL available data from the screenshot.
2. If a field is not found, omit it from the JSON.
3. All numbers must be JSON numbers, not strings.
4. Pace format must be exactly "MM'SS\\"" or "MM'SS\\"/km".
5. If you see splits or laps, include them all.
6. Return ONLY the JSON object, no additional text."""

# Retry up to 3 times with exponential backoff (1s, 2s, 4s) on these status codes
RETRYABLE_STATUS_PATTERN = re.compile(r"\b(429|5\d{2})\b")
MAX_ATTEMPTS = 3

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def _is_retryable_error(exc: BaseException) -> bool:
    msg = getattr(exc, "message", None) or str(exc)
    return bool(RETRYABLE_STATUS_PATTERN.search(msg))


async def run_generate_content(model, contents):
    """model.generate_content(contents) in the threadpool with timeout and backoff on 429/5xx."""
    timeout = float(settings.gemini_request_timeout_seconds or 90)
    for attempt in range(MAX_ATTEMPTS):
        last = attempt == MAX_ATTEMPTS - 1
        try:
            return await asyncio.wait_for(run_in_threadpool(model.generate_content, contents), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Gemini request timed out after %ss (attempt %d)", timeout, attempt + 1)
            if last:
                raise
        except Exception as e:
            if last or not _is_retryable_error(e):
                raise
            logger.warning("Gemini request failed (attempt %d), retrying: %s", attempt + 1, e)
        await asyncio.sleep(2**attempt)
    raise RuntimeError("run_generate_content: unexpected exit")


def parse_json_object(text: str) -> dict[str, Any]:
    """
    First {...} block of a model reply as a dict. Tolerates markdown fences, trailing commas and a
    truncated closing brace. Raises ExtractionError when nothing parses.
    """
    match = _JSON_OBJECT_RE.search(text or "")
    candidate = match.group(0) if match else (text or "").strip()
    attempts = [candidate, re.sub(r",\s*([}\]])", r"\1", candidate)]
    trimmed = candidate.rstrip().rstrip(",")
    attempts += [trimmed + suffix for suffix in ("}", "]}", '"}')]
    for attempt in attempts:
        try:
            data = json.loads(attempt)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    logger.warning("Gemini reply is not a JSON object (first 500 chars): %s", (text or "")[:500])
    raise ExtractionError("Could not extract workout data from the AI response")


def _model(generation_config: dict) -> genai.GenerativeModel:
    if not settings.google_gemini_api_key:
        raise ExtractionError("GOOGLE_GEMINI_API_KEY is not set")
    genai.configure(api_key=settings.google_gemini_api_key)
    return genai.GenerativeModel(
        settings.gemini_model,
        generation_config=generation_config,
        safety_settings=SAFETY_SETTINGS,
    )


async def _generate(model, contents) -> str:
    try:
        response = await run_generate_content(model, contents)
    except ExtractionError:
        raise
    except Exception as e:
        logger.exception("Gemini request failed")
        raise ExtractionError(f"AI service request failed: {e}") from e
    try:
        text = response.text if response else ""
    except ValueError as e:
        # Blocked or empty candidates
        raise ExtractionError("AI service returned no text") from e
    if not text:
        raise ExtractionError("AI service returned no text")
    return text


class GeminiTextExtractor:
    """OCR through the vision model: returns the transcribed text and a 0-100 legibility score."""

    async def extract_text(self, image_bytes: bytes) -> OcrResult:
        model = _model(OCR_GENERATION_CONFIG)
        text = await _generate(model, [OCR_PROMPT, {"mime_type": "image/jpeg", "data": image_bytes}])
        data = parse_json_object(text)
        confidence = data.get("confidence")
        try:
            confidence = min(max(float(confidence), 0.0), 100.0) if confidence is not None else None
        except (TypeError, ValueError):
            confidence = None
        return OcrResult(text=str(data.get("text") or "").strip(), confidence=confidence)


class GeminiWorkoutExtractor:
    async def extract_workout_json(self, ocr_text: str, image_bytes: bytes | None = None) -> dict[str, Any]:
        today = date.today()
        prompt = EXTRACT_PROMPT.format(today=today.isoformat(), year=today.year, ocr_text=ocr_text)
        contents: list = [prompt]
        if image_bytes:
            contents.append({"mime_type": "image/jpeg", "data": image_bytes})
        text = await _generate(_model(EXTRACT_GENERATION_CONFIG), contents)
        return parse_json_object(text)


def gemini_configured() -> bool:
    return bool(settings.google_gemini_api_key)
