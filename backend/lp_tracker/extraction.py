"""Portfolio extraction through an OpenAI-compatible chat completion API."""

from __future__ import annotations

import base64
import json
import logging
import re
import time
from collections.abc import Callable, Sequence
from typing import Any

from openai import OpenAI

from .config import get_settings
from .models import MAX_SLOT, MIN_SLOT
from .schemas import ExtractionRecord

logger = logging.getLogger(__name__)

settings = get_settings()

_ai_client: OpenAI | None = None
_ai_client_disabled = False

ACCOUNT_NUMBER_REGEX = re.compile(r"\b(?:akun|account)\s*#?\s*(\d{1,2})\b", re.IGNORECASE)

TEXT_INSTRUCTIONS = (
    "You are a specialised parser for liquidity-provider dashboard data. "
    "Return ONLY a JSON object with these keys: "
    "balance (number, total portfolio value), "
    "total_points (number, e.g. 426.5), "
    "points_change (number, points earned today, e.g. 39.0), "
    "rank (string, e.g. \"12992\"), "
    "total_fees (number, total fees earned, e.g. 20.77), "
    "fees_today (number, e.g. 0.8003), "
    "pending_yield (number, unclaimed or pending yield, e.g. 0.8118), "
    "positions (array of objects with pair (string, e.g. \"HYPE/USD\"), position_size (number), "
    "apr (number, percent), range (string, e.g. \"24.441 - 26.822\"), current_price (number), "
    "status (string, e.g. \"In Range\"), unclaimed (number)), "
    "account_number (number, X when the text says \"Akun X\" or \"Account X\"), "
    "account_name (string, the label used for that account). "
    "If data for several accounts is present, extract ONLY the account explicitly mentioned, "
    "or the first one when none is named. "
    "Copy-paste glitches can produce absurd values (e.g. $663... for fees today); prefer plausible currency values. "
    "If a value is missing, use null. Never invent numbers."
)

VISION_INSTRUCTIONS = (
    "Extract liquidity-provider dashboard data from this screenshot. Return ONLY a JSON object with keys: "
    "balance, total_points, total_fees, pending_yield, positions (pair, position_size, apr, status), "
    "account_name, account_number. "
    "Set balance to null if the total portfolio value is not clearly visible. Use null for any missing value."
)


def get_ai_client() -> OpenAI | None:
    global _ai_client, _ai_client_disabled
    if _ai_client_disabled or not settings.groq_api_key:
        return None
    if _ai_client is not None:
        return _ai_client
    try:
        _ai_client = OpenAI(
            api_key=settings.groq_api_key,
            base_url=settings.ai_base_url,
            timeout=settings.ai_request_timeout,
            max_retries=0,
        )
        return _ai_client
    except Exception as exc:  # noqa: BLE001
        logger.error("Failed to initialise AI client: %s", exc)
        _ai_client_disabled = True
        return None


def detect_account_number(text: str) -> int | None:
    match = ACCOUNT_NUMBER_REGEX.search(text or "")
    if not match:
        return None
    slot = int(match.group(1))
    return slot if MIN_SLOT <= slot <= MAX_SLOT else None


def _parse_completion(response: Any) -> ExtractionRecord:
    content = response.choices[0].message.content or ""
    data = json.loads(content)
    if not isinstance(data, dict):
        raise ValueError("Model response is not a JSON object")
    return ExtractionRecord.model_validate(data)


class ExtractionAdapter:
    """Runs a prompt through an ordered list of models and keeps the first usable answer.

    Models are tried one after another; a failing model (provider error,
    timeout, malformed JSON) is logged and the next one is tried. Nothing is
    retried and nothing escapes: callers get an :class:`ExtractionRecord` or
    ``None``.
    """

    def __init__(
        self,
        client: OpenAI | None,
        text_models: Sequence[str],
        vision_models: Sequence[str],
        budget_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.text_models = list(text_models)
        self.vision_models = list(vision_models)
        self.budget_seconds = budget_seconds
        self._clock = clock

    def extract_text(self, text: str) -> ExtractionRecord | None:
        cleaned = (text or "").strip()
        if not cleaned:
            return None
        messages = [
            {"role": "system", "content": TEXT_INSTRUCTIONS},
            {"role": "user", "content": cleaned},
        ]
        record = self._run_cascade(self.text_models, messages, label="text")
        if record is not None and record.account_number is None:
            detected = detect_account_number(cleaned)
            if detected is not None:
                record = record.model_copy(update={"account_number": detected})
        return record

    def extract_image(self, image_bytes: bytes, caption: str | None = None) -> ExtractionRecord | None:
        if not image_bytes:
            return None
        encoded = base64.b64encode(image_bytes).decode("ascii")
        prompt = VISION_INSTRUCTIONS
        if caption:
            prompt = f"{prompt}\nUser note: {caption.strip()}"
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{encoded}"}},
                ],
            }
        ]
        record = self._run_cascade(self.vision_models, messages, label="vision")
        if record is not None and record.account_number is None and caption:
            detected = detect_account_number(caption)
            if detected is not None:
                record = record.model_copy(update={"account_number": detected})
        return record

    def _run_cascade(self, models: Sequence[str], messages: list[dict[str, Any]], label: str) -> ExtractionRecord | None:
        if self.client is None:
            logger.warning("AI client is not configured; skipping %s extraction.", label)
            return None

        started = self._clock()
        for model in models:
            elapsed = self._clock() - started
            if self.budget_seconds is not None and elapsed >= self.budget_seconds:
                logger.warning(
                    "Extraction budget of %.1fs spent after %.1fs; skipping remaining %s models.",
                    self.budget_seconds,
                    elapsed,
                    label,
                )
                break
            logger.info("Trying %s model %s", label, model)
            try:
                response = self.client.chat.completions.create(
                    model=model,
                    messages=messages,
                    response_format={"type": "json_object"},
                    temperature=0,
                )
                record = _parse_completion(response)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Model %s failed, trying next: %s", model, exc)
                continue
            logger.info("Model %s extracted: %s", model, record.model_dump(exclude_none=True))
            return record

        logger.error("All %s models failed to extract portfolio data.", label)
        return None


def build_extraction_adapter() -> ExtractionAdapter:
    return ExtractionAdapter(
        client=get_ai_client(),
        text_models=settings.text_models,
        vision_models=settings.vision_models,
        budget_seconds=settings.ai_cascade_budget,
    )
