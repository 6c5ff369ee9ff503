# medscan/llm/client.py
from __future__ import annotations

import asyncio
import base64
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Union

import openai
from openai import AsyncOpenAI

from medscan.config import get_settings
from medscan.errors import AnalysisError, ConfigurationError
from medscan.intake.schema import (
    DentalAssessment,
    FacialAssessment,
    LiveFeedbackContext,
    ServiceType,
    parse_assessment,
)
from medscan.llm.prompts import (
    ANALYSIS_SYSTEM_PROMPTS,
    analysis_user_prompt,
    live_feedback_prompt,
)
from medscan.services.policy import call_with_policy, is_transient

logger = logging.getLogger(__name__)

Assessment = Union[FacialAssessment, DentalAssessment]


class VisionClient(ABC):
    """
    Simple abstraction so we can swap vision providers if needed.
    """

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        ...

    def ensure_configured(self) -> None:
        if not self.is_configured:
            raise ConfigurationError("Vision analysis API key is not set.")

    @abstractmethod
    async def analyze(self, images: Sequence[bytes], service_type: ServiceType) -> Assessment:
        """
        One structured assessment for the full set of captured frames.
        Raises AnalysisError on transport failure or a malformed answer.
        """
        ...

    @abstractmethod
    async def analyze_live_frame(self, image: bytes, context: LiveFeedbackContext) -> str:
        """
        A short advisory phrase for one preview frame, or "" when there is
        nothing to say. Never raises for transport or parsing problems.
        """
        ...


def image_part(image: bytes) -> Dict[str, Any]:
    encoded = base64.b64encode(image).decode("ascii")
    return {
        "type": "image_url",
        "image_url": {"url": f"data:image/jpeg;base64,{encoded}"},
    }


def parse_json_response(raw: Optional[str]) -> Dict[str, Any]:
    """
    Parse the JSON object out of a model reply.
    Handles replies wrapped in ```json ... ``` fences.
    """
    if not raw:
        raise ValueError("empty response")

    text = raw.strip()
    if text.startswith("```"):
        text = text.lstrip("`")
        if text.lower().startswith("json"):
            text = text[4:]
        text = text.rstrip("`").strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        # Some replies add prose around the object.
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("no JSON object in response") from None
        data = json.loads(text[start:end + 1])

    if not isinstance(data, dict):
        raise ValueError("response is not a JSON object")
    return data


def _openai_transient(exc: BaseException) -> bool:
    if isinstance(exc, (openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError)):
        return True
    return is_transient(exc)


class OpenAIVisionClient(VisionClient):
    """
    Vision analysis through any OpenAI-compatible chat endpoint.
    Defaults to Gemini's compatibility layer.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        live_model: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        settings = get_settings()
        api_key = api_key or settings.vision_api_key

        # Retries are handled by call_with_policy, not the SDK.
        self.client = client
        if self.client is None and api_key:
            self.client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url or settings.vision_base_url,
                max_retries=0,
            )

        self.model = model or settings.vision_model
        self.live_model = live_model or settings.live_feedback_model
        self.timeout = settings.analysis_timeout_seconds
        self.live_timeout = settings.live_feedback_timeout_seconds
        self.retries = settings.retry_attempts
        self.backoff = settings.retry_backoff_seconds

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    async def analyze(self, images: Sequence[bytes], service_type: ServiceType) -> Assessment:
        self.ensure_configured()

        content: List[Dict[str, Any]] = [image_part(img) for img in images]
        content.append({"type": "text", "text": analysis_user_prompt(service_type, len(images))})
        messages = [
            {"role": "system", "content": ANALYSIS_SYSTEM_PROMPTS[service_type]},
            {"role": "user", "content": content},
        ]

        completion = await call_with_policy(
            lambda: self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=0.2,
                response_format={"type": "json_object"},
            ),
            label=f"{service_type.label}",
            error_cls=AnalysisError,
            timeout=self.timeout,
            retries=self.retries,
            backoff=self.backoff,
            transient=_openai_transient,
        )

        if not completion.choices:
            raise AnalysisError("Vision model returned no candidates")
        choice = completion.choices[0]
        if choice.finish_reason == "content_filter":
            raise AnalysisError("Vision model response was blocked by safety filters")

        try:
            payload = parse_json_response(choice.message.content)
            return parse_assessment(payload, service_type)
        except ValueError as exc:
            # pydantic.ValidationError is a ValueError too.
            raise AnalysisError(f"Malformed analysis response: {exc}") from exc

    async def analyze_live_frame(self, image: bytes, context: LiveFeedbackContext) -> str:
        if not self.is_configured:
            return ""

        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": live_feedback_prompt(context)},
                    image_part(image),
                ],
            }
        ]

        try:
            completion = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.live_model,
                    messages=messages,
                    temperature=0.7,
                    response_format={"type": "json_object"},
                ),
                timeout=self.live_timeout,
            )
        except Exception as exc:  # advisory only
            logger.debug("Live feedback request failed: %s", exc)
            return ""

        if not completion.choices:
            return ""
        choice = completion.choices[0]
        if choice.finish_reason == "content_filter":
            logger.debug("Live feedback blocked for safety")
            return ""

        try:
            payload = parse_json_response(choice.message.content)
        except ValueError:
            return ""

        phrase = payload.get("expressionText")
        return phrase.strip() if isinstance(phrase, str) else ""
