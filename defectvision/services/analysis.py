"""
Vision model client for defect analysis.

Validates the uploaded image, sends it to an OpenAI-compatible chat completions
gateway and turns the model's JSON answer into an ``AnalysisResult``. No retry
happens here; a failed analysis is reported to the caller and the user decides
whether to try again.
"""
import base64
import binascii
import io
import json
import re
from typing import Any, Dict, Optional

import httpx
from PIL import Image, UnidentifiedImageError
from pydantic import ValidationError

from defectvision.config import settings
from defectvision.logger import logger
from defectvision.models.inspection import AnalysisResult

ALLOWED_IMAGE_TYPES = ["png", "jpeg", "jpg", "webp", "gif"]
DATA_URL_RE = re.compile(r"^data:image/(png|jpeg|jpg|webp|gif);base64,", re.IGNORECASE)
BASE64_RE = re.compile(r"^[A-Za-z0-9+/=]+$")

SYSTEM_PROMPT = """You are an expert manufacturing quality control AI inspector. Analyze the provided product image for defects.

SEVERITY CLASSIFICATION (be conservative - do NOT over-classify):
- "low": Minor cosmetic issues barely visible, no functional impact (light surface marks, minor dust, tiny scratches only visible under close inspection)
- "medium": Noticeable cosmetic defects that don't affect function (visible scratches, small dents, minor discoloration)
- "high": Significant defects that may affect product quality or longevity (deep scratches, notable dents, coating damage)
- "critical": ONLY for severe defects that make product unusable or unsafe (structural cracks, major breaks, complete coating failure, safety hazards)

OVERALL STATUS RULES (be conservative):
- "pass": No defects OR only low-severity cosmetic issues
- "warning": Medium or high severity defects present, product still functional
- "critical": ONLY when defects genuinely make product unusable or pose safety risks

Return ONLY valid JSON:
{
  "overall_status": "pass" | "warning" | "critical",
  "confidence": <number 0-100>,
  "defects": [
    {
      "type": "<category: Surface defects, Structural issues, Dimensional problems, Color/coating issues, Contamination, Assembly defects>",
      "severity": "low" | "medium" | "high" | "critical",
      "location": "<where on the product>",
      "description": "<detailed explanation>",
      "confidence": <number 0-100>
    }
  ]
}

Be precise. Only report defects clearly visible. If image is unclear, return valid JSON with "pass" status."""

USER_PROMPT = "Analyze this product image for manufacturing defects. Return ONLY valid JSON, no markdown or explanation."


class ImageValidationError(ValueError):
    """Raised when an uploaded image is missing, malformed or too large."""


class AnalysisError(RuntimeError):
    """Raised when the analysis cannot produce a result.

    Attributes:
        status_code: HTTP status the failure maps to
    """

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def validate_image_input(image_base64: Any, max_bytes: Optional[int] = None) -> bytes:
    """
    Check that the payload is a base64 data URL of a supported image.

    Args:
        image_base64: data URL, e.g. ``data:image/png;base64,....``
        max_bytes: upper bound for the decoded size

    Returns:
        the decoded image bytes
    """
    max_bytes = max_bytes or settings.max_image_bytes
    if not image_base64 or not isinstance(image_base64, str):
        raise ImageValidationError("Invalid image data: must be a non-empty string")

    if not DATA_URL_RE.match(image_base64):
        raise ImageValidationError(
            "Invalid image format. Must be base64-encoded image with data URL prefix. "
            f"Supported types: {', '.join(ALLOWED_IMAGE_TYPES)}"
        )

    parts = image_base64.split(",", 1)
    payload = parts[1] if len(parts) > 1 else ""
    if not payload:
        raise ImageValidationError("Invalid base64 data: missing encoded content")
    if not BASE64_RE.match(payload):
        raise ImageValidationError("Invalid base64 encoding: contains invalid characters")

    # base64 is about a third larger than the bytes it encodes
    if len(payload) * 3 / 4 > max_bytes:
        raise ImageValidationError(f"Image too large. Maximum size is {max_bytes // (1024 * 1024)}MB")

    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ImageValidationError("Invalid base64 encoding: could not decode image data")

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError):
        raise ImageValidationError("Invalid image data: content is not a readable image")

    return data


def to_data_url(data: bytes, content_type: str) -> str:
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


def strip_code_fences(content: str) -> str:
    """Remove a surrounding ```json ... ``` block if the model added one."""
    text = content.strip()
    if text.startswith("```json"):
        text = text[7:]
    if text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def parse_model_content(content: str) -> AnalysisResult:
    """Parse and normalize the model's answer."""
    try:
        raw = json.loads(strip_code_fences(content))
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse AI response: {content!r} ({e})")
        raise AnalysisError("Failed to parse AI analysis result")
    if not isinstance(raw, dict):
        raise AnalysisError("Failed to parse AI analysis result")
    try:
        return AnalysisResult.model_validate(raw)
    except ValidationError as e:
        logger.error(f"AI response did not match the expected shape: {e}")
        raise AnalysisError("Failed to parse AI analysis result")


def _upstream_error_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, str):
        return error
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    return None


class DefectAnalysisClient:
    """Client for the hosted vision-language model.

    Args:
        gateway_url: chat completions endpoint
        api_key: bearer key for the gateway
        model: model identifier sent with each request
        timeout: seconds to wait, None waits indefinitely
        transport: optional httpx transport (tests use ``httpx.MockTransport``)
    """

    def __init__(
        self,
        gateway_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_image_bytes: Optional[int] = None,
    ):
        self._gateway_url = gateway_url or settings.ai_gateway_url
        self._api_key = settings.ai_api_key if api_key is None else api_key
        self._model = model or settings.ai_model
        self._max_image_bytes = max_image_bytes or settings.max_image_bytes
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout if timeout is not None else settings.ai_timeout),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _build_payload(self, image_base64: str) -> Dict[str, Any]:
        return {
            "model": self._model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": USER_PROMPT},
                        {"type": "image_url", "image_url": {"url": image_base64}},
                    ],
                },
            ],
        }

    async def analyze(self, image_base64: Any) -> AnalysisResult:
        """
        Analyze one image.

        Args:
            image_base64: data URL of the product image

        Returns:
            normalized analysis result

        Raises:
            ImageValidationError: the image was rejected before any request
            AnalysisError: the gateway failed or answered with something unusable
        """
        validate_image_input(image_base64, self._max_image_bytes)

        if not self._api_key:
            logger.error("AI gateway API key is not configured")
            raise AnalysisError("AI service not configured", status_code=500)

        try:
            response = await self._client.post(
                self._gateway_url,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json=self._build_payload(image_base64),
            )
        except httpx.HTTPError as e:
            logger.error(f"AI gateway unreachable: {e}")
            raise AnalysisError("Failed to connect to AI service", status_code=503)

        if response.status_code == 429:
            raise AnalysisError("Rate limit exceeded. Please try again in a moment.", status_code=429)
        if response.status_code == 402:
            raise AnalysisError("AI credits exhausted. Please add more credits to continue.", status_code=402)
        if response.is_error:
            logger.error(f"AI gateway error: {response.status_code} {response.text}")
            raise AnalysisError(_upstream_error_message(response) or "AI analysis failed")

        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict) and isinstance(data.get("error"), (str, dict)):
            raise AnalysisError(_upstream_error_message(response) or "AI analysis failed")

        content = None
        if isinstance(data, dict):
            choices = data.get("choices") or []
            if choices and isinstance(choices[0], dict):
                content = (choices[0].get("message") or {}).get("content")
        if not content or not isinstance(content, str):
            logger.error(f"No content in AI response: {data}")
            raise AnalysisError("Invalid AI response")

        result = parse_model_content(content)
        logger.info(f"Analysis complete: {result.overall_status}, {len(result.defects)} defect(s)")
        return result
