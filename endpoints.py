"""Transports for the stress classification endpoint.

Both endpoints return the verdict body as a plain dict and raise
``ClassifyError`` subclasses for everything else, so the classifier only has
to reason about retryability.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict
from typing import Any, Dict, Optional

import requests

from config import DEFAULT_MODEL
from errors import (
    AUTH_FAILED,
    CLASSIFIER_PROTOCOL_ERROR,
    NETWORK_ERROR,
    ClassifierTimeoutError,
    ClassifierUnavailableError,
    ClassifyError,
    InvalidInputError,
)
from models import AcousticFeatures

try:
    import dashscope
except Exception:  # pragma: no cover
    dashscope = None  # type: ignore

logger = logging.getLogger(__name__)

STRESS_PROMPT = (
    "You assess vocal stress for a wellbeing app. Listen to the clip and reply "
    "with JSON only, no prose: "
    '{"level": "calm|mild|moderate|severe|crisis", "confidence": 0.0-1.0, '
    '"indicators": ["short reason", ...]}. '
    "Acoustic measurements for the clip: "
)

_INVALID_INPUT_STATUSES = {400, 413, 415, 422}
_AUTH_STATUSES = {401, 403}
_RETRYABLE_STATUSES = {408, 429}


def error_for_status(status: int, detail: str = "") -> Optional[ClassifyError]:
    """Map a non-2xx status onto the classification error taxonomy."""
    if 200 <= status < 300:
        return None
    message = f"endpoint returned {status}" + (f": {detail}" if detail else "")
    if status in _AUTH_STATUSES:
        return ClassifierUnavailableError(message, code=AUTH_FAILED, retryable=False)
    if status in _INVALID_INPUT_STATUSES:
        return InvalidInputError(message)
    if status in _RETRYABLE_STATUSES or status >= 500:
        return ClassifierUnavailableError(message, code=NETWORK_ERROR, retryable=True)
    return ClassifierUnavailableError(message, retryable=False)


def extract_json(text: str) -> Dict[str, Any]:
    """Pull a JSON object out of a model reply, tolerating code fences."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:]
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        raise ClassifyError("reply contains no JSON object", code=CLASSIFIER_PROTOCOL_ERROR)
    try:
        data = json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError as exc:
        raise ClassifyError(f"reply is not valid JSON: {exc}", code=CLASSIFIER_PROTOCOL_ERROR) from exc
    if not isinstance(data, dict):
        raise ClassifyError("reply JSON is not an object", code=CLASSIFIER_PROTOCOL_ERROR)
    return data


class HttpStressEndpoint:
    def __init__(
        self,
        url: str,
        api_key: str,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not url:
            raise ValueError("endpoint url is required")
        self._url = url
        self._api_key = api_key
        self._session = session or requests.Session()

    def submit(self, wav_base64: str, features: AcousticFeatures, timeout_s: float) -> Dict[str, Any]:
        payload = {
            "audioFormat": "wav",
            "audioBase64": wav_base64,
            "features": asdict(features),
        }
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        try:
            response = self._session.post(self._url, json=payload, headers=headers, timeout=timeout_s)
        except requests.Timeout as exc:
            raise ClassifierTimeoutError(str(exc)) from exc
        except requests.RequestException as exc:
            raise ClassifierUnavailableError(str(exc), code=NETWORK_ERROR, retryable=True) from exc

        error = error_for_status(response.status_code, response.text[:200])
        if error is not None:
            raise error
        try:
            body = response.json()
        except ValueError as exc:
            raise ClassifyError("response body is not JSON", code=CLASSIFIER_PROTOCOL_ERROR) from exc
        if not isinstance(body, dict):
            raise ClassifyError("response body is not an object", code=CLASSIFIER_PROTOCOL_ERROR)
        return body


class DashscopeStressEndpoint:
    def __init__(self, api_key: str, model: str = DEFAULT_MODEL) -> None:
        self._api_key = api_key
        self._model = model

    def submit(self, wav_base64: str, features: AcousticFeatures, timeout_s: float) -> Dict[str, Any]:
        if dashscope is None:
            raise ClassifierUnavailableError("dashscope is not installed", retryable=False)
        api_key = self._api_key or os.getenv("DASHSCOPE_API_KEY", "")
        if not api_key:
            raise ClassifierUnavailableError("No API key configured", code=AUTH_FAILED, retryable=False)

        measurements = json.dumps(asdict(features))
        try:
            response = dashscope.MultiModalConversation.call(
                api_key=api_key,
                model=self._model,
                messages=[
                    {"role": "system", "content": [{"text": STRESS_PROMPT + measurements}]},
                    {"role": "user", "content": [{"audio": wav_base64}]},
                ],
                result_format="message",
                timeout=timeout_s,
            )
        except Exception as exc:
            raise self._to_error(exc) from exc

        status = self._field(response, "status_code", 200)
        error = error_for_status(int(status), str(self._field(response, "message", "")))
        if error is not None:
            raise error
        return extract_json(self._extract_text(response))

    def _field(self, response: object, name: str, default: Any) -> Any:
        if isinstance(response, dict):
            return response.get(name, default)
        return getattr(response, name, default)

    def _extract_text(self, response: object) -> str:
        """Pull reply text from a dashscope response dict."""
        output = self._field(response, "output", None) or {}
        choices = output.get("choices", []) if isinstance(output, dict) else []
        if not choices:
            raise ClassifyError("response has no choices", code=CLASSIFIER_PROTOCOL_ERROR)
        content = choices[0].get("message", {}).get("content", [])
        if isinstance(content, str):
            return content
        for value in content:
            if isinstance(value, dict) and value.get("text"):
                return str(value["text"])
        raise ClassifyError("response has no text content", code=CLASSIFIER_PROTOCOL_ERROR)

    def _to_error(self, exc: Exception) -> ClassifyError:
        """Map an SDK/network exception to a classification error."""
        message = str(exc)
        low = message.lower()
        if "401" in low or "auth" in low or "api key" in low:
            return ClassifierUnavailableError(message, code=AUTH_FAILED, retryable=False)
        if "timeout" in low or "timed out" in low:
            return ClassifierTimeoutError(message)
        if "network" in low or "connection" in low:
            return ClassifierUnavailableError(message, code=NETWORK_ERROR, retryable=True)
        return ClassifierUnavailableError(message, retryable=True)
