"""
Storyforge API Clients

Async client for the Gemini REST API (text, Imagen images, Veo video jobs).
"""

import base64
import json
from typing import Any, Dict, List, Optional, Tuple

import httpx

from storyforge.core.exceptions import (
    GenerationError,
    GenerationTimeoutError,
    QuotaExceededError,
    ResponseFormatError,
    is_quota_message,
)
from storyforge.core.logging_config import get_logger
from storyforge.core.retry import RetryConfig, TEXT_RETRY_CONFIG, retry_async_call

logger = get_logger("llm.api_clients")

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


def _error_message(response: httpx.Response) -> Tuple[str, str]:
    """Extract (message, status) from a Gemini error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase, ""
    error = body.get("error", {}) if isinstance(body, dict) else {}
    return error.get("message") or response.text, error.get("status", "")


def parse_json_from_text(text: str) -> Optional[Dict]:
    """Parse JSON from text, handling markdown code blocks."""
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    if text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    try:
        return json.loads(text.strip())
    except json.JSONDecodeError:
        return None


class GeminiClient:
    """Client for the Google Gemini REST API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 120.0,
        retry_config: RetryConfig = TEXT_RETRY_CONFIG,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_key:
            raise ValueError(f"{self.__class__.__name__} requires an API key")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_config = retry_config
        self._transport = transport

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            follow_redirects=True,
        )

    def _raise_for_response(self, response: httpx.Response, operation: str) -> None:
        if response.status_code < 400:
            return
        message, status = _error_message(response)
        logger.warning(f"{operation}: HTTP {response.status_code} {status} {message}")
        if response.status_code == 429 or status == "RESOURCE_EXHAUSTED" or is_quota_message(message):
            raise QuotaExceededError(operation, message or "quota exceeded", response.status_code)
        raise GenerationError(operation, f"HTTP {response.status_code}: {message}", response.status_code)

    async def _request(
        self,
        method: str,
        url: str,
        operation: str,
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Make one HTTP request and decode the JSON body."""
        try:
            async with self._client() as client:
                response = await client.request(method, url, json=body, headers=self._get_headers())
        except httpx.TimeoutException as e:
            raise GenerationTimeoutError(operation, f"Request timed out: {e}")
        except httpx.HTTPError as e:
            raise GenerationError(operation, f"Transport error: {e}")

        self._raise_for_response(response, operation)
        try:
            return response.json()
        except ValueError:
            raise ResponseFormatError(operation, "Response body is not JSON")

    def _model_url(self, model: str, method: str) -> str:
        return f"{self.base_url}/models/{model}:{method}"

    # ------------------------------------------------------------------
    # Text
    # ------------------------------------------------------------------

    async def generate_content(self, model: str, body: Dict[str, Any], operation: str) -> Dict[str, Any]:
        """POST models/{model}:generateContent, retrying transient failures."""
        return await retry_async_call(
            self._request, "POST", self._model_url(model, "generateContent"), operation, body,
            config=self.retry_config,
        )

    async def generate_text(
        self,
        prompt: str,
        model: str,
        operation: str = "generate_text",
        response_schema: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Generate text; with a response schema the model answers in JSON."""
        body: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
        if response_schema is not None:
            body["generationConfig"] = {
                "responseMimeType": "application/json",
                "responseSchema": response_schema,
            }

        result = await self.generate_content(model, body, operation)

        text = ""
        candidates = result.get("candidates", [])
        if candidates:
            for part in candidates[0].get("content", {}).get("parts", []):
                if "text" in part:
                    text += part["text"]

        if not text.strip():
            raise ResponseFormatError(operation, "Model returned no text")
        return text

    async def generate_json(
        self,
        prompt: str,
        model: str,
        response_schema: Dict[str, Any],
        operation: str = "generate_json",
    ) -> Dict[str, Any]:
        text = await self.generate_text(prompt, model, operation, response_schema)
        parsed = parse_json_from_text(text)
        if not isinstance(parsed, dict):
            raise ResponseFormatError(operation, "Model response is not a JSON object")
        return parsed

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    async def predict_images(
        self,
        prompt: str,
        model: str,
        aspect_ratio: str,
        number_of_images: int = 1,
        mime_type: str = "image/png",
    ) -> List[Tuple[bytes, str]]:
        """Imagen text-to-image via models/{model}:predict."""
        operation = "generate_image"
        body = {
            "instances": [{"prompt": prompt}],
            "parameters": {
                "sampleCount": number_of_images,
                "aspectRatio": aspect_ratio,
                "outputOptions": {"mimeType": mime_type},
            },
        }
        result = await self._request("POST", self._model_url(model, "predict"), operation, body)

        images = []
        for prediction in result.get("predictions", []):
            encoded = prediction.get("bytesBase64Encoded")
            if encoded:
                images.append((base64.b64decode(encoded), prediction.get("mimeType", mime_type)))

        if not images:
            raise GenerationError(operation, "No image was returned; the prompt may have been blocked")
        return images

    async def edit_image(
        self,
        prompt: str,
        image_bytes: bytes,
        mime_type: str,
        model: str,
    ) -> Tuple[bytes, str, Optional[str]]:
        """Image + instruction in, edited image (and optional commentary) out."""
        operation = "edit_image"
        body = {
            "contents": [{
                "parts": [
                    {"inline_data": {"mime_type": mime_type, "data": base64.b64encode(image_bytes).decode("ascii")}},
                    {"text": prompt},
                ]
            }],
            "generationConfig": {"responseModalities": ["IMAGE", "TEXT"]},
        }
        result = await self._request("POST", self._model_url(model, "generateContent"), operation, body)

        text = None
        image = None
        candidates = result.get("candidates", [])
        if candidates:
            for part in candidates[0].get("content", {}).get("parts", []):
                if "text" in part:
                    text = part["text"]
                inline = part.get("inlineData") or part.get("inline_data")
                if inline and inline.get("data"):
                    image = (
                        base64.b64decode(inline["data"]),
                        inline.get("mimeType") or inline.get("mime_type") or "image/png",
                    )

        if image is None:
            raise GenerationError(operation, "The model did not return an image")
        return image[0], image[1], text

    # ------------------------------------------------------------------
    # Video (long-running)
    # ------------------------------------------------------------------

    async def start_video_job(
        self,
        prompt: str,
        image_bytes: bytes,
        mime_type: str,
        model: str,
    ) -> Dict[str, Any]:
        """Start a Veo image-to-video job; returns the operation resource."""
        body = {
            "instances": [{
                "prompt": prompt,
                "image": {
                    "bytesBase64Encoded": base64.b64encode(image_bytes).decode("ascii"),
                    "mimeType": mime_type,
                },
            }],
            "parameters": {"sampleCount": 1},
        }
        return await self._request(
            "POST", self._model_url(model, "predictLongRunning"), "generate_video", body
        )

    async def get_operation(self, name: str) -> Dict[str, Any]:
        return await self._request("GET", f"{self.base_url}/{name}", "generate_video")

    async def download(self, uri: str, operation: str = "generate_video") -> Tuple[bytes, str]:
        """Fetch a generated file; the API key travels in the header."""
        try:
            async with self._client() as client:
                response = await client.get(uri, headers={"x-goog-api-key": self.api_key})
        except httpx.TimeoutException as e:
            raise GenerationTimeoutError(operation, f"Download timed out: {e}")
        except httpx.HTTPError as e:
            raise GenerationError(operation, f"Failed to fetch video: {e}")

        if response.status_code >= 400:
            raise GenerationError(
                operation, f"Failed to fetch video: {response.reason_phrase}", response.status_code
            )
        return response.content, response.headers.get("content-type", "video/mp4")
