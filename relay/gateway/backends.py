"""Backend client — protocol-level handling of the hosted text-generation API.

Translates a formatted prompt + BackendDescriptor into a Hugging Face
Inference API call and reports the result as a BackendReply. Failures are
classified, never raised:
  - 503 or a "currently loading" error body → BUSY (retry in place)
  - httpx timeout → TIMEOUT (fail over)
  - anything else (HTTP errors, transport errors, error bodies) → ERROR
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod

import httpx

from relay.gateway.types import AttemptOutcome, BackendDescriptor, BackendReply, GenerationParameters

logger = logging.getLogger(__name__)

HF_INFERENCE_URL = "https://api-inference.huggingface.co/models"


class BaseBackendClient(ABC):
    """Base class for clients that talk to a text-generation backend."""

    def __init__(self, api_key: str, **kwargs):
        self.api_key = api_key

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key)

    @abstractmethod
    async def send(
        self,
        descriptor: BackendDescriptor,
        prompt: str,
        timeout: float = 60.0,
        parameters: GenerationParameters | None = None,
    ) -> BackendReply:
        """Issue one call to the backend and classify the result."""
        ...


def _is_loading_message(message: str) -> bool:
    return "loading" in message.lower()


class HuggingFaceBackendClient(BaseBackendClient):
    """Hugging Face Inference API client (one short-lived httpx client per call)."""

    def __init__(self, api_key: str, base_url: str = HF_INFERENCE_URL, **kwargs):
        super().__init__(api_key, **kwargs)
        self.base_url = base_url.rstrip("/")

    def model_url(self, identifier: str) -> str:
        return f"{self.base_url}/{identifier}"

    async def send(
        self,
        descriptor: BackendDescriptor,
        prompt: str,
        timeout: float = 60.0,
        parameters: GenerationParameters | None = None,
    ) -> BackendReply:
        reply = BackendReply(backend_identifier=descriptor.identifier)
        params = parameters or descriptor.generation_parameters
        start = time.monotonic()

        payload = {
            "inputs": prompt,
            "parameters": params.to_payload(),
            # Let loading surface as 503 so the dispatch engine owns the waiting
            "options": {"wait_for_model": False, "use_cache": False},
        }

        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                resp = await client.post(
                    self.model_url(descriptor.identifier),
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                )

            reply.latency_ms = int((time.monotonic() - start) * 1000)
            reply.status_code = resp.status_code

            error_message = self._error_message(resp)

            if resp.status_code == 503 or (error_message and _is_loading_message(error_message)):
                reply.outcome = AttemptOutcome.BUSY
                reply.error_code = "LOADING" if error_message and _is_loading_message(error_message) else "503"
                reply.error_message = error_message or "Service unavailable"
                reply.estimated_time = self._estimated_time(resp)
                return reply

            resp.raise_for_status()

            if error_message:
                # 200 with an {"error": ...} body
                reply.outcome = AttemptOutcome.ERROR
                reply.error_code = "BACKEND_ERROR"
                reply.error_message = error_message
                return reply

            try:
                reply.payload = resp.json()
            except ValueError:
                # Some pipelines answer with bare text
                reply.payload = resp.text
            reply.outcome = AttemptOutcome.SUCCESS

        except httpx.TimeoutException:
            reply.outcome = AttemptOutcome.TIMEOUT
            reply.error_code = "TIMEOUT"
            reply.error_message = f"{descriptor.identifier} timeout after {timeout}s"
            reply.latency_ms = int((time.monotonic() - start) * 1000)
        except httpx.HTTPStatusError as e:
            reply.outcome = AttemptOutcome.ERROR
            reply.error_code = str(e.response.status_code)
            reply.error_message = str(e)
            reply.latency_ms = int((time.monotonic() - start) * 1000)
        except httpx.HTTPError as e:
            reply.outcome = AttemptOutcome.ERROR
            reply.error_code = "NETWORK"
            reply.error_message = str(e) or type(e).__name__
            reply.latency_ms = int((time.monotonic() - start) * 1000)

        return reply

    @staticmethod
    def _error_body(resp: httpx.Response) -> dict | None:
        try:
            data = resp.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    def _error_message(self, resp: httpx.Response) -> str:
        body = self._error_body(resp)
        if body is not None and "error" in body:
            error = body["error"]
            return error if isinstance(error, str) else str(error)
        if resp.status_code >= 400:
            return resp.text[:500]
        return ""

    def _estimated_time(self, resp: httpx.Response) -> float | None:
        body = self._error_body(resp)
        if body is None:
            return None
        value = body.get("estimated_time")
        return float(value) if isinstance(value, (int, float)) else None
