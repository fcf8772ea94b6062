from __future__ import annotations
import logging
import httpx
from typing import Any, Dict, Optional
from .errors import CredentialMissingOrInvalidError
from .settings import settings

logger = logging.getLogger(__name__)


class GeminiClient:
	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		base_url: Optional[str] = None,
		model: Optional[str] = None,
		timeout: Optional[float] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		# A missing key is reported per call so that the status endpoint and
		# request validation keep working without credentials.
		self.api_key = api_key if api_key is not None else settings.gemini_api_key
		self.model = model or settings.gemini_model
		self.provider = settings.gemini_provider
		if self.provider == "vertex":
			region = settings.vertex_region
			project = settings.vertex_project or "placeholder-project"
			# Vertex AI Generative REST endpoint (API key via header)
			self.base_url = base_url or (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{self.model}:generateContent"
			)
			self._auth_in_query = False
		else:
			# Google AI Studio (Generative Language API)
			self.base_url = base_url or f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
			self._auth_in_query = True
		self._client = httpx.AsyncClient(timeout=timeout or settings.gemini_timeout_seconds, transport=transport)

	@property
	def is_configured(self) -> bool:
		return bool(self.api_key)

	async def generate(self, prompt: str) -> str:
		if not self.api_key:
			raise CredentialMissingOrInvalidError("GEMINI_API_KEY is not configured")
		payload: Dict[str, Any] = {
			"contents": [{"role": "user", "parts": [{"text": prompt}]}],
			"generationConfig": {"responseMimeType": "application/json", "temperature": 0.7},
		}
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
		# AI Studio answers an unknown key with 400 API_KEY_INVALID
		if r.status_code in (401, 403) or (r.status_code == 400 and "API_KEY_INVALID" in r.text):
			raise CredentialMissingOrInvalidError(f"Gemini rejected the API key (HTTP {r.status_code})")
		r.raise_for_status()
		try:
			data = r.json()
			return data["candidates"][0]["content"]["parts"][0]["text"]
		except (ValueError, KeyError, IndexError, TypeError) as err:
			raise RuntimeError(f"Unexpected Gemini response: {r.text[:500]}") from err

	async def aclose(self) -> None:
		await self._client.aclose()
