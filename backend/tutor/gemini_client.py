from __future__ import annotations
import logging
import httpx
from typing import Any, Dict, List, Optional
from .settings import settings

logger = logging.getLogger(__name__)


class GeminiClient:
	def __init__(self, api_key: Optional[str] = None, *, base_url: Optional[str] = None, model: Optional[str] = None) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
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
		self._client = httpx.AsyncClient(timeout=settings.gemini_timeout_seconds)
		self._fallback_client: Optional[httpx.AsyncClient] = None
		self._fallback_enabled = bool(settings.openrouter_api_key)
		self._openrouter_api_key = settings.openrouter_api_key
		self._openrouter_model = settings.openrouter_model
		self._openrouter_base_url = settings.openrouter_base_url
		self._openrouter_headers = {
			"Authorization": f"Bearer {self._openrouter_api_key}" if self._openrouter_api_key else "",
			"Content-Type": "application/json",
			"HTTP-Referer": settings.openrouter_referer,
			"X-Title": settings.openrouter_title,
		}
		if self._fallback_enabled:
			self._fallback_client = httpx.AsyncClient(timeout=settings.gemini_timeout_seconds)

	async def generate(
		self,
		prompt: str,
		*,
		response_mime_type: Optional[str] = None,
		response_schema: Optional[Dict[str, Any]] = None,
	) -> str:
		payload: Dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
		generation_config = _generation_config(response_mime_type, response_schema)
		if generation_config:
			payload["generationConfig"] = generation_config
		return await self._post_payload(payload, fallback_messages=[{"role": "user", "content": prompt}])

	async def chat(
		self,
		message: str,
		history: List[Dict[str, str]],
		*,
		system_instruction: Optional[str] = None,
	) -> str:
		"""Send ``message`` after ``history`` (items with ``role`` user|model and ``text``)."""
		contents = [{"role": h["role"], "parts": [{"text": h["text"]}]} for h in history]
		contents.append({"role": "user", "parts": [{"text": message}]})
		payload: Dict[str, Any] = {"contents": contents}
		fallback_messages: List[Dict[str, str]] = []
		if system_instruction:
			payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}
			fallback_messages.append({"role": "system", "content": system_instruction})
		for h in history:
			fallback_messages.append({"role": "assistant" if h["role"] == "model" else "user", "content": h["text"]})
		fallback_messages.append({"role": "user", "content": message})
		return await self._post_payload(payload, fallback_messages=fallback_messages)

	async def _post_payload(
		self,
		payload: Dict[str, Any],
		*,
		fallback_messages: List[Dict[str, str]],
	) -> str:
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		last_error: Optional[Exception] = None
		try:
			r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
			r.raise_for_status()
		except httpx.HTTPStatusError as http_err:
			if "generationConfig" in payload and "responseSchema" in payload["generationConfig"]:
				# Some models reject schemas; retry with JSON mime type only
				fallback_payload = dict(payload)
				fallback_payload["generationConfig"] = {
					k: v for k, v in payload["generationConfig"].items() if k != "responseSchema"
				}
				try:
					r = await self._client.post(self.base_url, params=params, headers=headers, json=fallback_payload)
					r.raise_for_status()
				except Exception as err:
					last_error = err
			else:
				last_error = http_err
		except httpx.RequestError as net_err:
			last_error = net_err
		if last_error is None:
			try:
				data = r.json()
				return data["candidates"][0]["content"]["parts"][0]["text"]
			except Exception:
				last_error = RuntimeError(f"Unexpected Gemini response: {r.text}")
		logger.warning("Gemini call failed: %s", last_error)
		if not self._fallback_enabled:
			raise last_error or RuntimeError("Gemini call failed and no fallback configured")
		return await self._fallback_generate(fallback_messages, last_error)

	async def aclose(self) -> None:
		await self._client.aclose()
		if self._fallback_client is not None:
			await self._fallback_client.aclose()

	async def _fallback_generate(self, messages: List[Dict[str, str]], primary_error: Optional[Exception]) -> str:
		if not self._fallback_client or not self._openrouter_api_key:
			raise primary_error or RuntimeError("Fallback requested but OpenRouter is not configured")
		headers = {k: v for k, v in self._openrouter_headers.items() if v}
		payload: Dict[str, Any] = {
			"model": self._openrouter_model,
			"messages": messages,
		}
		try:
			r = await self._fallback_client.post(
				self._openrouter_base_url,
				headers=headers,
				json=payload,
			)
			r.raise_for_status()
			data = r.json()
			return data["choices"][0]["message"]["content"]
		except Exception as fallback_err:
			if primary_error is not None:
				raise RuntimeError(
					f"Gemini primary call failed ({primary_error}); fallback via OpenRouter also failed"
				) from fallback_err
			raise fallback_err


def _generation_config(response_mime_type: Optional[str], response_schema: Optional[Dict[str, Any]]) -> Dict[str, Any]:
	config: Dict[str, Any] = {}
	if response_mime_type:
		config["responseMimeType"] = response_mime_type
	if response_schema:
		config["responseSchema"] = response_schema
	return config
