import json
from typing import Any, Dict, List, Optional

import httpx

from .errors import BackendError


ASSISTANTS_BETA_HEADER = "assistants=v2"


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except Exception:
        data = None
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err.strip():
            return err
        return json.dumps(data, ensure_ascii=True)
    try:
        return response.text or response.reason_phrase
    except Exception:
        return ""


def _json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise BackendError(f"OpenAI returned an unreadable response from {response.request.url.path}", 502) from exc


class OpenAIClient:
    """Thin async client for the hosted assistants, audio and files endpoints."""

    def __init__(self, api_key: Optional[str], base_url: str = "https://api.openai.com/v1", timeout: float = 60.0):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        # Concurrent chat requests poll runs in parallel; share one pool.
        self.client = httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(max_connections=32, max_keepalive_connections=16),
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _headers(self, beta: bool) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if beta:
            headers["OpenAI-Beta"] = ASSISTANTS_BETA_HEADER
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
        beta: bool = True,
    ) -> httpx.Response:
        if not self.enabled:
            raise BackendError("OpenAI API key not configured. Set OPENAI_API_KEY in your environment.", 500)
        url = f"{self.base_url}{path}"
        try:
            resp = await self.client.request(
                method,
                url,
                json=json_body,
                params=params,
                data=data,
                files=files,
                headers=self._headers(beta),
            )
            resp.raise_for_status()
            return resp
        except httpx.HTTPStatusError as exc:
            detail = _error_message(exc.response)
            raise BackendError(f"OpenAI API Error: {detail}", exc.response.status_code) from exc
        except httpx.RequestError as exc:
            raise BackendError(f"OpenAI request failed: {exc}") from exc

    async def create_assistant(
        self,
        *,
        name: str,
        instructions: str,
        model: str,
        vector_store_id: str,
    ) -> Dict[str, Any]:
        payload = {
            "name": name,
            "instructions": instructions,
            "model": model,
            "tools": [{"type": "file_search"}],
            "tool_resources": {"file_search": {"vector_store_ids": [vector_store_id]}},
        }
        resp = await self._request("POST", "/assistants", json_body=payload)
        return _json(resp)

    async def create_thread(self) -> Dict[str, Any]:
        resp = await self._request("POST", "/threads", json_body={})
        return _json(resp)

    async def create_message(self, thread_id: str, content: str, role: str = "user") -> Dict[str, Any]:
        resp = await self._request(
            "POST",
            f"/threads/{thread_id}/messages",
            json_body={"role": role, "content": content},
        )
        return _json(resp)

    async def create_run(self, thread_id: str, assistant_id: str) -> Dict[str, Any]:
        resp = await self._request("POST", f"/threads/{thread_id}/runs", json_body={"assistant_id": assistant_id})
        return _json(resp)

    async def retrieve_run(self, thread_id: str, run_id: str) -> Dict[str, Any]:
        resp = await self._request("GET", f"/threads/{thread_id}/runs/{run_id}")
        return _json(resp)

    async def list_messages(self, thread_id: str, order: str = "desc", limit: int = 20) -> List[Dict[str, Any]]:
        resp = await self._request(
            "GET",
            f"/threads/{thread_id}/messages",
            params={"order": order, "limit": limit},
        )
        return _json(resp).get("data") or []

    async def list_run_steps(self, thread_id: str, run_id: str) -> List[Dict[str, Any]]:
        resp = await self._request("GET", f"/threads/{thread_id}/runs/{run_id}/steps")
        return _json(resp).get("data") or []

    async def retrieve_file(self, file_id: str) -> Dict[str, Any]:
        resp = await self._request("GET", f"/files/{file_id}", beta=False)
        return _json(resp)

    async def create_speech(self, text: str, *, model: str, voice: str, response_format: str = "mp3") -> bytes:
        payload = {"model": model, "voice": voice, "input": text, "response_format": response_format}
        resp = await self._request("POST", "/audio/speech", json_body=payload, beta=False)
        return resp.content

    async def create_transcription(
        self,
        audio: bytes,
        *,
        filename: str,
        content_type: str,
        model: str,
        language: str,
    ) -> Dict[str, Any]:
        resp = await self._request(
            "POST",
            "/audio/transcriptions",
            data={"model": model, "language": language},
            files={"file": (filename, audio, content_type)},
            beta=False,
        )
        return _json(resp)

    async def close(self) -> None:
        # Safe to call multiple times
        if not self.client.is_closed:
            await self.client.aclose()
