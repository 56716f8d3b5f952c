import asyncio
from typing import Any, Dict, List, Optional

from philo.errors import BackendError


def text_message(value: str, annotations: Optional[List[Dict[str, Any]]] = None, role: str = "assistant") -> Dict[str, Any]:
    return {
        "role": role,
        "content": [{"type": "text", "text": {"value": value, "annotations": annotations or []}}],
    }


def file_citation(file_id: str, marker: str = "【4:0†source】") -> Dict[str, Any]:
    return {"type": "file_citation", "text": marker, "file_citation": {"file_id": file_id}}


class FakeOpenAIClient:
    def __init__(
        self,
        run_statuses: Optional[List[str]] = None,
        reply_text: str = "Test answer.",
        annotations: Optional[List[Dict[str, Any]]] = None,
        messages: Optional[List[Dict[str, Any]]] = None,
        files: Optional[Dict[str, str]] = None,
        run_error: Optional[Dict[str, Any]] = None,
        steps: Optional[List[Dict[str, Any]]] = None,
        transcript: str = "hello there",
        speech_error: Optional[Exception] = None,
        api_key: Optional[str] = "test-key",
    ) -> None:
        self.api_key = api_key
        self.run_statuses = list(run_statuses or ["completed"])
        self.reply_text = reply_text
        self.annotations = annotations or []
        self.messages = messages
        self.files = files or {}
        self.run_error = run_error
        self.steps = steps or []
        self.transcript = transcript
        self.speech_error = speech_error
        self.calls: List[tuple] = []
        self.assistants_created = 0
        self.run_polls = 0
        self.speech_inputs: List[str] = []

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    async def create_assistant(self, *, name: str, instructions: str, model: str, vector_store_id: str) -> Dict[str, Any]:
        # Yield so concurrent callers interleave like a real network call.
        await asyncio.sleep(0)
        self.assistants_created += 1
        self.calls.append(("create_assistant", {"model": model, "vector_store_id": vector_store_id}))
        return {"id": f"asst_{self.assistants_created}"}

    async def create_thread(self) -> Dict[str, Any]:
        self.calls.append(("create_thread", {}))
        return {"id": "thread_new"}

    async def create_message(self, thread_id: str, content: str, role: str = "user") -> Dict[str, Any]:
        self.calls.append(("create_message", {"thread_id": thread_id, "content": content}))
        return {"id": "msg_user", "role": role}

    async def create_run(self, thread_id: str, assistant_id: str) -> Dict[str, Any]:
        self.calls.append(("create_run", {"thread_id": thread_id, "assistant_id": assistant_id}))
        return {"id": "run_1", "status": "queued"}

    async def retrieve_run(self, thread_id: str, run_id: str) -> Dict[str, Any]:
        self.run_polls += 1
        self.calls.append(("retrieve_run", {"thread_id": thread_id, "run_id": run_id}))
        status = self.run_statuses.pop(0) if len(self.run_statuses) > 1 else self.run_statuses[0]
        run: Dict[str, Any] = {"id": run_id, "status": status}
        if self.run_error and status in ("failed", "cancelled", "expired"):
            run["last_error"] = self.run_error
        return run

    async def list_messages(self, thread_id: str, order: str = "desc", limit: int = 20) -> List[Dict[str, Any]]:
        self.calls.append(("list_messages", {"thread_id": thread_id}))
        if self.messages is not None:
            return self.messages
        return [
            text_message(self.reply_text, self.annotations),
            text_message("question", role="user"),
        ]

    async def list_run_steps(self, thread_id: str, run_id: str) -> List[Dict[str, Any]]:
        self.calls.append(("list_run_steps", {"run_id": run_id}))
        return self.steps

    async def retrieve_file(self, file_id: str) -> Dict[str, Any]:
        self.calls.append(("retrieve_file", {"file_id": file_id}))
        if file_id not in self.files:
            raise BackendError(f"OpenAI API Error: No such File object: {file_id}", 404)
        return {"id": file_id, "filename": self.files[file_id]}

    async def create_speech(self, text: str, *, model: str, voice: str, response_format: str = "mp3") -> bytes:
        self.speech_inputs.append(text)
        if self.speech_error:
            raise self.speech_error
        return b"ID3fake-mp3"

    async def create_transcription(
        self,
        audio: bytes,
        *,
        filename: str,
        content_type: str,
        model: str,
        language: str,
    ) -> Dict[str, Any]:
        self.calls.append(("create_transcription", {"filename": filename, "model": model, "language": language}))
        return {"text": self.transcript}

    async def close(self) -> None:
        return None


class FakeSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
