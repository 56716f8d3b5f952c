import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .citations import collect_file_ids, strip_citations
from .config import AppSettings
from .errors import BackendError, InvalidInput
from .openai_client import OpenAIClient
from .polling import poll_run
from .schemas import Answer


logger = logging.getLogger("uvicorn.error")

SYSTEM_PROMPT = """You are Philo, a wise and eloquent research assistant with a flair for ancient wisdom. You have access to a vector store containing a curated library of books spanning investment philosophy, decision-making frameworks, psychology, and other fields of knowledge.

When answering:
- Prefer information from the files in your knowledge base and quote or reference them where useful
- Speak with warmth and depth, as a learned scholar sharing insights
- Be concise but thorough - like a sage who values both brevity and completeness
- If the question is outside the scope of your knowledge base, draw on your general wisdom while being transparent about the source
- When referencing books or texts, mention the title and author when available

Remember: You are a guide on the seeker's journey to understanding."""

NO_REPLY_TEXT = "I could not formulate a response. Please try again."
NON_TEXT_REPLY_TEXT = "I received a response I could not read. Please try again."


def _latest_assistant_message(messages: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    # Messages are listed newest first.
    for msg in messages:
        if msg.get("role") == "assistant":
            return msg
    return None


def _first_text_block(message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    for block in message.get("content") or []:
        if isinstance(block, dict) and block.get("type") == "text":
            return block.get("text") or {}
    return None


def _tool_kinds(steps: List[Dict[str, Any]]) -> List[str]:
    kinds: List[str] = []
    for step in steps:
        details = step.get("step_details") or {}
        if details.get("type") != "tool_calls":
            continue
        for call in details.get("tool_calls") or []:
            kind = call.get("type")
            if kind and kind not in kinds:
                kinds.append(kind)
    return kinds


class ConversationOrchestrator:
    def __init__(
        self,
        client: OpenAIClient,
        settings: AppSettings,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.settings = settings
        self.sleep = sleep
        self._assistant_id: Optional[str] = settings.assistant_id or None
        self._assistant_lock = asyncio.Lock()

    @property
    def assistant_cached(self) -> bool:
        return self._assistant_id is not None

    def reconfigure(self, settings: AppSettings, client: Optional[OpenAIClient] = None) -> None:
        """Swap settings (and client); an explicitly configured assistant id replaces the cached one."""
        self.settings = settings
        if client is not None:
            self.client = client
        if settings.assistant_id:
            self._assistant_id = settings.assistant_id

    async def resolve_assistant(self, force: bool = False) -> str:
        if self._assistant_id and not force:
            return self._assistant_id
        async with self._assistant_lock:
            # Another request may have finished creating it while we waited.
            if self._assistant_id and not force:
                return self._assistant_id
            assistant = await self.client.create_assistant(
                name=self.settings.assistant_name,
                instructions=SYSTEM_PROMPT,
                model=self.settings.assistant_model,
                vector_store_id=self.settings.vector_store_id,
            )
            assistant_id = assistant.get("id")
            if not assistant_id:
                raise BackendError("Assistant creation returned no id")
            logger.info("Created assistant %s bound to %s", assistant_id, self.settings.vector_store_id)
            self._assistant_id = assistant_id
            return assistant_id

    async def _resolve_sources(self, file_ids: List[str]) -> List[str]:
        names: List[str] = []
        for file_id in file_ids:
            try:
                info = await self.client.retrieve_file(file_id)
            except BackendError as exc:
                logger.warning("Citation lookup for %s failed: %s", file_id, exc)
                continue
            if not isinstance(info, dict):
                logger.warning("Citation lookup for %s returned %s", file_id, type(info).__name__)
                continue
            name = info.get("filename") or file_id
            if name not in names:
                names.append(name)
        return names

    async def _tools_used(self, thread_id: str, run_id: str) -> List[str]:
        try:
            steps = await self.client.list_run_steps(thread_id, run_id)
        except BackendError as exc:
            logger.warning("Listing steps for run %s failed: %s", run_id, exc)
            return []
        return _tool_kinds(steps)

    async def answer(self, message: str, thread_id: Optional[str] = None) -> Answer:
        text = (message or "").strip()
        if not text:
            raise InvalidInput("Message is required")

        assistant_id = await self.resolve_assistant()
        if not thread_id:
            thread = await self.client.create_thread()
            thread_id = thread["id"]

        # The message must land on the thread before the run is created.
        await self.client.create_message(thread_id, text)
        run = await self.client.create_run(thread_id, assistant_id)
        run_id = run["id"]

        async def fetch() -> Dict[str, Any]:
            return await self.client.retrieve_run(thread_id, run_id)

        await poll_run(
            fetch,
            interval_s=self.settings.poll_interval_s,
            max_attempts=self.settings.poll_max_attempts,
            sleep=self.sleep,
        )

        messages = await self.client.list_messages(thread_id)
        reply = _latest_assistant_message(messages)
        sources: List[str] = []
        if reply is None:
            raw_text = NO_REPLY_TEXT
        else:
            block = _first_text_block(reply)
            raw_text = (block or {}).get("value") or NON_TEXT_REPLY_TEXT
            if block:
                sources = await self._resolve_sources(collect_file_ids(block.get("annotations") or []))

        return Answer(
            text=strip_citations(raw_text),
            thread_id=thread_id,
            run_id=run_id,
            sources=sources,
            tools_used=await self._tools_used(thread_id, run_id),
        )
