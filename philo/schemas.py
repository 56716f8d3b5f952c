from typing import List, Optional

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    message: str = ""
    thread_id: Optional[str] = Field(default=None, alias="threadId")

    model_config = {"populate_by_name": True}


class Answer(BaseModel):
    text: str
    thread_id: str
    run_id: str
    sources: List[str] = Field(default_factory=list)
    tools_used: List[str] = Field(default_factory=list)


class ChatResponse(BaseModel):
    response: str
    thread_id: str = Field(alias="threadId")
    sources: List[str] = Field(default_factory=list)
    audio_url: Optional[str] = Field(default=None, alias="audioUrl")
    tools_used: List[str] = Field(default_factory=list, alias="toolsUsed")

    model_config = {"populate_by_name": True}


class TranscriptionResponse(BaseModel):
    text: str
