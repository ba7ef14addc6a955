"""
AI advisor / tutor chat endpoints.

Both are governed by ConcurrencyLimitMiddleware (per-user in-flight ceiling);
nothing here needs to know about it.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from app.integrations.ollama import OllamaClient, OllamaError
from app.models.schemas.ai import ChatReply, ChatRequest
from app.models.schemas.base import ResponseBase
from app.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)

ADVISOR_PROMPT = (
    "You are a course advisor for an online learning platform. "
    "Help the learner choose courses that fit their goals and level. Be concise."
)
TUTOR_PROMPT = (
    "You are a patient tutor. Explain concepts step by step and check the "
    "learner's understanding. Stay on the topic of the course."
)


def get_ollama_client(request: Request) -> OllamaClient:
    client: Optional[OllamaClient] = getattr(request.app.state, "ollama", None)
    if client is None:
        client = OllamaClient()
        request.app.state.ollama = client
    return client


async def _chat(body: ChatRequest, system_prompt: str, client: OllamaClient, kind: str) -> ResponseBase:
    history = [turn.model_dump() for turn in body.history]
    if body.course_id is not None:
        system_prompt = f"{system_prompt}\nCourse id: {body.course_id}."
    if body.lesson_id is not None:
        system_prompt = f"{system_prompt}\nLesson id: {body.lesson_id}."
    try:
        reply = await client.chat(body.message, history, system_prompt)
    except OllamaError as e:
        logger.error("AI chat failed", kind=kind, error=str(e))
        raise HTTPException(status_code=502, detail="AI service unavailable")
    return ResponseBase(message="OK", data=ChatReply(reply=reply, model=client.model).model_dump())


@router.post("/advisor/chat", response_model=ResponseBase, summary="Chat with the course advisor")
async def advisor_chat(body: ChatRequest, client: OllamaClient = Depends(get_ollama_client)) -> ResponseBase:
    return await _chat(body, ADVISOR_PROMPT, client, "advisor")


@router.post("/tutor/chat", response_model=ResponseBase, summary="Chat with the lesson tutor")
async def tutor_chat(body: ChatRequest, client: OllamaClient = Depends(get_ollama_client)) -> ResponseBase:
    return await _chat(body, TUTOR_PROMPT, client, "tutor")


@router.get("/health", response_model=ResponseBase, summary="Reachability of the language model backend")
async def ai_health(client: OllamaClient = Depends(get_ollama_client)) -> ResponseBase:
    healthy = await client.check_health()
    return ResponseBase(
        success=healthy,
        message="AI backend reachable" if healthy else "AI backend unreachable",
        data={"model": client.model, "base_url": client.base_url},
    )
