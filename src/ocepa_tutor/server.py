"""Tutor proxy: forwards conversation history to Gemini and relays the reply."""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncIterator
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .config import API_KEY, GEMINI_MODEL, PROXY_PATH
from .exceptions import ConfigurationError
from .models import Message, Role
from .prompts import TUTOR_SYSTEM_PROMPT

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

PROVIDER_ERROR = "Failed to get response from Gemini API."

app = FastAPI(title="Ocepa AI Tutor proxy", version=__version__)

# Singleton model, reused across requests
_chat_model: BaseChatModel | None = None


class ChatRequest(BaseModel):
    history: list[Message]


def get_chat_model() -> BaseChatModel:
    global _chat_model
    if _chat_model is None:
        if not API_KEY:
            raise ConfigurationError(
                "API_KEY environment variable not set in the proxy environment."
            )
        from langchain_google_genai import ChatGoogleGenerativeAI

        _chat_model = ChatGoogleGenerativeAI(model=GEMINI_MODEL, google_api_key=API_KEY)
    return _chat_model


def to_provider_messages(history: list[Message]) -> list[BaseMessage]:
    """System instruction first, then the conversation in order."""
    messages: list[BaseMessage] = [SystemMessage(content=TUTOR_SYSTEM_PROMPT)]
    for msg in history:
        if msg.role is Role.USER:
            messages.append(HumanMessage(content=msg.text))
        else:
            messages.append(AIMessage(content=msg.text))
    return messages


def _message_text(message: Any) -> str:
    content = getattr(message, "content", "")
    if isinstance(content, str):
        return content
    parts = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and isinstance(part.get("text"), str):
            parts.append(part["text"])
    return "".join(parts)


def _validate(body: Any) -> list[Message]:
    history = body.get("history") if isinstance(body, dict) else None
    if not isinstance(history, list) or not history:
        raise HTTPException(
            status_code=400,
            detail='Request body must contain a non-empty "history" array.',
        )
    try:
        messages = ChatRequest.model_validate(body).history
    except ValidationError:
        raise HTTPException(status_code=400, detail="Malformed message in history.")

    last = messages[-1]
    if last.role is not Role.USER or not last.text:
        raise HTTPException(
            status_code=400, detail="The last message in history must be from the user."
        )
    return messages


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code)


@app.exception_handler(ConfigurationError)
async def _config_error(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("Proxy misconfigured: %s", exc)
    return JSONResponse({"error": str(exc)}, status_code=500)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.api_route(PROXY_PATH, methods=["GET", "PUT", "PATCH", "DELETE"])
async def wrong_method():
    raise HTTPException(status_code=405, detail="Only POST requests are allowed")


@app.post(PROXY_PATH)
async def chat(
    request: Request,
    stream: bool = True,
    model: BaseChatModel = Depends(get_chat_model),
):
    """Relay one tutor reply, streamed as plain text or as ``{"text": ...}``."""
    raw = await request.body()
    if not raw:
        raise HTTPException(status_code=400, detail="No request body found")
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body is not valid JSON.")

    history = _validate(body)
    messages = to_provider_messages(history)
    logger.info("Tutor request: %d messages, stream=%s", len(history), stream)

    if not stream:
        try:
            reply = await model.ainvoke(messages)
        except Exception:
            logger.exception("Gemini request failed")
            return JSONResponse({"error": PROVIDER_ERROR}, status_code=500)
        return {"text": _message_text(reply)}

    chunks = model.astream(messages)
    try:
        first = await _first_text(chunks)
    except Exception:
        logger.exception("Gemini stream failed to start")
        return JSONResponse({"error": PROVIDER_ERROR}, status_code=500)

    return StreamingResponse(
        _relay(first, chunks),
        media_type="text/plain; charset=utf-8",
        headers={"X-Content-Type-Options": "nosniff"},
    )


async def _first_text(chunks: AsyncIterator[Any]) -> str:
    async for chunk in chunks:
        text = _message_text(chunk)
        if text:
            return text
    return ""


async def _relay(first: str, chunks: AsyncIterator[Any]) -> AsyncIterator[bytes]:
    if first:
        yield first.encode("utf-8")
    try:
        async for chunk in chunks:
            text = _message_text(chunk)
            if text:
                yield text.encode("utf-8")
    except Exception:
        # Headers are already sent; aborting the body is the only signal left
        logger.exception("Gemini stream broke off")
        raise
