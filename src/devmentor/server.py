"""FastAPI surface over the chat service.

Non-streaming routes return the ``{success, data | error}`` envelope; the
chat route streams ``data: {json}`` Server-Sent Events ending in
``data: [DONE]``.
"""

from __future__ import annotations

import json
import time
from contextlib import aclosing

from fastapi import BackgroundTasks, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse
from loguru import logger

from devmentor.api_schemas import (
    AnalyzeConfigBody,
    AnalyzeErrorBody,
    ContextCleanupBody,
    CreateSessionBody,
    SendMessageBody,
    ToolExecuteBody,
    UpdateSessionBody,
)
from devmentor.chat_service import ApiResponse, ChatService
from devmentor.errors import DevMentorError
from devmentor.memory.events import utc_now

VERSION = "0.1.0"

_STATUS_BY_CODE = {
    "VALIDATION_ERROR": 400,
    "NOT_FOUND": 404,
    "SESSION_CLOSED": 409,
    "CONFLICT": 409,
}


def status_for(code: str | None) -> int:
    return _STATUS_BY_CODE.get(code or "", 500)


def respond(result: ApiResponse) -> JSONResponse:
    status = 200 if result.success else status_for((result.error or {}).get("code"))
    return JSONResponse(status_code=status, content=result.to_dict())


def create_app(service: ChatService, *, provider_name: str = "mock") -> FastAPI:
    app = FastAPI(title="DevMentor", version=VERSION)
    app.state.service = service
    app.state.started = time.monotonic()
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    @app.exception_handler(RequestValidationError)
    async def validation_failed(_request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"Invalid request: {where}: {first.get('msg', 'invalid value')}" if where else "Invalid request body"
        return respond(ApiResponse.fail("VALIDATION_ERROR", message))

    @app.get("/health")
    async def health():
        return {
            "success": True,
            "data": {
                "status": "healthy",
                "version": VERSION,
                "provider": provider_name,
                "uptime": int(time.monotonic() - app.state.started),
                "timestamp": utc_now(),
            },
        }

    # -- sessions ---------------------------------------------------------

    @app.get("/api/sessions")
    async def list_sessions(page: int = Query(1, ge=1), page_size: int = Query(50, ge=1, le=500, alias="pageSize")):
        return respond(await service.list_sessions(page=page, page_size=page_size))

    @app.post("/api/sessions")
    async def create_session(body: CreateSessionBody):
        result = await service.create_session(body.name, body.type, model=body.model, system_prompt=body.system_prompt)
        response = respond(result)
        if result.success:
            response.status_code = 201
        return response

    @app.get("/api/sessions/{session_id}")
    async def get_session(session_id: str):
        return respond(await service.get_session(session_id))

    @app.patch("/api/sessions/{session_id}")
    async def update_session(session_id: str, body: UpdateSessionBody):
        return respond(await service.update_session(session_id, name=body.name, status=body.status))

    @app.delete("/api/sessions/{session_id}")
    async def delete_session(session_id: str):
        return respond(await service.delete_session(session_id))

    @app.post("/api/sessions/{session_id}/resume")
    async def resume_session(session_id: str):
        return respond(await service.resume_session(session_id))

    @app.post("/api/sessions/{session_id}/abort")
    async def abort_chat(session_id: str):
        return respond(await service.abort_chat(session_id))

    @app.get("/api/sessions/{session_id}/messages")
    async def list_messages(
        session_id: str,
        page: int = Query(1, ge=1),
        page_size: int = Query(100, ge=1, le=500, alias="pageSize"),
    ):
        return respond(await service.list_messages(session_id, page=page, page_size=page_size))

    # -- chat -------------------------------------------------------------

    @app.post("/api/sessions/{session_id}/chat/stream")
    async def chat_stream(session_id: str, body: SendMessageBody):
        try:
            events = await service.send_chat(session_id, body.to_chat_request())
        except DevMentorError as ex:
            logger.info(f"Chat rejected for {session_id}: {ex.code} {ex.message}")
            return respond(ApiResponse.fail(ex.code, ex.message))

        async def generate():
            async with aclosing(events):
                async for event in events:
                    yield f"data: {json.dumps(event.to_dict())}\n\n"
            yield "data: [DONE]\n\n"

        # Releases the session even when generate() is never started.
        cleanup = BackgroundTasks()
        cleanup.add_task(events.aclose)
        return StreamingResponse(
            generate(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
            background=cleanup,
        )

    # -- stored context ---------------------------------------------------

    @app.get("/api/sessions/{session_id}/context")
    async def context_history(session_id: str, limit: int = Query(10, ge=1, le=100)):
        return respond(await service.get_context_history(session_id, limit=limit))

    @app.get("/api/sessions/{session_id}/context/{context_id}")
    async def get_context(session_id: str, context_id: str):
        return respond(await service.get_context(session_id, context_id))

    @app.post("/api/sessions/{session_id}/context/cleanup")
    async def cleanup_contexts(session_id: str, body: ContextCleanupBody | None = None):
        keep = body.keep_count if body is not None else ContextCleanupBody().keep_count
        return respond(await service.cleanup_contexts(session_id, keep=keep))

    @app.get("/api/images/{session_id}/{message_id}/{filename}")
    async def get_image(session_id: str, message_id: str, filename: str):
        try:
            path = service.image_path(session_id, message_id, filename)
        except DevMentorError as ex:
            return respond(ApiResponse.fail(ex.code, ex.message))
        return FileResponse(path, headers={"Cache-Control": "public, max-age=86400"})

    # -- tools ------------------------------------------------------------

    @app.get("/api/tools")
    async def list_tools(session_type: str = Query("devops", alias="type")):
        return respond(await service.list_tools(session_type))

    @app.post("/api/tools/execute")
    async def execute_tool(body: ToolExecuteBody):
        return respond(await service.execute_tool(body.tool_name, body.params))

    @app.post("/api/tools/analyze-config")
    async def analyze_config(body: AnalyzeConfigBody):
        return respond(await service.analyze_config(body.content, body.type))

    @app.post("/api/tools/analyze-error")
    async def analyze_error(body: AnalyzeErrorBody):
        return respond(await service.analyze_error(body.error, body.context))

    # -- models -----------------------------------------------------------

    @app.get("/api/models")
    async def list_models():
        return respond(await service.list_models())

    @app.get("/api/models/{model_id}")
    async def get_model(model_id: str):
        return respond(await service.get_model(model_id))

    return app
