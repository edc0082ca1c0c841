from __future__ import annotations

import asyncio
import json
import logging

from fastapi import FastAPI, File, HTTPException, Request, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from common.config import GatewaySettings, GeminiSettings, PipelineSettings
from common.errors import InputError, describe_error
from common.schemas import (
    ClientMessageType,
    ConfigResponse,
    EndMessage,
    ErrorPayload,
    ErrorResponse,
    EventType,
    SessionEvent,
    StartMessage,
)
from gateway.events import SSE_HEADERS, QueueSink, WebSocketSink
from gateway.session import SessionManager
from gateway.upload import UploadRejected, build_asset, read_upload
from gemini_service.transcriber import TranscriptionClient, build_transcription_client
from pipeline.events import CollectingSink, EventSink
from pipeline.models import AudioAsset, SessionState
from pipeline.orchestrator import TranscriptionSession
from pipeline.waiting import Sleep

logger = logging.getLogger(__name__)

# Nginx-style status for "client closed request"
CLIENT_CLOSED_REQUEST = 499


def create_app(
    gateway_settings: GatewaySettings | None = None,
    pipeline_settings: PipelineSettings | None = None,
    gemini_settings: GeminiSettings | None = None,
    client: TranscriptionClient | None = None,
    sleep: Sleep = asyncio.sleep,
) -> FastAPI:
    """Build the gateway. The transcription client is created once here and shared by all sessions."""
    gateway_settings = gateway_settings or GatewaySettings()
    pipeline_settings = pipeline_settings or PipelineSettings()
    client = client or build_transcription_client(gemini_settings)
    manager = SessionManager(max_sessions=gateway_settings.max_sessions)

    app = FastAPI(title="Chunked Transcription Gateway")
    app.state.settings = gateway_settings
    app.state.client = client
    app.state.manager = manager

    def new_session(asset: AudioAsset, sink: EventSink) -> TranscriptionSession:
        return TranscriptionSession(
            asset=asset,
            client=client,
            sink=sink,
            settings=pipeline_settings,
            sleep=sleep,
        )

    async def register(session: TranscriptionSession) -> None:
        try:
            await manager.register(session)
        except RuntimeError as exc:
            logger.warning("Session rejected: %s", exc)
            raise HTTPException(status_code=503, detail=str(exc))

    async def run_streaming(session: TranscriptionSession, sink: QueueSink) -> None:
        try:
            await session.run()
        finally:
            await manager.remove(session.session_id)
            await sink.finish()

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content=ErrorResponse(error=str(exc.detail)).model_dump())

    @app.get("/health")
    async def health():
        return {"status": "ok", "active_sessions": manager.active_count}

    @app.get("/config")
    async def config():
        return ConfigResponse(max_file_size_mb=gateway_settings.max_file_size_mb).model_dump(by_alias=True)

    @app.post("/transcribe")
    async def transcribe(request: Request, audio: UploadFile | None = File(None)):
        asset = await read_upload(audio, gateway_settings)

        async def still_connected() -> bool:
            return not await request.is_disconnected()

        session = new_session(asset, CollectingSink(liveness=still_connected))
        await register(session)
        try:
            document = await session.run()
        finally:
            await manager.remove(session.session_id)

        if document is not None:
            return document.to_wire()
        if session.state == SessionState.cancelled:
            return Response(status_code=CLIENT_CLOSED_REQUEST)
        status_code = 400 if isinstance(session.error, InputError) else 500
        return JSONResponse(
            status_code=status_code,
            content=ErrorResponse(error=describe_error(session.error)).model_dump(),
        )

    @app.post("/transcribe-stream")
    async def transcribe_stream(request: Request, audio: UploadFile | None = File(None)):
        asset = await read_upload(audio, gateway_settings)
        sink = QueueSink(request)
        session = new_session(asset, sink)
        await register(session)
        manager.spawn(run_streaming(session, sink))

        async def event_stream():
            try:
                async for chunk in sink.stream():
                    yield chunk
            finally:
                sink.close()

        return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.websocket("/ws/transcribe")
    async def ws_transcribe(ws: WebSocket):
        await ws.accept()
        session: TranscriptionSession | None = None
        try:
            # Expect a start message first (text frame), then binary audio, then an end message
            raw = await ws.receive_text()
            msg = json.loads(raw)
            if msg.get("type") != ClientMessageType.start:
                await _send_error(ws, "Expected start message")
                await ws.close()
                return
            start = StartMessage(**msg)

            buffer = bytearray()
            while True:
                message = await ws.receive()
                if message.get("type") == "websocket.disconnect":
                    logger.info("Client disconnected during upload: %s", start.file_name)
                    return
                if message.get("bytes") is not None:
                    buffer.extend(message["bytes"])
                    if len(buffer) > gateway_settings.max_file_size_bytes:
                        raise UploadRejected(f"File size exceeds {gateway_settings.max_file_size_mb}MB")
                elif message.get("text") is not None:
                    msg = json.loads(message["text"])
                    if msg.get("type") == ClientMessageType.end:
                        end = EndMessage.model_validate(msg)
                        logger.info("Received %s after %d bytes of %s", end.type.value, len(buffer), start.file_name)
                        break

            asset = build_asset(start.file_name, bytes(buffer), gateway_settings, start.mime_type)
            sink = WebSocketSink(ws)
            session = new_session(asset, sink)
            await manager.register(session)

            watcher = asyncio.create_task(sink.watch())
            try:
                await session.run()
            finally:
                watcher.cancel()
                try:
                    await watcher
                except asyncio.CancelledError:
                    pass
            if ws.client_state == WebSocketState.CONNECTED:
                await ws.close()

        except WebSocketDisconnect:
            logger.info("Client disconnected: %s", session.session_id if session else "before start")
        except (UploadRejected, ValidationError, json.JSONDecodeError, RuntimeError) as exc:
            logger.warning("WebSocket session error: %s", exc)
            await _send_error(ws, str(exc))
            await ws.close()
        except Exception:
            logger.exception("Unexpected error in transcription websocket")
        finally:
            if session is not None:
                await manager.remove(session.session_id)

    return app


async def _send_error(ws: WebSocket, detail: str) -> None:
    event = SessionEvent.of(EventType.error, ErrorPayload(error=detail))
    await ws.send_text(event.model_dump_json())


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = GatewaySettings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host=settings.host, port=settings.port)
