"""FastAPI host for FitCoach coach sessions."""

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Callable, Dict, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from fitcoach.audio import Microphone
from fitcoach.config import Config
from fitcoach.context import ContextAggregator
from fitcoach.gateway import create_gateway
from fitcoach.models import Notification
from fitcoach.orchestrator import SessionOrchestrator
from fitcoach.speech import DeepgramRecognizer, ElevenLabsSynthesizer, SpeechCaptureController, SpeechPlaybackController
from fitcoach.stores import create_stores
from fitcoach.voice import LiveVoiceController, VoiceBroker

logger = logging.getLogger(__name__)

HEARTBEAT_SECONDS = 15.0
NOTIFICATION_BACKLOG = 100


# Request models
class CreateSessionRequest(BaseModel):
    user_id: str
    access_token: Optional[str] = None
    voice_enabled: bool = False
    agent_id: Optional[str] = None


class DraftRequest(BaseModel):
    text: str


class SendRequest(BaseModel):
    text: Optional[str] = None


class VoiceRequest(BaseModel):
    enabled: bool


class LiveConnectRequest(BaseModel):
    agent_id: Optional[str] = None


class VolumeRequest(BaseModel):
    level: float = Field(ge=0.0, le=1.0)


SessionBuilder = Callable[[CreateSessionRequest, Callable[[Notification], None], Microphone], SessionOrchestrator]


def build_session(
    request: CreateSessionRequest,
    notify: Callable[[Notification], None],
    microphone: Microphone,
) -> SessionOrchestrator:
    """Wire one orchestrator to the configured backends."""
    profiles, activity = create_stores(access_token=request.access_token)
    return SessionOrchestrator(
        user_id=request.user_id,
        notify=notify,
        gateway=create_gateway(access_token=request.access_token),
        context=ContextAggregator(profiles, activity),
        capture=SpeechCaptureController(DeepgramRecognizer(), microphone),
        playback=SpeechPlaybackController(ElevenLabsSynthesizer()),
        live_voice=LiveVoiceController(VoiceBroker(), microphone),
        voice_enabled=request.voice_enabled,
        agent_id=request.agent_id or Config.VOICE_AGENT_ID,
    )


class SessionRecord:
    """An open coach view and its pending notifications."""

    def __init__(self, session_id: str, orchestrator: SessionOrchestrator, notifications: asyncio.Queue):
        self.id = session_id
        self.orchestrator = orchestrator
        self.notifications = notifications

    def to_dict(self):
        return {"id": self.id, "user_id": self.orchestrator.user_id, **self.orchestrator.state.to_dict()}


class SessionRegistry:
    """Open sessions by id. All sessions share the one microphone."""

    def __init__(self, builder: SessionBuilder = build_session, microphone: Optional[Microphone] = None):
        self._builder = builder
        self.microphone = microphone or Microphone()
        self._sessions: Dict[str, SessionRecord] = {}

    def open(self, request: CreateSessionRequest) -> SessionRecord:
        session_id = uuid.uuid4().hex
        queue: asyncio.Queue = asyncio.Queue(maxsize=NOTIFICATION_BACKLOG)

        def notify(notification: Notification) -> None:
            if queue.full():
                queue.get_nowait()  # drop oldest
            queue.put_nowait(notification)

        record = SessionRecord(session_id, self._builder(request, notify, self.microphone), queue)
        self._sessions[session_id] = record
        logger.info("[SESSION] opened %s for user %s", session_id, request.user_id)
        return record

    def get(self, session_id: str) -> SessionRecord:
        record = self._sessions.get(session_id)
        if record is None:
            raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
        return record

    async def close(self, session_id: str) -> None:
        record = self._sessions.pop(session_id, None)
        if record is None:
            raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
        await record.orchestrator.close()

    async def close_all(self) -> None:
        records = list(self._sessions.values())
        self._sessions.clear()
        results = await asyncio.gather(*(r.orchestrator.close() for r in records), return_exceptions=True)
        for record, result in zip(records, results):
            if isinstance(result, BaseException):
                logger.warning("[SESSION] closing %s failed: %r", record.id, result)

    def __len__(self) -> int:
        return len(self._sessions)


def create_app(session_builder: SessionBuilder = build_session, microphone: Optional[Microphone] = None) -> FastAPI:
    registry = SessionRegistry(session_builder, microphone)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        for item in Config.validate():
            logger.warning("[CONFIG] missing %s", item)
        yield
        await registry.close_all()
        logger.info("[SESSION] all sessions closed")

    app = FastAPI(title="FitCoach AI Coach", lifespan=lifespan)
    app.state.registry = registry

    # CORS for local development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.post("/sessions")
    async def open_session(request: CreateSessionRequest):
        """Mount a coach view."""
        return registry.open(request).to_dict()

    @app.get("/sessions/{session_id}")
    async def get_session(session_id: str):
        return registry.get(session_id).to_dict()

    @app.delete("/sessions/{session_id}")
    async def close_session(session_id: str):
        """Unmount a coach view; releases every audio resource it holds."""
        await registry.close(session_id)
        return {"status": "closed", "id": session_id}

    @app.put("/sessions/{session_id}/draft")
    async def set_draft(session_id: str, request: DraftRequest):
        record = registry.get(session_id)
        record.orchestrator.set_draft(request.text)
        return record.to_dict()

    @app.post("/sessions/{session_id}/send")
    async def send(session_id: str, request: SendRequest):
        """Send the draft (or the given text) and wait for the coach's reply."""
        record = registry.get(session_id)
        reply = await record.orchestrator.send(request.text)
        return {"reply": reply.to_dict() if reply else None, "session": record.to_dict()}

    @app.post("/sessions/{session_id}/capture/start")
    async def capture_start(session_id: str):
        record = registry.get(session_id)
        started = await record.orchestrator.start_capture()
        return {"started": started, "session": record.to_dict()}

    @app.post("/sessions/{session_id}/capture/stop")
    async def capture_stop(session_id: str):
        record = registry.get(session_id)
        await record.orchestrator.stop_capture()
        return record.to_dict()

    @app.put("/sessions/{session_id}/voice")
    async def set_voice(session_id: str, request: VoiceRequest):
        record = registry.get(session_id)
        record.orchestrator.set_voice_enabled(request.enabled)
        return record.to_dict()

    @app.post("/sessions/{session_id}/live/connect")
    async def live_connect(session_id: str, request: Optional[LiveConnectRequest] = None):
        record = registry.get(session_id)
        connected = await record.orchestrator.connect_live_voice(request.agent_id if request else None)
        return {"connected": connected, "session": record.to_dict()}

    @app.post("/sessions/{session_id}/live/disconnect")
    async def live_disconnect(session_id: str):
        record = registry.get(session_id)
        await record.orchestrator.disconnect_live_voice()
        return record.to_dict()

    @app.put("/sessions/{session_id}/live/volume")
    async def live_volume(session_id: str, request: VolumeRequest):
        record = registry.get(session_id)
        applied = await record.orchestrator.set_live_voice_volume(request.level)
        return {"applied": applied, "session": record.to_dict()}

    @app.post("/sessions/{session_id}/live/mute")
    async def live_mute(session_id: str):
        record = registry.get(session_id)
        muted = await record.orchestrator.toggle_live_voice_mute()
        return {"muted": muted, "session": record.to_dict()}

    @app.get("/sessions/{session_id}/notifications/stream")
    async def notification_stream(session_id: str):
        """Stream session notifications via Server-Sent Events."""
        record = registry.get(session_id)

        async def event_generator():
            while not record.orchestrator.closed:
                try:
                    notification = await asyncio.wait_for(record.notifications.get(), timeout=HEARTBEAT_SECONDS)
                except asyncio.TimeoutError:
                    # Send heartbeat to keep connection alive
                    yield ": heartbeat\n\n"
                    continue
                yield f"data: {json.dumps(notification.to_dict())}\n\n"

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",  # Disable buffering for nginx
            }
        )

    return app


app = create_app()
