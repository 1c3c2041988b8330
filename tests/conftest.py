"""Fakes for every session collaborator."""

import asyncio
from typing import List, Optional

import pytest

from fitcoach.audio import Microphone
from fitcoach.context import ContextAggregator
from fitcoach.errors import VoiceAuthFailedError
from fitcoach.gateway.base_gateway import BaseGateway
from fitcoach.models import TranscriptEvent
from fitcoach.orchestrator import SessionOrchestrator
from fitcoach.speech.capture import SpeechCaptureController
from fitcoach.speech.playback import SpeechPlaybackController
from fitcoach.speech.recognizer import Recognizer
from fitcoach.speech.synthesizer import Synthesizer
from fitcoach.stores import ActivityStore, ProfileStore
from fitcoach.voice.live_session import LiveVoiceController
from fitcoach.voice.transport import RealtimeTransport, TransportEvents

GREETING = "Hi! I'm your FitCoach AI Coach."


class FakeStore(ProfileStore, ActivityStore):
    def __init__(self, profile=None, workouts=None, meals=None):
        self.profile = profile
        self.workouts = workouts or []
        self.meals = meals or []
        self.failing = set()
        self.calls = []

    async def get_profile(self, user_id):
        self.calls.append(("profile", user_id, None, None))
        if "profile" in self.failing:
            raise ConnectionError("profiles unavailable")
        return self.profile

    async def list_workouts(self, user_id, since, limit):
        self.calls.append(("workouts", user_id, since, limit))
        if "workouts" in self.failing:
            raise ConnectionError("workouts unavailable")
        return self.workouts[:limit]

    async def list_meals(self, user_id, since, limit):
        self.calls.append(("meals", user_id, since, limit))
        if "meals" in self.failing:
            raise ConnectionError("meals unavailable")
        return self.meals[:limit]


class FakeGateway(BaseGateway):
    """Replies with queued strings or raises queued exceptions."""

    name = "fake"

    def __init__(self, *replies):
        super().__init__(timeout=1)
        self.replies = list(replies)
        self.calls = []
        self.gate: Optional[asyncio.Event] = None

    async def send(self, transcript, context):
        self.calls.append((tuple(transcript), context))
        if self.gate is not None:
            await self.gate.wait()
        reply = self.replies.pop(0) if self.replies else "Keep going!"
        if isinstance(reply, BaseException):
            raise reply
        return reply


class FakeRecognizer(Recognizer):
    def __init__(self, fail_with: Optional[Exception] = None):
        self.fail_with = fail_with
        self.on_transcript = None
        self.on_end = None
        self.starts = 0
        self.stops = 0

    async def start(self, on_transcript, on_end):
        self.starts += 1
        if self.fail_with is not None:
            raise self.fail_with
        self.on_transcript = on_transcript
        self.on_end = on_end

    async def stop(self):
        self.stops += 1
        self.on_transcript = None
        self.on_end = None

    def hear(self, text, is_final=True):
        self.on_transcript(TranscriptEvent(text=text, is_final=is_final))

    def end(self, error=None):
        on_end, self.on_end = self.on_end, None
        on_end(error)


class FakeSynthesizer(Synthesizer):
    """Utterances last until release() unless auto_finish is set."""

    def __init__(self, auto_finish=False, fail_with: Optional[Exception] = None):
        self.auto_finish = auto_finish
        self.fail_with = fail_with
        self.started: List[str] = []
        self.finished: List[str] = []
        self.cancelled: List[str] = []
        self._release = asyncio.Event() if not auto_finish else None

    async def speak(self, text):
        self.started.append(text)
        try:
            if self.fail_with is not None:
                raise self.fail_with
            if self._release is not None:
                await self._release.wait()
            else:
                await asyncio.sleep(0)
        except asyncio.CancelledError:
            self.cancelled.append(text)
            raise
        self.finished.append(text)

    def release(self):
        self._release.set()


class FakeTransport(RealtimeTransport):
    def __init__(self, fail_with: Optional[Exception] = None):
        self.fail_with = fail_with
        self.events: Optional[TransportEvents] = None
        self.signed_url = None
        self.closes = 0
        self.volume = 1.0

    async def open(self, signed_url, events):
        self.signed_url = signed_url
        if self.fail_with is not None:
            raise self.fail_with
        self.events = events

    async def close(self):
        self.closes += 1

    def set_volume(self, level):
        self.volume = level


class FakeBroker:
    def __init__(self, signed_url="wss://agents.example/convai?token=abc", fail=False):
        self.signed_url = signed_url
        self.fail = fail
        self.requests = []

    async def get_signed_url(self, agent_id):
        self.requests.append(agent_id)
        if self.fail:
            raise VoiceAuthFailedError()
        return self.signed_url


@pytest.fixture
def notifications():
    return []


@pytest.fixture
def store():
    return FakeStore(
        profile={"id": "user-1", "first_name": "Sam", "goal": "maintain"},
        workouts=[{"date": "2026-10-17", "total_calories": 420, "total_duration": 45}],
        meals=[{"date": "2026-10-17", "meal_type": "lunch", "total_calories": 650, "total_protein": 40}],
    )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def microphone():
    return Microphone(probe=lambda: None)


@pytest.fixture
def recognizer():
    return FakeRecognizer()


@pytest.fixture
def synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def transports():
    return []


@pytest.fixture
def broker():
    return FakeBroker()


@pytest.fixture
def live_voice(broker, microphone, transports):
    def factory():
        transport = FakeTransport()
        transports.append(transport)
        return transport
    return LiveVoiceController(broker, microphone, transport_factory=factory)


@pytest.fixture
def session(notifications, store, gateway, microphone, recognizer, synthesizer, live_voice):
    return SessionOrchestrator(
        user_id="user-1",
        notify=notifications.append,
        gateway=gateway,
        context=ContextAggregator(store, store, limit=10, window_days=0),
        capture=SpeechCaptureController(recognizer, microphone),
        playback=SpeechPlaybackController(synthesizer),
        live_voice=live_voice,
        greeting=GREETING,
        agent_id="agent-123",
    )
