import pytest
from fastapi.testclient import TestClient

from fitcoach.audio import Microphone
from fitcoach.context import ContextAggregator
from fitcoach.errors import RateLimitedError
from fitcoach.main import create_app
from fitcoach.orchestrator import SessionOrchestrator
from fitcoach.speech.capture import SpeechCaptureController
from fitcoach.speech.playback import SpeechPlaybackController
from fitcoach.voice.live_session import LiveVoiceController
from tests.conftest import GREETING, FakeBroker, FakeGateway, FakeRecognizer, FakeStore, FakeSynthesizer, FakeTransport


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(gateway):
    def builder(request, notify, microphone):
        store = FakeStore(profile={"id": request.user_id, "goal": "maintain"})
        return SessionOrchestrator(
            user_id=request.user_id,
            notify=notify,
            gateway=gateway,
            context=ContextAggregator(store, store),
            capture=SpeechCaptureController(FakeRecognizer(), microphone),
            playback=SpeechPlaybackController(FakeSynthesizer(auto_finish=True)),
            live_voice=LiveVoiceController(FakeBroker(), microphone, transport_factory=FakeTransport),
            greeting=GREETING,
            voice_enabled=request.voice_enabled,
            agent_id=request.agent_id,
        )

    app = create_app(session_builder=builder, microphone=Microphone(probe=lambda: None))
    with TestClient(app) as c:
        yield c


def _open(client, **body):
    r = client.post("/sessions", json={"user_id": "user-1", **body})
    assert r.status_code == 200
    return r.json()


def test_open_session_starts_with_greeting(client):
    session = _open(client)

    assert session["user_id"] == "user-1"
    assert session["turn_state"] == "idle"
    assert [m["content"] for m in session["transcript"]] == [GREETING]


def test_draft_then_send(client, gateway):
    gateway.replies = ["Try intervals today."]
    sid = _open(client)["id"]

    r = client.put(f"/sessions/{sid}/draft", json={"text": "Cardio ideas?"})
    assert r.json()["turn_state"] == "composing"

    r = client.post(f"/sessions/{sid}/send", json={})
    body = r.json()
    assert body["reply"]["content"] == "Try intervals today."
    assert len(body["session"]["transcript"]) == 3
    assert body["session"]["draft"] == ""


def test_failed_send_queues_notification(client, gateway):
    gateway.replies = [RateLimitedError("Rate limits exceeded.")]
    sid = _open(client)["id"]

    body = client.post(f"/sessions/{sid}/send", json={"text": "Plan my week"}).json()

    assert body["reply"] is None
    assert body["session"]["turn_state"] == "idle-with-error"
    assert len(body["session"]["transcript"]) == 1
    record = client.app.state.registry.get(sid)
    note = record.notifications.get_nowait()
    assert note.kind == "rateLimited"


def test_unknown_session_is_404(client):
    assert client.get("/sessions/nope").status_code == 404
    assert client.delete("/sessions/nope").status_code == 404


def test_capture_start_and_stop(client):
    sid = _open(client)["id"]

    body = client.post(f"/sessions/{sid}/capture/start").json()
    assert body["started"] is True
    assert body["session"]["capturing"] is True

    assert client.post(f"/sessions/{sid}/capture/stop").json()["capturing"] is False


def test_voice_toggle(client):
    sid = _open(client)["id"]
    assert client.put(f"/sessions/{sid}/voice", json={"enabled": True}).json()["voice_enabled"] is True


def test_live_voice_lifecycle(client):
    sid = _open(client, agent_id="agent-123")["id"]

    body = client.post(f"/sessions/{sid}/live/connect", json={}).json()
    assert body["connected"] is True
    assert body["session"]["live_voice_status"] == "connected"

    assert client.post(f"/sessions/{sid}/live/mute").json()["muted"] is True
    assert client.put(f"/sessions/{sid}/live/volume", json={"level": 0.6}).json()["applied"] is True

    body = client.post(f"/sessions/{sid}/live/disconnect").json()
    assert body["live_voice_status"] == "disconnected"
    assert body["live_voice_muted"] is False


def test_volume_out_of_range_is_rejected(client):
    sid = _open(client)["id"]
    assert client.put(f"/sessions/{sid}/live/volume", json={"level": 2}).status_code == 422


def test_delete_closes_session_and_frees_microphone(client):
    sid = _open(client, agent_id="agent-123")["id"]
    client.post(f"/sessions/{sid}/live/connect", json={})
    registry = client.app.state.registry
    orchestrator = registry.get(sid).orchestrator

    r = client.delete(f"/sessions/{sid}")

    assert r.json() == {"status": "closed", "id": sid}
    assert orchestrator.closed
    assert not registry.microphone.in_use
    assert client.get(f"/sessions/{sid}").status_code == 404


def test_shutdown_closes_open_sessions(gateway):
    app = create_app(
        session_builder=lambda request, notify, microphone: SessionOrchestrator(
            request.user_id, notify, gateway, ContextAggregator(FakeStore(), FakeStore()), greeting=GREETING),
        microphone=Microphone(probe=lambda: None),
    )
    with TestClient(app) as c:
        sid = c.post("/sessions", json={"user_id": "user-1"}).json()["id"]
        orchestrator = app.state.registry.get(sid).orchestrator

    assert orchestrator.closed
    assert len(app.state.registry) == 0
