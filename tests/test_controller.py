"""
End-to-end tests for the interaction controller.

Drive the assistant the way a user would: taps, recognizer callbacks
and backend answers, all through the fakes in conftest.
"""

import asyncio

import httpx
import pytest

from shelfscout.config import ContinuousModeConfig, ListeningConfig
from shelfscout.exceptions import BackendNetworkError, BackendServerError
from shelfscout.interaction.lifecycle import InteractionState
from shelfscout.voice.eou import EOUSource
from shelfscout.voice.feedback import EARCON_PATTERNS, PROCESSING_MESSAGE

from conftest import FakeBackend, FakeCamera, FakeGuidance, FakeSpeechSession, FakeTTS, wait_for

READY = InteractionState.READY
LISTENING = InteractionState.LISTENING
THINKING = InteractionState.THINKING
SPEAKING = InteractionState.SPEAKING

NAV = {"text": "Keep walking", "navigation_flag": True}
DONE = {"text": "You have arrived"}
HANDOFF = {"text": "It is on your left", "native_handoff_flag": True, "region": [40, 60, 200, 300], "label": "jam"}


def _track(assistant) -> list:
    states = []
    assistant.controller.add_state_listener(states.append)
    return states


def _errors(assistant) -> list[str]:
    return [m for m in assistant.announcer.messages if m.startswith("Error:")]


# ---------------------------------------------------------------------------
# Listening and submission
# ---------------------------------------------------------------------------

class TestSubmission:
    @pytest.mark.asyncio
    async def test_tap_starts_listening(self, make_assistant):
        a = make_assistant(FakeBackend())
        await a.controller.handle_tap()
        assert a.controller.state == LISTENING
        assert a.listening.is_listening
        assert a.announcer.messages[-1] == "Listening. Tap to stop recording."
        assert a.haptics.patterns[-1] == EARCON_PATTERNS["listening"]

    @pytest.mark.asyncio
    async def test_auto_submit_flow(self, make_assistant):
        a = make_assistant(FakeBackend([{"text": "That is oat milk."}]))
        states = _track(a)

        await a.controller.handle_tap()
        a.listening.on_speech_partial("what is")
        a.listening.on_speech_final("what is this")
        a.listening.on_speech_end()
        await a.controller.wait_until_idle()

        assert states == [LISTENING, THINKING, SPEAKING, READY]
        assert a.backend.payloads[0].text == "what is this"
        assert a.backend.payloads[0].image_path == "/tmp/photo-1.jpg"
        assert a.tts.spoken == ["That is oat milk."]
        assert PROCESSING_MESSAGE in a.announcer.messages
        assert a.speech.calls[-1] == "stop"
        assert not a.controller.is_processing

    @pytest.mark.asyncio
    async def test_manual_stop_submits(self, make_assistant):
        a = make_assistant(FakeBackend([{"text": "Twelve ounces"}]))

        await a.controller.handle_tap()
        a.listening.on_speech_partial("how much does it weigh")
        await a.controller.handle_tap()
        await a.controller.wait_until_idle()

        assert a.backend.payloads[0].text == "how much does it weigh"
        assert PROCESSING_MESSAGE not in a.announcer.messages
        assert a.controller.state == READY

    @pytest.mark.asyncio
    async def test_manual_stop_then_late_detectors_submit_once(self, make_assistant):
        a = make_assistant(FakeBackend([{"text": "ok"}]))

        await a.controller.handle_tap()
        a.listening.on_speech_partial("read the label")
        await a.controller.handle_tap()
        assert a.arbitrator.trigger_auto_submit(EOUSource.RMS_VAD) is False
        a.listening.on_speech_end()
        await a.controller.wait_until_idle()

        assert len(a.backend.payloads) == 1

    @pytest.mark.asyncio
    async def test_both_detectors_submit_once(self, make_assistant):
        a = make_assistant(FakeBackend([{"text": "ok"}]))

        await a.controller.handle_tap()
        a.listening.on_speech_final("find the door")
        a.arbitrator.trigger_auto_submit(EOUSource.RMS_VAD)
        a.arbitrator.trigger_auto_submit(EOUSource.NATIVE)
        await a.controller.wait_until_idle()

        assert [p.text for p in a.backend.payloads] == ["find the door"]

    @pytest.mark.asyncio
    async def test_empty_manual_stop_returns_to_ready(self, make_assistant):
        a = make_assistant(FakeBackend())
        await a.controller.handle_tap()
        await a.controller.handle_tap()
        assert a.controller.state == READY
        assert a.backend.payloads == []

    @pytest.mark.asyncio
    async def test_second_tap_during_startup_leaves_microphone_off(self, make_assistant):
        a = make_assistant(FakeBackend(), listening=ListeningConfig(restart_delay_ms=50))
        first = asyncio.ensure_future(a.controller.handle_tap())
        await asyncio.sleep(0.01)
        await a.controller.handle_tap()
        await first

        assert a.controller.state == READY
        assert not a.listening.is_listening
        assert "start:en-US" not in a.speech.calls
        assert a.backend.payloads == []

    @pytest.mark.asyncio
    async def test_session_id_sent_and_regenerated(self, make_assistant):
        a = make_assistant(FakeBackend([{"text": "ok"}, {"text": "ok"}]))
        first_id = a.session.current

        await a.controller.process_utterance("what is this")
        await a.controller.process_utterance("and this")

        # Each one-shot answer ends the interaction and rotates the id
        assert a.backend.payloads[0].session_id == first_id
        assert a.backend.payloads[1].session_id != first_id

    @pytest.mark.asyncio
    async def test_silent_answer_skips_speaking(self, make_assistant):
        a = make_assistant(FakeBackend([{"text": ""}]))
        states = _track(a)
        await a.controller.process_utterance("hello")
        assert states == [THINKING, READY]
        assert a.tts.spoken == []


# ---------------------------------------------------------------------------
# Interrupts
# ---------------------------------------------------------------------------

class TestInterrupt:
    @pytest.mark.asyncio
    async def test_interrupt_while_speaking(self, make_assistant):
        a = make_assistant(FakeBackend([{"text": "A very long description"}]), tts=FakeTTS(block=True))

        await a.controller.handle_tap()
        a.listening.on_speech_partial("describe this")
        await a.controller.handle_tap()
        await wait_for(lambda: a.controller.state == SPEAKING)

        await a.controller.handle_tap()
        await a.controller.wait_until_idle()

        assert a.controller.state == READY
        assert not a.controller.is_speaking
        assert not a.controller.is_processing
        assert a.tts.stops == 1
        assert EARCON_PATTERNS["cancel"] in a.haptics.patterns
        assert _errors(a) == []

    @pytest.mark.asyncio
    async def test_interrupt_before_request(self, make_assistant):
        a = make_assistant(FakeBackend([{"text": "never"}]), camera=FakeCamera(block=True))

        a.controller._submit("what is this", from_recognizer=False)
        await wait_for(lambda: a.camera.calls == 1)
        await a.controller.handle_tap()
        a.camera.release.set()
        await a.controller.wait_until_idle()

        assert a.backend.payloads == []
        assert a.controller.state == READY
        assert _errors(a) == []

    @pytest.mark.asyncio
    async def test_interrupt_during_request(self, make_assistant):
        a = make_assistant(FakeBackend([{"text": "too late"}], block=True))

        a.controller._submit("what is this", from_recognizer=False)
        await wait_for(lambda: a.backend.tokens)
        await a.controller.handle_tap()
        await a.controller.wait_until_idle()

        assert a.backend.tokens[0].cancelled
        assert a.tts.spoken == []
        assert a.controller.state == READY
        assert a.lifecycle.cancel_token is None

    @pytest.mark.asyncio
    async def test_response_after_interrupt_is_dropped(self, make_assistant):
        a = make_assistant(FakeBackend([{"text": "stale"}], block=True))
        states = _track(a)

        a.controller._submit("what is this", from_recognizer=False)
        await wait_for(lambda: a.backend.tokens)
        await a.controller.interrupt()
        a.backend.release.set()
        await a.controller.wait_until_idle()

        assert a.tts.spoken == []
        assert SPEAKING not in states

    @pytest.mark.asyncio
    async def test_interrupt_stops_continuous_loop(self, make_assistant):
        a = make_assistant(
            FakeBackend([NAV] * 5),
            continuous=ContinuousModeConfig(default_loop_delay_ms=5000, min_request_interval_ms=0),
        )

        a.controller._submit("guide me to the exit", from_recognizer=False)
        await wait_for(lambda: a.loop.is_active)
        await a.controller.handle_tap()
        await a.controller.wait_until_idle()

        assert not a.loop.is_active
        assert len(a.backend.payloads) == 1
        assert a.controller.state == READY

    @pytest.mark.asyncio
    async def test_tap_ignored_during_interrupt_cleanup(self, make_assistant):
        a = make_assistant(FakeBackend())
        a.lifecycle._is_interrupted = True
        await a.controller.handle_tap()
        assert a.controller.state == READY
        assert a.speech.calls == []

    @pytest.mark.asyncio
    async def test_can_listen_again_after_interrupt(self, make_assistant):
        a = make_assistant(FakeBackend([{"text": "long"}]), tts=FakeTTS(block=True))
        a.controller._submit("describe", from_recognizer=False)
        await wait_for(lambda: a.controller.state == SPEAKING)
        await a.controller.handle_tap()
        await a.controller.wait_until_idle()

        await a.controller.handle_tap()
        assert a.controller.state == LISTENING
        assert a.arbitrator.transcript == ""

    @pytest.mark.asyncio
    async def test_interrupt_stops_native_guidance(self, make_assistant):
        guidance = FakeGuidance(available=True)
        a = make_assistant(FakeBackend([HANDOFF]), guidance=guidance)
        await a.controller.process_utterance("where is the jam")
        assert guidance.started and a.loop.guiding_to == "jam"

        await a.controller.interrupt()

        assert guidance.stopped == 1
        assert a.loop.guiding_to is None
        assert a.controller.state == READY


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class TestErrors:
    @pytest.mark.asyncio
    async def test_network_error_announced(self, make_assistant):
        a = make_assistant(FakeBackend([BackendNetworkError("connection refused")]))

        await a.controller.process_utterance("what is this")

        assert _errors(a) == ["Error: Network error. Please check your internet connection."]
        assert EARCON_PATTERNS["error"] in a.haptics.patterns
        assert a.controller.state == READY
        assert not a.controller.is_processing

    @pytest.mark.asyncio
    async def test_capture_failure_announced(self, make_assistant):
        a = make_assistant(FakeBackend(), camera=FakeCamera([None]))

        await a.controller.process_utterance("what is this")

        assert _errors(a) == ["Error: Could not take a photo. Please try again."]
        assert a.backend.payloads == []

    @pytest.mark.asyncio
    async def test_unexpected_error_announced_generically(self, make_assistant):
        a = make_assistant(FakeBackend([ValueError("bad state")]))
        await a.controller.process_utterance("what is this")
        assert _errors(a) == ["Error: Something went wrong. Please try again."]
        assert a.controller.state == READY

    @pytest.mark.asyncio
    async def test_raw_transport_error_announced_by_kind(self, make_assistant):
        request = httpx.Request("POST", "http://workflow.test")
        a = make_assistant(FakeBackend([httpx.ConnectError("refused", request=request)]))
        await a.controller.process_utterance("what is this")
        assert _errors(a) == ["Error: Network error. Please check your internet connection."]
        assert a.controller.state == READY

    @pytest.mark.asyncio
    async def test_recognizer_start_failure(self, make_assistant):
        a = make_assistant(
            FakeBackend(),
            speech=FakeSpeechSession(start_error=RuntimeError("permission denied")),
        )

        await a.controller.handle_tap()

        assert a.controller.state == READY
        assert _errors(a) == ["Error: Microphone permission denied. Please enable it in Settings."]

    @pytest.mark.asyncio
    async def test_recognizer_error_while_listening(self, make_assistant):
        a = make_assistant(FakeBackend())
        await a.controller.handle_tap()

        a.listening.on_speech_error("network")

        assert a.controller.state == READY
        assert _errors(a) == ["Error: Network error. Please check your internet connection."]

    @pytest.mark.asyncio
    async def test_loop_error_reported_once(self, make_assistant):
        a = make_assistant(FakeBackend([NAV, BackendServerError(500, "boom")]))

        await a.controller.process_utterance("guide me")

        assert _errors(a) == ["Error: The server had a problem answering. Please try again."]
        assert a.controller.state == READY

    @pytest.mark.asyncio
    async def test_rate_limit_not_reported(self, make_assistant):
        a = make_assistant(
            FakeBackend([NAV] * 5),
            continuous=ContinuousModeConfig(
                default_loop_delay_ms=0, min_request_interval_ms=0, max_iterations=2
            ),
        )

        await a.controller.process_utterance("guide me")

        assert _errors(a) == []
        assert len(a.backend.payloads) == 3
        assert a.controller.state == READY


# ---------------------------------------------------------------------------
# Continuous mode
# ---------------------------------------------------------------------------

class TestContinuous:
    @pytest.mark.asyncio
    async def test_navigation_loop_from_utterance(self, make_assistant):
        a = make_assistant(FakeBackend([NAV, NAV, DONE]))
        states = _track(a)

        await a.controller.process_utterance("guide me to the exit")

        first, *rest = a.backend.payloads
        assert first.text == "guide me to the exit"
        assert not first.navigation
        assert all(p.navigation and p.text == "(continuous mode)" for p in rest)
        assert len(rest) == 2
        assert {p.session_id for p in a.backend.payloads} == {first.session_id}
        assert a.tts.spoken == ["Keep walking", "Keep walking", "You have arrived"]
        assert states == [THINKING, SPEAKING, THINKING, READY]

    @pytest.mark.asyncio
    async def test_close_stops_active_loop(self, make_assistant):
        a = make_assistant(
            FakeBackend([NAV] * 5),
            continuous=ContinuousModeConfig(default_loop_delay_ms=5000, min_request_interval_ms=0),
        )
        a.controller._submit("guide me", from_recognizer=False)
        await wait_for(lambda: a.loop.is_active)

        await a.controller.close()
        await a.controller.wait_until_idle()

        assert not a.loop.is_active
        assert a.controller.state == READY

    @pytest.mark.asyncio
    async def test_close_stops_native_guidance(self, make_assistant):
        guidance = FakeGuidance(available=True)
        a = make_assistant(FakeBackend([HANDOFF]), guidance=guidance)
        await a.controller.process_utterance("where is the jam")
        assert a.controller.state == READY

        await a.controller.close()

        assert guidance.stopped == 1
