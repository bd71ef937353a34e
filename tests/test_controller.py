"""Tests for the playback controller state machine."""

import asyncio
import threading
from unittest.mock import Mock

import pytest

from storyweaver.audio.cache import AudioCacheLookup, AudioCacheRecorder
from storyweaver.audio.sink import SilentAudioSink
from storyweaver.core.errors import ProviderError
from storyweaver.core.models import CharacterAlignment, Scene, SpeechResult, Story
from storyweaver.playback.controller import Phase, PlaybackController
from storyweaver.storage.store import DirectoryBlobStore, MemoryStore

_FROM_TEXT = object()


def char_alignment(text: str, step: float = 0.05) -> CharacterAlignment:
    chars = list(text)
    return CharacterAlignment(
        characters=chars,
        char_start=[i * step for i in range(len(chars))],
        char_end=[(i + 1) * step for i in range(len(chars))],
    )


class FakeProvider:
    """SpeechProvider double recording calls."""

    def __init__(self, audio=b"ID3audio", alignment=_FROM_TEXT, error=None, delay=0.0):
        self.audio = audio
        self.alignment = alignment
        self.error = error
        self.delay = delay
        self.calls = []

    async def generate(self, text, voice_id, api_key):
        self.calls.append((text, voice_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        alignment = char_alignment(text) if self.alignment is _FROM_TEXT else self.alignment
        return SpeechResult(audio=self.audio, alignment=alignment)


def make_controller(story, provider=None, sink=None, **kwargs):
    events = []
    kwargs.setdefault("api_key", "test-key")
    controller = PlaybackController(
        story,
        provider or FakeProvider(),
        sink or SilentAudioSink(autofinish=False),
        on_event=events.append,
        **kwargs,
    )
    return controller, events


def kinds(events, kind):
    return [e for e in events if e.kind == kind]


def one_scene(content: str) -> Story:
    return Story(scenes=[Scene(id="only", title="Only", content=content)])


class TestOpen:
    def test_opens_start_scene(self, story):
        controller, events = make_controller(story)
        controller.open()

        assert controller.state.scene_id == "s1"
        assert controller.state.phase == Phase.LINE_ACTIVE
        assert [l.id for l in controller.state.lines] == ["line-s1-0", "line-s1-2", "line-s1-3"]
        assert controller.current_line.voice_id == "voice-guard"
        assert kinds(events, "line")[0].data["line_id"] == "line-s1-0"

    def test_beats_play_in_order(self, story):
        controller, _ = make_controller(story)
        controller.open("s2")

        assert controller.in_beat_mode
        assert controller.current_beat.id == "b1"
        assert controller.current_line.id == "beat-b1-part-0"
        assert controller.current_line.text == "The courtyard is quiet."

    def test_missing_scene_ends_path(self, story):
        controller, events = make_controller(story)
        controller.open("nowhere")

        assert controller.state.phase == Phase.SCENE_ENDED
        assert kinds(events, "ended")[0].message == "End of path."

    def test_narrator_voice_follows_language(self, story):
        provider = FakeProvider()
        controller, _ = make_controller(story, provider=provider, language="es")
        controller.open()
        controller.advance()

        assert controller.current_line.voice_id == "voice-narrator-es"
        asyncio.run(controller.play_current_line())
        assert provider.calls == [("The wind howls.", "voice-narrator-es")]

    def test_voice_assignments_snapshotted_on_open(self, story):
        controller, _ = make_controller(story)
        controller.open()
        story.voice_assignments.clear()
        controller.advance()
        controller.advance()

        assert controller.current_line.voice_id == "voice-alice"


class TestPlayLine:
    def test_fresh_generation(self, story):
        provider = FakeProvider()
        sink = SilentAudioSink(autofinish=False)
        controller, events = make_controller(story, provider=provider, sink=sink)
        controller.open()

        assert asyncio.run(controller.play_current_line())

        state = controller.state
        assert state.phase == Phase.PLAYING
        assert state.audio_source_kind == "fresh"
        assert state.locked
        assert [t.word for t in state.timestamps] == ["Halt!", "Who", "goes", "there?"]
        assert provider.calls == [("Halt! Who goes there?", "voice-guard")]
        assert sink.loads == 1
        assert sink.duration == pytest.approx(1.05)
        assert [e.message for e in kinds(events, "state")] == ["line_active", "generating", "playing"]

    def test_concurrent_requests_generate_once(self, story):
        provider = FakeProvider(delay=0.01)
        cache = Mock(spec=AudioCacheLookup)
        cache.find.return_value = None
        controller, _ = make_controller(story, provider=provider, cache=cache)
        controller.open()

        async def scenario():
            return await asyncio.gather(
                controller.play_current_line(), controller.play_current_line()
            )

        assert asyncio.run(scenario()) == [True, False]
        assert cache.find.call_count == 1
        assert len(provider.calls) == 1

    def test_audio_end_releases_lock_without_advancing(self, story):
        sink = SilentAudioSink(autofinish=False)
        controller, _ = make_controller(story, sink=sink)
        controller.open()

        async def scenario():
            await controller.play_current_line()
            sink.finish()

        asyncio.run(scenario())

        assert controller.state.phase == Phase.ENDED
        assert not controller.state.locked
        assert controller.state.line_index == 0

    def test_silent_sink_finishes_on_its_own(self):
        controller, _ = make_controller(one_scene("Hi."), sink=SilentAudioSink())
        controller.open()

        async def scenario():
            await controller.play_current_line()
            await asyncio.sleep(0.4)

        asyncio.run(scenario())
        assert controller.state.phase == Phase.ENDED
        assert not controller.state.locked

    def test_highlight_events_while_playing(self, story):
        controller, events = make_controller(story)
        controller.open()

        async def scenario():
            await controller.play_current_line()
            await asyncio.sleep(0.05)

        asyncio.run(scenario())
        highlights = kinds(events, "highlight")
        assert highlights
        assert highlights[0].data["index"] == 0
        assert controller.state.word_index >= 0

    def test_missing_api_key_is_reported(self, story):
        provider = FakeProvider()
        controller, events = make_controller(story, provider=provider, api_key=None)
        controller.open()

        assert not asyncio.run(controller.play_current_line())
        assert controller.state.audio_error == "ElevenLabs API key is not set."
        assert controller.state.phase == Phase.LINE_ACTIVE
        assert not controller.state.locked
        assert provider.calls == []
        assert kinds(events, "error")[0].message == "ElevenLabs API key is not set."

    def test_provider_error_then_retry(self, story):
        provider = FakeProvider(error=ProviderError("Status: 401", status_code=401))
        controller, _ = make_controller(story, provider=provider)
        controller.open()

        assert not asyncio.run(controller.play_current_line())
        assert controller.state.audio_error == "Speech generation failed: Status: 401"
        assert not controller.state.locked

        provider.error = None
        assert asyncio.run(controller.play_current_line())
        assert controller.state.audio_error is None

    def test_cache_hit_needs_no_key(self, story):
        store = MemoryStore()
        AudioCacheRecorder(store).record(
            "s1", "line0", "en", "Guard", b"cached", char_alignment("Halt! Who goes there?")
        )
        provider = FakeProvider()
        controller, events = make_controller(
            story, provider=provider, api_key=None, cache=AudioCacheLookup(store)
        )
        controller.open()

        assert asyncio.run(controller.play_current_line())
        assert controller.state.audio_source_kind == "cache"
        assert provider.calls == []
        assert "cache_hit" in [e.message for e in kinds(events, "state")]

    def test_fresh_audio_is_recorded(self, story):
        store = MemoryStore()
        controller, _ = make_controller(
            story, cache=AudioCacheLookup(store), recorder=AudioCacheRecorder(store)
        )
        controller.open()
        asyncio.run(controller.play_current_line())

        audio_keys = [k for k in store.keys() if k.startswith("audio_")]
        assert len(audio_keys) == 1
        assert audio_keys[0].startswith("audio_s1_line0_en_Guard_")
        assert any(k.startswith("alignment_s1_line0_en_Guard_") for k in store.keys())

    def test_beat_lines_cache_under_beat_id(self, story):
        store = MemoryStore()
        controller, _ = make_controller(
            story, cache=AudioCacheLookup(store), recorder=AudioCacheRecorder(store)
        )
        controller.open("s2")
        asyncio.run(controller.play_current_line())

        assert store.keys()[-1].startswith("audio_s2_b1_en_Narrator_")

    def test_malformed_alignment_falls_back_to_interpolation(self, story):
        broken = CharacterAlignment(characters=["a", "b"], char_start=[0.0], char_end=[0.1, 0.2])
        sink = SilentAudioSink(autofinish=False)
        controller, _ = make_controller(story, provider=FakeProvider(alignment=broken), sink=sink)
        controller.open()

        assert asyncio.run(controller.play_current_line())
        assert controller.state.timestamps == []
        assert controller.scheduler.words == ["Halt!", "Who", "goes", "there?"]
        assert sink.duration is None

    def test_multi_character_alignment_entries(self, story):
        broken = CharacterAlignment(characters=["He", "y"], char_start=[0.0, 0.1], char_end=[0.1, 0.2])
        controller, _ = make_controller(story, provider=FakeProvider(alignment=broken))
        controller.open()

        assert asyncio.run(controller.play_current_line())
        assert controller.state.timestamps == []
        assert controller.state.phase == Phase.PLAYING

    def test_store_is_only_touched_from_the_loop_thread(self, story):
        class ThreadRecordingStore(MemoryStore):
            def __init__(self):
                super().__init__()
                self.threads = set()

            def get(self, key):
                self.threads.add(threading.get_ident())
                return super().get(key)

            def keys(self):
                self.threads.add(threading.get_ident())
                return super().keys()

            def set(self, key, value):
                self.threads.add(threading.get_ident())
                super().set(key, value)

        store = ThreadRecordingStore()
        controller, _ = make_controller(
            story, cache=AudioCacheLookup(store), recorder=AudioCacheRecorder(store)
        )
        controller.open()
        asyncio.run(controller.play_current_line())

        assert store.threads == {threading.get_ident()}

    def test_unspoken_line_is_not_played(self):
        provider = FakeProvider()
        controller, _ = make_controller(one_scene("Stranger: Psst."), provider=provider, fallback_voice=None)
        controller.open()

        assert not asyncio.run(controller.play_current_line())
        assert not controller.state.locked
        assert provider.calls == []


class TestStaleResults:
    def test_result_discarded_after_skip(self, story):
        sink = SilentAudioSink(autofinish=False)
        controller, _ = make_controller(story, provider=FakeProvider(delay=0.05), sink=sink)
        controller.open()

        async def scenario():
            task = asyncio.create_task(controller.play_current_line())
            await asyncio.sleep(0)
            controller.skip()
            return await task

        assert not asyncio.run(scenario())
        assert sink.loads == 0
        assert controller.state.line_index == 1
        assert not controller.state.locked
        assert controller.state.phase == Phase.LINE_ACTIVE

    def test_result_discarded_after_line_change(self, story):
        sink = SilentAudioSink(autofinish=False)
        controller, _ = make_controller(story, provider=FakeProvider(delay=0.05), sink=sink)
        controller.open("s2")
        controller.advance()  # second beat, two lines

        async def scenario():
            task = asyncio.create_task(controller.play_current_line())
            await asyncio.sleep(0)
            controller.advance()
            first = await task
            second = await controller.play_current_line()
            return first, second

        assert asyncio.run(scenario()) == (False, True)
        assert sink.loads == 1
        assert controller.current_line.text == "She looks around."


class TestAudioErrors:
    def test_error_reports_and_advances(self, story):
        sink = SilentAudioSink(autofinish=False)
        controller, events = make_controller(story, sink=sink)
        controller.open()

        async def scenario():
            await controller.play_current_line()
            sink.on_error("Error decoding audio.")

        asyncio.run(scenario())

        assert kinds(events, "error")[0].message == "Error decoding audio."
        assert controller.state.line_index == 1
        assert not controller.state.locked
        assert not sink.is_playing

    def test_sink_exception_releases_the_lock(self, story):
        class FlakySink(SilentAudioSink):
            failures = 1

            def load(self, audio, duration_hint=None):
                if self.failures:
                    self.failures -= 1
                    raise OSError("audio device unavailable")
                super().load(audio, duration_hint)

        controller, events = make_controller(story, sink=FlakySink(autofinish=False))
        controller.open()

        assert not asyncio.run(controller.play_current_line())
        assert not controller.state.locked
        assert controller.state.phase == Phase.LINE_ACTIVE
        assert controller.state.audio_error == "Audio playback failed: audio device unavailable"
        assert kinds(events, "error")[0].message == controller.state.audio_error
        assert controller.scheduler is None

        # The line can be retried once the device is back
        assert asyncio.run(controller.play_current_line())

    def test_empty_audio_fails_synchronously(self, story):
        controller, events = make_controller(story, provider=FakeProvider(audio=b""))
        controller.open()

        assert not asyncio.run(controller.play_current_line())
        assert kinds(events, "error")[0].message == (
            "Audio format/source not supported. (Source was empty or invalid)."
        )
        assert controller.state.line_index == 1
        assert controller.scheduler is None

    def test_error_after_session_end_is_ignored(self, story):
        sink = SilentAudioSink(autofinish=False)
        controller, events = make_controller(story, sink=sink)
        controller.open()

        async def scenario():
            await controller.play_current_line()
            sink.finish()
            sink.on_error("Playback aborted.")

        asyncio.run(scenario())
        assert kinds(events, "error") == []
        assert controller.state.line_index == 0


class TestNavigation:
    def test_walk_through_story(self, story):
        controller, events = make_controller(story)
        controller.open()

        controller.advance()
        controller.advance()
        assert controller.current_line.speaker == "Alice"

        # Single outgoing connection is followed automatically
        controller.advance()
        assert controller.state.scene_id == "s2"
        assert controller.current_beat.id == "b1"

        controller.advance()
        assert controller.current_beat.id == "b2"
        assert [l.id for l in controller.state.lines] == ["beat-b2-part-0", "beat-b2-part-1"]

        controller.advance()
        controller.advance()
        assert controller.state.phase == Phase.CHOICES_SHOWN
        labels = [c["label"] for c in kinds(events, "choices")[0].data["choices"]]
        assert labels == ["Go left", "Go right"]

        controller.advance()  # no-op while choosing
        assert controller.state.phase == Phase.CHOICES_SHOWN

        assert not controller.choose("c1")
        assert controller.choose("c2")
        assert controller.state.scene_id == "s3"

        controller.advance()
        assert controller.state.phase == Phase.SCENE_ENDED
        assert kinds(events, "ended")[-1].message == "The End."

    def test_choice_to_missing_scene_ends_path(self, story):
        controller, events = make_controller(story)
        controller.open("s2")
        controller.advance()
        controller.advance()
        controller.advance()

        assert controller.choose("c3")
        assert controller.state.phase == Phase.SCENE_ENDED
        assert kinds(events, "ended")[-1].message == "End of path."

    def test_beat_change_cancels_audio(self, story):
        sink = SilentAudioSink(autofinish=False)
        controller, _ = make_controller(story, sink=sink)
        controller.open("s2")
        asyncio.run(controller.play_current_line())
        epoch = controller.epoch

        controller.advance()

        assert controller.epoch > epoch
        assert not sink.is_playing
        assert not controller.state.locked
        assert controller.state.audio_source_kind is None

    def test_line_change_within_beat_keeps_clip(self, story):
        sink = SilentAudioSink(autofinish=False)
        controller, _ = make_controller(story, sink=sink)
        controller.open("s2")
        controller.advance()

        async def scenario():
            await controller.play_current_line()
            controller.advance()
            assert sink.is_playing
            assert controller.state.locked
            sink.finish()

        asyncio.run(scenario())
        assert controller.state.line_index == 1
        assert controller.state.phase == Phase.LINE_ACTIVE
        assert not controller.state.locked

    def test_skip_stops_clip_and_advances(self, story):
        sink = SilentAudioSink(autofinish=False)
        controller, _ = make_controller(story, sink=sink)
        controller.open()
        asyncio.run(controller.play_current_line())

        controller.skip()

        assert not sink.is_playing
        assert controller.state.line_index == 1
        assert controller.state.phase == Phase.LINE_ACTIVE

    def test_close(self, story):
        sink = SilentAudioSink(autofinish=False)
        controller, _ = make_controller(story, sink=sink)
        controller.open()
        asyncio.run(controller.play_current_line())

        controller.close()

        assert controller.state.phase == Phase.IDLE
        assert controller.state.lines == []
        assert controller.scene is None
        assert not sink.is_playing
        controller.advance()
        assert controller.state.phase == Phase.IDLE


class TestMedia:
    def test_scene_image_and_beat_video(self, story, tmp_path):
        (tmp_path / "img-gate.png").write_bytes(b"png")
        (tmp_path / "vid-court.mp4").write_bytes(b"mp4")
        controller, events = make_controller(story, blobs=DirectoryBlobStore(tmp_path))

        controller.open()
        media = asyncio.run(controller.load_media())
        assert media.kind == "image"
        assert media.url.endswith("img-gate.png")
        assert controller.state.media == media

        controller.load_scene("s2")
        media = asyncio.run(controller.load_media())
        assert media.kind == "video"
        assert kinds(events, "media")[-1].data == {"kind": "video", "url": media.url}

    def test_missing_media(self, story, tmp_path):
        controller, events = make_controller(story, blobs=DirectoryBlobStore(tmp_path))
        controller.open("s3")

        assert asyncio.run(controller.load_media()) is None
        assert kinds(events, "media")[-1].data is None

    def test_without_blob_store(self, story):
        controller, _ = make_controller(story)
        controller.open()
        assert asyncio.run(controller.load_media()) is None
