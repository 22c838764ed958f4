"""Tests for the httpx-backed provider clients, asset downloads and agent runner."""

import json
from pathlib import Path

import httpx
import pytest

from mediaflow.core.agent_runner import AgentRequest, ChatCompletionsAgentRunner
from mediaflow.core.error_recovery import RetryConfig
from mediaflow.core.exceptions import ProviderError, RateLimitError
from mediaflow.media.assets import IMAGES_DIR, AssetStore
from mediaflow.media.providers import AssetRef, JobHandle, JobState, ReplicateClient, RunwayClient
from mediaflow.models.core import ChatMessage


def no_sleep(seconds):
    pass


class Recorder:
    """MockTransport handler replaying canned responses and recording requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        status, body = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(body, bytes):
            return httpx.Response(status, content=body)
        return httpx.Response(status, json=body)

    def body(self, index=0):
        return json.loads(self.requests[index].content)


def replicate(recorder):
    return ReplicateClient(
        "r8_test",
        retry_config=RetryConfig(sleep=no_sleep),
        transport=httpx.MockTransport(recorder),
    )


def runway(recorder):
    return RunwayClient(
        "rw_test",
        retry_config=RetryConfig(sleep=no_sleep),
        transport=httpx.MockTransport(recorder),
    )


class TestReplicateClient:
    """Prediction creation and polling."""

    def test_synchronous_prediction_returns_asset(self):
        recorder = Recorder((201, {"id": "p1", "status": "succeeded", "output": ["https://cdn.test/a.png"]}))

        result = replicate(recorder).generate("black-forest-labs/flux-schnell", {"prompt": "fog"})

        assert result == AssetRef(url="https://cdn.test/a.png")
        request = recorder.requests[0]
        assert request.url.path == "/v1/models/black-forest-labs/flux-schnell/predictions"
        assert request.headers["Prefer"] == "wait"
        assert request.headers["Authorization"] == "Bearer r8_test"
        assert recorder.body() == {"input": {"prompt": "fog"}}

    def test_unfinished_prediction_returns_job_and_polls(self):
        recorder = Recorder(
            (201, {"id": "p2", "status": "processing"}),
            (200, {"id": "p2", "status": "failed", "error": "NSFW content detected"}),
        )
        client = replicate(recorder)

        handle = client.generate("black-forest-labs/flux-dev", {"prompt": "x"})
        status = client.poll_status(handle.job_id)

        assert handle == JobHandle(job_id="p2")
        assert recorder.requests[1].url.path == "/v1/predictions/p2"
        assert status.state == JobState.FAILED
        assert status.failure_reason == "NSFW content detected"

    def test_rate_limit_is_not_retried(self):
        recorder = Recorder((429, {"detail": "Request was throttled"}))

        with pytest.raises(RateLimitError) as exc_info:
            replicate(recorder).generate("black-forest-labs/flux-schnell", {"prompt": "x"})

        assert "429" in exc_info.value.message
        assert "throttled" in exc_info.value.message
        assert len(recorder.requests) == 1

    def test_server_errors_are_retried(self):
        recorder = Recorder(
            (503, {"detail": "unavailable"}),
            (502, b"bad gateway"),
            (201, {"id": "p3", "status": "succeeded", "output": "https://cdn.test/b.png"}),
        )

        result = replicate(recorder).generate("black-forest-labs/flux-schnell", {"prompt": "x"})

        assert result.url == "https://cdn.test/b.png"
        assert len(recorder.requests) == 3

    def test_client_errors_surface_detail(self):
        recorder = Recorder((422, {"detail": "prompt is required"}))

        with pytest.raises(ProviderError) as exc_info:
            replicate(recorder).generate("black-forest-labs/flux-schnell", {})

        assert exc_info.value.status_code == 422
        assert "prompt is required" in exc_info.value.message


class TestRunwayClient:
    """Task creation, ratio mapping and polling."""

    def test_text_to_video_maps_ratio(self):
        recorder = Recorder((200, {"id": "task-1"}))

        handle = runway(recorder).generate("gen3a_turbo", {"promptText": "pan", "duration": 5, "ratio": "9:16"})

        assert handle.job_id == "task-1"
        assert recorder.requests[0].url.path == "/v1/text_to_video"
        assert recorder.requests[0].headers["X-Runway-Version"] == "2024-11-06"
        assert recorder.body() == {"model": "gen3a_turbo", "promptText": "pan", "duration": 5, "ratio": "768:1280"}

    def test_image_to_video_when_prompt_image_given(self):
        recorder = Recorder((200, {"id": "task-2"}))

        runway(recorder).generate("gen4_turbo", {"promptText": "pan", "promptImage": "data:image/png;base64,AA"})

        assert recorder.requests[0].url.path == "/v1/image_to_video"
        assert recorder.body()["ratio"] == "1280:720"
        assert recorder.body()["promptImage"] == "data:image/png;base64,AA"

    def test_unmapped_ratio_passes_through(self):
        assert RunwayClient.map_ratio("gen4_turbo", "1280:720") == "1280:720"

    @pytest.mark.parametrize("payload,state,url,reason", [
        ({"status": "RUNNING"}, JobState.RUNNING, None, None),
        ({"status": "THROTTLED"}, JobState.PENDING, None, None),
        ({"status": "SUCCEEDED", "output": ["https://cdn.test/c.mp4"]}, JobState.SUCCEEDED, "https://cdn.test/c.mp4", None),
        ({"status": "SUCCEEDED", "output": []}, JobState.FAILED, None, "No output URL returned from Runway"),
        ({"status": "FAILED", "failure": "Content moderation"}, JobState.FAILED, None, "Content moderation"),
    ])
    def test_poll_status(self, payload, state, url, reason):
        recorder = Recorder((200, {"id": "task-3", **payload}))

        status = runway(recorder).poll_status("task-3")

        assert recorder.requests[0].url.path == "/v1/tasks/task-3"
        assert status.state == state
        assert (status.output.url if status.output else None) == url
        assert status.failure_reason == reason


class TestAssetDownload:
    """Remote assets are streamed into write-once files."""

    def store(self, tmp_path, recorder):
        return AssetStore(
            str(tmp_path / "public"),
            retry_config=RetryConfig(sleep=no_sleep),
            transport=httpx.MockTransport(recorder),
        )

    def test_download_writes_file(self, tmp_path):
        recorder = Recorder((200, b"\x89PNG image bytes"))

        asset = self.store(tmp_path, recorder).download("https://cdn.test/a.png", IMAGES_DIR, "shot-1", ".png")

        assert Path(asset.local_path).read_bytes() == b"\x89PNG image bytes"
        assert asset.url.startswith("/generated-images/shot-1-")
        assert asset.url.endswith(".png")

    def test_failed_download_leaves_no_file(self, tmp_path):
        recorder = Recorder((404, b"missing"))
        store = self.store(tmp_path, recorder)

        with pytest.raises(ProviderError):
            store.download("https://cdn.test/gone.png", IMAGES_DIR, "shot-1", ".png")

        assert list(store.directory(IMAGES_DIR).iterdir()) == []

    def test_server_error_is_retried(self, tmp_path):
        recorder = Recorder((500, b"oops"), (200, b"ok"))

        asset = self.store(tmp_path, recorder).download("https://cdn.test/a.png", IMAGES_DIR, "shot-2", ".png")

        assert len(recorder.requests) == 2
        assert Path(asset.local_path).read_bytes() == b"ok"

    def test_saved_names_are_unique(self, tmp_path):
        store = self.store(tmp_path, Recorder((200, b"")))

        first = store.save_bytes(IMAGES_DIR, "shot-1", ".png", b"a")
        second = store.save_bytes(IMAGES_DIR, "shot-1", ".png", b"b")

        assert first.local_path != second.local_path


class TestChatCompletionsAgentRunner:
    """Agent replies from an OpenAI-compatible endpoint."""

    def test_run_sends_transcript_and_returns_content(self):
        recorder = Recorder((200, {"choices": [{"message": {"role": "assistant", "content": "three shots"}}]}))
        runner = ChatCompletionsAgentRunner("sk-test", transport=httpx.MockTransport(recorder),
                                            retry_config=RetryConfig(sleep=no_sleep))

        reply = runner.run(AgentRequest(
            model="kie:gpt-4o",
            system_prompt="You plan shots.",
            messages=[ChatMessage(role="user", content="Tides")],
            temperature=0.2,
            max_tokens=500,
        ))

        assert reply == "three shots"
        body = recorder.body()
        assert recorder.requests[0].url.path == "/v1/chat/completions"
        assert body["model"] == "gpt-4o"
        assert body["messages"] == [
            {"role": "system", "content": "You plan shots."},
            {"role": "user", "content": "Tides"},
        ]
        assert body["temperature"] == 0.2
        assert body["max_tokens"] == 500

    def test_missing_content_is_a_provider_error(self):
        recorder = Recorder((200, {"choices": []}))
        runner = ChatCompletionsAgentRunner("sk-test", transport=httpx.MockTransport(recorder))

        with pytest.raises(ProviderError):
            runner.run(AgentRequest(model=None, system_prompt="", messages=[]))

    def test_from_config_without_key(self):
        from mediaflow.config import get_testing_config

        assert ChatCompletionsAgentRunner.from_config(get_testing_config()) is None
