"""Tests for the image and video batch executors."""

from decimal import Decimal
from pathlib import Path

import pytest

from mediaflow.core.exceptions import ConfigurationError, ProviderError, RateLimitError
from mediaflow.media.executor import (
    MAX_PROMPT_LENGTH,
    ImageGenerationExecutor,
    VideoGenerationExecutor,
    is_rate_limited,
)
from mediaflow.media.providers import AssetRef, JobHandle, JobState, JobStatus
from mediaflow.models.media import (
    ImageGenerationOptions,
    InputMode,
    VideoGenerationOptions,
    WorkItem,
)

from conftest import FakeProvider


def make_items(count, **extra):
    return [WorkItem(shot_number=i + 1, prompt=f"shot {i + 1}", **extra) for i in range(count)]


@pytest.fixture
def image_executor(image_provider, registry, asset_store, clock):
    return ImageGenerationExecutor(image_provider, registry, asset_store, sleep=clock.sleep, clock=clock)


def video_executor(provider, registry, asset_store, clock, **kwargs):
    return VideoGenerationExecutor(provider, registry, asset_store, sleep=clock.sleep, clock=clock, **kwargs)


class TestImageBatch:
    """Image batches are capped, paced and costed."""

    def test_batch_is_capped_at_twenty(self, image_executor, image_provider, clock):
        batch = image_executor.run(make_items(25), ImageGenerationOptions())

        assert batch.processed_count == 20
        assert batch.requested_count == 25
        assert batch.truncated is True
        assert batch.dropped_count == 5
        assert len(image_provider.calls) == 20
        assert clock.sleeps == [1.0] * 19

    def test_results_preserve_order_and_store_files(self, image_executor):
        batch = image_executor.run(make_items(3), ImageGenerationOptions())

        assert [r.shot_number for r in batch.results] == [1, 2, 3]
        for result in batch.results:
            assert result.success
            assert Path(result.local_path).is_file()
            assert result.url.startswith("/generated-images/shot-")

    def test_total_cost_is_sum_of_successful_items(self, image_provider, registry, asset_store, clock):
        image_provider.outcomes = [AssetRef(content=b"a"), ProviderError("content policy violation"),
                                   AssetRef(content=b"c")]
        executor = ImageGenerationExecutor(image_provider, registry, asset_store, sleep=clock.sleep, clock=clock)

        batch = executor.run(make_items(3), ImageGenerationOptions(model="black-forest-labs/flux-dev"))

        assert batch.success_count == 2
        assert batch.failure_count == 1
        assert batch.estimated_total_cost == sum(r.estimated_cost for r in batch.results if r.success)
        assert batch.estimated_total_cost == Decimal("0.0500")
        assert batch.results[1].estimated_cost == 0
        assert batch.results[1].url == ""
        assert batch.results[1].error == "content policy violation"

    def test_payload_uses_profile_defaults(self, image_executor, image_provider):
        image_executor.run([WorkItem(prompt="x" * (MAX_PROMPT_LENGTH + 500), aspect_ratio="4:3")],
                           ImageGenerationOptions())

        payload = image_provider.calls[0]["input"]
        assert len(payload["prompt"]) == MAX_PROMPT_LENGTH
        assert payload["num_inference_steps"] == 4
        assert payload["aspect_ratio"] == "4:3"
        assert "image" not in payload

    def test_conditioning_image_sent_when_model_supports_it(self, image_executor, image_provider, tmp_path):
        source = tmp_path / "frame.png"
        source.write_bytes(b"\x89PNG source")

        image_executor.run([WorkItem(prompt="restyle", source_image=str(source))],
                           ImageGenerationOptions(model="black-forest-labs/flux-dev"))

        assert image_provider.calls[0]["input"]["image"].startswith("data:image/png;base64,")

    def test_unknown_model_fails_before_any_call(self, image_executor, image_provider):
        with pytest.raises(ConfigurationError):
            image_executor.run(make_items(2), ImageGenerationOptions(model="no-such-model"))
        assert image_provider.calls == []

    def test_video_model_is_rejected_for_images(self, image_executor):
        with pytest.raises(ConfigurationError):
            image_executor.run(make_items(1), ImageGenerationOptions(model="gen3a_turbo"))


class TestRateLimitCooldown:
    """A rate-limited item triggers a cool-down and the batch continues."""

    def test_next_call_waits_for_cooldown(self, image_provider, registry, asset_store, clock):
        image_provider.outcomes = [
            AssetRef(content=b"1"),
            RateLimitError("replicate rate limit exceeded (429): throttled", provider="replicate"),
            AssetRef(content=b"3"),
            AssetRef(content=b"4"),
        ]
        executor = ImageGenerationExecutor(image_provider, registry, asset_store, sleep=clock.sleep, clock=clock)

        batch = executor.run(make_items(4), ImageGenerationOptions())

        assert [r.success for r in batch.results] == [True, False, True, True]
        assert "429" in batch.results[1].error
        failed_at = image_provider.calls[1]["at"]
        assert image_provider.calls[2]["at"] - failed_at >= ImageGenerationExecutor.cooldown
        assert clock.sleeps == [1.0, 10.0, 1.0]

    def test_video_cooldown_is_thirty_seconds(self, video_provider, registry, asset_store, clock):
        video_provider.outcomes = [
            JobHandle(job_id="task-1"),
            RateLimitError("runway rate limit exceeded (429): too many tasks", provider="runway"),
            JobHandle(job_id="task-3"),
            JobHandle(job_id="task-4"),
        ]
        executor = video_executor(video_provider, registry, asset_store, clock)

        batch = executor.run(make_items(4), VideoGenerationOptions())

        assert [r.success for r in batch.results] == [True, False, True, True]
        assert len(video_provider.calls) == 4
        assert video_provider.calls[2]["at"] - video_provider.calls[1]["at"] >= 30.0
        assert clock.sleeps == [2.0, 30.0, 2.0]

    def test_non_rate_limit_failure_has_no_cooldown(self, image_provider, registry, asset_store, clock):
        image_provider.outcomes = [ProviderError("bad prompt"), AssetRef(content=b"2"), AssetRef(content=b"3")]
        executor = ImageGenerationExecutor(image_provider, registry, asset_store, sleep=clock.sleep, clock=clock)

        executor.run(make_items(3), ImageGenerationOptions())

        assert clock.sleeps == [1.0, 1.0]

    @pytest.mark.parametrize("message,expected", [
        ("HTTP 429 Too Many Requests", True),
        ("Rate limit reached", True),
        ("invalid prompt", False),
        (None, False),
    ])
    def test_rate_limit_detection(self, message, expected):
        assert is_rate_limited(message) is expected


class TestVideoBatch:
    """Video batches poll async jobs and respect model durations."""

    def test_batch_is_capped_at_ten(self, video_provider, registry, asset_store, clock):
        video_provider.outcomes = [JobHandle(job_id=f"task-{i}") for i in range(15)]
        executor = video_executor(video_provider, registry, asset_store, clock)

        batch = executor.run(make_items(15), VideoGenerationOptions())

        assert batch.processed_count == 10
        assert batch.truncated is True
        assert batch.success_count == 10
        assert clock.sleeps == [2.0] * 9
        assert batch.estimated_total_cost == Decimal("2.5000")
        assert all(r.clip_duration == 5.0 for r in batch.results)
        assert batch.results[0].url.startswith("/generated-videos/clip-1-")

    def test_polls_until_job_finishes(self, registry, asset_store, clock):
        provider = FakeProvider(clock, outcomes=[JobHandle(job_id="task-1")], statuses=[
            JobStatus(state=JobState.RUNNING),
            JobStatus(state=JobState.RUNNING),
            JobStatus(state=JobState.SUCCEEDED, output=AssetRef(content=b"mp4")),
        ])
        executor = video_executor(provider, registry, asset_store, clock)

        batch = executor.run(make_items(1), VideoGenerationOptions())

        assert batch.results[0].success
        assert provider.polls == ["task-1"] * 3
        assert clock.sleeps == [5.0, 5.0]

    def test_poll_timeout_becomes_item_failure(self, registry, asset_store, clock):
        provider = FakeProvider(clock, outcomes=[JobHandle(job_id="slow")],
                                statuses=[JobStatus(state=JobState.RUNNING)])
        executor = video_executor(provider, registry, asset_store, clock, max_polls=3)

        batch = executor.run(make_items(1), VideoGenerationOptions())

        result = batch.results[0]
        assert not result.success
        assert result.error == "Video generation timed out after 15 seconds"
        assert clock.sleeps == [5.0, 5.0, 5.0]

    def test_failed_job_reports_reason(self, registry, asset_store, clock):
        provider = FakeProvider(clock, outcomes=[JobHandle(job_id="bad")], statuses=[
            JobStatus(state=JobState.FAILED, failure_reason="Content moderation"),
        ])
        executor = video_executor(provider, registry, asset_store, clock)

        batch = executor.run(make_items(1), VideoGenerationOptions())

        assert batch.results[0].error == "Video generation failed: Content moderation"

    def test_unsupported_duration_fails_before_any_call(self, video_provider, registry, asset_store, clock):
        executor = video_executor(video_provider, registry, asset_store, clock)

        with pytest.raises(ConfigurationError):
            executor.run(make_items(2), VideoGenerationOptions(duration=7))
        assert video_provider.calls == []

    def test_text_mode_ignores_source_image(self, video_provider, registry, asset_store, clock, tmp_path):
        source = tmp_path / "still.png"
        source.write_bytes(b"png")
        video_provider.outcomes = [JobHandle(job_id="a"), JobHandle(job_id="b")]
        executor = video_executor(video_provider, registry, asset_store, clock)
        items = [WorkItem(prompt="pan left", source_image=str(source))]

        executor.run(items, VideoGenerationOptions(input_mode=InputMode.TEXT))
        executor.run(items, VideoGenerationOptions(input_mode=InputMode.AUTO))

        assert "promptImage" not in video_provider.calls[0]["input"]
        assert video_provider.calls[1]["input"]["promptImage"].startswith("data:image/png;base64,")

    def test_auto_mode_falls_back_to_text_when_image_missing(self, video_provider, registry, asset_store, clock):
        video_provider.outcomes = [JobHandle(job_id="a")]
        executor = video_executor(video_provider, registry, asset_store, clock)

        executor.run([WorkItem(prompt="pan", source_image="/does/not/exist.png")], VideoGenerationOptions())

        assert "promptImage" not in video_provider.calls[0]["input"]
