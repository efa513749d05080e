"""
Tests for the Panel Pipeline

Tests for storyforge/pipelines/panel_pipeline.py
"""

import asyncio

import pytest

from storyforge.core.config import PipelineSettings
from storyforge.core.constants import ImageState, VideoState
from storyforge.core.exceptions import (
    ExpansionError,
    GenerationError,
    PanelIndexError,
    PipelineError,
    VideoNotAllowedError,
)
from storyforge.core.media import MEDIA_ERROR, MEDIA_QUOTA_ERROR, BlobHandle, InlineMedia
from storyforge.core.models import GenerationConfig, Panel
from storyforge.pipelines.panel_pipeline import PanelPipeline, classify_failure


async def wait_until(predicate, timeout: float = 2.0):
    """Poll until predicate() holds."""
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(poll(), timeout)


def states(pipeline):
    return [p.image_state for p in pipeline.panels]


class TestImageQueue:
    """Tests for the self-driving image queue."""

    @pytest.mark.asyncio
    async def test_images_generated_in_order_one_at_a_time(self, pipeline, gateway):
        """Every queued panel is rendered, strictly one after another."""
        pipeline.submit_scene_list(["A", "B", "C"], GenerationConfig(scene_count=3))
        await pipeline.wait_until_idle(timeout=5)

        assert [call[1] for call in gateway.calls_of("image")] == ["A", "B", "C"]
        assert gateway.max_active_images == 1
        assert states(pipeline) == [ImageState.READY] * 3
        assert pipeline.panels[0].image_ref == InlineMedia(b"png:A", "image/png")
        assert pipeline.is_idle

    @pytest.mark.asyncio
    async def test_submit_replaces_collection(self, pipeline, gateway):
        """A new scene list replaces the previous panels."""
        pipeline.submit_scene_list(["A", "B"], GenerationConfig(scene_count=2))
        await pipeline.wait_until_idle(timeout=5)
        pipeline.submit_scene_list(["C", "D"], GenerationConfig(scene_count=2))
        await pipeline.wait_until_idle(timeout=5)

        assert [p.description for p in pipeline.panels] == ["C", "D"]

    @pytest.mark.asyncio
    async def test_only_one_panel_generating(self, pipeline, gateway):
        """While one image is in flight the rest stay queued."""
        gate = asyncio.Event()
        gateway.image_gates["A"] = gate
        pipeline.submit_scene_list(["A", "B", "C"], GenerationConfig(scene_count=3))

        await wait_until(lambda: states(pipeline)[0] == ImageState.GENERATING)
        assert states(pipeline) == [ImageState.GENERATING, ImageState.QUEUED, ImageState.QUEUED]
        assert not pipeline.is_idle

        gate.set()
        await pipeline.wait_until_idle(timeout=5)
        assert states(pipeline) == [ImageState.READY] * 3

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_queue(self, pipeline, gateway):
        """A failed image becomes ERROR and the next panel still renders."""
        gateway.image_errors["A"] = GenerationError("generate_image", "blocked by safety filter", 400)
        pipeline.submit_scene_list(["A", "B"], GenerationConfig(scene_count=2))
        await pipeline.wait_until_idle(timeout=5)

        first, second = pipeline.panels
        assert first.image_state == ImageState.ERROR
        assert first.image_ref == MEDIA_ERROR
        assert second.image_state == ImageState.READY

    @pytest.mark.asyncio
    async def test_quota_failure_classified(self, pipeline, gateway, quota_error):
        """Quota failures get their own terminal state and sentinel."""
        gateway.image_errors["B"] = quota_error
        pipeline.submit_scene_list(["A", "B"], GenerationConfig(scene_count=2))
        await pipeline.wait_until_idle(timeout=5)

        assert pipeline.panels[1].image_state == ImageState.QUOTA_ERROR
        assert pipeline.panels[1].image_ref == MEDIA_QUOTA_ERROR

    @pytest.mark.asyncio
    async def test_timeout_marks_error(self, gateway, blobs):
        """An image call that outlives the timeout becomes ERROR."""
        pipeline = PanelPipeline(gateway, blobs, settings=PipelineSettings(image_timeout_seconds=0.05))
        gateway.image_gates["A"] = asyncio.Event()
        pipeline.submit_scene_list(["A", "B"], GenerationConfig(scene_count=2))
        await pipeline.wait_until_idle(timeout=5)

        assert states(pipeline) == [ImageState.ERROR, ImageState.READY]
        await pipeline.close()

    @pytest.mark.asyncio
    async def test_loaded_generating_panel_is_requeued(self, pipeline, gateway):
        """A panel saved mid-generation is queued again on load."""
        pipeline.load_panels([Panel(description="A", image_state=ImageState.GENERATING)])
        await pipeline.wait_until_idle(timeout=5)

        assert states(pipeline) == [ImageState.READY]
        assert len(gateway.calls_of("image")) == 1

    @pytest.mark.asyncio
    async def test_panels_inserted_ahead_are_rendered_next(self, pipeline, gateway):
        """After each image the queue rescans the current order from the top."""
        gate = asyncio.Event()
        gateway.image_gates["B"] = gate
        pipeline.submit_scene_list(["A", "B", "C"], GenerationConfig(scene_count=3))
        await wait_until(lambda: states(pipeline)[1] == ImageState.GENERATING)

        await pipeline.expand_scene(0)
        pipeline.commit_expansion(0, [Panel(description="A1"), Panel(description="A2")])
        assert states(pipeline) == [
            ImageState.QUEUED, ImageState.QUEUED, ImageState.GENERATING, ImageState.QUEUED,
        ]

        gate.set()
        await pipeline.wait_until_idle(timeout=5)

        queue_calls = [call[1] for call in gateway.calls_of("image") if not call[1].startswith("A: ")]
        assert queue_calls == ["A", "B", "A1", "A2", "C"]
        assert states(pipeline) == [ImageState.READY] * 4


class TestClassifyFailure:
    """Tests for quota classification."""

    def test_quota_status(self, quota_error):
        assert classify_failure(quota_error) == ImageState.QUOTA_ERROR

    def test_quota_message(self):
        assert classify_failure(RuntimeError("429 Too Many Requests")) == ImageState.QUOTA_ERROR

    def test_other_failure(self):
        assert classify_failure(GenerationError("generate_image", "HTTP 500", 500)) == ImageState.ERROR

    def test_status_digits_inside_other_numbers(self):
        assert classify_failure(RuntimeError("Request 14290 failed")) == ImageState.ERROR
        assert classify_failure(RuntimeError("Invalid seed 4291")) == ImageState.ERROR
        assert classify_failure(RuntimeError("HTTP 429")) == ImageState.QUOTA_ERROR


class TestRegenerateAndDelete:
    """Tests for regenerate and delete while images are in flight."""

    @pytest.mark.asyncio
    async def test_regenerate_discards_in_flight_result(self, pipeline, gateway):
        """Regenerating assigns a new id; the stale result never lands."""
        gate = asyncio.Event()
        gateway.image_gates["A"] = gate
        pipeline.submit_scene_list(["A", "B"], GenerationConfig(scene_count=2))
        await wait_until(lambda: states(pipeline)[0] == ImageState.GENERATING)

        old_id = pipeline.panels[0].id
        fresh = pipeline.regenerate_image(0)
        fresh = pipeline.regenerate_image(0)

        assert fresh.id != old_id
        assert pipeline.panels[0].image_state == ImageState.QUEUED

        gate.set()
        await pipeline.wait_until_idle(timeout=5)

        assert pipeline.panels[0].id == fresh.id
        assert pipeline.panels[0].image_state == ImageState.READY
        # One call for the original, one for the latest regeneration
        assert [call[1] for call in gateway.calls_of("image")] == ["A", "A", "B"]

    @pytest.mark.asyncio
    async def test_regenerate_resets_video(self, pipeline, ready_panel):
        panel = ready_panel("A", video_state=VideoState.READY, video_ref=InlineMedia(b"mp4", "video/mp4"))
        pipeline.load_panels([panel])

        fresh = pipeline.regenerate_image(0)

        assert fresh.video_state == VideoState.NONE
        assert fresh.video_ref is None

    @pytest.mark.asyncio
    async def test_regenerate_leaves_other_panels_untouched(self, pipeline, ready_panel):
        """Only the regenerated panel changes, before and after its new image lands."""
        video = InlineMedia(b"mp4", "video/mp4")
        pipeline.load_panels([
            ready_panel("A", scene_duration_seconds=7),
            ready_panel("B"),
            ready_panel("C", video_state=VideoState.READY, video_ref=video),
        ])
        before = pipeline.panels

        fresh = pipeline.regenerate_image(1)

        after = pipeline.panels
        assert after[0] is before[0]
        assert after[2] is before[2]
        assert after[1].id == fresh.id != before[1].id

        await pipeline.wait_until_idle(timeout=5)

        final = pipeline.panels
        assert final[0] is before[0]
        assert final[2] is before[2]
        assert final[1].image_state == ImageState.READY

    @pytest.mark.asyncio
    async def test_delete_declined(self, pipeline, ready_panel):
        """A declined confirmation leaves the collection untouched."""
        pipeline.load_panels([ready_panel("A"), ready_panel("B")])

        removed = await pipeline.delete_panel(0, confirm=lambda panel, index: False)

        assert removed is False
        assert [p.description for p in pipeline.panels] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_delete_with_async_confirm(self, pipeline, ready_panel):
        """Confirm callbacks may be coroutines; later panels shift down."""
        pipeline.load_panels([ready_panel("A"), ready_panel("B"), ready_panel("C")])
        asked = []

        async def confirm(panel, index):
            asked.append((panel.description, index))
            return True

        removed = await pipeline.delete_panel(1, confirm=confirm)

        assert removed is True
        assert asked == [("B", 1)]
        assert [p.description for p in pipeline.panels] == ["A", "C"]

    @pytest.mark.asyncio
    async def test_delete_generating_panel(self, pipeline, gateway):
        """Deleting a panel mid-generation drops its result."""
        gate = asyncio.Event()
        gateway.image_gates["B"] = gate
        pipeline.submit_scene_list(["A", "B", "C"], GenerationConfig(scene_count=3))
        await wait_until(lambda: states(pipeline)[1] == ImageState.GENERATING)

        await pipeline.delete_panel(1)
        gate.set()
        await pipeline.wait_until_idle(timeout=5)

        assert [p.description for p in pipeline.panels] == ["A", "C"]
        assert states(pipeline) == [ImageState.READY, ImageState.READY]

    @pytest.mark.asyncio
    async def test_index_out_of_range(self, pipeline):
        with pytest.raises(PanelIndexError):
            await pipeline.delete_panel(0)
        with pytest.raises(PanelIndexError):
            pipeline.regenerate_image(3)


class TestPanelEdits:
    """Tests for per-panel edits."""

    @pytest.mark.asyncio
    async def test_scene_duration_clamped(self, pipeline, ready_panel):
        pipeline.load_panels([ready_panel("A")])

        assert pipeline.set_scene_duration(0, 15).scene_duration_seconds == 10
        assert pipeline.set_scene_duration(0, 0).scene_duration_seconds == 2
        assert pipeline.set_scene_duration(0, 5.6).scene_duration_seconds == 6
        assert pipeline.set_scene_duration(0, "abc").scene_duration_seconds == 4
        assert pipeline.panels[0].scene_duration_seconds == 4

    @pytest.mark.asyncio
    async def test_update_description_keeps_image(self, pipeline, ready_panel):
        pipeline.load_panels([ready_panel("A")])

        panel = pipeline.update_description(0, "A revised")

        assert panel.description == "A revised"
        assert panel.image_state == ImageState.READY

    @pytest.mark.asyncio
    async def test_edit_image_resets_video(self, pipeline, gateway, ready_panel):
        panel = ready_panel("A", video_state=VideoState.READY, video_ref=InlineMedia(b"mp4", "video/mp4"))
        pipeline.load_panels([panel])

        edited = await pipeline.edit_image(0, "make it night")

        assert edited.image_ref.data == b"png:A|make it night"
        assert edited.video_state == VideoState.NONE
        assert edited.video_ref is None
        assert gateway.calls_of("edit") == [("edit", "make it night")]

    @pytest.mark.asyncio
    async def test_edit_requires_ready_image(self, pipeline, gateway):
        pipeline.load_panels([Panel(description="A", image_state=ImageState.ERROR, image_ref=MEDIA_ERROR)])

        with pytest.raises(PipelineError):
            await pipeline.edit_image(0, "make it night")
        assert gateway.calls_of("edit") == []


class TestExpansion:
    """Tests for scene expansion and its review step."""

    @pytest.mark.asyncio
    async def test_expand_and_commit(self, pipeline, gateway, ready_panel):
        """Committing k shots replaces one panel: net length change k - 1."""
        pipeline.load_panels([ready_panel("A"), ready_panel("B"), ready_panel("C")])
        source_id = pipeline.panels[1].id

        staged = await pipeline.expand_scene(1)

        assert len(staged) == 3
        assert all(p.image_state == ImageState.READY for p in staged)
        assert len(pipeline.panels) == 3  # staged, not merged

        inserted = pipeline.commit_expansion(1)

        assert len(pipeline.panels) == 5
        assert [p.description for p in pipeline.panels] == [
            "A", "B: Wide shot", "B: Close-up", "B: Over the shoulder", "C",
        ]
        assert source_id not in [p.id for p in pipeline.panels]
        assert all(p.image_state == ImageState.READY for p in inserted)
        assert pipeline.staging is None

    @pytest.mark.asyncio
    async def test_commit_edited_subset(self, pipeline, ready_panel):
        pipeline.load_panels([ready_panel("A"), ready_panel("B")])
        staged = await pipeline.expand_scene(0)

        pipeline.commit_expansion(0, [staged[0].evolve(description="Edited shot")])

        assert [p.description for p in pipeline.panels] == ["Edited shot", "B"]

    @pytest.mark.asyncio
    async def test_failed_shot_keeps_quota_state(self, pipeline, gateway, ready_panel, quota_error):
        gateway.image_errors["A: Close-up"] = quota_error
        pipeline.load_panels([ready_panel("A")])

        await pipeline.expand_scene(0)
        pipeline.commit_expansion(0)

        assert states(pipeline) == [ImageState.READY, ImageState.QUOTA_ERROR, ImageState.READY]

    @pytest.mark.asyncio
    async def test_stale_staging_rejected(self, pipeline, ready_panel):
        """Staging is bound to the source panel's id, not its index."""
        pipeline.load_panels([ready_panel("A"), ready_panel("B"), ready_panel("C")])
        await pipeline.expand_scene(1)
        await pipeline.delete_panel(0)

        with pytest.raises(ExpansionError):
            pipeline.commit_expansion(1)

        pipeline.commit_expansion(0)
        assert [p.description for p in pipeline.panels][-1] == "C"
        assert len(pipeline.panels) == 4

    @pytest.mark.asyncio
    async def test_commit_without_staging(self, pipeline, ready_panel):
        pipeline.load_panels([ready_panel("A")])
        await pipeline.expand_scene(0)
        pipeline.discard_expansion()

        with pytest.raises(ExpansionError):
            pipeline.commit_expansion(0)
        assert [p.description for p in pipeline.panels] == ["A"]


class TestVideo:
    """Tests for per-panel video jobs."""

    @pytest.mark.asyncio
    async def test_generate_video(self, pipeline, gateway, blobs, ready_panel):
        pipeline.load_panels([ready_panel("A", scene_duration_seconds=6)])

        await pipeline.generate_video(0)

        panel = pipeline.panels[0]
        assert panel.video_state == VideoState.READY
        assert isinstance(panel.video_ref, BlobHandle)
        assert blobs.get(panel.video_ref.handle) == (b"mp4:png:A", "video/mp4")
        assert gateway.calls_of("video") == [("video", "A", 6)]

    @pytest.mark.asyncio
    async def test_ineligible_panel_rejected_without_call(self, pipeline, gateway):
        """No gateway call and no state change when the image is not ready."""
        pipeline.load_panels([Panel(description="A", image_state=ImageState.ERROR, image_ref=MEDIA_ERROR)])

        with pytest.raises(VideoNotAllowedError):
            await pipeline.generate_video(0)

        assert gateway.calls_of("video") == []
        assert pipeline.panels[0].video_state == VideoState.NONE

    @pytest.mark.asyncio
    async def test_existing_video_needs_regenerate(self, pipeline, gateway, ready_panel):
        panel = ready_panel("A", video_state=VideoState.READY, video_ref=InlineMedia(b"old", "video/mp4"))
        pipeline.load_panels([panel])

        with pytest.raises(VideoNotAllowedError):
            await pipeline.generate_video(0)
        await pipeline.regenerate_video(0)

        assert pipeline.panels[0].video_ref != InlineMedia(b"old", "video/mp4")
        assert len(gateway.calls_of("video")) == 1

    @pytest.mark.asyncio
    async def test_video_in_progress_rejected(self, pipeline, gateway, ready_panel):
        gate = asyncio.Event()
        gateway.video_gates["A"] = gate
        pipeline.load_panels([ready_panel("A")])

        task = pipeline.start_video(0)
        assert pipeline.panels[0].video_state == VideoState.GENERATING
        with pytest.raises(VideoNotAllowedError):
            await pipeline.regenerate_video(0)

        gate.set()
        await task
        assert pipeline.panels[0].video_state == VideoState.READY
        assert len(gateway.calls_of("video")) == 1

    @pytest.mark.asyncio
    async def test_video_failure_recorded(self, pipeline, gateway, ready_panel):
        """A failed video keeps its cause and stays eligible for a retry."""
        gateway.video_errors["A"] = GenerationError("generate_video", "Video job failed")
        pipeline.load_panels([ready_panel("A")])

        await pipeline.generate_video(0)

        panel = pipeline.panels[0]
        assert panel.video_state == VideoState.ERROR
        assert panel.video_ref is None
        assert "Video job failed" in panel.video_error
        assert panel.eligible_for_batch_video

    @pytest.mark.asyncio
    async def test_video_result_for_deleted_panel_dropped(self, pipeline, gateway, ready_panel):
        gate = asyncio.Event()
        gateway.video_gates["A"] = gate
        pipeline.load_panels([ready_panel("A"), ready_panel("B")])

        task = pipeline.start_video(0)
        await pipeline.delete_panel(0)
        gate.set()
        await task

        assert [p.description for p in pipeline.panels] == ["B"]
        assert pipeline.panels[0].video_state == VideoState.NONE

    @pytest.mark.asyncio
    async def test_generate_all_videos(self, pipeline, gateway, ready_panel):
        """Only panels with a ready image and no video are started."""
        pipeline.load_panels([
            ready_panel("A"),
            ready_panel("B", video_state=VideoState.READY, video_ref=InlineMedia(b"mp4", "video/mp4")),
            Panel(description="C", image_state=ImageState.ERROR, image_ref=MEDIA_ERROR),
            ready_panel("D"),
        ])

        started = await pipeline.generate_all_videos()

        assert started == 2
        assert sorted(call[1] for call in gateway.calls_of("video")) == ["A", "D"]
        assert [p.video_state for p in pipeline.panels] == [
            VideoState.READY, VideoState.READY, VideoState.NONE, VideoState.READY,
        ]

    @pytest.mark.asyncio
    async def test_video_jobs_run_concurrently(self, pipeline, gateway, ready_panel):
        gates = {name: asyncio.Event() for name in ("A", "B")}
        gateway.video_gates.update(gates)
        pipeline.load_panels([ready_panel("A"), ready_panel("B")])

        tasks = pipeline.start_all_videos()
        await wait_until(lambda: len(gateway.calls_of("video")) == 2)

        assert [p.video_state for p in pipeline.panels] == [VideoState.GENERATING] * 2
        for gate in gates.values():
            gate.set()
        await asyncio.gather(*tasks)
        assert [p.video_state for p in pipeline.panels] == [VideoState.READY] * 2

    @pytest.mark.asyncio
    async def test_start_all_skips_unreadable_image(self, pipeline, gateway, blobs, ready_panel):
        """A panel whose image bytes are gone is skipped; the others still start."""
        lost = blobs.create(b"png:B", "image/png")
        pipeline.load_panels([ready_panel("A"), ready_panel("B", image_ref=lost), ready_panel("C")])
        blobs.revoke(lost.handle)

        tasks = pipeline.start_all_videos()
        await asyncio.gather(*tasks)

        assert len(tasks) == 2
        assert sorted(call[1] for call in gateway.calls_of("video")) == ["A", "C"]
        assert [p.video_state for p in pipeline.panels] == [VideoState.READY, VideoState.NONE, VideoState.READY]


class TestBlobRelease:
    """Tests for revoking blob handles once their panels leave the collection."""

    @pytest.mark.asyncio
    async def test_delete_and_reload_revoke_handles(self, pipeline, blobs, ready_panel):
        first = ready_panel("A", image_ref=blobs.create(b"png:A", "image/png"))
        second = ready_panel("B", image_ref=blobs.create(b"png:B", "image/png"))
        pipeline.load_panels([first, second])

        await pipeline.delete_panel(0)

        assert blobs.get(first.image_ref.handle) is None
        assert blobs.get(second.image_ref.handle) == (b"png:B", "image/png")

        pipeline.load_panels([])
        assert len(blobs) == 0

    @pytest.mark.asyncio
    async def test_regenerate_revokes_old_video(self, pipeline, blobs, ready_panel):
        pipeline.load_panels([ready_panel("A"), ready_panel("B")])
        await pipeline.generate_all_videos()
        old_video = pipeline.panels[0].video_ref

        pipeline.regenerate_image(0)
        await pipeline.wait_until_idle(timeout=5)

        assert blobs.get(old_video.handle) is None
        assert len(blobs) == 1

    @pytest.mark.asyncio
    async def test_result_for_deleted_panel_revoked(self, pipeline, gateway, blobs, ready_panel):
        gate = asyncio.Event()
        gateway.video_gates["A"] = gate
        pipeline.load_panels([ready_panel("A"), ready_panel("B")])

        task = pipeline.start_video(0)
        await pipeline.delete_panel(0)
        gate.set()
        await task

        assert len(gateway.calls_of("video")) == 1
        assert len(blobs) == 0

    @pytest.mark.asyncio
    async def test_unchanged_panels_keep_handles(self, pipeline, blobs, ready_panel):
        image = blobs.create(b"png:A", "image/png")
        pipeline.load_panels([ready_panel("A", image_ref=image)])

        pipeline.set_scene_duration(0, 8)
        pipeline.update_description(0, "A revised")

        assert blobs.get(image.handle) == (b"png:A", "image/png")


class TestFourPanelScenario:
    """Submit, drain, delete one panel, then animate the first."""

    @pytest.mark.asyncio
    async def test_scenario(self, pipeline, gateway):
        pipeline.submit_scene_list(["S1", "S2", "S3", "S4"], GenerationConfig(scene_count=4))
        await pipeline.wait_until_idle(timeout=5)
        assert states(pipeline) == [ImageState.READY] * 4

        await pipeline.delete_panel(1)
        assert [p.description for p in pipeline.panels] == ["S1", "S3", "S4"]

        await pipeline.generate_video(0)

        first = pipeline.panels[0]
        assert first.video_state == VideoState.READY
        assert [p.video_state for p in pipeline.panels[1:]] == [VideoState.NONE] * 2
        assert [call[1] for call in gateway.calls_of("image")] == ["S1", "S2", "S3", "S4"]
        assert gateway.calls_of("video") == [("video", "S1", 4)]
