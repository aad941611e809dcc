"""Tests for the session controller state machine."""

import asyncio
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from game_cocreator.domain.content import StepType
from game_cocreator.domain.errors import (
    InvalidStateError,
    NotFoundError,
    ProviderFailure,
    ValidationError,
)
from game_cocreator.domain.sessions import Provenance, SessionStatus, SubjectSpec
from game_cocreator.services.assembler import AssetAssembler
from game_cocreator.services.generation import CAPABILITIES
from tests.conftest import (
    FailingContentClient,
    FailingEventPublisher,
    FakeContentClient,
    RecordingEventPublisher,
    build_controller,
)

PNG = b"\x89PNG\r\n\x1a\nfake"

TWO_STEPS = SubjectSpec(
    title="Star Hopper",
    include_steps=(StepType.CHARACTER, StepType.MECHANICS),
)


class BrokenAssembler(AssetAssembler):
    def _build(self, context, category):  # type: ignore[no-untyped-def]
        raise RuntimeError("template missing")


async def _wait_for_calls(client: FakeContentClient, count: int) -> None:
    while len(client.calls) < count:
        await asyncio.sleep(0)


def test_start_creates_first_step_with_initial_batch() -> None:
    publisher = RecordingEventPublisher()
    controller = build_controller(publisher=publisher)

    async def scenario() -> None:
        result = await controller.start(SubjectSpec(title="Star Hopper"))
        session = await controller.describe(result.session_id)
        await controller.broadcaster.drain()
        await controller.store.close()

        assert session.status is SessionStatus.STEP_ACTIVE
        assert session.total_steps == len(session.steps) == 6
        assert session.current_step_index == 0
        assert result.initial_batch is not None
        assert len(result.initial_batch.variants) == 3
        assert result.progress.awaiting_selection
        assert result.progress.step_name == "Main character"

    asyncio.run(scenario())

    assert publisher.names()[:3] == [
        "step:started",
        "variants:generating",
        "variants:generated",
    ]


def test_start_rejects_blank_title() -> None:
    controller = build_controller()

    async def scenario() -> None:
        await controller.start(SubjectSpec(title="   "))

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_start_with_unknown_category_uses_default_template() -> None:
    controller = build_controller(initial_variant_count=0)

    async def scenario() -> None:
        result = await controller.start(
            SubjectSpec(title="Odd", category="interactive-fiction")
        )
        session = await controller.describe(result.session_id)
        await controller.store.close()

        assert session.steps[0].step_type is StepType.CHARACTER
        assert result.initial_batch is None
        assert not result.progress.awaiting_selection

    asyncio.run(scenario())


def test_generate_appends_batches() -> None:
    controller = build_controller(initial_variant_count=0)

    async def scenario() -> None:
        result = await controller.start(TWO_STEPS)
        step_id = result.progress.step_id
        first = await controller.generate_variants(result.session_id, step_id, 5)
        second = await controller.generate_variants(result.session_id, step_id, 3)
        session = await controller.describe(result.session_id)
        await controller.store.close()

        assert len(first.variants) == 5
        assert len(second.variants) == 3
        assert second.total_count == 8
        ids = [variant.id for variant in session.steps[0].variants]
        assert len(ids) == len(set(ids)) == 8
        assert ids[:5] == [variant.id for variant in first.variants]

    asyncio.run(scenario())


def test_overlapping_generate_requests_both_append() -> None:
    controller = build_controller(initial_variant_count=0)

    async def scenario() -> None:
        result = await controller.start(TWO_STEPS)
        step_id = result.progress.step_id
        await asyncio.gather(
            controller.generate_variants(result.session_id, step_id, 2),
            controller.generate_variants(result.session_id, step_id, 4),
        )
        progress = await controller.get_progress(result.session_id)
        await controller.store.close()

        assert progress.variant_count == 6

    asyncio.run(scenario())


def test_generate_validates_count_and_instruction() -> None:
    controller = build_controller(initial_variant_count=0)

    async def scenario() -> None:
        result = await controller.start(TWO_STEPS)
        step_id = result.progress.step_id
        try:
            for count in (0, 11):
                with pytest.raises(ValidationError):
                    await controller.generate_variants(
                        result.session_id, step_id, count
                    )
            with pytest.raises(ValidationError):
                await controller.generate_variants(result.session_id, step_id, 2, "  ")
        finally:
            await controller.store.close()

    asyncio.run(scenario())


def test_generate_for_unknown_ids() -> None:
    controller = build_controller(initial_variant_count=0)

    async def scenario() -> None:
        result = await controller.start(TWO_STEPS)
        try:
            with pytest.raises(NotFoundError):
                await controller.generate_variants(uuid4(), uuid4(), 1)
            with pytest.raises(NotFoundError):
                await controller.generate_variants(result.session_id, uuid4(), 1)
        finally:
            await controller.store.close()

    asyncio.run(scenario())


def test_generate_for_future_step_is_invalid_state() -> None:
    controller = build_controller(initial_variant_count=0)

    async def scenario() -> None:
        result = await controller.start(TWO_STEPS)
        session = await controller.describe(result.session_id)
        try:
            with pytest.raises(InvalidStateError):
                await controller.generate_variants(
                    result.session_id, session.steps[1].id, 1
                )
        finally:
            await controller.store.close()

    asyncio.run(scenario())


def test_provider_failure_appends_nothing() -> None:
    publisher = RecordingEventPublisher()
    controller = build_controller(
        content_client=FailingContentClient(), publisher=publisher
    )

    async def scenario() -> None:
        result = await controller.start(TWO_STEPS)
        step_id = result.progress.step_id
        assert result.initial_batch is None
        with pytest.raises(ProviderFailure) as exc_info:
            await controller.generate_variants(result.session_id, step_id, 3)
        progress = await controller.get_progress(result.session_id)
        await controller.broadcaster.drain()
        await controller.store.close()

        assert exc_info.value.session_id == result.session_id
        assert exc_info.value.step_id == step_id
        assert progress.variant_count == 0
        assert progress.status is SessionStatus.STEP_ACTIVE

    asyncio.run(scenario())

    assert "error" in publisher.names()


def test_select_unknown_variant_leaves_state_unchanged() -> None:
    controller = build_controller()

    async def scenario() -> None:
        result = await controller.start(TWO_STEPS)
        before = await controller.describe(result.session_id)
        with pytest.raises(ValidationError):
            await controller.select_variant(
                result.session_id, result.progress.step_id, uuid4()
            )
        after = await controller.describe(result.session_id)
        await controller.store.close()

        assert after == before

    asyncio.run(scenario())


def test_select_records_choice_and_rejects_second_select() -> None:
    controller = build_controller()

    async def scenario() -> None:
        result = await controller.start(TWO_STEPS)
        step_id = result.progress.step_id
        chosen, other = result.initial_batch.variants[:2]
        progress = await controller.select_variant(
            result.session_id, step_id, chosen.id, "brighter colors"
        )
        session = await controller.describe(result.session_id)

        assert progress.current_step_index == 1
        assert progress.status is SessionStatus.STEP_ACTIVE
        assert progress.completed_steps == 1
        assert progress.percent == 50
        assert progress.variant_count == 3
        assert session.steps[0].completed
        assert session.steps[0].selected_variant_id == chosen.id
        assert session.steps[0].custom_instruction == "brighter colors"
        assert session.final_choices[step_id] == chosen.id
        with pytest.raises(InvalidStateError):
            await controller.select_variant(result.session_id, step_id, other.id)
        with pytest.raises(InvalidStateError):
            await controller.generate_variants(result.session_id, step_id, 1)
        await controller.store.close()

    asyncio.run(scenario())


def test_concurrent_selects_have_one_winner() -> None:
    controller = build_controller()

    async def scenario() -> None:
        result = await controller.start(TWO_STEPS)
        step_id = result.progress.step_id
        first, second = result.initial_batch.variants[:2]
        outcomes = await asyncio.gather(
            controller.select_variant(result.session_id, step_id, first.id),
            controller.select_variant(result.session_id, step_id, second.id),
            return_exceptions=True,
        )
        session = await controller.describe(result.session_id)
        await controller.store.close()

        failures = [item for item in outcomes if isinstance(item, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], InvalidStateError)
        assert session.steps[0].selected_variant_id in {first.id, second.id}

    asyncio.run(scenario())


def test_stale_batch_is_discarded_after_selection() -> None:
    publisher = RecordingEventPublisher()
    gate = asyncio.Event()
    gate.set()
    client = FakeContentClient(gate=gate)
    controller = build_controller(content_client=client, publisher=publisher)

    async def scenario() -> None:
        result = await controller.start(TWO_STEPS)
        step_id = result.progress.step_id
        gate.clear()
        pending = asyncio.create_task(
            controller.generate_variants(result.session_id, step_id, 4)
        )
        await _wait_for_calls(client, 2)
        selecting = asyncio.create_task(
            controller.select_variant(
                result.session_id, step_id, result.initial_batch.variants[0].id
            )
        )
        # The third call is the next step's batch, issued after the selection.
        await _wait_for_calls(client, 3)
        gate.set()
        with pytest.raises(InvalidStateError):
            await pending
        progress = await selecting
        session = await controller.describe(result.session_id)
        await controller.broadcaster.drain()
        await controller.store.close()

        assert len(session.steps[0].variants) == 3
        assert progress.variant_count == 3

    asyncio.run(scenario())

    assert "variants:discarded" in publisher.names()


def test_result_after_eviction_is_not_found() -> None:
    gate = asyncio.Event()
    client = FakeContentClient(gate=gate)
    controller = build_controller(content_client=client, initial_variant_count=0)

    async def scenario() -> None:
        result = await controller.start(TWO_STEPS)
        pending = asyncio.create_task(
            controller.generate_variants(
                result.session_id, result.progress.step_id, 2
            )
        )
        await _wait_for_calls(client, 1)
        await controller.store.evict(result.session_id)
        gate.set()
        with pytest.raises(NotFoundError):
            await pending

    asyncio.run(scenario())


def test_pause_keeps_in_flight_results_and_resume_preserves_history() -> None:
    gate = asyncio.Event()
    gate.set()
    client = FakeContentClient(gate=gate)
    controller = build_controller(content_client=client)

    async def scenario() -> None:
        result = await controller.start(TWO_STEPS)
        sid, step_id = result.session_id, result.progress.step_id
        gate.clear()
        pending = asyncio.create_task(controller.generate_variants(sid, step_id, 2))
        await _wait_for_calls(client, 2)
        paused = await controller.pause(sid, "coffee break")
        gate.set()
        batch = await pending
        before_resume = await controller.describe(sid)

        assert paused.status is SessionStatus.PAUSED
        assert batch.total_count == 5
        assert not before_resume.is_active
        with pytest.raises(InvalidStateError):
            await controller.generate_variants(sid, step_id, 1)
        with pytest.raises(InvalidStateError):
            await controller.select_variant(sid, step_id, batch.variants[0].id)
        with pytest.raises(InvalidStateError):
            await controller.pause(sid)

        resumed = await controller.resume(sid)
        after_resume = await controller.describe(sid)
        await controller.store.close()

        assert resumed.status is SessionStatus.STEP_ACTIVE
        assert resumed.current_step_index == paused.current_step_index
        assert after_resume.steps == before_resume.steps
        assert after_resume.is_active

    asyncio.run(scenario())


def test_resume_active_session_is_invalid_state() -> None:
    controller = build_controller(initial_variant_count=0)

    async def scenario() -> None:
        result = await controller.start(TWO_STEPS)
        try:
            with pytest.raises(InvalidStateError):
                await controller.resume(result.session_id)
        finally:
            await controller.store.close()

    asyncio.run(scenario())


def test_upload_appends_one_uploaded_variant() -> None:
    controller = build_controller()

    async def scenario() -> None:
        result = await controller.start(TWO_STEPS)
        batch = await controller.upload_variant(
            result.session_id,
            result.progress.step_id,
            PNG,
            "image/png",
            len(PNG),
            "hero.png",
        )
        await controller.store.close()

        assert len(batch.variants) == 1
        assert batch.variants[0].provenance is Provenance.UPLOADED
        assert batch.total_count == 4

    asyncio.run(scenario())


def test_upload_to_step_without_uploads_is_rejected() -> None:
    controller = build_controller(initial_variant_count=0)

    async def scenario() -> None:
        result = await controller.start(
            SubjectSpec(title="Blocks", category="puzzle")
        )
        try:
            with pytest.raises(ValidationError):
                await controller.upload_variant(
                    result.session_id,
                    result.progress.step_id,
                    PNG,
                    "image/png",
                    len(PNG),
                )
        finally:
            await controller.store.close()

    asyncio.run(scenario())


def test_skip_selects_first_seeded_variant_and_completes() -> None:
    publisher = RecordingEventPublisher()
    controller = build_controller(publisher=publisher)

    async def scenario() -> None:
        result = await controller.start(
            SubjectSpec(
                title="Quick",
                include_steps=(StepType.CHARACTER, StepType.GRAPHICS),
            )
        )
        sid = result.session_id
        with pytest.raises(InvalidStateError):
            await controller.skip(sid)
        await controller.select_variant(
            sid, result.progress.step_id, result.initial_batch.variants[0].id
        )
        progress = await controller.skip(sid)
        session = await controller.describe(sid)
        await controller.broadcaster.drain()
        await controller.store.close()

        graphics = session.steps[1]
        assert progress.status is SessionStatus.COMPLETED
        assert graphics.completed
        assert len(graphics.variants) == 3
        assert graphics.selected_variant_id == graphics.variants[0].id
        assert session.artifact is not None

    asyncio.run(scenario())

    assert "step:skipped" in publisher.names()


def test_skip_without_variants_uses_builtin_default() -> None:
    controller = build_controller(initial_variant_count=0)

    async def scenario() -> None:
        result = await controller.start(
            SubjectSpec(title="Quick", include_steps=(StepType.GRAPHICS,))
        )
        progress = await controller.skip(result.session_id)
        session = await controller.describe(result.session_id)
        await controller.store.close()

        assert progress.status is SessionStatus.COMPLETED
        assert session.steps[0].selected_variant.content == (
            CAPABILITIES[StepType.GRAPHICS].default
        )

    asyncio.run(scenario())


def test_skip_prefers_first_generated_variant() -> None:
    controller = build_controller(initial_variant_count=0)

    async def scenario() -> None:
        result = await controller.start(
            SubjectSpec(
                title="Quick",
                include_steps=(StepType.CHARACTER,),
                skip_steps=(StepType.CHARACTER,),
            )
        )
        sid, step_id = result.session_id, result.progress.step_id
        await controller.upload_variant(sid, step_id, PNG, "image/png", len(PNG))
        batch = await controller.generate_variants(sid, step_id, 2)
        await controller.skip(sid)
        session = await controller.describe(sid)
        await controller.store.close()

        assert session.steps[0].selected_variant_id == batch.variants[0].id

    asyncio.run(scenario())


def test_two_step_scenario_completes_with_matching_context() -> None:
    publisher = RecordingEventPublisher()
    controller = build_controller(publisher=publisher, initial_variant_count=0)

    async def scenario() -> None:
        result = await controller.start(TWO_STEPS)
        sid = result.session_id
        assert result.progress.status is SessionStatus.STEP_ACTIVE

        first = await controller.generate_variants(sid, result.progress.step_id, 5)
        character = first.variants[2]
        progress = await controller.select_variant(
            sid, result.progress.step_id, character.id
        )
        assert progress.status is SessionStatus.STEP_ACTIVE
        assert progress.current_step_index == 1

        second = await controller.generate_variants(sid, progress.step_id, 5)
        mechanics = second.variants[0]
        progress = await controller.select_variant(sid, progress.step_id, mechanics.id)
        assert progress.status is SessionStatus.COMPLETED
        assert progress.percent == 100

        artifact = await controller.complete(sid)
        await controller.broadcaster.drain()
        await controller.store.close()

        assert artifact.context == {
            StepType.CHARACTER: character.content,
            StepType.MECHANICS: mechanics.content,
        }
        assert not artifact.is_placeholder
        assert "index.html" in artifact.files

    asyncio.run(scenario())

    assert publisher.names().count("generation:completed") == 1


def test_selection_seeds_next_step_with_character_choice() -> None:
    client = FakeContentClient()
    controller = build_controller(content_client=client)

    async def scenario() -> None:
        result = await controller.start(TWO_STEPS)
        chosen = result.initial_batch.variants[1]
        progress = await controller.select_variant(
            result.session_id, result.progress.step_id, chosen.id
        )
        session = await controller.describe(result.session_id)
        await controller.store.close()

        mechanics = session.steps[1]
        assert progress.step_id == mechanics.id
        assert progress.awaiting_selection
        assert len(mechanics.variants) == 3
        assert all(
            variant.content.kind == "mechanics" for variant in mechanics.variants
        )

    asyncio.run(scenario())

    assert len(client.calls) == 2
    assert "name 1" in str(client.calls[1]["prompt"])


def test_failed_next_step_batch_still_advances() -> None:
    controller = build_controller(content_client=FailingContentClient())

    async def scenario() -> None:
        result = await controller.start(TWO_STEPS)
        sid, step_id = result.session_id, result.progress.step_id
        upload = await controller.upload_variant(
            sid, step_id, PNG, "image/png", len(PNG)
        )
        progress = await controller.select_variant(
            sid, step_id, upload.variants[0].id
        )
        await controller.store.close()

        assert progress.status is SessionStatus.STEP_ACTIVE
        assert progress.current_step_index == 1
        assert progress.variant_count == 0

    asyncio.run(scenario())


def test_complete_requires_required_steps() -> None:
    controller = build_controller(initial_variant_count=0)

    async def scenario() -> None:
        result = await controller.start(TWO_STEPS)
        try:
            with pytest.raises(InvalidStateError):
                await controller.complete(result.session_id)
        finally:
            await controller.store.close()

    asyncio.run(scenario())


def test_complete_with_optional_steps_pending() -> None:
    controller = build_controller()

    async def scenario() -> None:
        result = await controller.start(
            SubjectSpec(
                title="Quick",
                include_steps=(StepType.CHARACTER, StepType.SOUND),
            )
        )
        sid = result.session_id
        await controller.select_variant(
            sid, result.progress.step_id, result.initial_batch.variants[0].id
        )
        artifact = await controller.complete(sid)
        session = await controller.describe(sid)
        await controller.store.close()

        assert session.status is SessionStatus.COMPLETED
        assert list(artifact.context) == [StepType.CHARACTER]

    asyncio.run(scenario())


def test_assembly_failure_yields_placeholder() -> None:
    controller = build_controller(assembler=BrokenAssembler())

    async def scenario() -> None:
        result = await controller.start(
            SubjectSpec(title="Solo", include_steps=(StepType.CHARACTER,))
        )
        await controller.select_variant(
            result.session_id,
            result.progress.step_id,
            result.initial_batch.variants[0].id,
        )
        artifact = await controller.complete(result.session_id)
        session = await controller.describe(result.session_id)
        await controller.store.close()

        assert artifact.is_placeholder
        assert set(artifact.files) == {"index.html", "game.js", "manifest.json"}
        assert session.status is SessionStatus.COMPLETED
        assert any("template missing" in item for item in session.diagnostics)

    asyncio.run(scenario())


def test_cancel_is_terminal() -> None:
    controller = build_controller(initial_variant_count=0)

    async def scenario() -> None:
        result = await controller.start(TWO_STEPS)
        sid = result.session_id
        progress = await controller.cancel(sid)
        try:
            assert progress.status is SessionStatus.CANCELLED
            with pytest.raises(InvalidStateError):
                await controller.cancel(sid)
            with pytest.raises(InvalidStateError):
                await controller.generate_variants(sid, result.progress.step_id, 1)
            with pytest.raises(InvalidStateError):
                await controller.complete(sid)
        finally:
            await controller.store.close()

    asyncio.run(scenario())


def test_preview_is_computed_once_and_cached() -> None:
    controller = build_controller()

    async def scenario() -> None:
        result = await controller.start(TWO_STEPS)
        sid, step_id = result.session_id, result.progress.step_id
        variant = result.initial_batch.variants[0]
        upload = await controller.upload_variant(
            sid, step_id, PNG, "image/png", len(PNG)
        )
        first = await controller.preview_variant(sid, step_id, variant.id)
        second = await controller.preview_variant(sid, step_id, variant.id)
        image = await controller.preview_variant(
            sid, step_id, upload.variants[0].id
        )
        try:
            with pytest.raises(NotFoundError):
                await controller.preview_variant(sid, step_id, uuid4())
        finally:
            await controller.store.close()

        assert first.kind == "text"
        assert '"name": "name 0"' in first.data
        assert second is first
        assert image.kind == "image"

    asyncio.run(scenario())


def test_failed_subscriber_never_blocks_transitions() -> None:
    controller = build_controller(publisher=FailingEventPublisher())

    async def scenario() -> SessionStatus:
        result = await controller.start(
            SubjectSpec(title="Solo", include_steps=(StepType.CHARACTER,))
        )
        progress = await controller.select_variant(
            result.session_id,
            result.progress.step_id,
            result.initial_batch.variants[0].id,
        )
        await controller.broadcaster.drain()
        await controller.store.close()
        return progress.status

    assert asyncio.run(scenario()) is SessionStatus.COMPLETED


def test_controller_rejects_inconsistent_variant_counts() -> None:
    with pytest.raises(ValueError):
        build_controller(initial_variant_count=11)
    with pytest.raises(ValueError):
        build_controller(initial_variant_count=-1)


def test_sweep_cancels_idle_sessions_then_evicts_them() -> None:
    publisher = RecordingEventPublisher()
    now = [datetime(2026, 1, 1, tzinfo=UTC)]
    controller = build_controller(
        publisher=publisher, initial_variant_count=0, clock=lambda: now[0]
    )

    async def scenario() -> None:
        paused = await controller.start(TWO_STEPS)
        await controller.pause(paused.session_id)
        active = await controller.start(TWO_STEPS)
        now[0] += timedelta(days=30)
        fresh = await controller.start(TWO_STEPS)

        assert await controller.store.evict_expired() == []
        assert await controller.sweep() == []
        for result in (paused, active):
            progress = await controller.get_progress(result.session_id)
            assert progress.status is SessionStatus.CANCELLED
        fresh_progress = await controller.get_progress(fresh.session_id)
        assert fresh_progress.status is SessionStatus.STEP_ACTIVE

        now[0] += timedelta(seconds=controller.store.ttl_seconds + 1)
        evicted = await controller.sweep()
        with pytest.raises(NotFoundError):
            await controller.get_progress(paused.session_id)
        await controller.broadcaster.drain()
        await controller.store.close()

        assert set(evicted) == {paused.session_id, active.session_id}

    asyncio.run(scenario())

    assert publisher.names().count("generation:cancelled") == 2
