"""Tests for umbrella_mail_import.stages.attachments."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from umbrella_mail_import.errors import AttachmentImportError
from umbrella_mail_import.models import ImportStage
from umbrella_mail_import.stages import AttachmentStage

from tests.factories import attachment_part, build_message, run_until, seed_contacts


def _message_with_attachments(count: int):
    return build_message(
        attachments=[
            attachment_part(f"file-{i}.txt", part_id=str(i), mime_type="text/plain")
            for i in range(1, count + 1)
        ]
    )


@pytest.fixture
async def contacts(repos):
    return await seed_contacts(repos, "alice@example.com", "bob@example.com")


class TestAttachmentStage:
    @pytest.mark.asyncio
    async def test_imports_every_attachment(self, deps, repos, contacts):
        context = await run_until(deps, _message_with_attachments(3), ImportStage.BODY)

        stage = AttachmentStage(deps)
        await stage.begin(context)
        await stage.run(context)

        rows = await repos.attachments.list_for_email(context.target.email_id)
        assert sorted(r.part_id for r in rows) == ["1", "2", "3"]
        assert all(r.extracted_text == "attachment bytes" for r in rows)
        assert all(r.file_path.startswith("s3://test-bucket/") for r in rows)
        staged = await repos.staged_attachments.list_for_message(context.target.staging_id)
        assert all(r.imported for r in staged)

    @pytest.mark.asyncio
    async def test_burst_never_exceeds_five_in_flight(self, deps, repos, contacts):
        context = await run_until(deps, _message_with_attachments(20), ImportStage.BODY)
        limiter = deps.attachment_limiter
        peak = 0

        async def _slow_fetch(message_id, attachment_id):
            nonlocal peak
            peak = max(peak, limiter.active)
            await asyncio.sleep(0.02)
            return b"data"

        deps.provider.get_attachment = AsyncMock(side_effect=_slow_fetch)

        await AttachmentStage(deps).run(context)

        assert limiter.max_concurrent == 5
        assert peak == 5
        assert limiter.active == 0
        assert len(await repos.attachments.list_for_email(context.target.email_id)) == 20

    @pytest.mark.asyncio
    async def test_partial_failure_raises_after_all_attempted(self, deps, repos, contacts):
        context = await run_until(deps, _message_with_attachments(4), ImportStage.BODY)

        async def _fetch(message_id, attachment_id):
            if attachment_id == "att-2":
                raise RuntimeError("provider timeout")
            return b"ok"

        deps.provider.get_attachment = AsyncMock(side_effect=_fetch)

        with pytest.raises(AttachmentImportError) as exc_info:
            await AttachmentStage(deps).run(context)

        error = exc_info.value
        assert [o.part_id for o in error.failed] == ["2"]
        assert "provider timeout" in error.failed[0].error
        assert len(error.outcomes) == 4
        assert deps.provider.get_attachment.await_count == 4
        rows = await repos.attachments.list_for_email(context.target.email_id)
        assert sorted(r.part_id for r in rows) == ["1", "3", "4"]

    @pytest.mark.asyncio
    async def test_retry_skips_imported_attachments(self, deps, repos, contacts):
        context = await run_until(deps, _message_with_attachments(2), ImportStage.BODY)
        deps.provider.get_attachment = AsyncMock(side_effect=[RuntimeError("flaky"), b"ok"])
        with pytest.raises(AttachmentImportError):
            await AttachmentStage(deps).run(context)

        deps.provider.get_attachment = AsyncMock(return_value=b"ok")
        await AttachmentStage(deps).run(context)

        assert deps.provider.get_attachment.await_count == 1
        assert len(await repos.attachments.list_for_email(context.target.email_id)) == 2

    @pytest.mark.asyncio
    async def test_failed_import_flag_rolls_back_attachment_row(self, deps, repos, contacts):
        context = await run_until(deps, _message_with_attachments(1), ImportStage.BODY)
        mark_imported = repos.staged_attachments.mark_imported
        calls = 0

        async def _flaky_mark(attachment_id, *, session=None):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("connection reset")
            return await mark_imported(attachment_id, session=session)

        with patch.object(repos.staged_attachments, "mark_imported", side_effect=_flaky_mark):
            with pytest.raises(AttachmentImportError):
                await AttachmentStage(deps).run(context)
            assert await repos.attachments.list_for_email(context.target.email_id) == []

            await AttachmentStage(deps).run(context)

        rows = await repos.attachments.list_for_email(context.target.email_id)
        assert [r.part_id for r in rows] == ["1"]
        staged = await repos.staged_attachments.list_for_message(context.target.staging_id)
        assert all(r.imported for r in staged)

    @pytest.mark.asyncio
    async def test_missing_download_job_is_a_per_item_error(self, deps, contacts):
        context = await run_until(deps, _message_with_attachments(2), ImportStage.BODY)
        deps.downloads.discard(context.target.staging_id)

        with pytest.raises(AttachmentImportError) as exc_info:
            await AttachmentStage(deps).run(context)
        assert len(exc_info.value.failed) == 2
        assert all("No download job" in o.error for o in exc_info.value.failed)

    @pytest.mark.asyncio
    async def test_no_attachments(self, deps, contacts):
        context = await run_until(deps, build_message(), ImportStage.BODY)
        await AttachmentStage(deps).run(context)
        assert context.scratch["attachment_outcomes"] == []

    @pytest.mark.asyncio
    async def test_requires_persisted_email(self, deps):
        context = await run_until(deps, build_message(), ImportStage.STAGED)
        with pytest.raises(ValueError):
            await AttachmentStage(deps).run(context)

    def test_status(self, deps):
        status = AttachmentStage(deps).status()
        assert status.max_concurrent == 5
        assert status.available_slots == 5
        assert status.active_downloads == 0
