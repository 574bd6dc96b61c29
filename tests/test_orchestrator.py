"""Tests for umbrella_mail_import.orchestrator."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from umbrella_mail_import.config import PipelineConfig
from umbrella_mail_import.db.models import Contact, Email
from umbrella_mail_import.errors import EmailNotFoundError, StageError
from umbrella_mail_import.models import ImportStage
from umbrella_mail_import.orchestrator import PipelineOrchestrator

from tests.factories import attachment_part, build_message, seed_contacts


async def _count(database, model) -> int:
    async with database.session() as session:
        return await session.scalar(select(func.count()).select_from(model))


async def _stage_of(repos, provider_message_id: str) -> ImportStage:
    record = await repos.staging.get_by_external_id(provider_message_id)
    return ImportStage(record.stage)


class TestImportMessage:
    @pytest.mark.asyncio
    async def test_full_import(self, orchestrator, repos, provider):
        await seed_contacts(repos, "alice@example.com", "bob@example.com")
        provider.get_message = AsyncMock(
            return_value=build_message(
                attachments=[attachment_part("notes.txt", part_id="1", mime_type="text/plain")]
            )
        )

        result = await orchestrator.import_message("msg-001")

        assert result.success is True
        assert result.stage is ImportStage.COMPLETED
        assert result.error is None
        email = await repos.emails.get(result.email_id)
        assert email.subject == "Quarterly report"
        assert len(await repos.attachments.list_for_email(result.email_id)) == 1
        assert await _stage_of(repos, "msg-001") is ImportStage.COMPLETED
        assert len(orchestrator.downloads) == 0

    @pytest.mark.asyncio
    async def test_message_gone_is_success(self, orchestrator, repos, provider):
        provider.get_message = AsyncMock(side_effect=EmailNotFoundError("gone", status_code=404))

        result = await orchestrator.import_message("msg-404")

        assert result.success is True
        assert result.stage is ImportStage.NEW
        assert result.email_id is None
        assert await repos.staging.get_by_external_id("msg-404") is None

    @pytest.mark.asyncio
    async def test_failure_reports_last_completed_stage(self, orchestrator, repos, database):
        await seed_contacts(repos, "alice@example.com")

        result = await orchestrator.import_message("msg-001")

        assert result.success is False
        assert result.stage is ImportStage.HEADERS
        assert "bob@example.com" in result.error
        assert await _stage_of(repos, "msg-001") is ImportStage.HEADERS
        assert await _count(database, Email) == 0

    @pytest.mark.asyncio
    async def test_resumes_from_staging_record(self, orchestrator, repos, provider):
        await seed_contacts(repos, "alice@example.com")
        failed = await orchestrator.import_message("msg-001")
        assert failed.success is False

        await seed_contacts(repos, "bob@example.com")
        result = await orchestrator.import_message("msg-001")

        assert result.success is True
        assert result.stage is ImportStage.COMPLETED
        assert provider.get_message.await_count == 1

    @pytest.mark.asyncio
    async def test_completed_import_is_not_repeated(self, orchestrator, repos, provider):
        await seed_contacts(repos, "alice@example.com", "bob@example.com")
        first = await orchestrator.import_message("msg-001")

        second = await orchestrator.import_message("msg-001")

        assert second.success is True
        assert second.stage is ImportStage.COMPLETED
        assert second.email_id == first.email_id
        assert provider.get_message.await_count == 1

    @pytest.mark.asyncio
    async def test_attachment_failure_fails_import_after_body(self, orchestrator, repos, provider, database):
        await seed_contacts(repos, "alice@example.com", "bob@example.com")
        provider.get_message = AsyncMock(
            return_value=build_message(attachments=[attachment_part("a.pdf", part_id="1")])
        )
        provider.get_attachment = AsyncMock(side_effect=RuntimeError("download refused"))

        result = await orchestrator.import_message("msg-001")

        assert result.success is False
        assert result.stage is ImportStage.BODY
        assert "1 of 1 attachments failed" in result.error
        assert await _count(database, Email) == 1

    @pytest.mark.asyncio
    async def test_failed_imports_release_download_jobs(self, orchestrator, repos, provider):
        await seed_contacts(repos, "bob@example.com")
        messages = {
            f"msg-{i}": build_message(
                message_id=f"msg-{i}",
                from_addr="Ghost <ghost@nowhere.test>",
                global_message_id=f"<{i}@mail.example.com>",
                attachments=[attachment_part("a.pdf", part_id="1")],
            )
            for i in range(5)
        }
        provider.get_message = AsyncMock(side_effect=lambda message_id: messages[message_id])

        results = [await orchestrator.import_message(message_id) for message_id in messages]

        assert all(r.stage is ImportStage.HEADERS for r in results)
        assert not any(r.success for r in results)
        assert len(orchestrator.downloads) == 0

    @pytest.mark.asyncio
    async def test_concurrent_imports(self, orchestrator, repos, provider):
        await seed_contacts(repos, "alice@example.com", "bob@example.com")
        messages = {
            "msg-a": build_message(message_id="msg-a", global_message_id="<a@mail.example.com>"),
            "msg-b": build_message(message_id="msg-b", global_message_id="<b@mail.example.com>"),
        }
        provider.get_message = AsyncMock(side_effect=lambda message_id: messages[message_id])

        results = await asyncio.gather(
            orchestrator.import_message("msg-a"),
            orchestrator.import_message("msg-b"),
        )

        assert all(r.success for r in results)
        assert results[0].email_id != results[1].email_id


class TestStageDeadline:
    @pytest.mark.asyncio
    async def test_stage_timeout(self, repos, provider, blob_store):
        orchestrator = PipelineOrchestrator(
            PipelineConfig(stage_timeout_seconds=0.05), repos, provider, blob_store
        )

        async def _hang(message_id):
            await asyncio.sleep(1)

        provider.get_message = AsyncMock(side_effect=_hang)

        with pytest.raises(StageError) as exc_info:
            await orchestrator.run("msg-001")
        assert exc_info.value.stage is ImportStage.NEW

        result = await orchestrator.import_message("msg-001")
        assert result.success is False
        assert result.stage is None
        assert "timed out" in result.error

    @pytest.mark.asyncio
    async def test_timed_out_downloads_are_cancelled(self, repos, provider, blob_store):
        await seed_contacts(repos, "alice@example.com", "bob@example.com")
        orchestrator = PipelineOrchestrator(
            PipelineConfig(stage_timeout_seconds=1.0), repos, provider, blob_store
        )
        provider.get_message = AsyncMock(
            return_value=build_message(attachments=[attachment_part("big.pdf", part_id="1")])
        )
        cancelled = asyncio.Event()

        async def _stalled_fetch(message_id, attachment_id):
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        provider.get_attachment = AsyncMock(side_effect=_stalled_fetch)

        result = await orchestrator.import_message("msg-001")

        assert result.success is False
        assert result.stage is ImportStage.BODY
        assert "attachments timed out" in result.error
        await asyncio.wait_for(cancelled.wait(), timeout=1)
        assert len(orchestrator.downloads) == 0
        assert orchestrator.attachment_limiter.active == 0


class TestContactSync:
    @pytest.mark.asyncio
    async def test_sync_contacts_from_provider(self, orchestrator, provider, database):
        created = await orchestrator.sync_contacts("msg-001")

        assert sorted(c.email for c in created) == ["alice@example.com", "bob@example.com"]
        provider.get_message.assert_awaited_once_with("msg-001")
        assert await _count(database, Contact) == 2

    @pytest.mark.asyncio
    async def test_sync_contacts_prefers_staged_copy(self, orchestrator, repos, provider):
        await seed_contacts(repos, "alice@example.com")
        await orchestrator.import_message("msg-001")
        provider.get_message.reset_mock()

        created = await orchestrator.sync_contacts("msg-001")

        assert [c.email for c in created] == ["bob@example.com"]
        provider.get_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_presync_lets_body_resolve_new_contacts(self, repos, provider, blob_store):
        orchestrator = PipelineOrchestrator(
            PipelineConfig(presync_contacts=True), repos, provider, blob_store
        )

        result = await orchestrator.import_message("msg-001")

        assert result.success is True
        assert result.stage is ImportStage.COMPLETED

    @pytest.mark.asyncio
    async def test_presync_failure_fails_after_staged(self, repos, provider, blob_store):
        orchestrator = PipelineOrchestrator(
            PipelineConfig(presync_contacts=True), repos, provider, blob_store
        )
        failure = ExceptionGroup("Failed to create one or more contacts", [RuntimeError("db down")])

        with patch.object(orchestrator.contacts, "ensure", side_effect=failure):
            result = await orchestrator.import_message("msg-001")

        assert result.success is False
        assert result.stage is ImportStage.STAGED
        assert "Failed to create one or more contacts" in result.error
        assert await _stage_of(repos, "msg-001") is ImportStage.STAGED
