"""Shared test fixtures for the email import test suite."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from umbrella_mail_import.config import (
    DatabaseConfig,
    GmailConfig,
    PipelineConfig,
    RetryConfig,
    S3Config,
)
from umbrella_mail_import.db import DatabaseEngine, Repositories
from umbrella_mail_import.orchestrator import PipelineOrchestrator

from tests.factories import build_message


@pytest.fixture
def gmail_config() -> GmailConfig:
    return GmailConfig(
        base_url="https://gmail.test/gmail/v1",
        user_id="me",
        timeout_seconds=5.0,
        access_token="test-token",
    )


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(max_attempts=3, initial_wait_seconds=0.01, max_wait_seconds=0.05)


@pytest.fixture
def s3_config() -> S3Config:
    return S3Config(
        bucket="test-bucket",
        attachments_prefix="imports/email/attachments",
        region="us-east-1",
    )


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    return PipelineConfig(stage_timeout_seconds=5.0)


# ------------------------------------------------------------------
# Database
# ------------------------------------------------------------------


@pytest.fixture
async def database(tmp_path):
    engine = DatabaseEngine(DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'import.db'}"))
    await engine.create_all()
    yield engine
    await engine.close()


@pytest.fixture
def repos(database: DatabaseEngine) -> Repositories:
    return Repositories.from_session_factory(database.session)


# ------------------------------------------------------------------
# Collaborators
# ------------------------------------------------------------------


@pytest.fixture
def provider() -> AsyncMock:
    provider = AsyncMock()
    provider.get_message = AsyncMock(return_value=build_message())
    provider.get_attachment = AsyncMock(return_value=b"attachment bytes")
    return provider


@pytest.fixture
def blob_store() -> AsyncMock:
    store = AsyncMock()

    async def _upload(buffer, container_key, file_name, mime_type):
        return f"s3://test-bucket/imports/email/attachments/{container_key}/{file_name}"

    store.upload = AsyncMock(side_effect=_upload)
    return store


@pytest.fixture
def orchestrator(pipeline_config, repos, provider, blob_store) -> PipelineOrchestrator:
    return PipelineOrchestrator(pipeline_config, repos, provider, blob_store)


@pytest.fixture
def deps(orchestrator: PipelineOrchestrator):
    return orchestrator._deps
