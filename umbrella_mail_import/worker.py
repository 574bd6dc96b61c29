"""ImportWorker: consume import requests from Kafka and run the pipeline."""

from __future__ import annotations

import asyncio
import json
import signal

import structlog
import uvicorn
from aiokafka import AIOKafkaConsumer, AIOKafkaProducer

from .config import ImportServiceConfig
from .db import DatabaseEngine, Repositories
from .health import create_health_app
from .models import ImportResult, LimiterStatus
from .orchestrator import PipelineOrchestrator
from .provider import GmailClient
from .s3 import BlobStore

logger = structlog.get_logger()


class ImportWorker:
    """Consume ``{"provider_message_id": ...}`` requests and publish one ImportResult each."""

    def __init__(self, config: ImportServiceConfig) -> None:
        self._config = config
        self._database = DatabaseEngine(config.database)
        self._provider = GmailClient(config.gmail, config.retry)
        self._blob_store = BlobStore(config.s3)
        self.orchestrator = PipelineOrchestrator(
            config.pipeline,
            Repositories.from_session_factory(self._database.session),
            self._provider,
            self._blob_store,
        )

        self._consumer: AIOKafkaConsumer | None = None
        self._producer: AIOKafkaProducer | None = None
        self._shutdown_event = asyncio.Event()

        self._imports_succeeded: int = 0
        self._imports_failed: int = 0
        self._requests_rejected: int = 0

    # ------------------------------------------------------------------
    # Public properties (used by health checks)
    # ------------------------------------------------------------------

    @property
    def imports_succeeded(self) -> int:
        return self._imports_succeeded

    @property
    def imports_failed(self) -> int:
        return self._imports_failed

    @property
    def requests_rejected(self) -> int:
        return self._requests_rejected

    @property
    def is_ready(self) -> bool:
        return self._consumer is not None

    def attachment_status(self) -> LimiterStatus:
        return self.orchestrator.attachment_status()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_services(self) -> None:
        """Start the provider client and blob store and warm caches."""
        await self._provider.start()
        await self._blob_store.start()
        await self.orchestrator.start()

    async def stop_services(self) -> None:
        await self._blob_store.stop()
        await self._provider.stop()
        await self._database.close()

    async def run(self) -> None:
        """Start all subsystems and process requests until shutdown."""
        self._install_signal_handlers()
        worker_cfg = self._config.worker

        self._consumer = AIOKafkaConsumer(
            worker_cfg.request_topic,
            bootstrap_servers=worker_cfg.kafka_bootstrap_servers,
            group_id=worker_cfg.consumer_group,
            auto_offset_reset=worker_cfg.auto_offset_reset,
            enable_auto_commit=False,
        )
        self._producer = AIOKafkaProducer(bootstrap_servers=worker_cfg.kafka_bootstrap_servers)

        await self.start_services()
        await self._consumer.start()
        await self._producer.start()
        logger.info("import_worker_started", topic=worker_cfg.request_topic)

        try:
            async with asyncio.TaskGroup() as tg:
                tg.create_task(self._consume_loop())
                tg.create_task(self._run_health_server())
        except* Exception:
            logger.exception("import_worker_error")
        finally:
            await self._producer.stop()
            await self._consumer.stop()
            await self.stop_services()
            logger.info("import_worker_stopped")

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    async def handle_request(self, payload: bytes) -> ImportResult | None:
        """Run one import request.  Returns ``None`` if the payload is unusable."""
        try:
            request = json.loads(payload.decode("utf-8"))
            provider_message_id = request["provider_message_id"]
        except (json.JSONDecodeError, UnicodeDecodeError, KeyError, TypeError):
            logger.exception("import_request_invalid")
            self._requests_rejected += 1
            return None

        if request.get("sync_contacts"):
            await self.orchestrator.sync_contacts(provider_message_id)

        result = await self.orchestrator.import_message(provider_message_id)
        if result.success:
            self._imports_succeeded += 1
        else:
            self._imports_failed += 1
        logger.info(
            "import_request_handled",
            provider_message_id=provider_message_id,
            success=result.success,
            stage=result.stage.value if result.stage else None,
        )
        return result

    async def _publish(self, result: ImportResult) -> None:
        assert self._producer is not None
        await self._producer.send_and_wait(
            self._config.worker.result_topic,
            value=result.model_dump_json().encode("utf-8"),
            key=result.provider_message_id.encode("utf-8"),
        )

    async def _consume_loop(self) -> None:
        assert self._consumer is not None

        async for msg in self._consumer:
            if self._shutdown_event.is_set():
                break
            try:
                result = await self.handle_request(msg.value)
                if result is not None:
                    await self._publish(result)
            except Exception:
                logger.exception("import_request_failed", offset=msg.offset)
                self._imports_failed += 1
            # Commit to avoid poison-pill blocking
            await self._consumer.commit()

    # ------------------------------------------------------------------
    # Health server
    # ------------------------------------------------------------------

    async def _run_health_server(self) -> None:
        app = create_health_app(self)
        config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=self._config.worker.health_port,
            log_level="warning",
        )
        server = uvicorn.Server(config)

        serve_task = asyncio.create_task(server.serve())
        await self._shutdown_event.wait()
        server.should_exit = True
        await serve_task

    # ------------------------------------------------------------------
    # Signal handling
    # ------------------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._shutdown_event.set)
