"""Umbrella email import pipeline.

Public API re-exported here for convenience::

    from umbrella_mail_import import PipelineOrchestrator, ImportStage
"""

from .config import ImportServiceConfig, PipelineConfig
from .contacts import ContactResolver, ParsedContact, map_contacts
from .errors import (
    AttachmentImportError,
    DataIntegrityError,
    EmailNotFoundError,
    MailImportError,
    ProviderError,
    ProviderNotFoundError,
    SourceNotFoundError,
    StageError,
    StagingError,
)
from .header_types import HeaderTypeCache
from .headers import ParsedHeaderMap
from .limiter import ConcurrencyLimiter
from .logging import setup_logging
from .models import ImportResult, ImportStage, StageContext
from .orchestrator import PipelineOrchestrator

__all__ = [
    "AttachmentImportError",
    "ConcurrencyLimiter",
    "ContactResolver",
    "DataIntegrityError",
    "EmailNotFoundError",
    "HeaderTypeCache",
    "ImportResult",
    "ImportServiceConfig",
    "ImportStage",
    "MailImportError",
    "ParsedContact",
    "ParsedHeaderMap",
    "PipelineConfig",
    "PipelineOrchestrator",
    "ProviderError",
    "ProviderNotFoundError",
    "SourceNotFoundError",
    "StageContext",
    "StageError",
    "StagingError",
    "map_contacts",
    "setup_logging",
]
