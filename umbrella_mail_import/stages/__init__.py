"""Stage processors, one per :class:`~umbrella_mail_import.models.ImportStage`."""

from .attachments import AttachmentStage
from .base import StageDependencies, StageProcessor
from .body import BodyStage
from .completed import CompletedStage
from .contacts import ContactStage
from .headers import HeaderStage
from .new import NewStage
from .registry import StageRegistry, build_google_registry, build_registry
from .staged import StagedStage

__all__ = [
    "AttachmentStage",
    "BodyStage",
    "CompletedStage",
    "ContactStage",
    "HeaderStage",
    "NewStage",
    "StageDependencies",
    "StageProcessor",
    "StageRegistry",
    "StagedStage",
    "build_google_registry",
    "build_registry",
]
