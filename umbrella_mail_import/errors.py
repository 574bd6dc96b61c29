"""Exception taxonomy for the import pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import AttachmentOutcome, ImportStage


class MailImportError(Exception):
    """Base class for every error raised by the import pipeline."""


class ProviderError(MailImportError):
    """The provider mail API failed in a way the pipeline cannot absorb."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderNotFoundError(ProviderError):
    """The provider reports that the thing being imported does not exist.

    Only :class:`~umbrella_mail_import.stages.new.NewStage` treats this as
    "nothing to import"; every other stage lets it propagate.
    """


class EmailNotFoundError(ProviderNotFoundError):
    """The provider message id no longer resolves to a message."""


class SourceNotFoundError(ProviderNotFoundError):
    """The mailbox the message lived in is gone or no longer reachable."""


class StagingError(MailImportError):
    """The staging write did not return a usable record."""


class DataIntegrityError(MailImportError):
    """A referenced entity (sender, recipient, thread) is missing from the store."""


class StageError(MailImportError):
    """A stage failed; the whole import for that message is aborted."""

    def __init__(self, stage: ImportStage, message: str) -> None:
        super().__init__(f"{stage.value}: {message}")
        self.stage = stage


class AttachmentImportError(MailImportError):
    """One or more attachments failed after every attachment was attempted."""

    def __init__(self, outcomes: list[AttachmentOutcome]) -> None:
        failed = [o for o in outcomes if o.status == "error"]
        super().__init__(
            f"{len(failed)} of {len(outcomes)} attachments failed to import: "
            + ", ".join(o.part_id for o in failed)
        )
        self.outcomes = outcomes

    @property
    def failed(self) -> list[AttachmentOutcome]:
        return [o for o in self.outcomes if o.status == "error"]
