from __future__ import annotations


class ExtractionError(Exception):
    """No invoice could be located in the document; carries a diagnostic code."""

    code = "ExtractionError"

    def __init__(self, message: str, strategy: str | None = None) -> None:
        super().__init__(message)
        self.strategy = strategy


class StructureNotFound(ExtractionError):
    """No candidate root had an acceptable invoice shape."""

    code = "StructureNotFound"


class EmbeddedDocumentExtractionFailed(ExtractionError):
    """An AttachedDocument envelope was found but its embedded invoice was not."""

    code = "EmbeddedDocumentExtractionFailed"


class ArchiveError(Exception):
    """A ZIP archive could not be opened or read."""


class ArchiveEntryUnreadable(ArchiveError):
    """One archive entry is corrupt or too large; its siblings are unaffected."""

    code = "ArchiveEntryUnreadable"
