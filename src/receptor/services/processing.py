"""End-to-end processing of one document, a batch, or a ZIP archive.

Each document is handled independently: an extraction failure becomes a
failed outcome for that document and never reaches its siblings.
"""

from __future__ import annotations

import io
import logging
import threading
import time
import zipfile
import zlib
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any

from receptor.config import MAX_ARCHIVE_ENTRY_SIZE, MAX_ARCHIVE_TOTAL_SIZE
from receptor.models.entity import TaxableEntity
from receptor.models.invoice import InvoiceDraft
from receptor.models.reference import ReferenceSnapshot
from receptor.models.results import (
    ERROR,
    ClassificationResult,
    Diagnostic,
    TaxCalculationResult,
    has_errors,
)
from receptor.services.classifier import classify
from receptor.services.entity_validator import EntityLookup, HeuristicEntityValidator
from receptor.services.exceptions import ArchiveEntryUnreadable, ArchiveError, ExtractionError
from receptor.services.extractor import extract
from receptor.services.normalizer import normalize
from receptor.services.tax_engine import calculate_taxes, context_for
from receptor.services.validator import validate

logger = logging.getLogger(__name__)

PROCESSED = "processed"
PARTIAL = "partial"
FAILED = "failed"

Sink = Callable[["DocumentOutcome"], None]


def _dump(value: Any) -> Any:
    """Dataclass trees to JSON-safe values (Decimals as strings)."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (list, tuple)):
        return [_dump(v) for v in value]
    if isinstance(value, dict):
        return {k: _dump(v) for k, v in value.items()}
    if hasattr(value, "__dataclass_fields__"):
        return {name: _dump(getattr(value, name)) for name in value.__dataclass_fields__}
    return str(value)


@dataclass(frozen=True)
class DocumentOutcome:
    filename: str
    status: str
    draft: InvoiceDraft | None = None
    classification: ClassificationResult | None = None
    taxes: TaxCalculationResult | None = None
    supplier: TaxableEntity | None = None
    customer: TaxableEntity | None = None
    diagnostics: tuple[Diagnostic, ...] = ()
    manual_review: bool = False
    extraction_confidence: float = 0.0
    strategy: str | None = None
    elapsed_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe record of the outcome, for sinks and --json output."""
        return {
            "filename": self.filename,
            "status": self.status,
            "strategy": self.strategy,
            "manual_review": self.manual_review,
            "extraction_confidence": self.extraction_confidence,
            "elapsed_ms": round(self.elapsed_ms, 3),
            "draft": _dump(self.draft),
            "classification": _dump(self.classification),
            "taxes": _dump(self.taxes),
            "supplier": self.supplier.to_dict() if self.supplier else None,
            "customer": self.customer.to_dict() if self.customer else None,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }


@dataclass
class BatchReport:
    outcomes: list[DocumentOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def processed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == PROCESSED)

    @property
    def partial(self) -> int:
        return sum(1 for o in self.outcomes if o.status == PARTIAL)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == FAILED)

    @property
    def drafts(self) -> list[InvoiceDraft]:
        return [o.draft for o in self.outcomes if o.draft is not None]


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


def _resolve_customer(
    draft: InvoiceDraft, entities: EntityLookup, customer: TaxableEntity | None
) -> TaxableEntity:
    if customer is not None:
        return customer
    if draft.customer_tax_id:
        return entities.lookup(
            draft.customer_tax_id,
            name=draft.customer_name,
            municipality=draft.customer_municipality,
        )
    # No customer on the document: treat as a non-agent natural person
    return TaxableEntity(
        tax_id="",
        name=draft.customer_name or "Unknown Entity",
        kind="natural_person",
        regime="simplified",
        verification_status="manual_review",
        confidence=0.0,
    )


def process_document(
    data: bytes,
    filename: str,
    *,
    snapshot: ReferenceSnapshot,
    entities: EntityLookup | None = None,
    customer: TaxableEntity | None = None,
    category: str | None = None,
    municipality: str | None = None,
    sink: Sink | None = None,
) -> DocumentOutcome:
    """Run extraction, normalization, classification, taxes and validation."""
    start = time.perf_counter()
    entities = entities or HeuristicEntityValidator()

    try:
        raw = extract(data)
    except ExtractionError as e:
        logger.warning("%s: %s", filename, e)
        outcome = DocumentOutcome(
            filename=filename,
            status=FAILED,
            diagnostics=(Diagnostic(e.code, str(e), ERROR),),
            manual_review=True,
            strategy=e.strategy,
            elapsed_ms=_elapsed_ms(start),
        )
        return _emit(outcome, sink)

    if not raw.is_valid:
        logger.warning(
            "%s: %d structural errors, not normalized", filename, len(raw.diagnostics)
        )
        outcome = DocumentOutcome(
            filename=filename,
            status=FAILED,
            diagnostics=raw.diagnostics,
            manual_review=True,
            strategy=raw.strategy,
            elapsed_ms=_elapsed_ms(start),
        )
        return _emit(outcome, sink)

    normalized = normalize(raw)
    draft = normalized.draft
    upstream = raw.diagnostics + normalized.diagnostics

    supplier = entities.lookup(
        draft.supplier_tax_id,
        name=draft.supplier_name,
        municipality=draft.supplier_municipality,
    )
    customer_entity = _resolve_customer(draft, entities, customer)
    where = municipality or customer_entity.municipality or draft.customer_municipality

    classification = classify(draft, snapshot)
    taxes = calculate_taxes(
        context_for(draft, supplier, customer_entity, category=category, municipality=where),
        snapshot.tax_tables,
    )
    report = validate(
        draft, classification, taxes, upstream=upstream, settings=snapshot.classification
    )
    diagnostics = upstream + report.diagnostics
    review = (
        report.manual_review
        or supplier.verification_status == "manual_review"
    )

    outcome = DocumentOutcome(
        filename=filename,
        status=PARTIAL if has_errors(diagnostics) else PROCESSED,
        draft=draft,
        classification=classification,
        taxes=taxes,
        supplier=supplier,
        customer=customer_entity,
        diagnostics=diagnostics,
        manual_review=review,
        extraction_confidence=normalized.confidence,
        strategy=raw.strategy,
        elapsed_ms=_elapsed_ms(start),
    )
    logger.info(
        "%s: %s %s -> %s (%s)",
        filename,
        draft.document_type,
        draft.document_number,
        classification.account_code,
        outcome.status,
    )
    return _emit(outcome, sink)


def _emit(outcome: DocumentOutcome, sink: Sink | None) -> DocumentOutcome:
    if sink is None:
        return outcome
    try:
        sink(outcome)
    except Exception:
        logger.warning("Sink failed for %s", outcome.filename, exc_info=True)
    return outcome


def _safe_process(
    data: bytes | ArchiveEntryUnreadable, filename: str, options: dict[str, Any]
) -> DocumentOutcome:
    """process_document that turns unexpected errors into a failed outcome."""
    start = time.perf_counter()
    if isinstance(data, ArchiveEntryUnreadable):
        outcome = DocumentOutcome(
            filename=filename,
            status=FAILED,
            diagnostics=(Diagnostic(data.code, str(data), ERROR),),
            manual_review=True,
            elapsed_ms=_elapsed_ms(start),
        )
        return _emit(outcome, options.get("sink"))
    try:
        return process_document(data, filename, **options)
    except Exception as e:
        logger.warning("Unexpected failure processing %s", filename, exc_info=True)
        return DocumentOutcome(
            filename=filename,
            status=FAILED,
            diagnostics=(Diagnostic("ProcessingError", str(e), ERROR),),
            manual_review=True,
            elapsed_ms=_elapsed_ms(start),
        )


def process_batch(
    documents: Iterable[tuple[str, bytes | ArchiveEntryUnreadable]],
    *,
    snapshot: ReferenceSnapshot,
    entities: EntityLookup | None = None,
    customer: TaxableEntity | None = None,
    category: str | None = None,
    municipality: str | None = None,
    sink: Sink | None = None,
    max_workers: int = 1,
    stop: threading.Event | None = None,
) -> BatchReport:
    """Process ``(filename, bytes)`` pairs independently of each other.

    Setting ``stop`` prevents further documents from being submitted;
    documents already running finish normally. In threaded mode at most
    ``max_workers`` documents are in flight, so a stop takes effect as soon
    as one of them completes.
    """
    options = {
        "snapshot": snapshot,
        "entities": entities or HeuristicEntityValidator(),
        "customer": customer,
        "category": category,
        "municipality": municipality,
        "sink": sink,
    }
    report = BatchReport()

    if max_workers <= 1:
        for filename, data in documents:
            if stop is not None and stop.is_set():
                report.cancelled = True
                break
            report.outcomes.append(_safe_process(data, filename, options))
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures: list[Future[DocumentOutcome]] = []
            running: set[Future[DocumentOutcome]] = set()
            for filename, data in documents:
                if len(running) >= max_workers:
                    _, running = wait(running, return_when=FIRST_COMPLETED)
                if stop is not None and stop.is_set():
                    report.cancelled = True
                    break
                future = pool.submit(_safe_process, data, filename, options)
                futures.append(future)
                running.add(future)
            report.outcomes.extend(f.result() for f in futures)

    logger.info(
        "Batch done: %d processed, %d partial, %d failed",
        report.processed,
        report.partial,
        report.failed,
    )
    return report


def iter_archive(
    data: bytes,
    *,
    max_entry_size: int = MAX_ARCHIVE_ENTRY_SIZE,
    max_total_size: int = MAX_ARCHIVE_TOTAL_SIZE,
) -> Iterator[tuple[str, bytes | ArchiveEntryUnreadable]]:
    """Yield ``(name, bytes)`` for every XML entry of a ZIP archive.

    An entry that is corrupt, or that would exceed the size limits, is
    yielded as ``(name, ArchiveEntryUnreadable)`` so the batch records it
    as a failed document and moves on to the next entry.
    """
    if len(data) > max_total_size:
        raise ArchiveError(f"Archivo ZIP demasiado grande: {len(data)} bytes (max {max_total_size})")
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise ArchiveError(f"Archivo ZIP invalido: {e}") from e

    total = 0
    with archive:
        for info in archive.infolist():
            path = PurePosixPath(info.filename)
            if info.is_dir() or "__MACOSX" in path.parts or path.name.startswith("._"):
                continue
            if path.suffix.lower() != ".xml":
                continue
            if info.file_size > max_entry_size:
                logger.warning("%s: %d bytes, skipped", info.filename, info.file_size)
                yield info.filename, ArchiveEntryUnreadable(
                    f"Archivo demasiado grande: {info.filename} ({info.file_size} bytes)"
                )
                continue
            if total + info.file_size > max_total_size:
                logger.warning("%s: archive size limit reached, skipped", info.filename)
                yield info.filename, ArchiveEntryUnreadable(
                    f"Límite total del archivo ZIP excedido en {info.filename}"
                )
                continue
            try:
                content = archive.read(info)
            except (zipfile.BadZipFile, zlib.error, EOFError, OSError, RuntimeError) as e:
                logger.warning("%s: unreadable entry: %s", info.filename, e)
                yield info.filename, ArchiveEntryUnreadable(f"Error al leer {info.filename}: {e}")
                continue
            total += len(content)
            yield info.filename, content


def process_archive(
    data: bytes,
    *,
    max_entry_size: int = MAX_ARCHIVE_ENTRY_SIZE,
    max_total_size: int = MAX_ARCHIVE_TOTAL_SIZE,
    **kwargs: Any,
) -> BatchReport:
    """Process every XML document inside a ZIP archive."""
    entries = iter_archive(data, max_entry_size=max_entry_size, max_total_size=max_total_size)
    return process_batch(entries, **kwargs)
