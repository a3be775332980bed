"""Locate the UBL invoice inside a DIAN document and read its raw fields.

A document may hold the invoice as its root, under a wrapper element, or as
escaped XML text inside an AttachedDocument envelope. Each shape is handled
by one named strategy; strategies are tried in order and the first candidate
with an invoice-like shape wins.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from lxml import etree

from receptor.config import UBL_NS
from receptor.models.invoice import DOCUMENT_TYPES
from receptor.models.results import ERROR, Diagnostic, has_errors
from receptor.services.exceptions import (
    EmbeddedDocumentExtractionFailed,
    StructureNotFound,
)
from receptor.utils.xmltree import find, local_name, text_of, to_tree

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "No valid invoice structure found"

MAX_EMBED_DEPTH = 3

# Any one of these direct children makes a candidate acceptable
_SHAPE_FIELDS = frozenset({
    "ID",
    "IssueDate",
    "AccountingSupplierParty",
    "LegalMonetaryTotal",
    "RequestedMonetaryTotal",
})

_EMBEDDED_RE = re.compile(
    r"<(?:[\w.-]+:)?(Invoice|CreditNote|DebitNote)\b[^>]*>.*</(?:[\w.-]+:)?\1\s*>",
    re.DOTALL,
)

_CARRIER_XPATH = (
    ".//*[local-name()='Attachment']"
    "/*[local-name()='ExternalReference']"
    "/*[local-name()='Description']"
)

# Where a party's tax identifier may live, most specific first
PARTY_TAX_ID_PATHS = (
    ("PartyTaxScheme", "CompanyID"),
    ("PartyIdentification", "ID"),
    ("PartyLegalEntity", "CompanyID"),
)


def party_tax_id(party: Any) -> str:
    """Raw tax identifier text of a UBL Party node, or '' if absent."""
    for path in PARTY_TAX_ID_PATHS:
        value = text_of(find(party, *path))
        if value:
            return value
    return ""


@dataclass(frozen=True)
class RawDocument:
    """Invoice root located in a document, with its raw field tree."""

    root: etree._Element
    fields: dict[str, Any]
    document_type: str
    strategy: str
    diagnostics: tuple[Diagnostic, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not has_errors(self.diagnostics)


Locator = Callable[[etree._Element, int], "tuple[etree._Element, str] | None"]


@dataclass(frozen=True)
class Strategy:
    name: str
    locate: Locator


def _new_parser() -> etree.XMLParser:
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        remove_comments=True,
        huge_tree=False,
    )


def parse_xml(data: bytes) -> etree._Element:
    """Parse bytes with entity expansion and network access disabled."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    try:
        return etree.fromstring(data, parser=_new_parser())
    except (etree.XMLSyntaxError, ValueError) as e:
        logger.debug("XML parse failed: %s", e)
        raise StructureNotFound(NOT_FOUND_MESSAGE) from e


def has_invoice_shape(element: etree._Element) -> bool:
    return any(
        isinstance(c.tag, str) and local_name(c) in _SHAPE_FIELDS for c in element
    )


# --- strategies ---


def _direct_root(root: etree._Element, depth: int) -> tuple[etree._Element, str] | None:
    name = local_name(root)
    if name in DOCUMENT_TYPES and etree.QName(root).namespace == UBL_NS[name]:
        return root, "direct_root"
    return None


def _known_alias(root: etree._Element, depth: int) -> tuple[etree._Element, str] | None:
    if local_name(root) in DOCUMENT_TYPES:
        return root, "known_alias"
    return None


def _nested_wrapper(root: etree._Element, depth: int) -> tuple[etree._Element, str] | None:
    for element in root.iterdescendants():
        if isinstance(element.tag, str) and local_name(element) in DOCUMENT_TYPES:
            return element, "nested_wrapper"
    return None


def _embedded_document(
    root: etree._Element, depth: int
) -> tuple[etree._Element, str] | None:
    if local_name(root) != "AttachedDocument":
        return None
    if depth >= MAX_EMBED_DEPTH:
        raise EmbeddedDocumentExtractionFailed(
            f"Embedded documents nested deeper than {MAX_EMBED_DEPTH} levels",
            strategy="embedded_document",
        )

    carriers = root.xpath(_CARRIER_XPATH)
    for carrier in carriers:
        text = carrier.text or ""
        match = _EMBEDDED_RE.search(text)
        if match is None:
            continue
        try:
            inner = parse_xml(match.group(0).encode("utf-8"))
            element, path = locate(inner, depth + 1)
        except StructureNotFound as e:
            raise EmbeddedDocumentExtractionFailed(
                f"Embedded invoice could not be parsed: {e}",
                strategy="embedded_document",
            ) from e
        return element, f"embedded_document>{path}"

    raise EmbeddedDocumentExtractionFailed(
        "AttachedDocument carries no embedded invoice"
        if carriers
        else "AttachedDocument has no Attachment/ExternalReference/Description",
        strategy="embedded_document",
    )


STRATEGIES: tuple[Strategy, ...] = (
    Strategy("direct_root", _direct_root),
    Strategy("known_alias", _known_alias),
    Strategy("nested_wrapper", _nested_wrapper),
    Strategy("embedded_document", _embedded_document),
)


def locate(root: etree._Element, depth: int = 0) -> tuple[etree._Element, str]:
    """Return (invoice element, strategy path) or raise StructureNotFound."""
    for strategy in STRATEGIES:
        found = strategy.locate(root, depth)
        if found is None:
            continue
        element, path = found
        if has_invoice_shape(element):
            return element, path
        logger.debug("Strategy %s found <%s> without invoice fields", path, local_name(element))
    raise StructureNotFound(NOT_FOUND_MESSAGE)


# --- structural checks ---


def _missing(field: str, message: str) -> Diagnostic:
    return Diagnostic("MissingRequiredField", message, ERROR, field=field)


def check_structure(fields: dict[str, Any]) -> list[Diagnostic]:
    """Required-field diagnostics for a located invoice."""
    diagnostics = []
    if not text_of(fields.get("ID")):
        diagnostics.append(_missing("ID", "Invoice identifier is missing"))
    if not text_of(fields.get("IssueDate")):
        diagnostics.append(_missing("IssueDate", "Issue date is missing"))

    supplier = find(fields, "AccountingSupplierParty")
    if supplier is None:
        diagnostics.append(
            _missing("AccountingSupplierParty", "Supplier party block is missing")
        )
    elif not party_tax_id(find(supplier, "Party")):
        diagnostics.append(
            _missing(
                "AccountingSupplierParty.Party.PartyTaxScheme.CompanyID",
                "Supplier tax identifier is missing",
            )
        )

    if fields.get("LegalMonetaryTotal") is None and fields.get("RequestedMonetaryTotal") is None:
        diagnostics.append(
            _missing("LegalMonetaryTotal", "Monetary totals block is missing")
        )
    return diagnostics


def extract(data: bytes) -> RawDocument:
    """Locate the invoice in ``data`` and return its raw fields and diagnostics.

    Raises StructureNotFound or EmbeddedDocumentExtractionFailed when no
    invoice can be located at all.
    """
    root = parse_xml(data)
    element, path = locate(root)
    fields = to_tree(element)
    diagnostics = check_structure(fields)
    logger.debug(
        "Located <%s> via %s (%d structural errors)",
        local_name(element),
        path,
        len(diagnostics),
    )
    return RawDocument(
        root=element,
        fields=fields,
        document_type=DOCUMENT_TYPES[local_name(element)],
        strategy=path,
        diagnostics=tuple(diagnostics),
    )
