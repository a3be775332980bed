from __future__ import annotations

import io
import zipfile
from decimal import Decimal

import pytest

from receptor.config import bundled_reference_path, load_yaml
from receptor.models.entity import NATURAL_PERSON, TaxableEntity
from receptor.models.invoice import InvoiceDraft, LineItem
from receptor.services.reference_store import load_snapshot

UBL_HEADER = (
    'xmlns:cac="urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2" '
    'xmlns:cbc="urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2"'
)


def party_xml(nit: str, name: str, city: str = "Bogotá", city_code: str = "11001") -> str:
    return f"""<cac:Party>
      <cac:PartyName><cbc:Name>{name}</cbc:Name></cac:PartyName>
      <cac:PhysicalLocation><cac:Address>
        <cbc:ID>{city_code}</cbc:ID><cbc:CityName>{city}</cbc:CityName>
      </cac:Address></cac:PhysicalLocation>
      <cac:PartyTaxScheme>
        <cbc:RegistrationName>{name}</cbc:RegistrationName>
        <cbc:CompanyID schemeAgencyID="195" schemeID="7" schemeName="31">{nit}</cbc:CompanyID>
        <cac:TaxScheme><cbc:ID>01</cbc:ID><cbc:Name>IVA</cbc:Name></cac:TaxScheme>
      </cac:PartyTaxScheme>
    </cac:Party>"""


def line_xml(description: str, amount: str, quantity: str = "1", tag: str = "InvoiceLine") -> str:
    qty_tag = {
        "InvoiceLine": "InvoicedQuantity",
        "CreditNoteLine": "CreditedQuantity",
        "DebitNoteLine": "DebitedQuantity",
    }[tag]
    return f"""<cac:{tag}>
      <cbc:ID>1</cbc:ID>
      <cbc:{qty_tag} unitCode="94">{quantity}</cbc:{qty_tag}>
      <cbc:LineExtensionAmount currencyID="COP">{amount}</cbc:LineExtensionAmount>
      <cac:Item>
        <cbc:Description>{description}</cbc:Description>
        <cac:SellersItemIdentification><cbc:ID>SKU-1</cbc:ID></cac:SellersItemIdentification>
      </cac:Item>
      <cac:Price><cbc:PriceAmount currencyID="COP">{amount}</cbc:PriceAmount></cac:Price>
    </cac:{tag}>"""


def vat_total_xml(base: str, amount: str, percent: str = "19.00") -> str:
    return f"""<cac:TaxTotal>
      <cbc:TaxAmount currencyID="COP">{amount}</cbc:TaxAmount>
      <cac:TaxSubtotal>
        <cbc:TaxableAmount currencyID="COP">{base}</cbc:TaxableAmount>
        <cbc:TaxAmount currencyID="COP">{amount}</cbc:TaxAmount>
        <cac:TaxCategory>
          <cbc:Percent>{percent}</cbc:Percent>
          <cac:TaxScheme><cbc:ID>01</cbc:ID><cbc:Name>IVA</cbc:Name></cac:TaxScheme>
        </cac:TaxCategory>
      </cac:TaxSubtotal>
    </cac:TaxTotal>"""


def invoice_xml(
    *,
    root: str = "Invoice",
    number: str = "FE-1001",
    issue_date: str = "2024-03-15",
    supplier_nit: str = "900123456",
    supplier_name: str = "Servicios Integrales de Aseo SAS",
    customer_nit: str = "800987654",
    customer_name: str = "Comercializadora Andina SAS",
    lines: tuple[tuple[str, str], ...] = (("Servicio de limpieza oficinas marzo", "1000000.00"),),
    subtotal: str = "1000000.00",
    tax: str = "190000.00",
    payable: str = "1190000.00",
    extra: str = "",
    declaration: bool = True,
) -> str:
    """A DIAN UBL 2.1 document as text; pass ``root`` for CreditNote/DebitNote."""
    line_tag = {"Invoice": "InvoiceLine", "CreditNote": "CreditNoteLine", "DebitNote": "DebitNoteLine"}[root]
    totals_tag = "RequestedMonetaryTotal" if root == "DebitNote" else "LegalMonetaryTotal"
    body = "\n".join(line_xml(d, a, tag=line_tag) for d, a in lines)
    head = '<?xml version="1.0" encoding="UTF-8"?>\n' if declaration else ""
    return f"""{head}<{root} xmlns="urn:oasis:names:specification:ubl:schema:xsd:{root}-2" {UBL_HEADER}>
  <cbc:UBLVersionID>UBL 2.1</cbc:UBLVersionID>
  <cbc:ID>{number}</cbc:ID>
  <cbc:IssueDate>{issue_date}</cbc:IssueDate>
  <cbc:DocumentCurrencyCode>COP</cbc:DocumentCurrencyCode>
  <cac:AccountingSupplierParty>
    <cbc:AdditionalAccountID>1</cbc:AdditionalAccountID>
    {party_xml(supplier_nit, supplier_name)}
  </cac:AccountingSupplierParty>
  <cac:AccountingCustomerParty>
    {party_xml(customer_nit, customer_name)}
  </cac:AccountingCustomerParty>
  {vat_total_xml(subtotal, tax)}
  {extra}
  <cac:{totals_tag}>
    <cbc:LineExtensionAmount currencyID="COP">{subtotal}</cbc:LineExtensionAmount>
    <cbc:TaxExclusiveAmount currencyID="COP">{subtotal}</cbc:TaxExclusiveAmount>
    <cbc:PayableAmount currencyID="COP">{payable}</cbc:PayableAmount>
  </cac:{totals_tag}>
  {body}
</{root}>"""


def attached_document_xml(inner: str) -> str:
    """Wrap an invoice in an AttachedDocument envelope as CDATA."""
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<AttachedDocument xmlns="urn:oasis:names:specification:ubl:schema:xsd:AttachedDocument-2" {UBL_HEADER}>
  <cbc:UBLVersionID>UBL 2.1</cbc:UBLVersionID>
  <cbc:ID>AD-77</cbc:ID>
  <cbc:IssueDate>2024-03-15</cbc:IssueDate>
  <cac:SenderParty><cac:PartyTaxScheme>
    <cbc:RegistrationName>Servicios Integrales de Aseo SAS</cbc:RegistrationName>
    <cbc:CompanyID>900123456</cbc:CompanyID>
  </cac:PartyTaxScheme></cac:SenderParty>
  <cac:Attachment>
    <cac:ExternalReference>
      <cbc:MimeCode>text/xml</cbc:MimeCode>
      <cbc:EncodingCode>UTF-8</cbc:EncodingCode>
      <cbc:Description><![CDATA[{inner}]]></cbc:Description>
    </cac:ExternalReference>
  </cac:Attachment>
</AttachedDocument>"""


def corrupt_zip_entry(data: bytes, name: str) -> bytes:
    """Overwrite one deflated entry with an invalid deflate block type."""
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        info = zf.getinfo(name)
    offset = info.header_offset
    name_len = int.from_bytes(data[offset + 26 : offset + 28], "little")
    extra_len = int.from_bytes(data[offset + 28 : offset + 30], "little")
    start = offset + 30 + name_len + extra_len
    end = start + info.compress_size
    return data[:start] + b"\xff" * info.compress_size + data[end:]


# --- Reference data ---


@pytest.fixture(scope="session")
def reference_data() -> dict:
    return load_yaml(bundled_reference_path())


@pytest.fixture(scope="session")
def snapshot(reference_data):
    return load_snapshot(reference_data)


@pytest.fixture
def tables(snapshot):
    return snapshot.tax_tables


# --- Entity fixtures ---


@pytest.fixture
def org_supplier() -> TaxableEntity:
    return TaxableEntity(
        tax_id="900123456",
        name="Servicios Integrales de Aseo SAS",
        is_withholding_agent=True,
        is_municipal_tax_subject=True,
        is_declarant=True,
        verification_status="verified",
        confidence=1.0,
    )


@pytest.fixture
def person_supplier() -> TaxableEntity:
    return TaxableEntity(
        tax_id="1020304050",
        name="Maria Fernanda Rojas",
        kind=NATURAL_PERSON,
        regime="general",
        is_municipal_tax_subject=True,
        is_declarant=False,
        verification_status="verified",
        confidence=1.0,
    )


@pytest.fixture
def agent_customer() -> TaxableEntity:
    return TaxableEntity(
        tax_id="800987654",
        name="Comercializadora Andina SAS",
        municipality="Bogotá",
        is_withholding_agent=True,
        is_municipal_tax_subject=True,
        is_declarant=True,
        verification_status="verified",
        confidence=1.0,
    )


@pytest.fixture
def plain_customer() -> TaxableEntity:
    return TaxableEntity(
        tax_id="52123456",
        name="Cliente Final",
        kind=NATURAL_PERSON,
        regime="simplified",
        verification_status="verified",
        confidence=1.0,
    )


# --- Draft factory ---


@pytest.fixture
def make_draft():
    def _make(
        supplier_name: str = "Proveedor Genérico SAS",
        descriptions: tuple[str, ...] = (),
        total: str = "1000000",
        subtotal: str | None = None,
        **overrides,
    ) -> InvoiceDraft:
        items = tuple(
            LineItem(
                line_number=i,
                product_code="",
                product_name=d,
                description=d,
                quantity=Decimal("1"),
                unit_price=Decimal("0"),
                discount=Decimal("0"),
                line_total=Decimal("0"),
            )
            for i, d in enumerate(descriptions, start=1)
        )
        fields = {
            "document_number": "FE-1",
            "document_type": "invoice",
            "issue_date": "2024-03-15",
            "supplier_tax_id": "900123456",
            "supplier_name": supplier_name,
            "currency": "COP",
            "subtotal": Decimal(subtotal if subtotal is not None else total),
            "tax_total": Decimal("0"),
            "retention_total": Decimal("0"),
            "grand_total": Decimal(total),
            "line_items": items,
        }
        fields.update(overrides)
        return InvoiceDraft(**fields)

    return _make
