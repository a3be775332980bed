from __future__ import annotations

import argparse
import json
import logging
import sys
from importlib.resources import files
from pathlib import Path

from receptor.services.exceptions import ArchiveEntryUnreadable, ArchiveError

_TAX_LABELS = {
    "vat": "IVA",
    "source_withholding": "ReteFuente",
    "vat_withholding": "ReteIVA",
    "municipal_withholding": "ReteICA",
}


def _init_config() -> None:
    """Copy bundled reference data and entity templates to the config directory."""
    from receptor.config import bundled_reference_path, get_config_dir, get_data_dir

    config_dir = get_config_dir()
    data_dir = get_data_dir()
    templates = files("receptor") / "templates"

    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "entities").mkdir(parents=True, exist_ok=True)
    data_dir.mkdir(parents=True, exist_ok=True)

    sources = {
        "reference.yaml.example": bundled_reference_path(),
        "entities/900123456.yaml.example": templates / "entities" / "900123456.yaml.example",
        "entities/1020304050.yaml.example": templates / "entities" / "1020304050.yaml.example",
    }

    copied = 0
    for rel, src in sources.items():
        dest = config_dir / rel
        if dest.exists():
            print(f"  ya existe: {dest}")
            continue
        with src.open("rb") as f:
            dest.write_bytes(f.read())
        print(f"  creado: {dest}")
        copied += 1

    print()
    print(f"Configuración: {config_dir}")
    print(f"Datos:   {data_dir}")
    print()
    if copied:
        print("Próximos pasos:")
        print(f"  1. cp {config_dir / 'reference.yaml.example'} {config_dir / 'reference.yaml'}")
        print("     (opcional: ajuste tarifas, UVT y cuentas PUC)")
        print("  2. Registre sus terceros en entities/<NIT>.yaml")
        print("  3. Ejecute: receptor process factura.xml")
    else:
        print("Ningún archivo nuevo creado (todos ya existían).")


def _read_documents(
    paths: list[str],
) -> tuple[list[tuple[str, bytes | ArchiveEntryUnreadable]], list[str]]:
    """Expand XML and ZIP paths into (name, bytes) pairs plus read errors."""
    from receptor.services.processing import iter_archive

    documents: list[tuple[str, bytes | ArchiveEntryUnreadable]] = []
    errors: list[str] = []
    for raw in paths:
        path = Path(raw)
        if not path.is_file():
            errors.append(f"Archivo no encontrado: {path}")
            continue
        data = path.read_bytes()
        if path.suffix.lower() == ".zip":
            try:
                documents.extend(
                    (f"{path.name}:{name}", content) for name, content in iter_archive(data)
                )
            except ArchiveError as e:
                errors.append(f"{path}: {e}")
        else:
            documents.append((path.name, data))
    return documents, errors


def _print_outcome(outcome) -> None:
    from receptor.utils.formatters import format_cop, format_rate

    print(f"{outcome.filename}  [{outcome.status}]")
    draft = outcome.draft
    if draft is not None:
        print(
            f"  {draft.document_type} {draft.document_number}  {draft.issue_date}  "
            f"{draft.supplier_name} ({draft.supplier_tax_id})"
        )
        c = outcome.classification
        review = "  ** revisión manual **" if outcome.manual_review else ""
        print(f"  Cuenta: {c.account_code} {c.account_name} (confianza {c.confidence:.2f}){review}")
        for alt in c.alternatives:
            print(f"    alternativa: {alt.code} {alt.name} ({alt.confidence:.2f})")
        print(f"  Subtotal: {format_cop(draft.subtotal)}  Total: {format_cop(draft.grand_total)}")
        taxes = outcome.taxes
        for attr, label in _TAX_LABELS.items():
            o = getattr(taxes, attr)
            if o.applicable:
                print(f"  {label}: {format_cop(o.amount)} ({format_rate(o.rate)})")
            else:
                print(f"  {label}: no aplica ({o.rule})")
        print(f"  Neto: {format_cop(taxes.summary.net_amount)}")
    for d in outcome.diagnostics:
        print(f"  [{d.severity}] {d.code}: {d.message}")


def _process(args: argparse.Namespace) -> int:
    from receptor.services.entity_validator import DirectoryEntityValidator
    from receptor.services.processing import process_batch
    from receptor.services.reference_store import load_default_snapshot
    from receptor.utils.registry import add_result

    documents, errors = _read_documents(args.files)
    for err in errors:
        print(f"Error: {err}", file=sys.stderr)
    if not documents:
        return 1

    entities = DirectoryEntityValidator()
    customer = entities.lookup(args.customer) if args.customer else None
    sink = (lambda outcome: add_result(outcome.to_dict())) if args.save else None

    report = process_batch(
        documents,
        snapshot=load_default_snapshot(),
        entities=entities,
        customer=customer,
        category=args.category,
        municipality=args.municipality,
        sink=sink,
        max_workers=args.workers,
    )

    if args.json:
        print(json.dumps([o.to_dict() for o in report.outcomes], indent=2, ensure_ascii=False))
    else:
        for outcome in report.outcomes:
            _print_outcome(outcome)
            print()
        print(
            f"Procesados: {report.processed}  Parciales: {report.partial}  "
            f"Fallidos: {report.failed}"
        )
    return 1 if (report.failed or errors) else 0


def _results(args: argparse.Namespace) -> int:
    from receptor.utils.registry import find_result, list_results

    if args.number:
        entry = find_result(args.number, args.supplier)
        if entry is None:
            print(f"Documento no encontrado: {args.number}", file=sys.stderr)
            return 1
        print(json.dumps(entry, indent=2, ensure_ascii=False))
        return 0

    entries = list_results(args.status)
    if args.json:
        print(json.dumps(entries, indent=2, ensure_ascii=False))
        return 0
    for e in entries:
        draft = e.get("draft") or {}
        account = (e.get("classification") or {}).get("account_code", "-")
        print(
            f"{e.get('saved_at', ''):20}  {e.get('status', ''):9}  "
            f"{draft.get('document_number') or e.get('filename', ''):16}  "
            f"{draft.get('supplier_tax_id', ''):10}  {account}"
        )
    print(f"{len(entries)} registro(s)")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    from receptor.services.tax_engine import CATEGORIES

    parser = argparse.ArgumentParser(
        prog="receptor",
        description="Procesa facturas electrónicas DIAN: PUC, IVA y retenciones.",
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-v", "--verbose", action="store_true", help="log de depuración")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", parents=[common], help="crea los archivos de configuración de ejemplo")

    p = sub.add_parser("process", parents=[common], help="procesa archivos XML o ZIP")
    p.add_argument("files", nargs="+", metavar="FILE")
    p.add_argument("--category", choices=CATEGORIES, help="tipo de servicio/bien (inferido si se omite)")
    p.add_argument("--municipality", help="municipio para ReteICA (nombre o código DANE)")
    p.add_argument("--customer", metavar="NIT", help="NIT del receptor (por defecto, el de la factura)")
    p.add_argument("--workers", type=int, default=1, help="documentos en paralelo")
    p.add_argument("--save", action="store_true", help="guarda los resultados en el registro local")
    p.add_argument("--json", action="store_true", help="salida JSON")

    r = sub.add_parser("results", parents=[common], help="lista los resultados guardados")
    r.add_argument("number", nargs="?", help="número de documento a mostrar")
    r.add_argument("--supplier", metavar="NIT")
    r.add_argument("--status", choices=("processed", "partial", "failed"))
    r.add_argument("--json", action="store_true")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Entry point for the receptor CLI."""
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command == "init":
        _init_config()
        return

    handler = _process if args.command == "process" else _results
    code = handler(args)
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
