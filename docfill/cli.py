#!/usr/bin/env python3
import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional

from .archive import Archive
from .config import BACKENDS, EXECUTORS, load_config
from .engine import TemplateFields
from .errors import DocumentMergeError
from .pipeline import BatchDocument, BatchProcessor, DocumentProcessor, classify_fields
from .repair import repair_split_runs
from .selfcheck import run_checks

OUTPUT_PREFIX = "processed_"
REPAIRED_PREFIX = "repaired_"


def prompt_input(label: str) -> str:
    return input(label).strip()


def safe_filename(value: str) -> str:
    cleaned = value.replace("\\", "_").replace("/", "_").strip()
    return cleaned or "output"


def default_output_path(source: Path, prefix: str = OUTPUT_PREFIX, out_dir: Optional[str] = None) -> str:
    directory = out_dir or os.getcwd()
    return os.path.join(directory, prefix + safe_filename(source.name))


def parse_assignments(items: List[str]) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for item in items or []:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got {item!r}")
        values[name.strip()] = value
    return values


def load_values(path: Optional[str], assignments: List[str]) -> Dict[str, str]:
    values: Dict[str, str] = {}
    if path:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        if not isinstance(raw, dict):
            raise ValueError(f"{path}: expected a JSON object of field values")
        values.update({str(k): "" if v is None else str(v) for k, v in raw.items()})
    values.update(parse_assignments(assignments))
    return values


def prompt_values(fields: TemplateFields, values: Dict[str, str]) -> Dict[str, str]:
    """Ask for every field not already given; Enter keeps the current value."""
    merged = fields.initial_values()
    merged.update(values)
    for name in fields.field_names():
        if name in values:
            continue
        current = merged.get(name, "")
        label = f"{name} [{current}]: " if current else f"{name}: "
        answer = prompt_input(label)
        if answer:
            merged[name] = answer
    return merged


def read_input(path: str) -> bytes:
    source = Path(path)
    if not source.exists():
        raise FileNotFoundError(f"file not found: {source}")
    return source.read_bytes()


def cmd_fields(args, config) -> int:
    processor = DocumentProcessor(config)
    fields = processor.extract(read_input(args.docx))
    if args.json:
        print(json.dumps(
            {"placeholders": fields.placeholders, "custom_properties": fields.custom_properties},
            ensure_ascii=False,
            indent=2,
        ))
        return 0
    for f in fields.fields():
        if fields.is_custom_property(f.name):
            print(f"{f.name} (custom property) = {fields.custom_properties[f.name]}")
        else:
            print(f.name)
    if not fields.field_names():
        print("[WARN] no fields found.")
    return 0


def cmd_fill(args, config) -> int:
    source = Path(args.docx)
    data = read_input(args.docx)
    processor = DocumentProcessor(config)
    fields = processor.extract(data)
    values = load_values(args.values, args.set)
    if args.interactive:
        values = prompt_values(fields, values)

    output = args.output or default_output_path(source)
    result = processor.process(data, values, source.name, fields, output_name=os.path.basename(output))
    with open(output, "wb") as f:
        f.write(result.data)
    print(f"[OK] Generated: {os.path.abspath(output)}")
    return 0


def cmd_batch(args, config) -> int:
    documents = []
    for path in args.docx:
        source = Path(path)
        documents.append(BatchDocument(id=str(source), filename=source.name, data=read_input(path)))

    batch = BatchProcessor(config)
    fields_by_doc, failures = batch.extract_all(documents)
    for failure in failures:
        print(f"[ERROR] {failure.filename}: {failure.reason}")

    layout = classify_fields(fields_by_doc, {d.id: d.filename for d in documents})
    if layout.shared_fields:
        print(f"shared fields: {', '.join(layout.shared_fields)}")
    for info in layout.file_fields.values():
        print(f"{info.filename}: {', '.join(info.fields)}")

    values = load_values(args.values, args.set)
    if args.interactive:
        for name in layout.all_fields():
            if name not in values:
                values[name] = prompt_input(f"{name}: ")

    os.makedirs(args.out_dir, exist_ok=True)
    extracted = [d for d in documents if d.id in fields_by_doc]
    result = batch.process_all(extracted, values, fields_by_doc)
    for item in result.results:
        output = default_output_path(Path(item.filename), out_dir=args.out_dir)
        with open(output, "wb") as f:
            f.write(item.data)
        print(f"[OK] Generated: {os.path.abspath(output)}")
    for failure in result.failures:
        print(f"[ERROR] {failure.filename}: {failure.reason}")
    return 1 if failures or result.failures else 0


def cmd_check(args, config) -> int:
    return run_checks(Path(args.docx), args.max)


def cmd_repair(args, config) -> int:
    source = Path(args.docx)
    processor = DocumentProcessor(config)
    data = read_input(args.docx)
    fields = processor.extract(data)
    archive = Archive.open(data, compression_level=config.compression_level)

    changed = 0
    for part in archive.document_parts():
        xml = archive.read_text(part)
        repaired = repair_split_runs(xml, fields.placeholders)
        if repaired != xml:
            archive.write_text(part, repaired)
            changed += 1

    if not changed:
        print("[OK] no split placeholders found.")
        return 0
    output = args.output or default_output_path(source, REPAIRED_PREFIX)
    with open(output, "wb") as f:
        f.write(archive.serialize())
    print(f"[OK] Repaired {changed} part(s): {os.path.abspath(output)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="docfill", description="Fill placeholders and custom properties in .docx files.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr")
    parser.add_argument("--backend", choices=BACKENDS, help="XML backend (default: $DOCFILL_XML_BACKEND or dom)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("fields", help="List the placeholders and custom properties of a document")
    p.add_argument("docx")
    p.add_argument("--json", action="store_true", help="Print fields as JSON")
    p.set_defaults(func=cmd_fields)

    def add_value_options(p):
        p.add_argument("--set", action="append", default=[], metavar="NAME=VALUE", help="Field value (repeatable)")
        p.add_argument("--values", metavar="JSON", help="JSON file with an object of field values")
        p.add_argument("-i", "--interactive", action="store_true", help="Prompt for fields without a value")

    p = sub.add_parser("fill", help="Fill one document")
    p.add_argument("docx")
    add_value_options(p)
    p.add_argument("-o", "--output", help=f"Output path (default: ./{OUTPUT_PREFIX}<name>)")
    p.set_defaults(func=cmd_fill)

    p = sub.add_parser("batch", help="Fill several documents with one set of values")
    p.add_argument("docx", nargs="+")
    add_value_options(p)
    p.add_argument("--out-dir", default=".", help="Directory for generated files (default: .)")
    p.add_argument("--executor", choices=EXECUTORS, help="Worker pool kind (default: $DOCFILL_EXECUTOR or process)")
    p.add_argument("--workers", type=int, help="Max concurrent documents (default: $DOCFILL_MAX_WORKERS or 4)")
    p.set_defaults(func=cmd_batch)

    p = sub.add_parser("check", help="Lint a template for split markers and unknown properties")
    p.add_argument("docx")
    p.add_argument("--max", type=int, default=200, help="Max issues to print (default 200)")
    p.set_defaults(func=cmd_check)

    p = sub.add_parser("repair", help="Merge placeholders split across runs and save a clean template")
    p.add_argument("docx")
    p.add_argument("-o", "--output", help=f"Output path (default: ./{REPAIRED_PREFIX}<name>)")
    p.set_defaults(func=cmd_repair)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config().with_overrides(
            xml_backend=args.backend,
            executor=getattr(args, "executor", None),
            max_workers=getattr(args, "workers", None),
        )
        return args.func(args, config)
    except (DocumentMergeError, ValueError, OSError, argparse.ArgumentTypeError) as exc:
        print(f"[ERROR] {exc}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
