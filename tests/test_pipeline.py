import logging
import threading

import pytest

from docfill import pipeline
from docfill.config import EngineConfig
from docfill.engine import TemplateFields
from docfill.errors import CorruptArchiveError, MissingDocumentPartError
from docfill.pipeline import BatchDocument, BatchProcessor, DocumentProcessor, classify_fields
from helpers import build_docx, docx_paragraphs, document_xml, para, read_part, run, simple_field


def make_documents():
    return [
        BatchDocument("1", "letter.docx", build_docx(document_xml(para(run("Dear {{client}}, re {{project}}"))))),
        BatchDocument("2", "invoice.docx", build_docx(document_xml(para(run("{{client}} owes {{amount}}"))))),
        BatchDocument(
            "3",
            "cover.docx",
            build_docx(document_xml(para(run("For "), simple_field("Client", "?"))), custom={"Client": "?"}),
        ),
    ]


def test_extract_returns_placeholders_and_properties(config: EngineConfig) -> None:
    data = build_docx(document_xml(para(run("{{a}} {{b}} {{a}}"))), custom={"Owner": "Ada"})
    fields = DocumentProcessor(config).extract(data)
    assert fields.placeholders == ["a", "b"]
    assert fields.custom_properties == {"Owner": "Ada"}


@pytest.mark.parametrize("backend", ["dom", "regex"])
def test_backend_is_fixed_at_construction(config: EngineConfig, backend: str, split_docx: bytes) -> None:
    processor = DocumentProcessor(config, backend=backend)
    assert processor.backend.name == backend
    assert processor.extract(split_docx).placeholders == ["name"]


def test_extract_errors(config: EngineConfig) -> None:
    processor = DocumentProcessor(config)
    with pytest.raises(CorruptArchiveError):
        processor.extract(b"%PDF-1.4")
    with pytest.raises(MissingDocumentPartError):
        processor.extract(build_docx(None))


def test_extract_reports_parsing_progress(config: EngineConfig, invoice_docx: bytes) -> None:
    events = []
    DocumentProcessor(config).extract(invoice_docx, lambda stage, pct: events.append((stage, pct)))
    assert events[0] == ("parsing", 0)
    assert events[-1] == ("parsing", 100)


def test_process_single_document(config: EngineConfig, invoice_docx: bytes) -> None:
    processor = DocumentProcessor(config)
    result = processor.process(invoice_docx, {"client": "Acme", "amount": "$5"}, "invoice.docx")
    assert result.filename == "invoice.docx"
    assert docx_paragraphs(result.data) == ["Dear Acme,", "Total: $5"]

    renamed = processor.process(invoice_docx, {}, "invoice.docx", output_name="processed_invoice.docx")
    assert renamed.filename == "processed_invoice.docx"


def test_classify_fields_shared_and_per_document(config: EngineConfig) -> None:
    documents = make_documents()
    fields_by_doc, failures = BatchProcessor(config).extract_all(documents)
    assert failures == []

    layout = classify_fields(fields_by_doc, {d.id: d.filename for d in documents})

    assert layout.shared_fields == ["client"]
    assert layout.file_fields["1"].filename == "letter.docx"
    assert layout.file_fields["1"].fields == ["project"]
    assert layout.file_fields["2"].fields == ["amount"]
    assert layout.file_fields["3"].fields == ["Client"]
    assert layout.field_to_files["client"] == ["1", "2"]
    assert layout.is_custom_property == {"client": False, "project": False, "amount": False, "Client": True}
    assert sorted(layout.all_fields()) == ["Client", "amount", "client", "project"]


@pytest.mark.parametrize("executor", ["thread", "none", "process"])
def test_process_all(executor: str) -> None:
    config = EngineConfig(executor=executor, max_workers=2)
    batch = BatchProcessor(config)
    documents = make_documents()
    fields_by_doc, _ = batch.extract_all(documents)

    result = batch.process_all(
        documents, {"client": "Acme", "project": "Apollo", "amount": "5", "Client": "Globex"}, fields_by_doc
    )

    assert result.ok
    outputs = {r.filename: r.data for r in result.results}
    assert sorted(outputs) == ["cover.docx", "invoice.docx", "letter.docx"]
    assert docx_paragraphs(outputs["letter.docx"]) == ["Dear Acme, re Apollo"]
    assert docx_paragraphs(outputs["invoice.docx"]) == ["Acme owes 5"]
    assert "<w:t>Globex</w:t>" in read_part(outputs["cover.docx"], "word/document.xml")


def test_failures_do_not_abort_the_batch(config: EngineConfig, invoice_docx: bytes) -> None:
    documents = [
        BatchDocument("bad", "broken.docx", b"not a zip"),
        BatchDocument("good", "invoice.docx", invoice_docx),
    ]
    fields_by_doc, failures = BatchProcessor(config).extract_all(documents)
    assert [f.id for f in failures] == ["bad"]
    assert "valid DOCX" in failures[0].reason

    result = BatchProcessor(config).process_all(documents, {"client": "Acme"})
    assert [r.filename for r in result.results] == ["invoice.docx"]
    assert [(f.id, f.filename) for f in result.failures] == [("bad", "broken.docx")]
    assert not result.ok


def test_non_utf8_part_fails_only_its_document(invoice_docx: bytes) -> None:
    bad = build_docx(document_xml(para(run("{{client}}"))), headers={"header1.xml": b"\xff\xfe<bad"})
    documents = [BatchDocument("bad", "bad.docx", bad), BatchDocument("good", "good.docx", invoice_docx)]
    batch = BatchProcessor(EngineConfig(executor="none"))

    fields_by_doc, failures = batch.extract_all(documents)
    assert list(fields_by_doc) == ["good"]
    assert [f.id for f in failures] == ["bad"]
    assert "word/header1.xml" in failures[0].reason

    result = batch.process_all(documents, {"client": "Acme"})
    assert [r.filename for r in result.results] == ["good.docx"]
    assert docx_paragraphs(result.results[0].data)[0] == "Dear Acme,"
    assert [f.id for f in result.failures] == ["bad"]


def test_smart_quoted_placeholder_is_filled(config: EngineConfig) -> None:
    data = build_docx(document_xml(para(run("Hi {{client’s name}}"))))
    processor = DocumentProcessor(config)
    fields = processor.extract(data)
    assert fields.placeholders == ["client’s name"]
    result = processor.process(data, {"client’s name": "Ana"}, "letter.docx", fields)
    assert docx_paragraphs(result.data) == ["Hi Ana"]


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Ticket {#42} for {{name}}", "Ticket {#42} for Ana"),
        ("Rate {%} for {{name}}", "Rate {%} for Ana"),
    ],
)
def test_literal_braces_survive_processing(config: EngineConfig, text: str, expected: str) -> None:
    data = build_docx(document_xml(para(run(text))))
    result = DocumentProcessor(config).process(data, {"name": "Ana"}, "ticket.docx")
    assert docx_paragraphs(result.data) == [expected]


def test_offload_failure_falls_back_to_inline(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture, config: EngineConfig, invoice_docx: bytes
) -> None:
    def crash(*args):
        raise RuntimeError("worker died")

    monkeypatch.setattr(pipeline, "_process_in_worker", crash)
    with caplog.at_level(logging.WARNING, logger="docfill.pipeline"):
        result = BatchProcessor(config).process_all(
            [BatchDocument("1", "invoice.docx", invoice_docx)], {"client": "Acme"}
        )

    assert result.ok
    assert docx_paragraphs(result.results[0].data)[0] == "Dear Acme,"
    assert "worker died" in caplog.text


def test_cancel_skips_documents_not_yet_started(config: EngineConfig) -> None:
    cancel = threading.Event()
    cancel.set()
    result = BatchProcessor(config).process_all(make_documents(), {}, cancel=cancel)
    assert result.results == []
    assert result.skipped == ["1", "2", "3"]


def test_progress_is_reported_per_document(invoice_docx: bytes) -> None:
    events = []
    BatchProcessor(EngineConfig(executor="none")).process_all(
        [BatchDocument("a", "a.docx", invoice_docx), BatchDocument("b", "b.docx", invoice_docx)],
        {},
        {"a": TemplateFields(["client", "amount"]), "b": TemplateFields(["client", "amount"])},
        on_progress=lambda doc_id, stage, pct: events.append((doc_id, stage, pct)),
    )
    assert ("a", "generating", 100) in events
    assert ("b", "generating", 100) in events
    assert [e[0] for e in events].index("b") > [e[0] for e in events].index("a")
