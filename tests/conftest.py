import pytest

from docfill.config import EngineConfig
from helpers import build_docx, document_xml, para, run


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(executor="thread", max_workers=2)


@pytest.fixture
def invoice_docx() -> bytes:
    return build_docx(
        document_xml(
            para(run("Dear {{client}},")),
            para(run("Total: {{amount}}")),
        )
    )


@pytest.fixture
def split_docx() -> bytes:
    return build_docx(
        document_xml(
            para(run("Hello {{na"), run("me}}!", rpr="<w:rPr><w:b/></w:rPr>")),
        )
    )
