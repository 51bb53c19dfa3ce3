"""
Pytest configuration and fixtures for Campus Print Backend tests.
"""

import os
import shutil
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from pypdf import PdfWriter

# Set test environment variables before importing the app
_TEST_ROOT = tempfile.mkdtemp(prefix="campus_print_test_")
os.environ["CAMPUS_PRINT_DB_PATH"] = os.path.join(_TEST_ROOT, "api.db")
os.environ["CAMPUS_PRINT_TEMP_DIR"] = os.path.join(_TEST_ROOT, "tmp")
os.environ["SEPAY_API_KEY"] = "test-sepay-key-12345"
os.environ["CONVERT_API_KEY"] = ""
os.environ["LIBREOFFICE_BIN"] = os.path.join(_TEST_ROOT, "missing-soffice")

from campus_print_backend.converter import ConversionStrategy, FormatNormalizer, NormalizedDocument  # noqa: E402
from campus_print_backend.database import LedgerStore  # noqa: E402
from campus_print_backend.documents import DocumentService  # noqa: E402
from campus_print_backend.ledger import BalanceLedger  # noqa: E402
from campus_print_backend.main import app  # noqa: E402
from campus_print_backend.payments import PaymentService  # noqa: E402
from campus_print_backend.utils import make_work_dir  # noqa: E402

WEBHOOK_KEY = "test-sepay-key-12345"


def write_pdf(path: Path, pages: int) -> Path:
    """Write a PDF with ``pages`` blank A4 pages."""
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=595, height=842)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as handle:
        writer.write(handle)
    return path


class FakeStrategy(ConversionStrategy):
    """Conversion strategy that emits a PDF with a fixed page count, or nothing."""

    def __init__(self, temp_root: Path, pages: int = 0, name: str = "fake converter"):
        self.temp_root = temp_root
        self.pages = pages
        self.name = name
        self.calls = 0

    def convert(self, source, file_type):
        self.calls += 1
        if not self.pages:
            return None
        workdir = make_work_dir(self.temp_root, f"fake-{source.stem}")
        pdf_path = write_pdf(workdir / f"{source.stem}.pdf", self.pages)
        return NormalizedDocument(pdf_path=pdf_path, workdir=workdir, strategy=self.name)


@pytest.fixture(scope="session", autouse=True)
def cleanup_test_root():
    yield
    shutil.rmtree(_TEST_ROOT, ignore_errors=True)


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def webhook_headers():
    return {"Authorization": f"Apikey {WEBHOOK_KEY}"}


@pytest.fixture
def store(tmp_path):
    return LedgerStore(tmp_path / "ledger.db")


@pytest.fixture
def ledger(store):
    return BalanceLedger(store)


@pytest.fixture
def payments(store):
    return PaymentService(store, bank_id="BIDV", account_no="96247SSPS")


@pytest.fixture
def temp_root(tmp_path):
    root = tmp_path / "work"
    root.mkdir()
    return root


@pytest.fixture
def make_pdf(tmp_path):
    """Factory producing PDFs with the requested number of pages."""

    def _make(pages: int, name: str = "document.pdf") -> Path:
        return write_pdf(tmp_path / "uploads" / name, pages)

    return _make


@pytest.fixture
def make_file(tmp_path):
    """Factory producing arbitrary stored uploads."""

    def _make(name: str, content: bytes = b"office document bytes") -> Path:
        path = tmp_path / "uploads" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return path

    return _make


@pytest.fixture
def documents(store):
    """Document service with no conversion strategies; PDFs only."""
    return DocumentService(store, FormatNormalizer([]))
