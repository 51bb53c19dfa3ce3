"""
Tests for PDF page counting.
"""

import pytest

from campus_print_backend.errors import PageCountUnavailable
from campus_print_backend.page_counter import count_pdf_pages


class TestCountPdfPages:
    def test_counts_pages(self, make_pdf):
        assert count_pdf_pages(make_pdf(5)) == 5

    def test_same_bytes_same_count(self, make_pdf, tmp_path):
        original = make_pdf(3)
        copy = tmp_path / "copy.pdf"
        copy.write_bytes(original.read_bytes())
        assert count_pdf_pages(original) == count_pdf_pages(copy) == 3

    def test_zero_pages_is_a_failure(self, make_pdf):
        with pytest.raises(PageCountUnavailable):
            count_pdf_pages(make_pdf(0))

    def test_corrupt_file_is_a_failure(self, make_file):
        with pytest.raises(PageCountUnavailable):
            count_pdf_pages(make_file("broken.pdf", b"this is not a pdf at all"))

    def test_empty_file_is_a_failure(self, make_file):
        with pytest.raises(PageCountUnavailable):
            count_pdf_pages(make_file("empty.pdf", b""))

    def test_missing_file_is_a_failure(self, tmp_path):
        with pytest.raises(PageCountUnavailable):
            count_pdf_pages(tmp_path / "nope.pdf")
