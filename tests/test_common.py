"""File naming and validation helpers."""
from datetime import datetime

import pytest

from utils.common import (
    clean_directory,
    get_file_extension,
    replace_extension,
    sanitize_filename,
    timestamped_filename,
    validate_document_id,
    validate_file_content,
)
from conftest import make_pdf, png_bytes


class TestNaming:
    def test_replace_extension(self):
        assert replace_extension("report.final.docx", "pdf") == "report.final.pdf"
        assert replace_extension("README", ".txt") == "README.txt"

    def test_timestamped_filename(self):
        stamp = datetime(2024, 3, 9, 14, 5, 7)
        assert timestamped_filename("verification_report_in", "txt", stamp) == "verification_report_in_20240309_140507.txt"

    def test_sanitize_filename(self):
        assert sanitize_filename("my report (v2).docx") == "my_report__v2_.docx"
        assert "/" not in sanitize_filename("../../etc/passwd")

    def test_get_file_extension(self):
        assert get_file_extension("Scan.JPEG") == "jpeg"
        assert get_file_extension("noext") == ""

    def test_validate_document_id(self):
        assert validate_document_id("123e4567-e89b-12d3-a456-426614174000")
        assert not validate_document_id("123")


class TestValidateFileContent:
    def test_magic_numbers(self, tmp_path, sample_docx):
        png = tmp_path / "a.png"
        png.write_bytes(png_bytes())
        assert validate_file_content(png, "png")
        assert validate_file_content(make_pdf(tmp_path / "a.pdf"), "pdf")
        assert validate_file_content(sample_docx, "docx")

    @pytest.mark.parametrize("format_id", ["pdf", "png", "jpg", "docx"])
    def test_mismatch(self, tmp_path, format_id):
        fake = tmp_path / "fake.bin"
        fake.write_bytes(b"plain text content")
        assert not validate_file_content(fake, format_id)

    def test_formats_without_signature_pass(self, tmp_path):
        text = tmp_path / "notes.txt"
        text.write_text("anything", encoding="utf-8")
        assert validate_file_content(text, "txt")


class TestCleanDirectory:
    def test_removes_contents_but_keeps_directory(self, tmp_path):
        (tmp_path / "stale").mkdir()
        (tmp_path / "stale" / "x.tmp").write_bytes(b"x")
        (tmp_path / "y.tmp").write_bytes(b"y")
        assert clean_directory(tmp_path) == 2
        assert tmp_path.is_dir()
        assert list(tmp_path.iterdir()) == []

    def test_creates_missing_directory(self, tmp_path):
        target = tmp_path / "missing"
        assert clean_directory(target) == 0
        assert target.is_dir()
