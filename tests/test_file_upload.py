"""
Tests for PdfUploader: local validation, bounded-time upload, and cleanup.
"""

from pathlib import Path

import pytest

from atam_copilot_backend.errors import InvalidArgument, ProviderError, UploadTimeout
from atam_copilot_backend.file_upload import MAX_FILE_SIZE_BYTES, PdfUploader, RawUpload
from atam_copilot_backend.models import FileState

from conftest import PDF_CONTENT, FakeFileStore


class TestValidation:
    """Local checks must fail before any provider call."""

    def test_missing_file(self, uploader, file_store, tmp_path):
        with pytest.raises(InvalidArgument, match="File not found"):
            uploader.upload([tmp_path / "missing.pdf"])
        assert file_store.call_count == 0

    def test_directory_is_not_a_file(self, uploader, file_store, tmp_path):
        with pytest.raises(InvalidArgument, match="Not a file"):
            uploader.upload([tmp_path])
        assert file_store.call_count == 0

    def test_zero_byte_file_names_the_file(self, uploader, file_store, tmp_path):
        empty = tmp_path / "empty-minutes.pdf"
        empty.write_bytes(b"")
        with pytest.raises(InvalidArgument, match="empty-minutes.pdf"):
            uploader.upload([empty])
        assert file_store.call_count == 0

    def test_oversize_file_rejected_before_network(self, uploader, file_store, make_pdf):
        big = make_pdf("huge.pdf", size=MAX_FILE_SIZE_BYTES + 1)
        with pytest.raises(InvalidArgument, match="exceeds maximum allowed size"):
            uploader.upload([big])
        assert file_store.call_count == 0

    def test_file_at_ceiling_is_accepted(self, uploader, file_store, make_pdf):
        exact = make_pdf("exact.pdf", size=MAX_FILE_SIZE_BYTES)
        refs = uploader.upload([exact])
        assert len(refs) == 1
        assert file_store.call_count == 1

    def test_non_pdf_extension_rejected(self, uploader, file_store, tmp_path):
        notes = tmp_path / "notes.txt"
        notes.write_text("not a pdf")
        with pytest.raises(InvalidArgument, match="Only PDF files are supported"):
            uploader.upload([notes])
        assert file_store.call_count == 0

    def test_pdf_extension_without_pdf_header_rejected(self, uploader, file_store, make_pdf):
        fake = make_pdf("fake.pdf", content=b"PK\x03\x04 this is a zip")
        with pytest.raises(InvalidArgument, match="Only PDF files are supported"):
            uploader.upload([fake])
        assert file_store.call_count == 0

    def test_bad_file_later_in_list_blocks_all_uploads(self, uploader, file_store, make_pdf, tmp_path):
        good = make_pdf("good.pdf")
        with pytest.raises(InvalidArgument):
            uploader.upload([good, tmp_path / "missing.pdf"])
        assert file_store.call_count == 0

    def test_empty_list(self, uploader):
        with pytest.raises(InvalidArgument):
            uploader.upload([])


class TestUpload:
    def test_returns_one_ref_per_file_in_order(self, uploader, file_store, make_pdf):
        first = make_pdf("first.pdf")
        second = make_pdf("second.pdf")

        refs = uploader.upload([first, second])

        assert [ref.display_name for ref in refs] == ["first.pdf", "second.pdf"]
        assert all(ref.uri.strip() for ref in refs)
        assert len({ref.uri for ref in refs}) == 2
        assert [call["path"] for call in file_store.calls] == [first, second]
        assert all(call["mime_type"] == "application/pdf" for call in file_store.calls)

    def test_accepts_string_paths(self, uploader, sample_pdf):
        refs = uploader.upload([str(sample_pdf)])
        assert refs[0].size_bytes == len(PDF_CONTENT)

    def test_failed_state_is_provider_error(self, temp_dir, sample_pdf):
        uploader = PdfUploader(FakeFileStore(state=FileState.FAILED), temp_dir=temp_dir)
        with pytest.raises(ProviderError, match="File processing failed"):
            uploader.upload([sample_pdf])

    def test_pending_state_is_usable(self, temp_dir, sample_pdf):
        uploader = PdfUploader(FakeFileStore(state=FileState.PENDING), temp_dir=temp_dir)
        refs = uploader.upload([sample_pdf])
        assert refs[0].state == FileState.PENDING

    def test_missing_uri_is_provider_error(self, temp_dir, sample_pdf):
        uploader = PdfUploader(FakeFileStore(uri_prefix=""), temp_dir=temp_dir)
        with pytest.raises(ProviderError, match="no URI"):
            uploader.upload([sample_pdf])

    def test_provider_exception_is_wrapped(self, temp_dir, sample_pdf):
        cause = ConnectionError("connection reset")
        uploader = PdfUploader(FakeFileStore(error=cause), temp_dir=temp_dir)
        with pytest.raises(ProviderError) as excinfo:
            uploader.upload([sample_pdf])
        assert excinfo.value.__cause__ is cause

    def test_timeout_cancels_in_flight_upload(self, file_store, temp_dir, sample_pdf):
        file_store.block = True
        uploader = PdfUploader(file_store, timeout_seconds=0.1, temp_dir=temp_dir)
        try:
            with pytest.raises(UploadTimeout, match="timed out"):
                uploader.upload([sample_pdf])
            assert file_store.call_count == 1
            assert file_store.cancel_events[0].is_set()
        finally:
            file_store.release.set()
            uploader.shutdown()


class TestStagingAndCleanup:
    def test_stage_writes_unique_temp_files(self, uploader, temp_dir):
        uploads = [
            RawUpload(filename="Arch Review.pdf", content_type="application/pdf", data=PDF_CONTENT),
            RawUpload(filename="Arch Review.pdf", content_type="application/pdf", data=PDF_CONTENT),
        ]

        staged = uploader.stage(uploads)

        assert len(set(staged)) == 2
        for path in staged:
            assert path.exists()
            assert path.name == "Arch-Review.pdf"
            assert temp_dir in path.parents
            assert path.read_bytes() == PDF_CONTENT

    def test_stage_forces_pdf_suffix(self, uploader):
        staged = uploader.stage([RawUpload(filename="scan", content_type="application/pdf", data=PDF_CONTENT)])
        assert staged[0].suffix == ".pdf"

    def test_cleanup_removes_files_and_unique_dirs(self, uploader):
        staged = uploader.stage([RawUpload(filename="a.pdf", content_type="application/pdf", data=PDF_CONTENT)])
        uploader.cleanup(staged)
        assert not staged[0].exists()
        assert not staged[0].parent.exists()

    def test_cleanup_ignores_missing_files(self, uploader, tmp_path):
        uploader.cleanup([tmp_path / "never-existed.pdf"])

    def test_cleanup_logs_instead_of_raising(self, uploader, sample_pdf, monkeypatch, caplog):
        def refuse(self, missing_ok=False):
            raise PermissionError("read-only filesystem")

        monkeypatch.setattr(Path, "unlink", refuse)
        uploader.cleanup([sample_pdf])
        assert "Failed to delete temp file" in caplog.text
