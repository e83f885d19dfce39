import asyncio
import io
import os
import time
import zipfile

import pytest

from preview_proxy.cache_store import ArtifactKind, cache_key
from preview_proxy.dispatcher import (
    RESULT_DOWNLOAD,
    RESULT_HTML,
    RESULT_PDF_VIEWER,
    filename_guess,
)
from preview_proxy.errors import ConversionError, FetchError, InvalidInput
from preview_proxy.type_detection import FormatCategory

PDF_CONTENT = b"%PDF-1.4\n% original upload\n"


def _office_zip(prefix: str) -> bytes:
    payload = io.BytesIO()
    with zipfile.ZipFile(payload, mode="w") as archive:
        archive.writestr("[Content_Types].xml", "<Types/>")
        archive.writestr(f"{prefix}main.xml", "<root/>")
    return payload.getvalue()


def _preview(harness, src):
    return asyncio.run(harness.service().preview(src))


@pytest.mark.parametrize(
    "src",
    [None, "", "ftp://example.com/a.pdf", "example.com/a.pdf", "javascript:alert(1)", "file:///etc/passwd"],
)
def test_invalid_sources_are_rejected_without_io(harness, src):
    with pytest.raises(InvalidInput):
        _preview(harness, src)

    assert harness.fetch.calls == []
    assert harness.converter.calls == []
    assert harness.cached_files() == []


def test_scheme_check_is_case_insensitive(harness):
    harness.fetch.content = PDF_CONTENT

    result = _preview(harness, "HTTPS://Example.com/a.pdf")

    assert result.kind == RESULT_PDF_VIEWER


def test_domain_allow_list(make_harness):
    harness = make_harness(allowed_domains=("example.com",))
    harness.fetch.content = PDF_CONTENT

    with pytest.raises(InvalidInput, match="not allowed"):
        _preview(harness, "https://evil.test/a.pdf")
    assert harness.fetch.calls == []

    assert _preview(harness, "https://docs.example.com/a.pdf").kind == RESULT_PDF_VIEWER


def test_extension_allow_list(make_harness):
    harness = make_harness(allowed_extensions=(".pdf", ".docx"))
    harness.fetch.content = PDF_CONTENT

    with pytest.raises(InvalidInput, match="'.exe' is not allowed"):
        _preview(harness, "https://example.com/setup.exe")
    with pytest.raises(InvalidInput, match="'none' is not allowed"):
        _preview(harness, "https://example.com/download")
    assert harness.fetch.calls == []


def test_pdf_is_stored_verbatim_and_wrapped(harness):
    src = "https://example.com/report.pdf"
    harness.fetch.content = PDF_CONTENT

    result = _preview(harness, src)

    key = cache_key(src)
    assert result.kind == RESULT_PDF_VIEWER
    assert result.category is FormatCategory.PDF
    assert f"/pdf/{key}" in result.body
    assert harness.converter.calls == []
    assert harness.cached_files() == [f"{key}.pdf", f"{key}.raw"]
    assert harness.cache.path_for(key, ArtifactKind.PDF).read_bytes() == PDF_CONTENT


def test_repeated_preview_is_served_from_cache(harness):
    src = "https://example.com/data.csv"
    harness.fetch.content = b"a,b\n1,2\n"

    first = _preview(harness, src)
    second = _preview(harness, src)

    assert second.body == first.body
    assert second.from_cache is True
    assert harness.fetch.calls == [src]


def test_repeated_pdf_preview_skips_fetch_and_conversion(harness):
    src = "https://example.com/letter.docx"
    harness.fetch.content = _office_zip("word/")

    first = _preview(harness, src)
    second = _preview(harness, src)

    assert second.body == first.body
    assert second.kind == RESULT_PDF_VIEWER
    assert len(harness.fetch.calls) == 1
    assert len(harness.converter.calls) == 1


def test_stale_artifacts_are_regenerated(make_harness):
    harness = make_harness(cache_seconds=60)
    src = "https://example.com/data.csv"
    harness.fetch.content = b"a,b\n"
    _preview(harness, src)

    html_path = harness.cache.path_for(cache_key(src), ArtifactKind.HTML)
    past = time.time() - 120
    os.utime(html_path, (past, past))
    harness.fetch.content = b"c,d\n"

    result = _preview(harness, src)

    assert result.from_cache is False
    assert "<td>c</td>" in result.body
    assert len(harness.fetch.calls) == 2


def test_fresh_html_wins_over_fresh_pdf(harness):
    src = "https://example.com/book.xlsx"
    key = cache_key(src)
    asyncio.run(harness.cache.write(key, ArtifactKind.PDF, harness.converter.result))
    asyncio.run(harness.cache.write(key, ArtifactKind.HTML, "<p>sheet</p>"))

    result = _preview(harness, src)

    assert result.kind == RESULT_HTML
    assert result.body == "<p>sheet</p>"
    assert harness.fetch.calls == []


def test_word_documents_are_converted_to_pdf(harness):
    src = "https://example.com/files/letter?id=4"
    content = _office_zip("word/")
    harness.fetch.content = content

    result = _preview(harness, src)

    key = cache_key(src)
    assert result.kind == RESULT_PDF_VIEWER
    assert result.category is FormatCategory.WORD
    assert harness.converter.calls == [(content, ".docx")]
    assert harness.cache.path_for(key, ArtifactKind.PDF).read_bytes() == harness.converter.result


def test_presentations_are_converted_to_pdf(harness):
    harness.fetch.content = _office_zip("ppt/")

    result = _preview(harness, "https://example.com/deck.pptx")

    assert result.category is FormatCategory.PRESENTATION
    assert harness.converter.calls[0][1] == ".pptx"


def test_word_conversion_failure_offers_download_by_default(harness, conversion_failure):
    src = "https://example.com/letter.docx"
    harness.fetch.content = _office_zip("word/")
    harness.converter.error = conversion_failure

    result = _preview(harness, src)

    key = cache_key(src)
    assert result.kind == RESULT_DOWNLOAD
    assert f"/download/{key}" in result.body
    assert harness.cached_files() == [f"{key}.raw"]


def test_office_conversion_failure_is_fatal_when_configured(make_harness, conversion_failure):
    harness = make_harness(office_errors_fatal=True)
    harness.fetch.content = _office_zip("ppt/")
    harness.converter.error = conversion_failure

    with pytest.raises(ConversionError):
        _preview(harness, "https://example.com/deck.pptx")

    assert harness.cached_files() == [f"{cache_key('https://example.com/deck.pptx')}.raw"]


def test_spreadsheet_renders_escaped_model_page(harness):
    src = "https://example.com/exports/book.xlsx"
    harness.fetch.content = _office_zip("xl/")

    result = _preview(harness, src)

    key = cache_key(src)
    assert result.kind == RESULT_HTML
    assert result.category is FormatCategory.SPREADSHEET
    assert harness.spreadsheet.calls == ["book.xlsx"]
    assert harness.converter.calls == []
    assert "luckysheet.create" in result.body
    assert "</script><b>" not in result.body
    assert "\\u003c/script\\u003e" in result.body
    assert harness.cache.path_for(key, ArtifactKind.HTML).read_text(encoding="utf-8") == result.body


def test_spreadsheet_failure_falls_back_to_pdf(harness, conversion_failure):
    src = "https://example.com/book.xlsx"
    harness.fetch.content = _office_zip("xl/")
    harness.spreadsheet.error = conversion_failure

    result = _preview(harness, src)

    key = cache_key(src)
    assert result.kind == RESULT_PDF_VIEWER
    assert f"/pdf/{key}" in result.body
    assert harness.converter.calls[0][1] == ".xlsx"
    assert harness.cached_files() == [f"{key}.pdf", f"{key}.raw"]


def test_spreadsheet_pdf_fallback_failure_propagates(harness, conversion_failure):
    harness.fetch.content = _office_zip("xl/")
    harness.spreadsheet.error = conversion_failure
    harness.converter.error = conversion_failure

    with pytest.raises(ConversionError):
        _preview(harness, "https://example.com/book.xlsx")


def test_csv_renders_escaped_table(harness):
    src = "https://example.com/data.csv"
    harness.fetch.content = b"a,b\n1,<b>2</b>\n"

    result = _preview(harness, src)

    assert result.kind == RESULT_HTML
    assert result.body.count("<tr>") == 2
    assert result.body.count("<td>") == 4
    assert "<td>&lt;b&gt;2&lt;/b&gt;</td>" in result.body
    assert "<b>2</b>" not in result.body


def test_unconvertible_payload_offers_download(harness, conversion_failure):
    src = "https://example.com/bin/tool.exe?v=2"
    harness.fetch.content = b"MZ\x90\x00binary"
    harness.converter.error = conversion_failure

    result = _preview(harness, src)

    key = cache_key(src)
    assert result.kind == RESULT_DOWNLOAD
    assert result.category is FormatCategory.UNSUPPORTED
    assert f"/download/{key}" in result.body
    assert "tool.exe" in result.body
    assert "File type: .exe" in result.body
    assert harness.cached_files() == [f"{key}.raw"]


def test_unsupported_payload_that_converts_is_shown_as_pdf(harness):
    harness.fetch.content = b"plain text notes"

    result = _preview(harness, "https://example.com/notes.txt")

    assert result.kind == RESULT_PDF_VIEWER
    assert harness.converter.calls == [(b"plain text notes", ".txt")]


def test_fetch_failure_writes_nothing(harness):
    harness.fetch.error = FetchError("Remote file exceeded the size limit of 10 bytes")

    with pytest.raises(FetchError):
        _preview(harness, "https://example.com/huge.pdf")

    assert harness.cached_files() == []


def test_oversized_fetch_writes_nothing(make_harness):
    harness = make_harness(max_file_size_bytes=4)
    harness.fetch.content = PDF_CONTENT

    with pytest.raises(FetchError):
        _preview(harness, "https://example.com/huge.pdf")

    assert harness.cached_files() == []


def test_filename_guess():
    assert filename_guess("https://example.com/a/My%20File.docx?x=1", ".docx") == "My File.docx"
    assert filename_guess("https://example.com/", ".exe") == "file.exe"
