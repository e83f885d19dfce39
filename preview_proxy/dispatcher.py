from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Awaitable, Callable, Protocol
from urllib.parse import unquote, urlsplit

from preview_proxy.cache_store import ArtifactKind, CacheStore, cache_key
from preview_proxy.config import PreviewSettings
from preview_proxy.converters import OfficeConverter, csv_to_rows, spreadsheet_to_model
from preview_proxy.errors import ConversionError, InvalidInput
from preview_proxy.fetcher import FetchedResource, fetch_to_bytes
from preview_proxy.sheet_models import WorkbookModel
from preview_proxy.type_detection import DetectedType, FormatCategory, classify, detect, extension_from_name
from preview_proxy.viewer_pages import (
    csv_table_html,
    download_fallback_html,
    pdf_viewer_html,
    spreadsheet_html,
)

logger = logging.getLogger(__name__)

SOURCE_URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)

RESULT_HTML = "html"
RESULT_PDF_VIEWER = "pdf_viewer"
RESULT_DOWNLOAD = "download"


class PdfConverter(Protocol):
    async def convert_to_pdf(self, content: bytes, *, source_extension: str = "") -> bytes:
        ...


FetchCallable = Callable[..., Awaitable[FetchedResource]]
SpreadsheetCallable = Callable[..., Awaitable[WorkbookModel]]
CsvCallable = Callable[[bytes], Awaitable[list[list[str]]]]


@dataclass(frozen=True)
class PreviewResult:
    key: str
    kind: str
    body: str
    from_cache: bool = False
    category: FormatCategory | None = None
    detected: DetectedType | None = None


def pdf_url_for(key: str) -> str:
    return f"/pdf/{key}"


def download_url_for(key: str) -> str:
    return f"/download/{key}"


def filename_guess(src: str, extension: str) -> str:
    name = PurePosixPath(unquote(urlsplit(src).path)).name
    return name or f"file{extension}"


class PreviewService:
    """Turns a source URL into a cached, browser-displayable preview."""

    def __init__(
        self,
        settings: PreviewSettings,
        *,
        cache: CacheStore | None = None,
        converter: PdfConverter | None = None,
        fetch: FetchCallable = fetch_to_bytes,
        spreadsheet_converter: SpreadsheetCallable = spreadsheet_to_model,
        csv_parser: CsvCallable = csv_to_rows,
    ):
        self.settings = settings
        self.cache = cache or CacheStore(settings.cache_dir, settings.cache_seconds)
        self.converter = converter or OfficeConverter(settings)
        self.fetch = fetch
        self.spreadsheet_converter = spreadsheet_converter
        self.csv_parser = csv_parser

    def validate_source(self, src: str | None) -> str:
        if not src:
            raise InvalidInput("Missing src parameter")
        if not SOURCE_URL_PATTERN.match(src):
            raise InvalidInput("src must be an http(s) URL")

        try:
            host = urlsplit(src).hostname
        except ValueError as exc:
            raise InvalidInput(f"src is not a valid URL: {exc}") from exc
        if not host:
            raise InvalidInput("src must include a host name")
        if not self.settings.is_domain_allowed(host):
            raise InvalidInput(f"Domain '{host}' is not allowed")

        extension = extension_from_name(src)
        if not self.settings.is_extension_allowed(extension):
            raise InvalidInput(f"File extension '{extension or 'none'}' is not allowed")
        return src

    async def preview(self, src: str | None) -> PreviewResult:
        source = self.validate_source(src)
        key = cache_key(source)

        if await self.cache.exists_and_fresh(key, ArtifactKind.HTML):
            logger.debug("Serving cached HTML preview for %s", key)
            body = await self.cache.read_text(key, ArtifactKind.HTML)
            return PreviewResult(key=key, kind=RESULT_HTML, body=body, from_cache=True)

        if await self.cache.exists_and_fresh(key, ArtifactKind.PDF):
            logger.debug("Serving cached PDF preview for %s", key)
            return PreviewResult(
                key=key,
                kind=RESULT_PDF_VIEWER,
                body=pdf_viewer_html(pdf_url_for(key)),
                from_cache=True,
            )

        resource = await self.fetch(source, settings=self.settings)
        content = resource.content
        await self.cache.write(key, ArtifactKind.RAW, content)

        detected = detect(content, source)
        category = classify(detected)
        logger.info(
            "Dispatching %s as %s (%s, %s)",
            key,
            category.value,
            detected.extension or "no extension",
            detected.mime_type,
        )

        if category is FormatCategory.PDF:
            return await self._store_pdf(key, content, category, detected)

        if category in (FormatCategory.WORD, FormatCategory.PRESENTATION):
            return await self._convert_office(source, key, content, category, detected)

        if category is FormatCategory.SPREADSHEET:
            return await self._convert_spreadsheet(source, key, content, category, detected)

        if category is FormatCategory.CSV:
            rows = await self.csv_parser(content)
            return await self._store_html(key, csv_table_html(rows), category, detected)

        try:
            pdf_bytes = await self.converter.convert_to_pdf(content, source_extension=detected.extension)
        except ConversionError as exc:
            logger.warning("Generic conversion failed for %s, offering download instead: %s", key, exc)
            return self._download_fallback(source, key, category, detected)
        return await self._store_pdf(key, pdf_bytes, category, detected)

    async def _store_pdf(
        self,
        key: str,
        pdf_bytes: bytes,
        category: FormatCategory,
        detected: DetectedType,
    ) -> PreviewResult:
        await self.cache.write(key, ArtifactKind.PDF, pdf_bytes)
        return PreviewResult(
            key=key,
            kind=RESULT_PDF_VIEWER,
            body=pdf_viewer_html(pdf_url_for(key)),
            category=category,
            detected=detected,
        )

    async def _store_html(
        self,
        key: str,
        markup: str,
        category: FormatCategory,
        detected: DetectedType,
    ) -> PreviewResult:
        await self.cache.write(key, ArtifactKind.HTML, markup)
        return PreviewResult(key=key, kind=RESULT_HTML, body=markup, category=category, detected=detected)

    async def _convert_office(
        self,
        source: str,
        key: str,
        content: bytes,
        category: FormatCategory,
        detected: DetectedType,
    ) -> PreviewResult:
        try:
            pdf_bytes = await self.converter.convert_to_pdf(content, source_extension=detected.extension)
        except ConversionError as exc:
            if self.settings.office_errors_fatal:
                raise
            logger.warning("%s conversion failed for %s, offering download instead: %s", category.value, key, exc)
            return self._download_fallback(source, key, category, detected)
        return await self._store_pdf(key, pdf_bytes, category, detected)

    async def _convert_spreadsheet(
        self,
        source: str,
        key: str,
        content: bytes,
        category: FormatCategory,
        detected: DetectedType,
    ) -> PreviewResult:
        title = filename_guess(source, detected.extension)
        try:
            workbook = await self.spreadsheet_converter(content, title=title)
        except ConversionError as exc:
            logger.warning("Spreadsheet model conversion failed for %s, falling back to PDF: %s", key, exc)
            pdf_bytes = await self.converter.convert_to_pdf(content, source_extension=detected.extension)
            return await self._store_pdf(key, pdf_bytes, category, detected)
        return await self._store_html(key, spreadsheet_html(workbook), category, detected)

    def _download_fallback(
        self,
        source: str,
        key: str,
        category: FormatCategory,
        detected: DetectedType,
    ) -> PreviewResult:
        body = download_fallback_html(
            download_url_for(key),
            filename_guess(source, detected.extension),
            detected.extension,
        )
        return PreviewResult(key=key, kind=RESULT_DOWNLOAD, body=body, category=category, detected=detected)
