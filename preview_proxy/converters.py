from __future__ import annotations

import asyncio
import contextlib
import csv
import datetime as dt
import io
import logging
import os
import shutil
import tempfile
from decimal import Decimal
from pathlib import Path

from openpyxl import load_workbook
from openpyxl.utils import get_column_letter
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from preview_proxy.config import PreviewSettings
from preview_proxy.errors import ConversionError, ConversionTimeout
from preview_proxy.sheet_models import (
    CellModel,
    CellValueModel,
    MergeModel,
    SheetConfigModel,
    SheetModel,
    WorkbookModel,
)

logger = logging.getLogger(__name__)

SOFFICE_CANDIDATES = [
    "soffice",
    "libreoffice",
    "/usr/bin/soffice",
    "/usr/lib/libreoffice/program/soffice",
    "/Applications/LibreOffice.app/Contents/MacOS/soffice",
]
MAX_SHEET_ROWS = 10000
MAX_SHEET_COLUMNS = 500
COLUMN_WIDTH_PX_PER_UNIT = 7.0


def resolve_soffice_bin(configured: str | None = None) -> str | None:
    candidates = [configured or "", *SOFFICE_CANDIDATES]
    seen: set[str] = set()
    for raw in candidates:
        value = str(raw or "").strip()
        if not value or value in seen:
            continue
        seen.add(value)

        if os.path.isabs(value):
            path = Path(value).expanduser()
            if path.is_file():
                return str(path)
            continue

        resolved = shutil.which(value)
        if resolved:
            return resolved
    return None


def _build_soffice_env(tmp_dir: Path) -> tuple[dict, str]:
    profile_dir = (tmp_dir / "lo_profile").resolve()
    profile_dir.mkdir(parents=True, exist_ok=True)
    env = os.environ.copy()
    for key in ("HOME", "TMPDIR", "TEMP", "TMP"):
        env[key] = str(tmp_dir)
    env.setdefault("LANG", "en_US.UTF-8")
    return env, f"-env:UserInstallation={profile_dir.as_uri()}"


def ensure_readable_pdf(content: bytes) -> int:
    """Return the page count, raising ConversionError when ``content`` is not a usable PDF."""
    if not content.startswith(b"%PDF"):
        raise ConversionError("Converter output is not a PDF document")
    try:
        reader = PdfReader(io.BytesIO(content))
        page_count = len(reader.pages)
    except (PdfReadError, ValueError, KeyError) as exc:
        raise ConversionError(f"Converter produced an unreadable PDF: {exc}") from exc
    if page_count == 0:
        raise ConversionError("Converter produced a PDF without pages")
    return page_count


class OfficeConverter:
    """Converts office documents (and anything else LibreOffice can open) to PDF."""

    def __init__(self, settings: PreviewSettings):
        self.settings = settings

    def binary(self) -> str | None:
        return resolve_soffice_bin(self.settings.soffice_bin)

    async def convert_to_pdf(self, content: bytes, *, source_extension: str = "") -> bytes:
        soffice = self.binary()
        if not soffice:
            raise ConversionError("LibreOffice is not installed; set SOFFICE_BIN to enable PDF conversion")

        with tempfile.TemporaryDirectory(prefix="preview-proxy-") as tmp:
            tmp_dir = Path(tmp)
            input_path = tmp_dir / f"source{source_extension or '.bin'}"
            output_path = tmp_dir / "source.pdf"
            await asyncio.to_thread(input_path.write_bytes, content)

            env, user_install = await asyncio.to_thread(_build_soffice_env, tmp_dir)
            command = [
                soffice,
                "--headless",
                "--nologo",
                "--nolockcheck",
                "--nofirststartwizard",
                "--invisible",
                user_install,
                "--convert-to",
                "pdf",
                "--outdir",
                str(tmp_dir),
                str(input_path),
            ]
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
            try:
                _, stderr = await asyncio.wait_for(
                    process.communicate(),
                    timeout=self.settings.convert_timeout_seconds,
                )
            except asyncio.TimeoutError as exc:
                raise ConversionTimeout(
                    f"LibreOffice did not finish within {self.settings.convert_timeout_seconds:g} seconds"
                ) from exc
            finally:
                if process.returncode is None:
                    with contextlib.suppress(ProcessLookupError):
                        process.kill()
                    await process.wait()

            if not output_path.exists():
                detail = (stderr or b"").decode("utf-8", errors="replace").strip()
                raise ConversionError(
                    f"LibreOffice could not convert the document (exit code {process.returncode})"
                    + (f": {detail}" if detail else "")
                )
            pdf_bytes = await asyncio.to_thread(output_path.read_bytes)

        page_count = ensure_readable_pdf(pdf_bytes)
        logger.info("LibreOffice converted %s input to PDF (%d pages)", source_extension or "untyped", page_count)
        return pdf_bytes


def _cell_value(value: object) -> str | int | float | bool | None:
    if isinstance(value, (bool, int, float, str)) or value is None:
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    return str(value)


def _display_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, dt.datetime) and value.time() == dt.time(0, 0):
        return value.date().isoformat()
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    return str(value)


def _build_sheet(worksheet, order: int) -> SheetModel:  # noqa: ANN001
    row_count = max(worksheet.max_row or 1, 1)
    column_count = max(worksheet.max_column or 1, 1)
    if row_count > MAX_SHEET_ROWS or column_count > MAX_SHEET_COLUMNS:
        logger.warning(
            "Sheet %r spans %d rows x %d columns, over the %d x %d grid limit",
            worksheet.title,
            row_count,
            column_count,
            MAX_SHEET_ROWS,
            MAX_SHEET_COLUMNS,
        )
        raise ConversionError(
            f"Sheet '{worksheet.title}' is too large for the grid preview "
            f"({row_count} rows x {column_count} columns)"
        )

    celldata: list[CellModel] = []
    for row_index, row in enumerate(
        worksheet.iter_rows(min_row=1, max_row=row_count, max_col=column_count, values_only=True)
    ):
        for column_index, value in enumerate(row):
            if value is None:
                continue
            celldata.append(
                CellModel(
                    r=row_index,
                    c=column_index,
                    v=CellValueModel(v=_cell_value(value), m=_display_text(value)),
                )
            )

    merges: dict[str, MergeModel] = {}
    for merged_range in worksheet.merged_cells.ranges:
        top, left = merged_range.min_row - 1, merged_range.min_col - 1
        if top >= row_count or left >= column_count:
            continue
        merges[f"{top}_{left}"] = MergeModel(
            r=top,
            c=left,
            rs=merged_range.max_row - merged_range.min_row + 1,
            cs=merged_range.max_col - merged_range.min_col + 1,
        )

    column_widths: dict[str, float] = {}
    for column_index in range(column_count):
        dimension = worksheet.column_dimensions.get(get_column_letter(column_index + 1))
        if dimension is not None and dimension.width:
            column_widths[str(column_index)] = round(dimension.width * COLUMN_WIDTH_PX_PER_UNIT, 1)

    return SheetModel(
        name=worksheet.title,
        index=str(order),
        order=order,
        status=1 if order == 0 else 0,
        row=row_count,
        column=column_count,
        celldata=celldata,
        config=SheetConfigModel(merge=merges, columnlen=column_widths),
    )


def _spreadsheet_to_model(content: bytes, title: str | None) -> WorkbookModel:
    try:
        workbook = load_workbook(io.BytesIO(content), data_only=True)
    except Exception as exc:  # noqa: BLE001
        raise ConversionError(f"Failed to parse Excel file: {exc}") from exc

    try:
        sheets = [_build_sheet(worksheet, order) for order, worksheet in enumerate(workbook.worksheets)]
    except ConversionError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise ConversionError(f"Failed to read Excel sheets: {exc}") from exc
    finally:
        workbook.close()

    if not sheets:
        raise ConversionError("Failed to parse Excel file: workbook has no worksheets")

    workbook_title = title or (workbook.properties.title or "").strip() or "Excel Preview"
    return WorkbookModel(title=workbook_title, sheets=sheets)


async def spreadsheet_to_model(content: bytes, *, title: str | None = None) -> WorkbookModel:
    return await asyncio.to_thread(_spreadsheet_to_model, content, title)


def _csv_to_rows(content: bytes) -> list[list[str]]:
    text = content.decode("utf-8-sig", errors="replace")
    try:
        return [row for row in csv.reader(io.StringIO(text, newline="")) if row]
    except csv.Error as exc:
        raise ConversionError(f"Failed to parse CSV: {exc}") from exc


async def csv_to_rows(content: bytes) -> list[list[str]]:
    return await asyncio.to_thread(_csv_to_rows, content)
