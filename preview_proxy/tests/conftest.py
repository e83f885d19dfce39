from __future__ import annotations

import struct

import pytest

from preview_proxy.cache_store import CacheStore
from preview_proxy.config import PreviewSettings
from preview_proxy.dispatcher import PreviewService
from preview_proxy.errors import ConversionError, FetchError
from preview_proxy.fetcher import FetchedResource
from preview_proxy.sheet_models import CellModel, CellValueModel, SheetModel, WorkbookModel

FAKE_PDF = b"%PDF-1.4 converted"


class FakeFetch:
    def __init__(self, content: bytes = b"", error: Exception | None = None):
        self.content = content
        self.error = error
        self.calls: list[str] = []

    async def __call__(self, url: str, *, settings: PreviewSettings) -> FetchedResource:
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        if len(self.content) > settings.max_file_size_bytes:
            raise FetchError("Remote file exceeded the size limit")
        return FetchedResource(url=url, content=self.content)


class FakeConverter:
    def __init__(self, result: bytes = FAKE_PDF, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls: list[tuple[bytes, str]] = []

    async def convert_to_pdf(self, content: bytes, *, source_extension: str = "") -> bytes:
        self.calls.append((content, source_extension))
        if self.error is not None:
            raise self.error
        return self.result


class FakeSpreadsheet:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls: list[str | None] = []

    async def __call__(self, content: bytes, *, title: str | None = None) -> WorkbookModel:
        self.calls.append(title)
        if self.error is not None:
            raise self.error
        sheet = SheetModel(
            name="Sheet1",
            index="0",
            order=0,
            status=1,
            row=1,
            column=1,
            celldata=[CellModel(r=0, c=0, v=CellValueModel(v="</script><b>x</b>", m="</script><b>x</b>"))],
        )
        return WorkbookModel(title=title or "Excel Preview", sheets=[sheet])


class PreviewHarness:
    def __init__(self, tmp_path, **settings_overrides):
        self.settings = PreviewSettings(cache_dir=tmp_path / "cache", **settings_overrides)
        self.cache = CacheStore(self.settings.cache_dir, self.settings.cache_seconds)
        self.fetch = FakeFetch()
        self.converter = FakeConverter()
        self.spreadsheet = FakeSpreadsheet()

    def service(self) -> PreviewService:
        return PreviewService(
            self.settings,
            cache=self.cache,
            converter=self.converter,
            fetch=self.fetch,
            spreadsheet_converter=self.spreadsheet,
        )

    def cached_files(self) -> list[str]:
        if not self.settings.cache_dir.exists():
            return []
        return sorted(path.name for path in self.settings.cache_dir.iterdir())


@pytest.fixture
def harness(tmp_path) -> PreviewHarness:
    return PreviewHarness(tmp_path)


@pytest.fixture
def conversion_failure() -> ConversionError:
    return ConversionError("LibreOffice could not convert the document")


@pytest.fixture
def make_harness(tmp_path):
    def _make(**settings_overrides) -> PreviewHarness:
        return PreviewHarness(tmp_path, **settings_overrides)

    return _make


def _compound_file(streams: dict[str, bytes]) -> bytes:
    """Minimal version 3 compound file with root-level streams stored in regular sectors."""
    sector_size = 512
    end_of_chain, free_sector, fat_sector, no_stream = 0xFFFFFFFE, 0xFFFFFFFF, 0xFFFFFFFD, 0xFFFFFFFF

    fat = [fat_sector, end_of_chain]
    starts: list[int] = []
    payloads: list[bytes] = []
    for content in streams.values():
        payload = content.ljust(4096, b"\x00")
        count = -(-len(payload) // sector_size)
        first = len(fat)
        starts.append(first)
        fat.extend(first + index + 1 if index < count - 1 else end_of_chain for index in range(count))
        payloads.append(payload.ljust(count * sector_size, b"\x00"))
    fat.extend([free_sector] * (128 - len(fat)))

    def entry(
        name: str,
        kind: int,
        *,
        child: int = no_stream,
        right: int = no_stream,
        start: int = end_of_chain,
        size: int = 0,
    ) -> bytes:
        encoded = (name + "\x00").encode("utf-16-le") if name else b""
        return struct.pack(
            "<64sHBBIII16sIQQIQ",
            encoded.ljust(64, b"\x00"),
            len(encoded),
            kind,
            1,
            no_stream,
            right,
            child,
            b"\x00" * 16,
            0,
            0,
            0,
            start,
            size,
        )

    names = list(streams)
    directory = [entry("Root Entry", 5, child=1 if names else no_stream)]
    for index, name in enumerate(names):
        right = index + 2 if index + 1 < len(names) else no_stream
        directory.append(entry(name, 2, right=right, start=starts[index], size=len(payloads[index])))
    while len(directory) < 4:
        directory.append(entry("", 0))

    header = struct.pack(
        "<8s16sHHHHH6sIIIIIIIII",
        b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1",
        b"\x00" * 16,
        0x3E,
        3,
        0xFFFE,
        9,
        6,
        b"\x00" * 6,
        0,
        1,
        1,
        0,
        4096,
        end_of_chain,
        0,
        end_of_chain,
        0,
    )
    header += struct.pack("<109I", 0, *([free_sector] * 108))
    return header + struct.pack("<128I", *fat) + b"".join(directory) + b"".join(payloads)


@pytest.fixture
def compound_file():
    return _compound_file
