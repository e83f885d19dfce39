from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CellValueModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    v: str | int | float | bool | None = None
    m: str = ""


class CellModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    r: int = Field(ge=0)
    c: int = Field(ge=0)
    v: CellValueModel


class MergeModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    r: int = Field(ge=0)
    c: int = Field(ge=0)
    rs: int = Field(ge=1)
    cs: int = Field(ge=1)


class SheetConfigModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    merge: dict[str, MergeModel] = Field(default_factory=dict)
    columnlen: dict[str, float] = Field(default_factory=dict)


class SheetModel(BaseModel):
    """One worksheet in the cell-list layout consumed by the browser grid."""

    model_config = ConfigDict(extra="allow")

    name: str
    index: str
    order: int = Field(ge=0)
    status: int = 0
    row: int = Field(ge=1)
    column: int = Field(ge=1)
    celldata: list[CellModel] = Field(default_factory=list)
    config: SheetConfigModel = Field(default_factory=SheetConfigModel)


class WorkbookModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = "Excel Preview"
    sheets: list[SheetModel] = Field(min_length=1)


def workbook_payload(workbook: WorkbookModel) -> list[dict[str, Any]]:
    """Serializable sheet list embedded into the spreadsheet page."""

    return [sheet.model_dump(exclude_none=True) for sheet in workbook.sheets]
