from __future__ import annotations

import html
import json
from typing import Any

from preview_proxy.sheet_models import WorkbookModel, workbook_payload

LUCKYSHEET_CDN = "https://cdn.jsdelivr.net/npm/luckysheet@latest/dist"


def script_json(payload: Any) -> str:
    """JSON that is safe to place inside a <script> element."""
    return (
        json.dumps(payload, ensure_ascii=False)
        .replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
        .replace("\u2028", "\\u2028")
        .replace("\u2029", "\\u2029")
    )


def pdf_viewer_html(pdf_url: str) -> str:
    safe_url = html.escape(pdf_url, quote=True)
    return (
        "<!DOCTYPE html><html><head><meta charset='utf-8'>"
        "<meta name='viewport' content='width=device-width, initial-scale=1.0'>"
        "<title>PDF Preview</title><style>"
        "*{margin:0;padding:0;box-sizing:border-box;}"
        "body,html{width:100%;height:100%;overflow:hidden;background:#525659;}"
        ".loader-container{position:fixed;inset:0;display:flex;flex-direction:column;align-items:center;"
        "justify-content:center;background:#525659;z-index:9999;transition:opacity 0.3s ease-out;}"
        ".loader-container.hidden{opacity:0;pointer-events:none;}"
        ".spinner{width:50px;height:50px;border:4px solid rgba(255,255,255,0.3);border-top-color:#fff;"
        "border-radius:50%;animation:spin 1s linear infinite;}"
        "@keyframes spin{to{transform:rotate(360deg);}}"
        ".loader-text{color:#fff;font-family:Arial,sans-serif;font-size:16px;margin-top:20px;}"
        "#pdf-frame{width:100%;height:100%;border:none;display:none;}"
        "#pdf-frame.loaded{display:block;}"
        "</style></head><body>"
        "<div class='loader-container' id='loader'><div class='spinner'></div>"
        "<div class='loader-text'>Loading document...</div></div>"
        f"<iframe id='pdf-frame' src='{safe_url}'></iframe>"
        "<script>"
        "const iframe=document.getElementById('pdf-frame');"
        "const loader=document.getElementById('loader');"
        "function reveal(){iframe.classList.add('loaded');loader.classList.add('hidden');"
        "setTimeout(function(){loader.style.display='none';},300);}"
        "iframe.onload=reveal;"
        "setTimeout(function(){if(!iframe.classList.contains('loaded')){reveal();}},10000);"
        "</script></body></html>"
    )


def spreadsheet_html(workbook: WorkbookModel) -> str:
    sheets_json = script_json(workbook_payload(workbook))
    title_json = script_json(workbook.title)
    stylesheets = "".join(
        f"<link rel='stylesheet' href='{LUCKYSHEET_CDN}/{path}' />"
        for path in (
            "plugins/css/pluginsCss.css",
            "plugins/plugins.css",
            "css/luckysheet.css",
            "assets/iconfont/iconfont.css",
        )
    )
    return (
        "<!DOCTYPE html><html><head><meta charset='utf-8'>"
        "<meta name='viewport' content='width=device-width, initial-scale=1.0'>"
        f"<title>{html.escape(workbook.title)}</title>"
        f"{stylesheets}"
        f"<script src='{LUCKYSHEET_CDN}/plugins/js/plugin.js'></script>"
        f"<script src='{LUCKYSHEET_CDN}/luckysheet.umd.js'></script>"
        "<style>body,html{margin:0;padding:0;width:100%;height:100%;overflow:hidden;}"
        "#luckysheet{margin:0;padding:0;position:absolute;width:100%;height:100%;left:0;top:0;}</style>"
        "</head><body><div id='luckysheet'></div>"
        "<script>$(function(){luckysheet.create({"
        "container:'luckysheet',showtoolbar:true,showinfobar:true,showsheetbar:true,"
        "showstatisticBar:true,sheetFormulaBar:true,enableAddRow:false,enableAddCol:false,"
        "userInfo:false,showConfigWindowResize:false,allowEdit:false,"
        f"data:{sheets_json},title:{title_json},lang:'en'"
        "});});</script></body></html>"
    )


def csv_table_html(rows: list[list[str]]) -> str:
    body_rows = "".join(
        "<tr>" + "".join(f"<td>{html.escape(str(cell))}</td>" for cell in row) + "</tr>"
        for row in rows
    )
    return (
        "<!doctype html><meta charset='utf-8'>"
        "<style>body{font-family:Inter,Arial,sans-serif;margin:12px;}"
        "table{border-collapse:collapse;font-size:13px;}"
        "td{border:1px solid #cbd5e1;padding:4px 8px;vertical-align:top;}</style>"
        f"<table class='csv-table'>{body_rows}</table>"
    )


def download_fallback_html(download_url: str, filename: str, extension: str | None) -> str:
    safe_url = html.escape(download_url, quote=True)
    return (
        "<!DOCTYPE html><html><head><meta charset='utf-8'>"
        "<meta name='viewport' content='width=device-width, initial-scale=1.0'>"
        "<title>File Not Supported</title><style>"
        "*{margin:0;padding:0;box-sizing:border-box;}"
        "body{font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif;"
        "background:linear-gradient(135deg,#667eea 0%,#764ba2 100%);min-height:100vh;display:flex;"
        "align-items:center;justify-content:center;padding:20px;}"
        ".container{background:#fff;border-radius:20px;padding:60px 40px;max-width:500px;text-align:center;"
        "box-shadow:0 20px 60px rgba(0,0,0,0.3);}"
        "h1{color:#333;font-size:28px;margin-bottom:15px;}"
        "p{color:#666;font-size:16px;line-height:1.6;margin-bottom:30px;}"
        ".file-info{background:#f5f5f5;padding:15px;border-radius:10px;margin-bottom:30px;}"
        ".file-name{font-weight:600;color:#333;word-break:break-all;margin-bottom:5px;}"
        ".file-type{color:#888;font-size:14px;}"
        ".download-btn{display:inline-block;background:linear-gradient(135deg,#667eea 0%,#764ba2 100%);"
        "color:#fff;padding:15px 40px;border-radius:50px;text-decoration:none;font-weight:600;}"
        ".note{margin-top:20px;font-size:14px;color:#999;}"
        "</style></head><body><div class='container'>"
        "<h1>Preview Not Available</h1>"
        "<p>This file type cannot be previewed in the browser. "
        "You can download it to view on your device.</p>"
        "<div class='file-info'>"
        f"<div class='file-name'>{html.escape(filename)}</div>"
        f"<div class='file-type'>File type: {html.escape(extension or 'Unknown')}</div>"
        "</div>"
        f"<a href='{safe_url}' class='download-btn' download>Download File</a>"
        "<div class='note'>The file will be downloaded to your device</div>"
        "</div></body></html>"
    )
