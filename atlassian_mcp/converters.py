"""Markdown / storage-format conversion and page export helpers.

Conversions are ordered rewrite rules over a parsed tree. They are best
effort: deeply nested lists or tables inside list items may lose structure.
"""

from __future__ import annotations

import asyncio
import base64
import html
import json
import logging
import mimetypes
import re
from datetime import datetime, timezone
from urllib.parse import urlparse

import httpx
import markdown
from bs4 import BeautifulSoup
from markdownify import markdownify

from atlassian_mcp.html_sanitizer import cdata_sections, parse_markup, sanitize_html
from atlassian_mcp.log import log_security_event
from atlassian_mcp.security import is_same_host

logger = logging.getLogger(__name__)

MARKDOWN_EXTENSIONS = ["fenced_code", "tables", "sane_lists"]

_STORAGE_RE = re.compile(r"<(?:p|h[1-6]|ul|ol|table|div|pre|blockquote)[\s>/]|<ac:", re.I)
_BLANK_LINES_RE = re.compile(r"\n{3,}")


# ---------------------------------------------------------------------------
# Markdown <-> storage format
# ---------------------------------------------------------------------------

def _code_language(code_tag) -> str:
    for cls in code_tag.get("class") or []:
        if cls.startswith("language-"):
            return cls[len("language-"):]
    return ""


def _pre_to_code_macro(soup: BeautifulSoup) -> None:
    for pre in soup.find_all("pre"):
        code = pre.find("code")
        language = _code_language(code) if code else ""
        text = (code or pre).get_text()

        macro = soup.new_tag("ac:structured-macro", attrs={"ac:name": "code"})
        if language:
            param = soup.new_tag("ac:parameter", attrs={"ac:name": "language"})
            param.string = language
            macro.append(param)
        body = soup.new_tag("ac:plain-text-body")
        for section in cdata_sections(text.rstrip("\n")):
            body.append(section)
        macro.append(body)
        pre.replace_with(macro)


def _code_macro_to_pre(soup: BeautifulSoup) -> None:
    for macro in soup.find_all("ac:structured-macro"):
        if macro.decomposed:
            continue
        if macro.get("ac:name") != "code":
            # Keep the body of panels and other macros, drop their parameters.
            for param in macro.find_all("ac:parameter", recursive=False):
                param.decompose()
            macro.unwrap()
            continue
        lang_param = macro.find("ac:parameter", attrs={"ac:name": "language"})
        body = macro.find("ac:plain-text-body")
        pre = soup.new_tag("pre")
        code = soup.new_tag("code")
        if lang_param and lang_param.get_text(strip=True):
            code["class"] = [f"language-{lang_param.get_text(strip=True)}"]
        code.string = body.get_text() if body else ""
        pre.append(code)
        macro.replace_with(pre)


def _pre_language(el) -> str:
    code = el.find("code")
    return _code_language(code) if code else ""


def _to_markdown(soup: BeautifulSoup) -> str:
    text = markdownify(
        str(soup),
        heading_style="ATX",
        bullets="*",
        code_language_callback=_pre_language,
    )
    return _BLANK_LINES_RE.sub("\n\n", text).strip()


def markdown_to_storage(md_text: str) -> str:
    """Convert markdown into Confluence storage format."""
    rendered = markdown.markdown(md_text or "", extensions=MARKDOWN_EXTENSIONS)
    soup = BeautifulSoup(rendered, "html.parser")
    _pre_to_code_macro(soup)
    return str(soup)


def storage_to_markdown(storage: str) -> str:
    """Convert (sanitized) storage format into markdown."""
    soup = parse_markup(sanitize_html(storage))
    _code_macro_to_pre(soup)
    return _to_markdown(soup)


def is_storage_format(content: str) -> bool:
    return bool(content) and bool(_STORAGE_RE.search(content))


def ensure_storage_format(content: str) -> str:
    """Return sanitized storage format, converting from markdown if needed."""
    if not is_storage_format(content):
        content = markdown_to_storage(content)
    return sanitize_html(content)


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def html_to_markdown(page_html: str) -> str:
    soup = parse_markup(page_html)
    for tag in soup.find_all(["script", "style"]):
        tag.decompose()
    _code_macro_to_pre(soup)
    return _to_markdown(soup)


def _image_mime(url: str, content_type: str) -> str:
    content_type = content_type.split(";")[0].strip()
    if content_type.startswith("image/"):
        return content_type
    guessed, _ = mimetypes.guess_type(urlparse(url).path)
    if guessed and guessed.startswith("image/"):
        return guessed
    return "image/png"


async def _embed_image(client: httpx.AsyncClient, img) -> dict:
    src = img["src"]
    try:
        resp = await client.get(src)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning("Could not embed image %s: %s", src, e)
        return {"url": src, "embedded": False, "error": str(e) or type(e).__name__}
    mime = _image_mime(src, resp.headers.get("content-type", ""))
    data = base64.b64encode(resp.content).decode("ascii")
    img["src"] = f"data:{mime};base64,{data}"
    return {"url": src, "embedded": True, "size": len(resp.content), "mimeType": mime}


async def process_images(
    page_html: str, client: httpx.AsyncClient, embed: bool = True
) -> tuple[str, list[dict]]:
    """Inline same-host images as data URIs.

    Images on other hosts are never fetched. Downloads run concurrently and a
    failed download leaves its ``<img>`` untouched.
    """
    soup = parse_markup(page_html)
    base_url = str(client.base_url)
    pending = []
    report = []
    for img in soup.find_all("img"):
        src = img.get("src", "")
        if not src or src.startswith("data:"):
            continue
        if not is_same_host(src, base_url):
            log_security_event(logger, "external_image_skipped", url=src)
            report.append({"url": src, "embedded": False, "error": "external host"})
            continue
        pending.append(img)

    if embed and pending:
        report.extend(await asyncio.gather(*(_embed_image(client, img) for img in pending)))
    else:
        report.extend({"url": img["src"], "embedded": False} for img in pending)
    return str(soup), report


def prepare_html_for_export(body_html: str, title: str, include_styles: bool = False) -> str:
    safe_title = html.escape(title or "Untitled")
    styles = ""
    if include_styles:
        styles = (
            "<style>body{font-family:sans-serif;max-width:50em;margin:auto;line-height:1.5}"
            "table{border-collapse:collapse}td,th{border:1px solid #ccc;padding:4px}"
            "pre{background:#f4f4f4;padding:8px;overflow-x:auto}</style>"
        )
    return (
        "<!DOCTYPE html>\n<html>\n<head>\n<meta charset=\"utf-8\">\n"
        f"<title>{safe_title}</title>\n{styles}</head>\n<body>\n"
        f"<h1>{safe_title}</h1>\n{body_html}\n</body>\n</html>\n"
    )


def create_markdown_document(content: str, metadata: dict) -> str:
    """Wrap exported markdown with YAML front matter and an export footer."""
    exported = metadata.get("exported") or datetime.now(timezone.utc).isoformat()
    front = {
        "title": metadata.get("title", "Untitled"),
        "space": metadata.get("space"),
        "version": metadata.get("version"),
        "modified": metadata.get("modified"),
        "exported": exported,
        "source": metadata.get("source"),
    }
    lines = ["---"]
    for key, value in front.items():
        if value is None:
            continue
        lines.append(f"{key}: {value if isinstance(value, int) else json.dumps(str(value))}")
    lines += [
        "---",
        "",
        f"# {front['title']}",
        "",
        content.strip(),
        "",
        "---",
        "",
        "## Export Information",
        "",
        f"- **Exported**: {exported}",
    ]
    if front["source"]:
        lines.append(f"- **Source**: {front['source']}")
    if front["version"] is not None:
        lines.append(f"- **Version**: {front['version']}")
    return "\n".join(lines) + "\n"
