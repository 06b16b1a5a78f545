"""Allow-list HTML sanitizer for Confluence storage format and exports."""

from __future__ import annotations

import html
import re

from bs4 import BeautifulSoup, CData, Comment, Declaration, Doctype, NavigableString, ProcessingInstruction

ALLOWED_TAGS = frozenset({
    "h1", "h2", "h3", "h4", "h5", "h6",
    "p", "br", "hr",
    "strong", "b", "em", "i", "u", "s", "strike", "del", "sub", "sup",
    "ul", "ol", "li",
    "a", "img",
    "code", "pre", "blockquote",
    "table", "thead", "tbody", "tfoot", "tr", "th", "td",
    "div", "span",
    "ac:structured-macro", "ac:plain-text-body", "ac:rich-text-body",
    "ac:parameter", "ac:link", "ac:image", "ac:link-body",
    "ri:page", "ri:attachment", "ri:user",
})

# Dropped together with everything inside them.
FORBIDDEN_TAGS = frozenset({"script", "style", "iframe", "object", "embed", "form"})

ALLOWED_ATTRS = frozenset({
    "href", "src", "alt", "title", "class", "style", "id",
    "width", "height", "align", "colspan", "rowspan",
    "ac:name", "ac:schema-version", "ac:macro-id",
    "ri:content-title", "ri:version-at-save", "ri:filename",
    "ri:space-key", "ri:account-id",
})

FORBIDDEN_ATTRS = frozenset({"autofocus", "formaction"})

URI_ATTRS = frozenset({"href", "src"})

_CDATA_RE = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)
_SCHEME_RE = re.compile(r"^([a-z][a-z0-9+.-]*):")
_UNSAFE_STYLE_RE = re.compile(r"expression\s*\(|javascript:|vbscript:|url\s*\(", re.I)
_STRIPPED_NODES = (Comment, Declaration, Doctype, ProcessingInstruction)
_ASCII_SPACES = "\x20\x0a\x09\x0c\x0d"
_PRESERVE_WHITESPACE = frozenset({"pre", "textarea"})


def parse_markup(markup: str) -> BeautifulSoup:
    """Parse storage-format markup.

    CDATA sections are turned into escaped text first, so every Python
    version's ``html.parser`` sees the same input. Adjacent sections end
    up as one text run.
    """
    text = _CDATA_RE.sub(lambda m: html.escape(m.group(1), quote=False), markup or "")
    return BeautifulSoup(text, "html.parser")


def _uri_allowed(tag_name: str, attr: str, value: str) -> bool:
    compact = re.sub(r"[\x00-\x20]+", "", html.unescape(value)).lower()
    m = _SCHEME_RE.match(compact)
    if not m:
        return True
    scheme = m.group(1)
    if scheme in ("http", "https", "mailto", "tel"):
        return True
    return scheme == "data" and tag_name == "img" and attr == "src" and compact.startswith("data:image/")


def _attr_allowed(name: str) -> bool:
    if name.startswith("on") or name in FORBIDDEN_ATTRS:
        return False
    return name in ALLOWED_ATTRS or name.startswith("data-")


def _clean_attrs(tag) -> None:
    for name in list(tag.attrs):
        value = tag.attrs[name]
        if isinstance(value, list):
            value = " ".join(value)
        key = name.lower()
        if not _attr_allowed(key):
            del tag.attrs[name]
        elif key in URI_ATTRS and not _uri_allowed(tag.name, key, value):
            del tag.attrs[name]
        elif key == "style" and _UNSAFE_STYLE_RE.search(value):
            del tag.attrs[name]


def sanitize_soup(soup: BeautifulSoup) -> BeautifulSoup:
    """Sanitize a parsed tree in place and return it."""
    for node in soup.find_all(string=lambda s: isinstance(s, _STRIPPED_NODES)):
        node.extract()

    for tag in soup.find_all(True):
        if tag.decomposed:
            continue
        name = tag.name.lower()
        if name in FORBIDDEN_TAGS:
            tag.decompose()
        elif name not in ALLOWED_TAGS:
            tag.unwrap()
        else:
            _clean_attrs(tag)

    for body in soup.find_all("ac:plain-text-body"):
        text = body.get_text()
        body.clear()
        for section in cdata_sections(text):
            body.append(section)

    soup.smooth()
    _collapse_blank_text(soup)
    return soup


def cdata_sections(text: str) -> list[CData]:
    """Split text into CDATA nodes so no section contains ``]]>``.

    ``a]]>b`` becomes ``<![CDATA[a]]]]><![CDATA[>b]]>``; ``parse_markup``
    joins adjacent sections back into one string.
    """
    parts = text.split("]]>")
    last = len(parts) - 1
    sections = []
    for i, part in enumerate(parts):
        if i:
            part = ">" + part
        if i < last:
            part += "]]"
        sections.append(CData(part))
    return sections


def _collapse_blank_text(soup: BeautifulSoup) -> None:
    # html.parser collapses whitespace-only text to one newline or space;
    # apply the same rule so a second pass sees identical text.
    for node in soup.find_all(string=True):
        if type(node) is not NavigableString or not node or node.strip(_ASCII_SPACES):
            continue
        if any(parent.name in _PRESERVE_WHITESPACE for parent in node.parents):
            continue
        collapsed = "\n" if "\n" in node else " "
        if node != collapsed:
            node.replace_with(NavigableString(collapsed))


def sanitize_html(markup: str) -> str:
    """Strip script-capable constructs, keeping the allow-listed structure.

    Forbidden tags are removed with their content; any other unknown tag is
    unwrapped so its text survives. Deny rules win over allow rules. The
    function is idempotent.
    """
    if not isinstance(markup, str) or not markup:
        return ""
    return str(sanitize_soup(parse_markup(markup)))
