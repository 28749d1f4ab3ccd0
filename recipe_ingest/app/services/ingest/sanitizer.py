"""HTML sanitization: strip non-content markup, collect JSON-LD and page metadata, emit plain text."""

import html
import json
import logging
import re
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup
from bs4.element import Tag
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

REMOVED_TAGS = [
    "script",
    "style",
    "noscript",
    "iframe",
    "object",
    "embed",
    "applet",
    "nav",
    "header",
    "footer",
    "aside",
    "menu",
    "menuitem",
    "template",
    "svg",
    "canvas",
    "video",
    "audio",
    "source",
    "track",
    "form",
    "input",
    "button",
    "select",
    "textarea",
    "option",
    "optgroup",
]

NAVIGATION_WORDS = {
    "nav",
    "navbar",
    "navigation",
    "menu",
    "sidebar",
    "footer",
    "header",
    "breadcrumb",
    "breadcrumbs",
    "pagination",
    "social",
    "share",
    "sharing",
    "advertisement",
    "ad",
    "ads",
    "banner",
    "promo",
    "promotion",
    "newsletter",
    "subscribe",
    "subscription",
    "signup",
    "sign-up",
    "comment",
    "comments",
    "related",
    "recommended",
    "popular",
    "trending",
}

RECIPE_TYPES = {
    "recipe",
    "howto",
    "https://schema.org/recipe",
    "http://schema.org/recipe",
}

BLOCK_TAGS = [
    "p",
    "div",
    "section",
    "article",
    "main",
    "br",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
    "ul",
    "ol",
    "table",
    "tr",
    "blockquote",
    "pre",
    "figure",
    "figcaption",
    "dl",
    "dt",
    "dd",
]


class PageMetadata(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    author: Optional[str] = None
    site_name: Optional[str] = None
    canonical_url: Optional[str] = None
    language: Optional[str] = None


class SanitizedContent(BaseModel):
    text_content: str = ""
    json_ld_snippets: List[str] = Field(default_factory=list)
    recipe_json_ld: Optional[str] = None
    metadata: PageMetadata = Field(default_factory=PageMetadata)
    original_length: int = 0
    sanitized_length: int = 0

    @property
    def has_recipe_json_ld(self) -> bool:
        return bool(self.recipe_json_ld)


def _meta_content(soup: BeautifulSoup, **attrs) -> Optional[str]:
    tag = soup.find("meta", attrs=attrs)
    if tag and tag.get("content"):
        return tag["content"].strip() or None
    return None


def extract_metadata(soup: BeautifulSoup) -> PageMetadata:
    title = None
    if soup.title and soup.title.string:
        title = soup.title.string.strip() or None
    title = title or _meta_content(soup, property="og:title")
    description = _meta_content(soup, name="description") or _meta_content(soup, property="og:description")
    canonical = None
    link = soup.find("link", rel="canonical")
    if link and link.get("href"):
        canonical = link["href"].strip()
    language = None
    html_tag = soup.find("html")
    if html_tag and html_tag.get("lang"):
        language = html_tag["lang"].strip()
    return PageMetadata(
        title=title,
        description=description,
        author=_meta_content(soup, name="author"),
        site_name=_meta_content(soup, property="og:site_name"),
        canonical_url=canonical,
        language=language,
    )


def _is_recipe_type(obj: Dict[str, Any]) -> bool:
    obj_type = obj.get("@type")
    if not obj_type:
        return False
    types = [obj_type] if isinstance(obj_type, str) else obj_type
    return any(str(t).strip().lower() in RECIPE_TYPES for t in types)


def _flatten_candidates(data: Any) -> List[Dict[str, Any]]:
    candidates: List[Dict[str, Any]] = []
    if isinstance(data, list):
        for item in data:
            candidates.extend(_flatten_candidates(item))
    elif isinstance(data, dict):
        graph = data.get("@graph")
        if isinstance(graph, list):
            candidates.extend(_flatten_candidates(graph))
        candidates.append(data)
    return candidates


def find_recipe_json_ld(snippets: List[str]) -> Optional[str]:
    """Return the first recipe-typed object (as JSON text) across the collected snippets."""
    for idx, raw_json in enumerate(snippets):
        try:
            data = json.loads(raw_json)
        except json.JSONDecodeError as exc:
            logger.warning("JSON-LD block %d failed to parse: %s", idx, exc)
            continue
        for obj in _flatten_candidates(data):
            if _is_recipe_type(obj):
                return json.dumps(obj)
    return None


def _class_and_id_words(tag: Tag) -> set:
    classes = tag.get("class") or []
    if isinstance(classes, str):
        classes = classes.split()
    values = list(classes)
    if tag.get("id"):
        values.append(tag["id"])
    words = set()
    for value in values:
        value = str(value).lower()
        words.add(value)
        # word-boundary semantics: "site-footer" matches "footer"
        words.update(w for w in re.split(r"[^a-z0-9]+", value) if w)
    return words


def _is_navigation_element(tag: Tag) -> bool:
    if tag.name in {"html", "body", "main", "article"}:
        return False
    return any(word in NAVIGATION_WORDS for word in _class_and_id_words(tag))


def html_to_text(soup: BeautifulSoup) -> str:
    for li in soup.find_all("li"):
        li.insert_before("\n• ")
    for tag in soup.find_all(BLOCK_TAGS):
        tag.insert_before("\n")
        tag.insert_after("\n")
    text = html.unescape(soup.get_text())
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t\f\v\u00a0]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def sanitize(raw_html: str) -> SanitizedContent:
    """Sanitize ``raw_html`` into plain text plus structured data and metadata."""
    raw_html = raw_html or ""
    soup = BeautifulSoup(raw_html, "lxml")

    snippets = []
    for script in soup.find_all("script", attrs={"type": re.compile(r"application/ld\+json", re.I)}):
        raw_json = (script.string or script.get_text() or "").strip()
        if raw_json:
            snippets.append(raw_json)
    logger.debug("Found %d JSON-LD script blocks", len(snippets))

    metadata = extract_metadata(soup)

    for tag in soup.find_all(REMOVED_TAGS):
        if not tag.decomposed:
            tag.decompose()
    for tag in soup.find_all(True):
        if not tag.decomposed and _is_navigation_element(tag):
            tag.decompose()

    body = soup.body or soup
    text = html_to_text(body)
    return SanitizedContent(
        text_content=text,
        json_ld_snippets=snippets,
        recipe_json_ld=find_recipe_json_ld(snippets),
        metadata=metadata,
        original_length=len(raw_html),
        sanitized_length=len(text),
    )
