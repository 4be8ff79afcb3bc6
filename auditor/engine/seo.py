from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from auditor.fetcher import BoundedFetcher, FetchError, FetchResult
from auditor.models import AnalysisSection, Finding

log = logging.getLogger(__name__)

LINK_FALLBACK_STATUSES = {405, 501}


@dataclass
class ContentResult:
    section: AnalysisSection
    page: FetchResult


def _origin(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}".lower()


def normalize(url: str) -> str:
    return url.split("#", 1)[0]


def _canonical_href(soup: BeautifulSoup) -> Optional[str]:
    for link in soup.find_all("link", rel=True):
        rel = link.get("rel")
        if isinstance(rel, list):
            rel_values = [value.lower() for value in rel]
        else:
            rel_values = str(rel).lower().split()
        if "canonical" in rel_values and link.get("href"):
            return link["href"].strip()
    return None


def extract_internal_links(base_url: str, soup: BeautifulSoup, limit: int) -> list[str]:
    origin = _origin(base_url)
    links: list[str] = []
    for a in soup.find_all("a", href=True):
        if len(links) >= limit:
            break
        href = a["href"].strip()
        if not href or href.startswith(("mailto:", "tel:", "javascript:", "#")):
            continue
        try:
            absolute = normalize(urljoin(base_url, href))
        except ValueError:
            continue
        if not absolute.startswith(("http://", "https://")):
            continue
        if _origin(absolute) != origin:
            continue
        if absolute not in links:
            links.append(absolute)
    return links


def extract_markup(html: str) -> dict:
    soup = BeautifulSoup(html or "", "lxml")
    title = soup.title.get_text(strip=True) if soup.title else ""
    meta_description = ""
    md = soup.find("meta", attrs={"name": "description"})
    if md and md.get("content"):
        meta_description = md["content"].strip()
    images = soup.find_all("img")
    return {
        "soup": soup,
        "title": title,
        "meta_description": meta_description,
        "canonical": _canonical_href(soup) or "",
        "h1_count": len(soup.find_all("h1")),
        "h2_count": len(soup.find_all("h2")),
        "images_total": len(images),
        "images_missing_alt": sum(1 for img in images if not (img.get("alt") or "").strip()),
    }


def score_estimate(broken_links: int, h1_count: int) -> int:
    return max(40, min(95, 80 - 3 * broken_links - (0 if h1_count else 10)))


class ContentAnalyzer:
    def __init__(
        self,
        fetcher: BoundedFetcher,
        *,
        max_links: int = 20,
        concurrency: int = 5,
        page_timeout_ms: int = 10_000,
        link_timeout_ms: int = 5_000,
    ):
        self.fetcher = fetcher
        self.max_links = max_links
        self.concurrency = max(1, concurrency)
        self.page_timeout_ms = page_timeout_ms
        self.link_timeout_ms = link_timeout_ms

    async def analyze(self, url: str) -> ContentResult:
        page = await self.fetcher.fetch(url, timeout_ms=self.page_timeout_ms)
        markup = extract_markup(page.body_text or "")
        base_url = page.final_url or url

        findings: list[Finding] = []
        if not markup["title"]:
            findings.append(Finding(title="Missing title tag", action="Add a descriptive <title> (50-70 chars recommended)."))
        if not markup["meta_description"]:
            findings.append(Finding(title="Missing meta description", action="Add a meta description (50-160 chars)."))
        if not markup["canonical"]:
            findings.append(
                Finding(
                    title="Missing canonical link",
                    action='Add <link rel="canonical" href="..."> to avoid duplicate content.',
                )
            )
        if markup["h1_count"] == 0:
            findings.append(Finding(title="No H1 found", action="Ensure each page has a single, clear H1 tag."))
        elif markup["h1_count"] > 1:
            findings.append(Finding(title="Multiple H1 tags", action="Use a single H1 and H2/H3 for subsections."))

        origin = _origin(base_url)
        has_sitemap, has_robots = await asyncio.gather(
            self._exists(f"{origin}/sitemap.xml"),
            self._exists(f"{origin}/robots.txt"),
        )
        if not has_sitemap:
            findings.append(Finding(title="No sitemap.xml found", action="Consider adding a sitemap.xml for discoverability."))
        if not has_robots:
            findings.append(
                Finding(
                    title="No robots.txt found",
                    action="Add robots.txt to guide crawlers (and prevent accidental indexing).",
                )
            )

        links = extract_internal_links(base_url, markup["soup"], self.max_links)
        broken = await self.check_links(links)
        if broken:
            findings.append(
                Finding(
                    title="Broken internal links",
                    action=f"Found {len(broken)} broken internal links. Fix or redirect them.",
                )
            )

        section = AnalysisSection(
            score=score_estimate(len(broken), markup["h1_count"]),
            findings=findings,
            raw={
                "status": page.status_code,
                "final_url": page.final_url,
                "title": markup["title"],
                "meta_description": markup["meta_description"],
                "canonical": markup["canonical"],
                "h1_count": markup["h1_count"],
                "h2_count": markup["h2_count"],
                "images_total": markup["images_total"],
                "images_missing_alt": markup["images_missing_alt"],
                "has_sitemap": has_sitemap,
                "has_robots": has_robots,
                "internal_links": links,
                "broken_links": broken,
            },
        )
        return ContentResult(section=section, page=page)

    async def _exists(self, url: str) -> bool:
        try:
            result = await self.fetcher.fetch(url, timeout_ms=self.link_timeout_ms)
        except FetchError as exc:
            log.debug("Existence check of %s failed: %s", url, exc)
            return False
        return 200 <= result.status_code < 300

    async def check_links(self, links: list[str]) -> list[dict]:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def check(link: str) -> Optional[dict]:
            async with semaphore:
                try:
                    result = await self.fetcher.fetch(link, method="HEAD", timeout_ms=self.link_timeout_ms)
                    if result.status_code in LINK_FALLBACK_STATUSES:
                        result = await self.fetcher.fetch(link, timeout_ms=self.link_timeout_ms)
                except FetchError as exc:
                    return {"url": link, "status": "error", "error": str(exc)}
            if result.status_code < 200 or result.status_code >= 400:
                return {"url": link, "status": result.status_code}
            return None

        outcomes = await asyncio.gather(*(check(link) for link in links))
        return [outcome for outcome in outcomes if outcome is not None]
