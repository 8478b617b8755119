from __future__ import annotations

import logging
import re
import time
from typing import Any, Dict, List, Optional

import requests
from bs4 import BeautifulSoup

from normalize import ExternalResult, normalize_scholar, normalize_semantic_scholar

logger = logging.getLogger(__name__)

SCHOLAR_URL = "https://scholar.google.com/scholar"
SEMANTIC_SCHOLAR_URL = "https://api.semanticscholar.org/graph/v1/paper/search"
SEMANTIC_SCHOLAR_FIELDS = "title,authors,year,abstract,citationCount,venue,publicationDate,openAccessPdf"

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)
SCRAPE_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

DEFAULT_TIMEOUT = 15
MAX_RETRIES = 2

_TAG_PREFIX = re.compile(r"^(\[[A-Z]+\]\s*)+")


def _first_text(node: Any, selector: str) -> str:
    found = node.select_one(selector)
    return found.get_text(" ", strip=True) if found else ""


def parse_scholar_html(html: str, max_results: int = 10) -> List[Dict[str, Any]]:
    """Extract raw result records from a Google Scholar results page."""
    soup = BeautifulSoup(html, "html.parser")
    blocks = soup.select("div.gs_ri") or soup.select("div.gs_r")
    records: List[Dict[str, Any]] = []
    for block in blocks:
        if len(records) >= max_results:
            break
        container = block.find_parent("div", class_="gs_r") or block

        heading = block.select_one(".gs_rt")
        anchor = heading.select_one("a") if heading else None
        title_node = anchor or heading
        title = title_node.get_text(" ", strip=True) if title_node else ""
        title = _TAG_PREFIX.sub("", title).strip()

        cited = container.select_one('.gs_fl a[href*="cites"]')
        pdf = container.select_one('.gs_ggs a[href*=".pdf"]')

        records.append(
            {
                "title": title,
                "link": anchor.get("href") if anchor else None,
                "authors": _first_text(block, ".gs_a"),
                "snippet": _first_text(block, ".gs_rs"),
                "cited_by": cited.get_text(strip=True) if cited else "0",
                "pdf_link": pdf.get("href") if pdf else None,
            }
        )
    return records


def fetch_scholar_page(query: str, *, timeout: float = DEFAULT_TIMEOUT) -> str:
    response = requests.get(
        SCHOLAR_URL,
        params={"q": query, "hl": "en", "as_sdt": "0,5"},
        headers=SCRAPE_HEADERS,
        timeout=timeout,
    )
    response.raise_for_status()
    return response.text


def search_scholar(
    query: str,
    max_results: int = 10,
    *,
    timeout: float = DEFAULT_TIMEOUT,
) -> List[ExternalResult]:
    """Scrape Google Scholar. Raises ``requests.RequestException`` on HTTP failure."""
    html = fetch_scholar_page(query, timeout=timeout)
    records = parse_scholar_html(html, max_results=max_results)
    if not records:
        logger.info("Google Scholar page for %r had no recognizable results", query)
    return normalize_scholar(records)[:max_results]


def search_semantic_scholar(
    query: str,
    max_results: int = 10,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    retries: int = MAX_RETRIES,
    backoff: float = 1.0,
) -> List[ExternalResult]:
    """Query the Semantic Scholar API, retrying timeouts and connection errors."""
    params = {"query": query, "limit": str(max_results), "fields": SEMANTIC_SCHOLAR_FIELDS}
    attempt = 0
    while True:
        try:
            response = requests.get(
                SEMANTIC_SCHOLAR_URL,
                params=params,
                headers={"Accept": "application/json"},
                timeout=timeout,
            )
            response.raise_for_status()
            data = response.json()
            break
        except (requests.Timeout, requests.ConnectionError) as error:
            if attempt >= retries:
                logger.warning("Semantic Scholar unreachable after %d retries: %s", retries, error)
                return []
            attempt += 1
            logger.info("Semantic Scholar request failed, retrying (%d/%d)", attempt, retries)
            time.sleep(backoff * attempt)
        except (requests.RequestException, ValueError) as error:
            logger.warning("Semantic Scholar search failed for %r: %s", query, error)
            return []

    papers = data.get("data") if isinstance(data, dict) else None
    return normalize_semantic_scholar(papers or [])[:max_results]


def search_papers(
    query: str,
    max_results: int = 10,
    *,
    provider: str = "scholar",
    timeout: float = DEFAULT_TIMEOUT,
) -> List[ExternalResult]:
    """Search papers with the configured provider; failures degrade to ``[]``."""
    if not query or not query.strip():
        return []
    if provider == "semantic_scholar":
        return search_semantic_scholar(query, max_results, timeout=timeout)

    try:
        return search_scholar(query, max_results, timeout=timeout)
    except requests.RequestException as error:
        logger.warning("Google Scholar scrape failed (%s); using Semantic Scholar", error)
    return search_semantic_scholar(query, max_results, timeout=timeout)


def paper_details(url: Optional[str], *, timeout: float = 10) -> Optional[Dict[str, Optional[str]]]:
    """Best-effort abstract/keywords/DOI lookup on a paper's landing page."""
    if not url:
        return None
    try:
        response = requests.get(url, headers={"User-Agent": USER_AGENT}, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as error:
        logger.warning("Could not fetch paper details from %s: %s", url, error)
        return None

    soup = BeautifulSoup(response.text, "html.parser")
    doi_link = soup.select_one('a[href*="doi.org"]')
    return {
        "abstract": _first_text(soup, ".abstract, .summary, .description") or None,
        "keywords": _first_text(soup, ".keywords, .tags") or None,
        "doi": doi_link.get("href") if doi_link else None,
    }
