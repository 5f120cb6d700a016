"""
Web page parser for extracting the title, markdown text and outbound links.
"""

import re
import logging
from typing import List, Optional
from dataclasses import dataclass, field

import html2text
from bs4 import BeautifulSoup, Comment

from .urls import extract_crawlable_links


@dataclass
class ParsedContent:
    """Container for parsed web page content."""
    url: str
    title: str = ""
    markdown: str = ""
    links: List[str] = field(default_factory=list)


class ContentParser:
    """
    Parses HTML into the pieces the analyzer and the frontier need.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.whitespace_pattern = re.compile(r'\s+')

    def _markdown_converter(self) -> html2text.HTML2Text:
        converter = html2text.HTML2Text()
        converter.ignore_links = False
        converter.ignore_images = True
        converter.ignore_tables = False
        converter.body_width = 0
        return converter

    def parse(self, url: str, html_content: str, title: Optional[str] = None) -> ParsedContent:
        """
        Parse HTML content.

        Args:
            url: Final URL of the page, used to resolve relative links
            html_content: Raw HTML content
            title: Title reported by the fetcher, preferred over <title>

        Returns:
            ParsedContent; empty fields when the document cannot be parsed
        """
        parsed_content = ParsedContent(url=url)
        if not html_content:
            return parsed_content

        try:
            soup = BeautifulSoup(html_content, 'lxml')

            for script in soup(["script", "style", "noscript"]):
                script.decompose()

            for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
                comment.extract()

            parsed_content.title = title or self._extract_title(soup)
            parsed_content.links = extract_crawlable_links(
                url, [a['href'] for a in soup.find_all('a', href=True)]
            )

            body = soup.find('body') or soup
            parsed_content.markdown = self._markdown_converter().handle(
                body.decode_contents() if body is not soup else str(soup)
            ).strip()

            self.logger.debug(f"Parsed {url}: {len(parsed_content.markdown)} chars, "
                              f"{len(parsed_content.links)} links")

        except Exception as e:
            self.logger.error(f"Error parsing content from {url}: {e}")

        return parsed_content

    def _extract_title(self, soup: BeautifulSoup) -> str:
        title_tag = soup.find('title')
        if title_tag:
            return self._clean_text(title_tag.get_text())
        return ""

    def _clean_text(self, text: str) -> str:
        """Collapse whitespace."""
        if not text:
            return ""
        return self.whitespace_pattern.sub(' ', text.strip())
