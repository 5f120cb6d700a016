"""
Content analysis through Google Gemini: keywords, summaries and embeddings.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

import google.generativeai as genai

from ..utils.config import AnalyzerConfig

KEYWORD_PROMPT = """
SYSTEM: You are an intelligent keyword extractor bot which can extract the essential keywords from a given text and return the same as a comma separated list.
    For example,
    input: Broadcom agreed to acquire cloud computing company VMware in a $61 billion (57bn EUR) cash-and stock deal.
    output: cloud computing, broadcom, vmware

    The output format will always be keyword1, keyword2, ...

INPUT TEXT: {text}
"""

SUMMARY_PROMPT = """Write a concise summary of the following:


"{text}"


CONCISE SUMMARY:"""

ANSWER_PROMPT = """
SYSTEM: As a knowledgeable question-answering AI, you can utilize the markdown content from various websites which is provided as your context to provide relevant, descriptive and elaborate answers to the user's queries.
    By analyzing the information provided in the content, you can generate accurate responses tailored to the query.

QUERY: {query}

CONTEXT
------
{context}
"""

_WHITESPACE = re.compile(r'\s+')


class AnalyzerError(Exception):
    """Raised when the language model or embedding call fails."""
    pass


@dataclass
class AnalysisResult:
    """Keywords, summary and embedding of one page."""
    keywords: List[str] = field(default_factory=list)
    summary: str = ""
    embedding: List[float] = field(default_factory=list)


def normalize_keyword(keyword: str) -> str:
    """Trim, collapse inner whitespace and lower-case a keyword."""
    return _WHITESPACE.sub(' ', keyword.strip()).lower()


def parse_keyword_list(text: str) -> List[str]:
    """Split a comma separated model answer into unique normalized keywords."""
    return unique_keywords(text.split(','))


def unique_keywords(keywords: Iterable[str]) -> List[str]:
    seen = {}
    for keyword in keywords:
        normalized = normalize_keyword(keyword)
        if normalized:
            seen.setdefault(normalized, None)
    return list(seen)


def split_text(text: str, chunk_size: int) -> List[str]:
    """
    Split markdown into chunks of at most chunk_size characters.

    Paragraph boundaries are preferred; oversized paragraphs are cut hard.
    """
    chunks = []
    current = ""

    for paragraph in text.split("\n\n"):
        paragraph = paragraph.strip()
        if not paragraph:
            continue

        while len(paragraph) > chunk_size:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(paragraph[:chunk_size])
            paragraph = paragraph[chunk_size:]
        if not paragraph:
            continue

        candidate = f"{current}\n\n{paragraph}" if current else paragraph
        if len(candidate) > chunk_size:
            chunks.append(current)
            current = paragraph
        else:
            current = candidate

    if current:
        chunks.append(current)
    return chunks


class ContentAnalyzer:
    """
    Gemini-backed analyzer used by the crawl workers and the search engine.
    """

    def __init__(self, config: AnalyzerConfig):
        self.config = config
        self.logger = logging.getLogger(__name__)

        if config.api_key:
            genai.configure(api_key=config.api_key)
        self.model = genai.GenerativeModel(config.model)
        self.generation_config = genai.types.GenerationConfig(temperature=config.temperature)

    async def _generate(self, prompt: str) -> str:
        try:
            response = await self.model.generate_content_async(
                prompt, generation_config=self.generation_config
            )
            return response.text
        except Exception as e:
            raise AnalyzerError(f"Generation failed: {e}") from e

    async def _embed(self, text: str, task_type: str) -> List[float]:
        try:
            result = await genai.embed_content_async(
                model=self.config.embedding_model,
                content=text,
                task_type=task_type
            )
            return [float(v) for v in result['embedding']]
        except Exception as e:
            raise AnalyzerError(f"Embedding failed: {e}") from e

    async def extract_keywords(self, text: str) -> List[str]:
        """Extract normalized keywords from a single piece of text."""
        if not text.strip():
            return []
        answer = await self._generate(KEYWORD_PROMPT.format(text=text))
        return parse_keyword_list(answer)

    async def embed_query(self, query: str) -> List[float]:
        return await self._embed(query, "retrieval_query")

    async def analyze(self, markdown: str) -> AnalysisResult:
        """
        Analyze page markdown.

        Each step degrades to an empty contribution when the model call fails.
        """
        result = AnalysisResult()
        chunks = split_text(markdown, self.config.chunk_size)
        if not chunks:
            return result

        keywords = []
        for chunk in chunks:
            try:
                keywords.extend(await self.extract_keywords(chunk))
            except AnalyzerError as e:
                self.logger.warning(f"Keyword extraction failed for one chunk: {e}")
        result.keywords = unique_keywords(keywords)
        self.logger.debug(f"Keywords: {', '.join(result.keywords)}")

        try:
            result.summary = (await self._generate(
                SUMMARY_PROMPT.format(text="\n\n".join(chunks))
            )).strip()
        except AnalyzerError as e:
            self.logger.warning(f"Summary generation failed: {e}")

        if result.summary:
            try:
                result.embedding = await self._embed(result.summary, "retrieval_document")
            except AnalyzerError as e:
                self.logger.warning(f"Embedding generation failed: {e}")

        return result

    async def answer(self, query: str, sources: List[Dict[str, str]]) -> str:
        """
        Answer a query from the markdown of its source pages.

        Each source is a mapping with url, title and content. Content longer
        than chunk_size is cut.

        Raises:
            AnalyzerError: when the model call fails
        """
        context = "\n".join(
            f"Website {i} ({source.get('title') or ''} - {source['url']}): \n"
            f"{source['content'][:self.config.chunk_size]}"
            for i, source in enumerate(sources, start=1)
        )
        return (await self._generate(ANSWER_PROMPT.format(query=query, context=context))).strip()
