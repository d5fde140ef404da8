"""
Article text extraction for AI summarization.
"""

from __future__ import annotations

import trafilatura


class ContentExtractor:
    """Extracts main article text from raw HTML."""

    @staticmethod
    def extract_text(html: str) -> str | None:
        """
        Extract readable article body text, or None when nothing usable is found.
        """
        if not html or not html.strip():
            return None
        extracted = trafilatura.extract(
            html,
            output_format="txt",
            include_comments=False,
            include_tables=False,
            favor_precision=True,
        )
        if not extracted:
            return None
        # Keep paragraph breaks; the summarizer prompt relies on them.
        paragraphs = [" ".join(line.split()) for line in extracted.splitlines()]
        normalized = "\n".join(paragraph for paragraph in paragraphs if paragraph)
        return normalized or None
