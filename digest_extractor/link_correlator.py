"""Attach source URLs to extracted articles.

The digest links every article to its online original through a hyperlink
annotation placed next to it. Annotations and articles are paired by their
order in the document; articles left without an annotation fall back to the
first URL written in their own text.
"""

import logging
import re
from dataclasses import replace
from typing import List, Optional, Sequence

from .models import Article, LinkAnnotation, Section

logger = logging.getLogger(__name__)

URL_RE = re.compile(r"https?://\S+")
TRAILING_PUNCTUATION = ".,;:!?)]}>\"'»”"


def url_in_text(content: str) -> Optional[str]:
    match = URL_RE.search(content or "")
    if not match:
        return None
    return match.group(0).rstrip(TRAILING_PUNCTUATION) or None


def section_annotations(section: Section,
                        annotations: Sequence[LinkAnnotation],
                        url_pattern: Optional[str] = None) -> List[LinkAnnotation]:
    """Annotations on the section's pages, top to bottom, left to right."""
    pages = set(section.pages)
    selected = [a for a in annotations if a.page_number in pages]
    if url_pattern:
        pattern = re.compile(url_pattern)
        selected = [a for a in selected if pattern.search(a.uri)]
    return sorted(selected, key=lambda a: a.sort_key)


def correlate_urls(section: Section,
                   annotations: Sequence[LinkAnnotation],
                   articles: Sequence[Article],
                   url_pattern: Optional[str] = None) -> List[Article]:
    """
    Return the section's articles with URLs filled in.

    The i-th article (document order) takes the i-th annotation. An article
    that already has a URL keeps it and still consumes its annotation slot.
    """
    links = section_annotations(section, annotations, url_pattern)
    ordered = sorted(articles, key=lambda a: a.page_number or 0)

    correlated: List[Article] = []
    from_links = from_text = 0
    for ordinal, article in enumerate(ordered):
        if article.url:
            correlated.append(article)
            continue
        url = None
        if ordinal < len(links):
            url = links[ordinal].uri
            from_links += 1
        else:
            url = url_in_text(article.content)
            if url:
                from_text += 1
        correlated.append(replace(article, url=url) if url else article)

    if len(links) != len(ordered):
        logger.info(f"Section {section.id}: {len(links)} link annotations for {len(ordered)} articles")
    logger.debug(f"Section {section.id}: {from_links} URLs from annotations, {from_text} from text")
    return correlated
