"""
Canned demo data for sample mode.

Sample mode is a read-time overlay: when it is on and the real history is
empty, callers display ``build_sample_history()`` instead. The history
store itself never sees these items.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from typing import Optional

from studio.models import ContentResult, GraphicsResult, HistoryItem, HistoryType

SAMPLE_CONTENT_RESULT = ContentResult(
    title="The Ultimate Guide to Content Marketing in 2025",
    meta_description=(
        "Discover the latest content marketing strategies, tools, and best practices "
        "to drive organic growth and engagement in 2025."
    ),
    article_content=(
        "# The Ultimate Guide to Content Marketing in 2025\n\n"
        "## Introduction\n\n"
        "Content marketing continues to evolve rapidly. In 2025, brands that embrace "
        "**AI-assisted workflows**, **data-driven strategy**, and **multi-channel "
        "distribution** will dominate organic search.\n\n"
        "## Key Strategies\n\n"
        "### 1. AI-Powered Content Creation\n\n"
        "Leverage AI tools to research topics, generate outlines, and produce first "
        "drafts faster than ever before.\n\n"
        "### 2. SEO-First Approach\n\n"
        "- Target long-tail keywords with clear search intent\n"
        "- Structure content with proper heading hierarchy\n"
        "- Include internal and external links\n"
        "- Optimize meta descriptions and title tags\n\n"
        "## Conclusion\n\n"
        "Content marketing in 2025 is about working smarter, not harder."
    ),
    seo_score=87,
    primary_keywords=["content marketing", "SEO optimization", "content strategy 2025"],
    secondary_keywords=["organic growth", "AI content creation", "keyword research"],
    keyword_usage_summary=(
        "Primary keywords used 8 times across headings and body. Secondary keywords "
        "distributed naturally throughout sections."
    ),
    heading_structure=[
        "H1: The Ultimate Guide to Content Marketing in 2025",
        "H2: Introduction",
        "H2: Key Strategies",
        "H2: Conclusion",
    ],
    word_count=1847,
    readability_score=72,
    improvement_notes=[
        "Consider adding more internal links to related articles",
        "Include a FAQ section targeting featured snippets",
    ],
    optimization_summary=(
        "This article scores well for on-page SEO with proper heading hierarchy, "
        "keyword distribution, and readability."
    ),
    competitor_insights=(
        "Top 3 competing articles average 2,200 words and include video embeds."
    ),
)

SAMPLE_GRAPHICS_RESULT = GraphicsResult(
    description="Modern marketing dashboard illustration with gradient elements",
    style="Modern",
    prompt_used=(
        "Create a modern marketing graphic with gradient backgrounds, clean typography, "
        "and data visualization elements representing growth metrics"
    ),
    suggestions=[
        "Try adding brand-specific color schemes",
        "Consider a dark mode variant",
        "Add social media dimension variants",
    ],
    image_url="https://images.unsplash.com/photo-1460925895917-afdab827c52f?w=800&h=600&fit=crop",
)


def build_sample_history(now: Optional[datetime] = None) -> list[HistoryItem]:
    """Return three demo items, newest first, stamped relative to *now*."""
    now = now or datetime.now(timezone.utc)
    return [
        HistoryItem(
            id="sample-1",
            type=HistoryType.ARTICLE,
            title=SAMPLE_CONTENT_RESULT.title or "",
            content=SAMPLE_CONTENT_RESULT.article_content,
            seo_score=87,
            meta_description=SAMPLE_CONTENT_RESULT.meta_description,
            keywords=SAMPLE_CONTENT_RESULT.primary_keywords,
            timestamp=now - timedelta(hours=1),
        ),
        HistoryItem(
            id="sample-2",
            type=HistoryType.GRAPHIC,
            title="Modern Marketing Dashboard Graphic",
            image_url=SAMPLE_GRAPHICS_RESULT.image_url,
            timestamp=now - timedelta(hours=2),
        ),
        HistoryItem(
            id="sample-3",
            type=HistoryType.OPTIMIZATION,
            title="SEO Optimization Report - Homepage",
            content="Optimization analysis complete. Score improved from 62 to 84.",
            seo_score=84,
            keywords=["homepage optimization", "conversion rate"],
            timestamp=now - timedelta(days=1),
        ),
    ]


def display_history(items: Sequence[HistoryItem], sample_mode: bool) -> list[HistoryItem]:
    """Items to show: the real ones, or samples when sample mode hides an empty history."""
    if sample_mode and not items:
        return build_sample_history()
    return list(items)
