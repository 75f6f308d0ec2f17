"""Prompt builders for filtering, categorization and draft generation."""

import re

from litrev.llm.decoder import DraftSections
from litrev.models import Paper

_DECISION_FORMAT = """Respond with a single JSON object keyed by paper id. Each value must be:
{"decision": true or false, "reasoning": "one or two sentences"}
Include every paper id exactly once and no other keys."""


def format_paper(paper: Paper) -> str:
    """Render one paper for a prompt."""
    lines = [
        f"ID: {paper.id}",
        f"Title: {paper.title}",
        f"Authors: {', '.join(paper.authors) if paper.authors else 'Unknown'}",
        f"Year: {paper.year if paper.year is not None else 'Unknown'}",
    ]
    if paper.venue:
        lines.append(f"Venue: {paper.venue}")
    lines.append(f"Abstract: {paper.abstract or 'No abstract available'}")
    return "\n".join(lines)


def _format_papers(papers: list[Paper]) -> str:
    return "\n\n---\n\n".join(format_paper(p) for p in papers)


def build_inclusion_prompt(papers: list[Paper], criteria: str) -> str:
    """Ask whether each paper meets the inclusion criteria."""
    return f"""You are screening papers for a systematic literature review.

INCLUSION CRITERIA:
{criteria}

For each paper below, decide whether it MEETS the inclusion criteria.
Base the decision on the title and abstract. Set "decision" to true if the paper meets the criteria.

PAPERS:
{_format_papers(papers)}

{_DECISION_FORMAT}"""


def build_exclusion_prompt(papers: list[Paper], criteria: str) -> str:
    """Ask whether each paper meets the exclusion criteria."""
    return f"""You are screening papers for a systematic literature review.

EXCLUSION CRITERIA:
{criteria}

For each paper below, decide whether it MEETS the exclusion criteria and should be excluded.
Base the decision on the title and abstract. Set "decision" to true if the paper should be excluded.

PAPERS:
{_format_papers(papers)}

{_DECISION_FORMAT}"""


def build_category_prompt(papers: list[Paper]) -> str:
    """Ask for the primary research category of each paper."""
    return f"""You are organizing the included papers of a systematic literature review.

CATEGORY IDENTIFICATION:
For each paper below, identify its primary research category or area.
Be specific but concise (a few words). Reuse the same category name for papers of the same area.

PAPERS:
{_format_papers(papers)}

Respond with a single JSON object keyed by paper id. Each value must be:
{{"category": "category name", "confidence": number between 0.0 and 1.0}}
Include every paper id exactly once and no other keys."""


def build_repair_prompt(original_prompt: str, bad_reply: str, problem: str) -> str:
    """Re-prompt after a reply that could not be decoded."""
    return f"""{original_prompt}

Your previous reply could not be used: {problem}
Previous reply (truncated):
{bad_reply[:1000]}

Reply again with ONLY the JSON object described above."""


def cite_key(paper: Paper) -> str:
    """Build a BibTeX-style citation key: lastname + year + first title word."""
    last_name = paper.authors[0].split()[-1] if paper.authors else "anon"
    words = re.findall(r"[A-Za-z]+", paper.title)
    first_word = next((w for w in words if len(w) > 3), words[0] if words else "paper")
    year = paper.year if paper.year is not None else "nd"
    return re.sub(r"[^a-z0-9]", "", f"{last_name}{year}{first_word}".lower())


def _format_references(papers: list[Paper]) -> str:
    return "\n\n".join(f"[{cite_key(p)}]\n{format_paper(p)}" for p in papers)


_DRAFT_FORMAT = """Use LaTeX \\cite{key} commands with the citation keys in square brackets
for every claim drawn from a paper.

Respond with a single JSON object with exactly these string fields:
"abstract", "introduction", "methodology", "results", "discussion", "conclusion".
Section bodies are LaTeX without \\section headings. Escape backslashes as required by JSON."""


def build_draft_prompt(papers: list[Paper], topic: str, inclusion_criteria: str) -> str:
    """Prompt for the first draft of the review."""
    return f"""You are an expert in writing PRISMA systematic literature reviews for academic publication.

TOPIC: {topic}
INCLUSION CRITERIA: {inclusion_criteria or 'Not specified'}

Write a complete systematic literature review based on these papers:

{_format_references(papers)}

{_DRAFT_FORMAT}"""


def build_regenerate_prompt(
    draft: DraftSections,
    new_papers: list[Paper],
    papers_so_far: int,
    topic: str,
) -> str:
    """Prompt to rewrite an existing draft so it also covers ``new_papers``."""
    sections = "\n\n".join(
        f"=== {name.upper()} ===\n{text}" for name, text in draft.model_dump().items()
    )
    return f"""You are revising a systematic literature review on: {topic}

The current draft covers the papers reviewed so far. Integrate the {len(new_papers)} new papers
below into every relevant section. The review now covers {papers_so_far} papers in total.
Keep existing citations unless they are contradicted.

CURRENT DRAFT:
{sections}

NEW PAPERS:
{_format_references(new_papers)}

{_DRAFT_FORMAT}"""
