# src/core/code_search.py
import logging
import re
from collections import defaultdict
from typing import Dict, List, Optional

from .edit_context_selector import extract_quoted_fragments
from .project_models import EditIntent, EditType, FallbackSearch, SearchExecutionResult, SearchHit, SearchPlan

logger = logging.getLogger(__name__)

TERM_WEIGHT = 1
REGEX_WEIGHT = 2
QUOTED_WEIGHT = 3

TYPE_TERMS: Dict[EditType, List[str]] = {
    EditType.UPDATE_STYLE: ['className', 'style', 'bg-', 'text-', 'border-', 'shadow-'],
    EditType.UPDATE_COMPONENT: ['function', 'const', 'export', 'return'],
    EditType.FIX_ISSUE: ['<button', '<div', '<span', '<p', 'error', 'issue', 'problem'],
    EditType.ADD_FEATURE: ['return', 'render', 'jsx', 'tsx'],
}
TYPE_PATTERNS: Dict[EditType, List[str]] = {
    EditType.UPDATE_STYLE: [r'className\s*=\s*["\']([^"\']*)["\']'],
    EditType.UPDATE_COMPONENT: [r'(function|const)\s+\w+', r'export\s+(default\s+)?\w+'],
}
FALLBACK_STOP_WORDS = frozenset({'the', 'and', 'for', 'with'})


def _prompt_words(prompt: str) -> List[str]:
    return re.findall(r'\w+', prompt.lower())


def plan_search(intent: EditIntent, prompt: str) -> SearchPlan:
    """Derives search terms and patterns from the edit type and the prompt text."""
    quoted = extract_quoted_fragments(prompt)
    terms: List[str] = list(quoted)
    if intent.type in TYPE_TERMS:
        terms.extend(TYPE_TERMS[intent.type])
    else:
        terms.extend(w for w in _prompt_words(prompt) if len(w) > 3)

    fallback = FallbackSearch(
        terms=[w for w in dict.fromkeys(_prompt_words(prompt)) if len(w) > 2 and w not in FALLBACK_STOP_WORDS],
        patterns=[r'\w+'],
    )
    plan = SearchPlan(
        edit_type=intent.type,
        search_terms=terms,
        regex_patterns=list(TYPE_PATTERNS.get(intent.type, [])),
        fallback_search=fallback,
    )
    logger.debug(f"Search plan for {intent.type.value}: terms={plan.search_terms}, patterns={plan.regex_patterns}")
    return plan


def _scan(files: Dict[str, str], terms: List[str], patterns: List[str], quoted: List[str]) -> List[SearchHit]:
    compiled = []
    for pattern in patterns:
        try:
            compiled.append((pattern, re.compile(pattern)))
        except re.error as e:
            logger.warning(f"Skipping invalid search pattern '{pattern}': {e}")

    hits: List[SearchHit] = []
    lowered_terms = [(t, t.lower()) for t in terms if t]
    for file_path, content in files.items():
        for line_number, line in enumerate(content.splitlines(), start=1):
            lower_line = line.lower()
            for term, lower_term in lowered_terms:
                if lower_term in lower_line:
                    is_quoted = term in quoted
                    hits.append(SearchHit(
                        file_path=file_path,
                        line_number=line_number,
                        line_content=line.strip(),
                        matched_term=term,
                        reason=f"Contains quoted text \"{term}\"" if is_quoted else f"Contains '{term}'",
                        score=QUOTED_WEIGHT if is_quoted else TERM_WEIGHT,
                    ))
            for pattern, regex in compiled:
                if regex.search(line):
                    hits.append(SearchHit(
                        file_path=file_path,
                        line_number=line_number,
                        line_content=line.strip(),
                        matched_term=pattern,
                        reason=f"Matches pattern /{pattern}/",
                        score=REGEX_WEIGHT,
                    ))
    hits.sort(key=lambda h: (-h.score, h.file_path, h.line_number))
    return hits


def execute_search_plan(plan: SearchPlan, files: Dict[str, str], prompt: str = "") -> SearchExecutionResult:
    """
    Runs a plan over candidate file contents. Falls back to the plan's fallback
    set when the primary terms find nothing; zero hits after that is reported as
    an unsuccessful (but non-fatal) result.
    """
    candidates = {p: c for p, c in files.items() if p.endswith(tuple(plan.file_types_to_search))}
    quoted = extract_quoted_fragments(prompt)
    try:
        hits = _scan(candidates, plan.search_terms, plan.regex_patterns, quoted)
        used_fallback = False
        if not hits:
            logger.info("Primary search found nothing, running fallback search.")
            hits = _scan(candidates, plan.fallback_search.terms, plan.fallback_search.patterns, quoted)
            used_fallback = True
    except Exception as e:
        logger.exception(f"Code search failed: {e}")
        return SearchExecutionResult(success=False, files_searched=len(candidates), error=str(e))

    if not hits:
        return SearchExecutionResult(success=False, files_searched=len(candidates), used_fallback=True,
                                     error="No precise location found")
    logger.info(f"Code search found {len(hits)} hit(s) across {len({h.file_path for h in hits})} file(s).")
    return SearchExecutionResult(success=True, results=hits, files_searched=len(candidates), used_fallback=used_fallback)


def select_target_file(hits: List[SearchHit], edit_type: EditType) -> Optional[SearchHit]:
    """
    Picks the best edit location: the file with the highest aggregate score, ties
    broken for style edits by the number of `className` hits, then by first
    appearance. Returns the strongest hit inside that file.
    """
    if not hits:
        return None
    totals: Dict[str, int] = defaultdict(int)
    class_hits: Dict[str, int] = defaultdict(int)
    order: List[str] = []
    for hit in hits:
        if hit.file_path not in totals:
            order.append(hit.file_path)
        totals[hit.file_path] += hit.score
        if 'className' in hit.line_content:
            class_hits[hit.file_path] += 1

    def rank(path: str):
        tie_break = class_hits[path] if edit_type == EditType.UPDATE_STYLE else 0
        return (totals[path], tie_break, -order.index(path))

    best_file = max(order, key=rank)
    in_file = [h for h in hits if h.file_path == best_file]
    return max(in_file, key=lambda h: (h.score, -h.line_number))


def format_search_results_for_ai(hits: List[SearchHit], limit: int = 20) -> str:
    if not hits:
        return ""
    lines = ["## PRECISE CODE LOCATIONS FOUND", ""]
    for hit in hits[:limit]:
        lines.append(f"- {hit.file_path}:{hit.line_number} ({hit.reason}): `{hit.line_content[:120]}`")
    if len(hits) > limit:
        lines.append(f"- ... {len(hits) - limit} more location(s) omitted")
    return "\n".join(lines)
