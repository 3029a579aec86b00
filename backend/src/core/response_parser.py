# src/core/response_parser.py
"""
Turns raw, possibly incomplete model output into a `ParsedResponse`.

Each file extraction pass is an independent pure function returning candidates.
`parse_response` merges them with a declared precedence: the tag pass runs first
and owns its paths (resolving duplicates with `should_replace`); later passes only
contribute paths no earlier pass captured. Parsing never raises, and re-running it
on a growing stream buffer is safe.
"""
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from .file_manifest import extract_packages
from .project_models import ParsedResponse, ProjectFile

logger = logging.getLogger(__name__)

FILE_TAG_RE = re.compile(r'<file path="([^"]+)">([\s\S]*?)(</file>|(?=<file path=")|$)')
FENCED_PATH_RE = re.compile(r'```(?:file )?path="([^"]+)"\n([\s\S]*?)```')
GENERATED_FILES_RE = re.compile(r'Generated Files?:\s*([^\n]+)', re.IGNORECASE)
GENERATED_NAME_RE = re.compile(r'\.(jsx?|tsx?|css|json|html)$')
SALVAGE_BOUNDARY_RE = re.compile(r'Generated Files?:|Applying code', re.IGNORECASE)
BARE_FENCE_RE = re.compile(r'```(?:jsx?|tsx?|javascript|typescript)?\n([\s\S]*?)```')
FILE_COMMENT_RE = re.compile(r'//\s*(?:File:|Component:)\s*([^\n]+)')
ELISION_RE = re.compile(r'^[ \t]*(?:\.\.\.[ \t]*$|(?://|/\*|\{/\*)[^\n]*\.\.\.)', re.MULTILINE)

COMMAND_RE = re.compile(r'<command>(.*?)</command>')
PACKAGE_RE = re.compile(r'<package>(.*?)</package>')
PACKAGES_BLOCK_RE = re.compile(r'<packages>([\s\S]*?)</packages>')
STRUCTURE_RE = re.compile(r'<structure>([\s\S]*?)</structure>')
EXPLANATION_RE = re.compile(r'<explanation>([\s\S]*?)</explanation>')
TEMPLATE_RE = re.compile(r'<template>(.*?)</template>')


@dataclass
class FileCandidate:
    path: str
    content: str
    closed: bool = True


def looks_truncated(content: str) -> bool:
    """
    True when the model elided code: a line that is only `...`, or a comment
    containing one (`// ... rest unchanged`). Spread syntax and UI copy such as
    `Loading...` do not count.
    """
    return ELISION_RE.search(content) is not None


def should_replace(existing: Optional[FileCandidate], candidate: FileCandidate) -> bool:
    """
    Duplicate-path policy for tag-delimited files: a closed block always beats an
    open one. Between blocks of the same kind, elided content never replaces a
    complete entry; otherwise the longer content wins.
    """
    if existing is None:
        return True
    if candidate.closed != existing.closed:
        return candidate.closed
    candidate_truncated = looks_truncated(candidate.content)
    existing_truncated = looks_truncated(existing.content)
    if candidate_truncated != existing_truncated:
        return existing_truncated
    return len(candidate.content) > len(existing.content)


def _components_path(name: str) -> str:
    return name if '/' in name else f"src/components/{name}"


def extract_tagged_files(text: str) -> List[FileCandidate]:
    return [FileCandidate(m.group(1).strip(), m.group(2).strip(), m.group(3) == '</file>')
            for m in FILE_TAG_RE.finditer(text)]


def extract_fenced_path_files(text: str) -> List[FileCandidate]:
    return [FileCandidate(m.group(1).strip(), m.group(2).strip()) for m in FENCED_PATH_RE.finditer(text)]


def extract_generated_files_listing(text: str) -> List[FileCandidate]:
    """
    Salvages files announced by a "Generated Files: a.tsx, b.css" line by taking
    the code that follows each name, starting at its first `import` line.
    """
    header = GENERATED_FILES_RE.search(text)
    if not header:
        return []
    names = [n.strip() for n in header.group(1).split(',')]
    names = [n for n in names if GENERATED_NAME_RE.search(n)]

    candidates: List[FileCandidate] = []
    cursor = header.end()
    for name in names:
        name_pos = text.find(name, cursor)
        if name_pos == -1:
            continue
        import_match = re.compile(r'^import\b', re.MULTILINE).search(text, name_pos)
        if not import_match:
            continue
        boundary = SALVAGE_BOUNDARY_RE.search(text, import_match.start())
        end = boundary.start() if boundary else len(text)
        code = text[import_match.start():end]
        code = re.sub(r'\n?```\s*$', '', code.rstrip()).strip()
        if code:
            candidates.append(FileCandidate(_components_path(name), code))
        cursor = name_pos + len(name)
    return candidates


def extract_commented_fences(text: str) -> List[FileCandidate]:
    candidates: List[FileCandidate] = []
    for match in BARE_FENCE_RE.finditer(text):
        content = match.group(1).strip()
        name_match = FILE_COMMENT_RE.search(content)
        if name_match:
            candidates.append(FileCandidate(_components_path(name_match.group(1).strip()), content))
    return candidates


def _append_unique(target: List[str], values) -> None:
    for value in values:
        value = value.strip()
        if value and value not in target:
            target.append(value)


def parse_response(text: Optional[str]) -> ParsedResponse:
    """Parses model output into files, packages, commands, structure, explanation and template."""
    text = text or ''
    files: Dict[str, FileCandidate] = {}

    for candidate in extract_tagged_files(text):
        if should_replace(files.get(candidate.path), candidate):
            files[candidate.path] = candidate

    for extractor in (extract_fenced_path_files, extract_generated_files_listing, extract_commented_fences):
        for candidate in extractor(text):
            if candidate.path not in files:
                files[candidate.path] = candidate

    packages: List[str] = []
    for candidate in files.values():
        _append_unique(packages, extract_packages(candidate.content))
    _append_unique(packages, PACKAGE_RE.findall(text))
    block = PACKAGES_BLOCK_RE.search(text)
    if block:
        _append_unique(packages, re.split(r'[\n,]+', block.group(1)))

    structure = STRUCTURE_RE.search(text)
    explanation = EXPLANATION_RE.search(text)
    template = TEMPLATE_RE.search(text)

    parsed = ParsedResponse(
        files=[ProjectFile(path=c.path, content=c.content) for c in files.values()],
        packages=packages,
        commands=[c.strip() for c in COMMAND_RE.findall(text) if c.strip()],
        structure=structure.group(1).strip() if structure else None,
        explanation=explanation.group(1).strip() if explanation else '',
        template=template.group(1).strip() if template else '',
    )
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"Parsed response: {len(parsed.files)} files, {len(parsed.packages)} packages, {len(parsed.commands)} commands.")
    return parsed


def strip_code_fences(text: str) -> str:
    """Removes a wrapping ```lang ... ``` fence from a single-file answer."""
    cleaned = re.sub(r'^\s*```[\w-]*\s*\n', '', text or '')
    cleaned = re.sub(r'\n?```\s*$', '', cleaned)
    return cleaned.strip()
