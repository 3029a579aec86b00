# src/core/file_materializer.py
import logging
import posixpath
import re
from typing import Iterable, List, Optional, Set, Tuple

from .conversation import ExistingFilesIndex
from .progress import ProgressEmitter
from .project_models import ApplyResults, ProjectFile
from .sandbox import SandboxProvider

logger = logging.getLogger(__name__)

ROOT_CONFIG_FILES = frozenset({
    'tailwind.config.js', 'vite.config.js', 'package.json', 'package-lock.json',
    'tsconfig.json', 'postcss.config.js',
})
SCRIPT_FILE_RE = re.compile(r'\.(jsx?|tsx?)$')
SAME_DIR_CSS_IMPORT_RE = re.compile(r'''import\s+['"]\./[^'"]+\.css['"];?\s*\n?''')
OVERSIZED_SHADOW_RE = re.compile(r'shadow-(?:3xl|4xl|5xl)')


def is_root_config(path: str) -> bool:
    return posixpath.basename(path.strip()) in ROOT_CONFIG_FILES


def normalize_path(path: str, app_root: str = "/home/user/app", is_typescript: bool = False) -> str:
    """
    Maps a model-supplied path onto the project root: the app root and leading
    slashes are stripped, then anything outside `src/`, `public/`, `index.html`
    and the root config files is placed under `src/`. In TypeScript projects
    `.jsx` becomes `.tsx`.
    """
    normalized = path.strip().replace('\\', '/')
    root = app_root.rstrip('/')
    if root and normalized.startswith(root + '/'):
        normalized = normalized[len(root) + 1:]
    normalized = normalized.lstrip('/')
    while normalized.startswith('./'):
        normalized = normalized[2:]
    if not (normalized.startswith('src/') or normalized.startswith('public/')
            or normalized == 'index.html' or is_root_config(normalized)):
        normalized = f"src/{normalized}"
    if is_typescript and normalized.endswith('.jsx'):
        normalized = normalized[:-len('.jsx')] + '.tsx'
    return normalized


def normalize_repair_path(path: str, app_root: str = "/home/user/app", is_typescript: bool = True) -> str:
    """Like `normalize_path`, but extension-less component paths (`components/Foo`) get a script extension."""
    normalized = normalize_path(path, app_root, is_typescript)
    if '/components/' in f"/{normalized}" and not posixpath.splitext(normalized)[1]:
        normalized += '.tsx' if is_typescript else '.jsx'
    return normalized


def prepare_content(path: str, content: str) -> str:
    """Strips same-directory stylesheet imports from scripts and caps oversized shadow utilities in CSS."""
    if SCRIPT_FILE_RE.search(path):
        content = SAME_DIR_CSS_IMPORT_RE.sub('', content)
    if path.endswith('.css'):
        content = OVERSIZED_SHADOW_RE.sub('shadow-2xl', content)
    return content


class FileMaterializer:
    """
    Writes generated files into the sandbox with one set of rules for every
    phase: normalize, adjust content, create the parent directory, write, then
    classify the write as created or updated against the existing-files index.
    """
    def __init__(self, sandbox: SandboxProvider, index: ExistingFilesIndex, emitter: ProgressEmitter,
                 app_root: str = "/home/user/app"):
        self.sandbox = sandbox
        self.index = index
        self.emitter = emitter
        self.app_root = app_root

    def normalize(self, path: str) -> str:
        return normalize_path(path, self.app_root, self.index.is_typescript_project())

    async def _ensure_parent(self, path: str) -> None:
        directory = posixpath.dirname(path)
        if not directory:
            return
        try:
            result = await self.sandbox.run_command(f"mkdir -p {directory}")
            if not result.success:
                logger.debug(f"mkdir -p {directory} reported failure: {result.stderr}")
        except Exception as e:
            # write_file creates parents itself on providers that support it.
            logger.debug(f"mkdir -p {directory} failed: {e}")

    async def write(self, path: str, content: str, results: ApplyResults, normalized: bool = False,
                    action: Optional[str] = None) -> Tuple[str, str]:
        """
        Writes one file and records it in `results`. `action` forces the
        classification ("created" for freshly planned files) instead of looking
        the path up in the index.

        Returns:
            (normalized path, "created" | "updated").
        """
        target = path if normalized else self.normalize(path)
        body = prepare_content(target, content)
        is_update = target in self.index if action is None else action == "updated"
        await self._ensure_parent(target)
        await self.sandbox.write_file(target, body)
        action = "updated" if is_update else "created"
        if is_update:
            if target not in results.files_updated:
                results.files_updated.append(target)
        else:
            if target not in results.files_created:
                results.files_created.append(target)
        self.index.add(target)
        logger.info(f"{action.capitalize()} {target} ({len(body)} chars)")
        await self.emitter.file_complete(target, action)
        return target, action

    async def materialize(self, files: Iterable[ProjectFile], results: ApplyResults,
                          skip: Optional[Set[str]] = None, allowed: Optional[Set[str]] = None) -> List[str]:
        """
        Writes a batch. Root config files are never written; paths in `skip`
        (already written this run) are ignored; when `allowed` is given, other
        paths are skipped with a warning. Per-file failures are recorded and the
        batch continues.
        """
        skip = skip or set()
        pending: List[Tuple[str, ProjectFile]] = []
        for file in files:
            if is_root_config(file.path):
                logger.info(f"Skipping root config file from model output: {file.path}")
                continue
            target = self.normalize(file.path)
            if target in skip:
                continue
            if allowed is not None and target not in allowed:
                logger.warning(f"Skipping {target}: not one of the files selected for this edit.")
                await self.emitter.warning(f"Skipped {target}: outside the selected edit scope")
                continue
            pending.append((target, file))

        written: List[str] = []
        for i, (target, file) in enumerate(pending, start=1):
            await self.emitter.file_progress(i, len(pending), target, 'updating' if target in self.index else 'creating')
            try:
                path, _ = await self.write(target, file.content, results, normalized=True)
                written.append(path)
            except Exception as e:
                logger.error(f"Failed to write {target}: {e}")
                results.errors.append(f"Failed to create {file.path}: {e}")
                await self.emitter.file_error(file.path, str(e))
        return written
