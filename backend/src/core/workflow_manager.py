# src/core/workflow_manager.py
import logging
import re
import time
from typing import Dict, List, Optional, Tuple

from .build_repair import BuildRepairLoop, combined_output
from .code_search import execute_search_plan, format_search_results_for_ai, plan_search, select_target_file
from .config_manager import FrameworkPrompts, PipelineSettings
from .conversation import ConversationSession
from .edit_context_selector import EditContextSelector
from .exceptions import VisualEditRejectedError, WorkflowError
from .file_manifest import FRAMEWORK_PACKAGES, STYLE_EXTENSIONS, SCRIPT_EXTENSIONS, build_file_manifest, extract_packages
from .file_materializer import FileMaterializer
from .llm_client import ChatMessage
from .memory_manager import ChatPersistence
from .progress import ProgressCallback, ProgressEmitter
from .project_models import (
    ApplyCodeStreamInput, ApplyResult, ApplyResults, ComponentResult, EditContext, EditRecord, EditType,
    FileManifest, ParsedResponse, SelectedElement, StreamContext,
)
from .response_parser import parse_response, strip_code_fences
from .sandbox import SandboxProvider
from .sandbox_registry import ProviderFactory, SandboxManager, ensure_provider_for_sandbox
from .visual_edit import VisualEditEngine

logger = logging.getLogger(__name__)

# --- Constants ---
COMPONENT_IMPORT_RE = re.compile(r'''import\s+(?:{[^}]+}|(\w+))\s+from\s+['"](\.[^'"]+)['"];?''', re.MULTILINE)
NON_CRITICAL_ERROR_MARKERS = ("Package installation failed", "Failed to execute", "timeout")
SCOPED_EDIT_TYPES = frozenset({EditType.UPDATE_STYLE, EditType.UPDATE_COMPONENT, EditType.FIX_ISSUE})
DUPLICATE_PROMPT_ERROR = "Duplicate prompt detected - generation skipped to prevent regeneration"
THINKING_UNAVAILABLE = "Thinking phase unavailable - proceeding with direct implementation."
COMPONENT_PREVIEW_CHARS = 500
SCRAPED_PREVIEW_CHARS = 1000
BUILD_CHECK_COMMAND = "npx --yes vite build"
TYPECHECK_COMMAND = "npx --yes tsc --noEmit"


def fill_placeholders(text: str, **values: str) -> str:
    """Substitutes `{{ NAME }}` placeholders; unknown placeholders are left untouched."""
    for name, value in values.items():
        text = re.sub(r'\{\{\s*' + re.escape(name) + r'\s*\}\}', lambda _m: value, text)
    return text


def extract_component_imports(app_content: str) -> List[Tuple[str, str]]:
    """
    Default imports from `./` paths in the root component, in declaration order,
    as (component name, project path). Paths without an extension get `.tsx`.
    """
    components: List[Tuple[str, str]] = []
    seen = set()
    for match in COMPONENT_IMPORT_RE.finditer(app_content):
        name, source = match.group(1), match.group(2)
        if not name or not source.startswith('./') or name in seen:
            continue
        path = source[2:]
        if '.' not in path:
            path += '.tsx'
        if not path.startswith('src/'):
            path = f"src/{path}"
        components.append((name, path))
        seen.add(name)
    return components


def is_critical_error(error: str) -> bool:
    return not any(marker in error for marker in NON_CRITICAL_ERROR_MARKERS)


def compute_success(results: ApplyResults) -> bool:
    """Any artifact changed, or no error outside the non-critical set (packages, commands, timeouts)."""
    changed = bool(results.files_created or results.files_updated or results.packages_installed)
    return changed or not any(is_critical_error(e) for e in results.errors)


class GenerationOrchestrator:
    """
    Turns one user request into file writes, package installs and a
    build-validated project inside a sandbox.

    Three modes share one entry point, `apply_code_stream`:
    - new project: thinking -> planning -> per-component generation -> full
      parse materialization -> commands -> packages -> typecheck/build -> repair;
    - targeted edit: context selection and code search -> one edit call ->
      scoped writes;
    - visual edit: resolve the selected element's file -> minimal verified edit.

    The orchestrator owns a ConversationSession, so one instance corresponds to
    one conversation. Every status update goes through the progress callback.
    """
    def __init__(self,
                 streamer,
                 prompts: FrameworkPrompts,
                 sandbox_manager: SandboxManager,
                 sandbox_factory: ProviderFactory,
                 persistence: Optional[ChatPersistence] = None,
                 settings: Optional[PipelineSettings] = None,
                 session: Optional[ConversationSession] = None,
                 selector: Optional[EditContextSelector] = None):
        self.streamer = streamer
        self.prompts = prompts
        self.sandbox_manager = sandbox_manager
        self.sandbox_factory = sandbox_factory
        self.persistence = persistence
        self.settings = settings or PipelineSettings()
        self.session = session or ConversationSession(self.settings)
        self.selector = selector or EditContextSelector()
        logger.info("GenerationOrchestrator instance created.")

    # --- Persistence helpers (never raise) ---

    def _is_duplicate_prompt(self, project_id: str, user_id: str, prompt: str) -> bool:
        if self.persistence is None:
            return False
        since = time.time() - self.settings.duplicate_window_minutes * 60
        try:
            recent = self.persistence.get_recent_user_messages(project_id, user_id, since,
                                                               self.settings.duplicate_history_limit)
        except Exception as e:
            logger.warning(f"Duplicate check failed, treating prompt as new: {e}")
            return False
        wanted = prompt.strip()
        return any(record.content.strip() == wanted for record in recent)

    def _save_chat_message(self, project_id: Optional[str], user_id: Optional[str], role: str, content: str) -> None:
        if self.persistence is None or not project_id or not user_id:
            return
        try:
            self.persistence.save_chat_message(project_id, user_id, role, content)
        except Exception as e:
            logger.warning(f"Failed to persist {role} message for project {project_id}: {e}")

    # --- Model helpers ---

    async def _complete(self, model: str, messages: List[ChatMessage], temperature: Optional[float] = None,
                        max_tokens: Optional[int] = None) -> str:
        text = await self.streamer.complete_text(model, messages, temperature=temperature, max_tokens=max_tokens)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Model {model} returned {len(text)} chars.")
        return text

    async def perform_thinking_phase(self, prompt: str, model: str, is_edit: bool = False) -> Tuple[str, str]:
        """
        Asks for a structured implementation plan and prepends it to the request.

        Returns:
            (analysis, enhanced prompt). Never raises: on failure the analysis is a
            fixed notice and the prompt is returned unchanged.
        """
        if is_edit:
            user_prompt = (f"The user wants to modify an existing application with this request: \"{prompt}\"\n\n"
                           "Analyze what changes are needed and provide a focused implementation plan for the modifications.")
        else:
            user_prompt = (f"The user wants to create a new application with this request: \"{prompt}\"\n\n"
                           "Analyze the requirements and provide a comprehensive implementation plan for building this from scratch.")
        try:
            analysis = await self._complete(model, [self.prompts.system_thinking, {"role": "user", "content": user_prompt}],
                                            temperature=self.settings.thinking_temperature,
                                            max_tokens=self.settings.thinking_max_tokens)
        except Exception as e:
            logger.warning(f"Thinking phase failed: {e}")
            return THINKING_UNAVAILABLE, prompt
        enhanced = f"{analysis}\n\n---\n\nBased on the analysis above, implement the following user request:\n\n{prompt}"
        logger.info(f"Thinking phase produced {len(analysis)} chars of analysis.")
        return analysis, enhanced

    # --- Sandbox helpers ---

    async def _seed_existing_files(self, sandbox: SandboxProvider, materializer: FileMaterializer) -> None:
        try:
            paths = await sandbox.list_files()
        except Exception as e:
            logger.warning(f"Failed to seed existing files from the sandbox: {e}")
            return
        self.session.existing_files.reset(materializer.normalize(p) for p in paths)
        logger.debug(f"Existing files index holds {len(self.session.existing_files)} path(s).")

    async def _read_project_sources(self, sandbox: SandboxProvider) -> Dict[str, str]:
        files: Dict[str, str] = {}
        try:
            paths = await sandbox.list_files()
        except Exception as e:
            logger.warning(f"Could not list sandbox files: {e}")
            return files
        for path in paths:
            if not path.endswith(SCRIPT_EXTENSIONS + STYLE_EXTENSIONS) or 'node_modules/' in path:
                continue
            try:
                files[path] = await sandbox.read_file(path)
            except Exception as e:
                logger.debug(f"Skipping unreadable file {path}: {e}")
        return files

    async def _load_manifest(self, context: Optional[StreamContext], sandbox: SandboxProvider) -> Optional[FileManifest]:
        """Manifest for edit mode: caller context, then the persisted cache, then built from the sandbox."""
        if context and context.manifest and context.manifest.files:
            return context.manifest
        project_id = context.project_id if context else None
        if project_id and self.persistence is not None:
            try:
                cached = self.persistence.get_file_manifest(project_id)
            except Exception as e:
                logger.warning(f"Could not read cached manifest for project {project_id}: {e}")
                cached = None
            if cached is not None and cached.files:
                return cached
        files = await self._read_project_sources(sandbox)
        if not files:
            return None
        logger.info(f"Built file manifest from {len(files)} sandbox file(s).")
        return build_file_manifest(files)

    async def _refresh_manifest_cache(self, project_id: Optional[str], sandbox: SandboxProvider) -> None:
        save = getattr(self.persistence, 'save_file_manifest', None)
        if not project_id or save is None:
            return
        try:
            files = await self._read_project_sources(sandbox)
            if files:
                save(project_id, build_file_manifest(files))
        except Exception as e:
            logger.warning(f"Could not refresh the cached manifest for project {project_id}: {e}")

    # --- Prompt assembly ---

    def _generation_system_prompt(self) -> str:
        return fill_placeholders(self.prompts.system_generation['content'],
                                 CONVERSATION_CONTEXT=self.session.build_context_prompt())

    @staticmethod
    def _build_full_prompt(final_prompt: str, context: Optional[StreamContext]) -> str:
        if context is None:
            return final_prompt
        parts: List[str] = []
        if context.sandbox_id:
            parts.append(f"Current sandbox ID: {context.sandbox_id}")
        if context.structure:
            parts.append(f"Current file structure:\n{context.structure}")
        if context.current_files:
            parts.append("\nEXISTING APPLICATION - DO NOT REGENERATE FROM SCRATCH")
            parts.append("Current project files (modify these, do not recreate):")
            for path, content in context.current_files.items():
                parts.append(f"\n<file path=\"{path}\">\n{content}\n</file>")
        conversation = context.conversation_context
        if conversation:
            if conversation.scraped_websites:
                parts.append("\nScraped Websites in Context:")
                for site in conversation.scraped_websites:
                    parts.append(f"\nURL: {site.url}")
                    parts.append(f"Scraped: {time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(site.timestamp))}")
                    if site.content:
                        preview = site.content if isinstance(site.content, str) else repr(site.content)
                        parts.append(f"Content Preview: {preview[:SCRAPED_PREVIEW_CHARS]}...")
            if conversation.current_project:
                parts.append(f"\nCurrent Project: {conversation.current_project}")
        if not parts:
            return final_prompt
        return "CONTEXT:\n" + "\n".join(parts) + f"\n\nUSER REQUEST:\n{final_prompt}"

    # --- Package / command / validation steps ---

    async def install_packages(self, sandbox: SandboxProvider, emitter: ProgressEmitter, results: ApplyResults,
                               caller_packages: List[str], parsed_packages: List[str]) -> None:
        """
        One install batch for caller, parsed and queued packages, de-duplicated in
        that order. Failure is recorded as non-critical and generation proceeds.
        """
        combined = list(caller_packages) + list(parsed_packages) + self.session.drain_packages()
        stripped = (p.strip() for p in combined if isinstance(p, str))
        unique = [p for p in dict.fromkeys(stripped) if p and p not in FRAMEWORK_PACKAGES]
        if not unique:
            return
        await emitter.step(1, f"Installing {len(unique)} packages...", unique)
        try:
            install = await sandbox.install_packages(unique)
        except Exception as e:
            logger.error(f"Package installation raised: {e}")
            results.errors.append(f"Package installation failed: {e}")
            await emitter.warning(f"Package installation skipped ({e}). Continuing...")
            return
        if install.success:
            results.packages_installed.extend(p for p in unique if p not in results.packages_installed)
        else:
            detail = install.stderr.strip() or f"exit code {install.exit_code}"
            results.packages_failed.extend(unique)
            results.errors.append(f"Package installation failed: {detail}")
            await emitter.warning(f"Package installation skipped ({detail}). Continuing...")
        await emitter.emit('package-progress', message=install.stdout, installedPackages=list(results.packages_installed))

    async def run_commands(self, sandbox: SandboxProvider, emitter: ProgressEmitter, results: ApplyResults,
                           commands: List[str]) -> None:
        if not commands:
            return
        await emitter.step(3, f"Executing {len(commands)} commands...")
        for i, cmd in enumerate(commands, start=1):
            try:
                await emitter.emit('command-progress', current=i, total=len(commands), command=cmd, action='executing')
                result = await sandbox.run_command(cmd)
                if result.stdout:
                    await emitter.emit('command-output', command=cmd, output=result.stdout, stream='stdout')
                if result.stderr:
                    await emitter.emit('command-output', command=cmd, output=result.stderr, stream='stderr')
                results.commands_executed.append(cmd)
                await emitter.emit('command-complete', command=cmd, exitCode=result.exit_code, success=result.exit_code == 0)
            except Exception as e:
                logger.warning(f"Command '{cmd}' failed: {e}")
                results.errors.append(f"Failed to execute {cmd}: {e}")
                await emitter.emit('command-error', command=cmd, error=str(e))

    async def validate_project(self, sandbox: SandboxProvider, emitter: ProgressEmitter, results: ApplyResults) -> None:
        """Typecheck (TypeScript projects only) and build. Failures are recorded, never raised."""
        try:
            if self.session.existing_files.is_typescript_project():
                await emitter.step(4, 'Type checking project...')
                typecheck = await sandbox.run_command(TYPECHECK_COMMAND)
                if typecheck.exit_code != 0:
                    results.errors.append("Typecheck failed")
                    for stream, output in (("stdout", typecheck.stdout), ("stderr", typecheck.stderr)):
                        if output:
                            await emitter.emit('command-output', command='tsc', output=output, stream=stream)
                    await emitter.warning('Type errors detected. Fixing may be required.')

            await emitter.step(5, 'Building project...')
            build = await sandbox.run_command("npm run build")
            if build.exit_code != 0:
                build = await sandbox.run_command(BUILD_CHECK_COMMAND)
            for stream, output in (("stdout", build.stdout), ("stderr", build.stderr)):
                if output:
                    await emitter.emit('command-output', command='build', output=output, stream=stream)
            if build.exit_code != 0:
                results.errors.append("Build failed")
                await emitter.warning('Build failed. Preview may not reflect changes until issues are fixed.')
        except Exception as e:
            logger.warning(f"Validation step failed: {e}")
            results.errors.append(f"Validation step failed: {e}")
            await emitter.warning('Validation step encountered an error.')

    # --- Component generation ---

    async def generate_component(self, name: str, path: str, app_content: str, generated: Dict[str, str],
                                 prompt: str, model: str) -> ComponentResult:
        """
        Generates one component with the root component and earlier components as
        context. Oversized output triggers one re-ask for a more modular version,
        kept only if it is shorter yet still substantial.
        """
        context = f"You are generating a React component named \"{name}\".\n\n"
        context += f"User's Original Request: {prompt}\n\n"
        context += f"App.tsx content:\n```tsx\n{app_content}\n```\n\n"
        if generated:
            context += "Already generated components:\n"
            for other, content in generated.items():
                context += f"\n{other}.tsx:\n```tsx\n{content[:COMPONENT_PREVIEW_CHARS]}...\n```\n"
        instruction = fill_placeholders(self.prompts.system_component['content'], COMPONENT_NAME=name)

        async def ask(user_prompt: str) -> str:
            raw = await self._complete(model, [{"role": "system", "content": context}, {"role": "user", "content": user_prompt}],
                                       temperature=self.settings.generation_temperature,
                                       max_tokens=self.settings.component_max_tokens)
            return strip_code_fences(raw)

        try:
            code = await ask(instruction)
            line_count = len(code.split('\n'))
            if line_count > self.settings.component_soft_line_limit:
                logger.info(f"Component {name} is {line_count} lines (over the {self.settings.component_soft_line_limit} line guideline).")
            if line_count > self.settings.component_hard_line_limit:
                note = (f"\n\nNOTE: The component is {line_count} lines. If possible, consider extracting some logic into "
                        "helper functions to improve readability, but maintain full functionality.")
                try:
                    optimized = await ask(instruction + note)
                    new_count = len(optimized.split('\n'))
                    if self.settings.component_min_optimized_lines < new_count < line_count:
                        logger.info(f"Optimized {name} from {line_count} to {new_count} lines.")
                        code = optimized
                    else:
                        logger.info(f"Keeping original {name} ({line_count} lines); the re-ask did not improve it.")
                except Exception as e:
                    logger.warning(f"Re-ask for a smaller {name} failed, keeping the original: {e}")
            return ComponentResult(success=True, content=code, file_path=path)
        except Exception as e:
            logger.error(f"Component generation for {name} failed: {e}")
            return ComponentResult(success=False, error=str(e))

    async def _build_check(self, sandbox: SandboxProvider) -> Tuple[bool, str]:
        result = await sandbox.run_command(BUILD_CHECK_COMMAND)
        return result.exit_code == 0, combined_output(result)

    async def _write_component_with_check(self, sandbox: SandboxProvider, materializer: FileMaterializer,
                                          results: ApplyResults, name: str, component: ComponentResult,
                                          app_content: str, generated: Dict[str, str], prompt: str, model: str) -> str:
        """
        Writes a generated component, then builds. On failure the component is
        regenerated once with the error appended; the fix is kept only when it
        builds or yields less error output, otherwise the original is restored.
        """
        path, _ = await materializer.write(component.file_path, component.content, results, normalized=True, action="created")
        generated[name] = component.content
        self.session.queue_packages(extract_packages(component.content))
        try:
            ok, error_output = await self._build_check(sandbox)
            if ok:
                return path
            logger.warning(f"Component {name} has build errors, attempting one fix.")
            fix = await self.generate_component(name, path, app_content, generated,
                                                f"{prompt}\n\nPrevious attempt had errors:\n{error_output}", model)
            if not (fix.success and fix.content):
                return path
            await materializer.write(path, fix.content, results, normalized=True, action="created")
            fixed_ok, fixed_output = await self._build_check(sandbox)
            if fixed_ok or len(fixed_output) < len(error_output):
                generated[name] = fix.content
                self.session.queue_packages(extract_packages(fix.content))
                logger.info(f"Kept regenerated {name}.")
            else:
                await materializer.write(path, component.content, results, normalized=True, action="created")
                logger.info(f"Regenerated {name} was no better; restored the original.")
        except Exception as e:
            logger.warning(f"Build check for {name} failed: {e}")
            await materializer.emitter.warning(f"Build check for {name} skipped: {e}")
        return path

    # --- Entry point ---

    async def apply_code_stream(self, request: ApplyCodeStreamInput,
                                on_progress: Optional[ProgressCallback] = None) -> ApplyResult:
        """
        Runs one generation, edit or visual edit.

        Returns:
            ApplyResult. Provider and sandbox failures become a failed result.

        Raises:
            WorkflowError: If the planning call itself fails.
        """
        emitter = ProgressEmitter(on_progress)
        context = request.context
        prompt = request.prompt
        model = request.model
        is_edit = request.is_edit
        project_id = context.project_id if context else None
        user_id = context.user_id if context else None
        selected_element = context.selected_element if context else None
        logger.info(f"apply_code_stream: model={model}, is_edit={is_edit}, visual={selected_element is not None}, "
                    f"sandbox_id={request.sandbox_id}")

        if project_id and user_id and not is_edit:
            if self._is_duplicate_prompt(project_id, user_id, prompt):
                logger.info("Duplicate prompt detected, skipping generation.")
                await emitter.warning('This prompt was recently processed. Skipping to prevent duplicate generation.')
                return ApplyResult(
                    success=False,
                    results=ApplyResults(errors=[DUPLICATE_PROMPT_ERROR]),
                    explanation="Duplicate prompt detected",
                    message="Generation skipped - duplicate prompt detected",
                    skipped=True,
                )
        self._save_chat_message(project_id, user_id, "user", prompt)

        final_prompt = prompt
        thinking_analysis = ""
        if selected_element is not None:
            await emitter.start('Preparing visual edit...', total_steps=3)
        elif not is_edit:
            await emitter.start('Analyzing requirements...', total_steps=6)
            if self.settings.thinking_enabled and self.prompts.system_thinking:
                thinking_analysis, final_prompt = await self.perform_thinking_phase(prompt, model, is_edit)
                if thinking_analysis == THINKING_UNAVAILABLE:
                    await emitter.warning('Analysis phase skipped, proceeding with implementation...')
                else:
                    await emitter.step(1, 'Analysis complete, planning implementation...')
        else:
            await emitter.start('Initializing AI...', total_steps=6)

        self.session.add_message("user", prompt, sandbox_id=context.sandbox_id if context else None)

        results = ApplyResults()
        try:
            sandbox = await ensure_provider_for_sandbox(self.sandbox_manager, self.sandbox_factory,
                                                        request.sandbox_id or (context.sandbox_id if context else None))
        except Exception as e:
            logger.error(f"Sandbox unavailable: {e}")
            results.errors.append(f"Sandbox unavailable: {e}")
            await emitter.error(f"Sandbox unavailable: {e}")
            return ApplyResult(success=False, results=results, explanation="Sandbox unavailable",
                               message="Sandbox unavailable")

        materializer = FileMaterializer(sandbox, self.session.existing_files, emitter, self.settings.app_root)
        await self._seed_existing_files(sandbox, materializer)

        if selected_element is not None:
            return await self._run_visual_edit(sandbox, emitter, results, selected_element, context, prompt, model,
                                               project_id, user_id)
        if is_edit:
            return await self._run_edit(sandbox, materializer, emitter, results, request, project_id, user_id)
        return await self._run_generation(sandbox, materializer, emitter, results, request, final_prompt,
                                          thinking_analysis, project_id, user_id)

    # --- Visual edit path ---

    @staticmethod
    async def _visual_edit_failure(emitter: ProgressEmitter, results: ApplyResults, error: Exception) -> ApplyResult:
        results.errors.append(f"Visual edit failed: {error}")
        await emitter.error(f"Visual edit failed: {error}")
        return ApplyResult(success=False, results=results, explanation=f"Visual edit failed: {error}",
                           message="Visual edit failed")

    async def _run_visual_edit(self, sandbox: SandboxProvider, emitter: ProgressEmitter, results: ApplyResults,
                               element: SelectedElement, context: StreamContext, prompt: str, model: str,
                               project_id: Optional[str], user_id: Optional[str]) -> ApplyResult:
        await emitter.step(1, f"Locating the selected {element.element_type} element...")
        files = dict(context.current_files) if context.current_files else {}
        if not files:
            files = {p: c for p, c in (await self._read_project_sources(sandbox)).items() if p.endswith(('.tsx', '.jsx'))}
        engine = VisualEditEngine(self.streamer, self.prompts, self.settings)
        try:
            path, target_content = engine.resolve_target(element, files)
            await emitter.step(2, f"Editing {path}...")
            path, edited = await engine.apply(element, {path: target_content}, prompt, model)
            await sandbox.write_file(path, edited)
        except VisualEditRejectedError as e:
            logger.warning(f"Visual edit rejected, nothing written: {e}")
            return await self._visual_edit_failure(emitter, results, e)
        except Exception as e:
            logger.error(f"Visual edit failed: {e}")
            return await self._visual_edit_failure(emitter, results, e)

        results.files_updated.append(path)
        self.session.existing_files.add(path)
        await emitter.file_complete(path, 'updated')
        await emitter.step(3, 'Visual edit completed!')
        self.session.add_message("assistant", f"Updated {path}", edited_files=[path])
        self._save_chat_message(project_id, user_id, "assistant", f"Updated {path} - modified {element.element_type} element")
        return ApplyResult(
            success=True,
            results=results,
            explanation=f"Successfully updated the {element.element_type} element in {path}",
            parsed_files=[{"path": path, "content": edited}],
            message=f"Visual edit completed - updated {path}",
        )

    # --- Targeted edit path ---

    async def _file_contents(self, sandbox: SandboxProvider, manifest: FileManifest, paths: List[str]) -> Dict[str, str]:
        contents: Dict[str, str] = {}
        for path in paths:
            info = manifest.files.get(path)
            if info is not None and info.content:
                contents[path] = info.content
                continue
            try:
                contents[path] = await sandbox.read_file(path)
            except Exception as e:
                logger.warning(f"Could not read {path} for edit context: {e}")
        return contents

    async def _select_edit_context(self, sandbox: SandboxProvider, emitter: ProgressEmitter, prompt: str,
                                   manifest: FileManifest) -> Tuple[Optional[EditContext], str, Dict[str, str]]:
        """Returns (edit context, search-enriched edit prompt fragment, primary file contents)."""
        try:
            edit_context = self.selector.select(prompt, manifest)
        except Exception as e:
            logger.warning(f"Edit context selection failed: {e}")
            await emitter.warning(f"Error using context selector: {e}. Proceeding with general edit mode.")
            return None, "", {}
        await emitter.step(3, f"Identified edit type: {edit_context.edit_intent.description or 'Code modification'}")

        fragment = edit_context.system_prompt
        primary_contents = await self._file_contents(sandbox, manifest, edit_context.primary_files)
        await emitter.step(4, 'Searching for exact code locations...')
        try:
            plan = plan_search(edit_context.edit_intent, prompt)
            search = execute_search_plan(plan, primary_contents, prompt)
            if search.success and search.results:
                fragment += f"\n\n{format_search_results_for_ai(search.results)}"
                target = select_target_file(search.results, edit_context.edit_intent.type)
                if target is not None:
                    fragment += (f"\n\n## RECOMMENDED EDIT LOCATION\n\nFile: {target.file_path}\nLine: {target.line_number}\n"
                                 f"Reason: {target.reason}\n\n**CRITICAL**: Focus your edits around line "
                                 f"{target.line_number} in {target.file_path}")
                await emitter.step(5, f"Found {len(search.results)} precise code locations to edit")
            else:
                await emitter.warning('No specific code locations found, proceeding with file-level editing')
        except Exception as e:
            logger.warning(f"Code search failed: {e}")
            await emitter.warning('Code search failed, proceeding with file-level editing')
        return edit_context, fragment, primary_contents

    def _edit_messages(self, prompt: str, fragment: str, edit_context: Optional[EditContext],
                       primary_contents: Dict[str, str], context_contents: Dict[str, str],
                       context: Optional[StreamContext]) -> List[ChatMessage]:
        system = fill_placeholders(self.prompts.system_edit['content'], EDIT_CONTEXT=fragment)
        history = self.session.build_context_prompt()
        if history:
            system += history
        if self.prompts.edit_examples:
            system += "\n\n" + self.prompts.edit_examples['content']

        if edit_context is not None and edit_context.primary_files:
            parts = ["EXISTING APPLICATION - TARGETED EDIT MODE", "", "## FILES TO EDIT"]
            parts.extend(f"<file path=\"{p}\">\n{c}\n</file>" for p, c in primary_contents.items())
            if context_contents:
                parts += ["", "## CONTEXT FILES (reference only)"]
                parts.extend(f"<file path=\"{p}\">\n{c}\n</file>" for p, c in context_contents.items())
            parts.append('\nIMPORTANT: Only modify the files listed under "Files to Edit". '
                         'The context files are provided for reference only.')
            user = "CONTEXT:\n" + "\n".join(parts) + f"\n\nUSER REQUEST:\n{prompt}"
        else:
            user = self._build_full_prompt(prompt, context)
        return [{"role": "system", "content": system}, {"role": "user", "content": user}]

    async def _run_edit(self, sandbox: SandboxProvider, materializer: FileMaterializer, emitter: ProgressEmitter,
                        results: ApplyResults, request: ApplyCodeStreamInput,
                        project_id: Optional[str], user_id: Optional[str]) -> ApplyResult:
        prompt, model, context = request.prompt, request.model, request.context
        await emitter.step(1, 'Analyzing edit context...')

        edit_context: Optional[EditContext] = None
        fragment = ""
        primary_contents: Dict[str, str] = {}
        context_contents: Dict[str, str] = {}
        manifest = await self._load_manifest(context, sandbox)
        if manifest is not None:
            await emitter.step(2, 'Creating search plan...')
            edit_context, fragment, primary_contents = await self._select_edit_context(sandbox, emitter, prompt, manifest)
            if edit_context is not None:
                context_contents = await self._file_contents(sandbox, manifest, edit_context.context_files)
        else:
            await emitter.warning('No file manifest available for targeted edits. Proceeding with general edit mode.')

        await emitter.step(6, 'Applying targeted edits...')
        messages = self._edit_messages(prompt, fragment, edit_context, primary_contents, context_contents, context)
        try:
            raw = await self._complete(model, messages, temperature=self.settings.generation_temperature)
        except Exception as e:
            logger.error(f"Edit execution failed: {e}")
            results.errors.append(f"Edit execution failed: {e}")
            await emitter.error(f"Edit execution failed: {e}")
            return ApplyResult(success=False, results=results, explanation="Edit execution failed",
                               message="Edit execution failed")

        parsed = parse_response(raw)
        allowed = None
        if edit_context is not None and edit_context.primary_files and edit_context.edit_intent.type in SCOPED_EDIT_TYPES:
            allowed = set(edit_context.primary_files)
        written = await materializer.materialize(parsed.files, results, allowed=allowed)
        await self.install_packages(sandbox, emitter, results, request.packages, parsed.packages)

        if edit_context is not None:
            intent = edit_context.edit_intent
            outcome = "success" if written and not results.errors else ("partial" if written else "failed")
            self.session.add_edit(EditRecord(user_request=prompt, edit_type=intent.type,
                                             target_files=edit_context.primary_files,
                                             confidence=intent.confidence, outcome=outcome))
            if intent.type == EditType.ADD_FEATURE or len(written) > 3:
                self.session.add_major_change(intent.description, edit_context.primary_files)

        changed = results.files_created + results.files_updated
        explanation = parsed.explanation or "Edit completed successfully"
        message = f"Updated {len(changed)} files"
        await emitter.emit('complete', results=results.model_dump(), explanation=explanation,
                           structure=parsed.structure, message=f"Successfully updated {len(changed)} files")
        self.session.add_message("assistant", message, edited_files=changed)
        self._save_chat_message(project_id, user_id, "assistant", f"Updated {len(changed)} files: {', '.join(changed)}")
        await self._refresh_manifest_cache(project_id, sandbox)
        return ApplyResult(success=compute_success(results), results=results, explanation=explanation,
                           structure=parsed.structure, parsed_files=parsed.files, message=message)

    # --- New project path ---

    async def _plan(self, emitter: ProgressEmitter, full_prompt: str, model: str) -> str:
        system = self._generation_system_prompt() + "\n\n" + self.prompts.system_planning['content']
        try:
            return await self._complete(model, [{"role": "system", "content": system}, {"role": "user", "content": full_prompt}],
                                        temperature=self.settings.generation_temperature)
        except Exception as e:
            logger.error(f"Planning phase error: {e}")
            await emitter.error(str(e))
            raise WorkflowError(f"Planning phase failed: {e}") from e

    async def _run_generation(self, sandbox: SandboxProvider, materializer: FileMaterializer, emitter: ProgressEmitter,
                              results: ApplyResults, request: ApplyCodeStreamInput, final_prompt: str,
                              thinking_analysis: str, project_id: Optional[str], user_id: Optional[str]) -> ApplyResult:
        model = request.model
        await emitter.step(2, 'Planning application structure...')
        full_prompt = self._build_full_prompt(final_prompt, request.context)
        planning_output = await self._plan(emitter, full_prompt, model)

        planning = parse_response(planning_output)
        written: List[str] = []
        app_content = ""
        for file in planning.files:
            if 'App.' not in file.path and 'index.css' not in file.path:
                continue
            try:
                path, _ = await materializer.write(file.path, file.content, results, action="created")
                written.append(path)
                if 'App.' in path:
                    app_content = file.content
                    self.session.queue_packages(extract_packages(file.content))
            except Exception as e:
                logger.error(f"Failed to write planned file {file.path}: {e}")
                results.errors.append(f"Failed to write {file.path}: {e}")

        components = extract_component_imports(app_content)
        logger.info(f"Components to generate: {[name for name, _ in components]}")
        generated: Dict[str, str] = {}
        for name, path in components:
            await emitter.step(3, f"Generating {name} component...")
            component = await self.generate_component(name, path, app_content, generated, request.prompt, model)
            if not (component.success and component.content and component.file_path):
                results.errors.append(f"Failed to generate {name}: {component.error}")
                continue
            try:
                written.append(await self._write_component_with_check(sandbox, materializer, results, name, component,
                                                                      app_content, generated, request.prompt, model))
            except Exception as e:
                logger.error(f"Failed to write component {name}: {e}")
                results.errors.append(f"Failed to create {name}: {e}")

        full_parsed: ParsedResponse = planning
        remaining = [f for f in full_parsed.files if materializer.normalize(f.path) not in written]
        if remaining:
            await emitter.step(2, f"Processing {len(remaining)} additional files...")
        written += await materializer.materialize(full_parsed.files, results, skip=set(written))

        await self.install_packages(sandbox, emitter, results, request.packages, full_parsed.packages)
        await self.run_commands(sandbox, emitter, results, full_parsed.commands)
        await self.validate_project(sandbox, emitter, results)

        repair = BuildRepairLoop(sandbox, self.streamer, self.prompts, materializer, emitter, model,
                                 settings=self.settings, package_queue=self.session.pending_packages)
        try:
            outcome = await repair.run(results)
            logger.info(f"Build/repair finished: {outcome.status.value} after {outcome.rounds} round(s).")
        except Exception as e:
            logger.warning(f"Build/repair loop aborted: {e}")
            results.errors.append(f"Build repair failed: {e}")
            await emitter.warning(f"Build repair skipped: {e}")

        await emitter.emit('complete', results=results.model_dump(), explanation=full_parsed.explanation,
                           structure=full_parsed.structure,
                           message=f"Successfully applied {len(results.files_created)} files")
        success = compute_success(results)
        logger.info(f"Completion: created={len(results.files_created)}, updated={len(results.files_updated)}, "
                    f"installed={len(results.packages_installed)}, errors={len(results.errors)}, success={success}")

        summary = f"Generated {len(results.files_created)} files: {', '.join(results.files_created)}"
        if results.errors:
            summary += f". Warnings: {', '.join(results.errors)}"
        self.session.add_message("assistant", summary, edited_files=results.files_created + results.files_updated)
        self._save_chat_message(project_id, user_id, "assistant", summary)
        await self._refresh_manifest_cache(project_id, sandbox)

        return ApplyResult(
            success=success,
            results=results,
            explanation=full_parsed.explanation,
            structure=full_parsed.structure,
            parsed_files=full_parsed.files,
            message=f"Applied {len(results.files_created)} files{' with warnings' if results.errors else ''}",
            thinking_analysis=thinking_analysis or None,
        )
