# src/core/build_repair.py
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .code_fixers import fix_invalid_icons, is_script, plan_missing_import_placeholders, repair_import_exports
from .config_manager import FrameworkPrompts, PipelineSettings
from .error_analyzer import (
    extract_error_paths, extract_missing_exports, extract_unresolved_imports, find_missing_imports,
    has_failure_signature, still_failing,
)
from .file_materializer import FileMaterializer, normalize_repair_path
from .file_manifest import FRAMEWORK_PACKAGES, STYLE_EXTENSIONS
from .llm_client import ChatMessage
from .progress import ProgressEmitter
from .project_models import ApplyResults, CommandResult, FixReport, RepairRoundResult
from .response_parser import parse_response
from .sandbox import SandboxProvider

logger = logging.getLogger(__name__)

BUILD_COMMAND = "npx --yes vite build"
REPAIR_STEP = 5


class RepairCycleStatus(str, Enum):
    CLEAN = "clean"            # first build passed, no repair needed
    REPAIRED = "repaired"      # a repair round produced a passing build
    UNRESOLVED = "unresolved"  # rounds exhausted with errors left
    ERROR = "error"            # the build could not even be run


@dataclass
class RepairOutcome:
    status: RepairCycleStatus
    rounds: int = 0
    preflight: List[FixReport] = field(default_factory=list)
    remaining_errors: str = ""


def combined_output(result: CommandResult) -> str:
    return "\n".join(part for part in (result.stdout, result.stderr) if part)


class BuildRepairLoop:
    """
    Validates the project by building it and drives a bounded number of
    model-guided repair rounds when the build fails.

    Order: pre-flight static fixers (icons, placeholders, import/export shapes),
    one build plus a static relative-import scan, then at most
    `settings.max_repair_rounds` repair rounds. Whatever is left afterwards is
    reported as a warning; the loop never raises for a broken build.
    """
    def __init__(self,
                 sandbox: SandboxProvider,
                 streamer,
                 prompts: FrameworkPrompts,
                 materializer: FileMaterializer,
                 emitter: ProgressEmitter,
                 model: str,
                 settings: Optional[PipelineSettings] = None,
                 package_queue: Optional[List[str]] = None):
        self.sandbox = sandbox
        self.streamer = streamer
        self.prompts = prompts
        self.materializer = materializer
        self.emitter = emitter
        self.model = model
        self.settings = settings or PipelineSettings()
        self.package_queue = package_queue if package_queue is not None else []
        self.rounds_run = 0

    @property
    def index(self):
        return self.materializer.index

    async def _snapshot(self) -> Dict[str, str]:
        """Reads every script and stylesheet under src/ as it currently is in the sandbox."""
        files: Dict[str, str] = {}
        try:
            paths = await self.sandbox.list_files()
        except Exception as e:
            logger.warning(f"Could not list sandbox files for pre-flight checks: {e}")
            paths = list(self.index)
        self.index.seed(paths)
        for path in paths:
            if not path.startswith('src/') or not (is_script(path) or path.endswith(STYLE_EXTENSIONS)):
                continue
            try:
                files[path] = await self.sandbox.read_file(path)
            except Exception as e:
                logger.debug(f"Skipping unreadable file {path}: {e}")
        return files

    # --- Pre-flight fixers ---

    async def fix_icons(self, files: Dict[str, str], results: ApplyResults) -> FixReport:
        report = FixReport()
        for path, content in list(files.items()):
            if not is_script(path):
                continue
            updated, invalid = fix_invalid_icons(content)
            if not invalid:
                continue
            await self.materializer.write(path, updated, results, normalized=True)
            files[path] = updated
            report.fixes += len(invalid)
            report.invalid_icons.extend(i for i in invalid if i not in report.invalid_icons)
            report.notes.append(f"{path}: replaced {', '.join(invalid)}")
        if report.fixes:
            logger.info(f"Replaced {report.fixes} invalid lucide-react icon reference(s).")
            await self.emitter.warning(f"Auto-fixed {report.fixes} invalid lucide-react icons")
        return report

    async def fill_missing_imports(self, files: Dict[str, str], results: ApplyResults) -> FixReport:
        report = FixReport()
        planned = plan_missing_import_placeholders(files, self.index, self.index.is_typescript_project())
        for path, content in planned.items():
            await self.materializer.write(path, content, results, normalized=True)
            files[path] = content
            report.fixes += 1
            report.created_files.append(path)
        if report.fixes:
            await self.emitter.warning(f"Created {report.fixes} placeholder file(s) for unresolved imports")
        return report

    async def repair_exports(self, files: Dict[str, str], results: ApplyResults) -> FixReport:
        changed, report = repair_import_exports(files)
        for path, content in changed.items():
            await self.materializer.write(path, content, results, normalized=True)
            files[path] = content
        if report.fixes:
            logger.info(f"Import/export repair: {'; '.join(report.notes)}")
            await self.emitter.warning(f"Auto-fixed {report.fixes} import/export mismatches")
        return report

    async def run_preflight(self, results: ApplyResults) -> List[FixReport]:
        """Runs the static fixers in order. Each one is best-effort: a failure is reported and skipped."""
        files = await self._snapshot()
        reports: List[FixReport] = []
        for name, fixer in (("icon validation", self.fix_icons),
                            ("missing import placeholders", self.fill_missing_imports),
                            ("import/export repair", self.repair_exports)):
            try:
                reports.append(await fixer(files, results))
            except Exception as e:
                logger.warning(f"Pre-flight {name} failed: {e}", exc_info=True)
                await self.emitter.warning(f"Pre-flight {name} skipped: {e}")
        return reports

    # --- Build ---

    async def build(self) -> CommandResult:
        result = await self.sandbox.run_command(BUILD_COMMAND)
        for stream, output in (("stdout", result.stdout), ("stderr", result.stderr)):
            if output:
                await self.emitter.emit('command-output', command='build', output=output, stream=stream)
        return result

    # --- Repair ---

    def build_repair_messages(self, error_output: str, context_files: Dict[str, str]) -> List[ChatMessage]:
        parts = ["BUILD/TYPE ERRORS:", "```log", error_output[:self.settings.repair_error_char_limit], "```"]

        missing_imports = extract_unresolved_imports(error_output)
        if missing_imports:
            parts.append("\nMISSING IMPORTS DETECTED:")
            parts.extend(f"- {imp}" for imp in missing_imports)
            parts.append("\nThese files need to be CREATED.")

        invalid_icons = extract_missing_exports(error_output)
        if invalid_icons:
            parts.append("\nINVALID LUCIDE-REACT ICONS DETECTED:")
            parts.extend(f"- \"{icon}\" does not exist in lucide-react" for icon in invalid_icons)
            parts.append("\nYou MUST replace these with valid lucide-react icons.")

        if context_files:
            parts.append("\nEXISTING FILES WITH ERRORS:")
            parts.extend(f"<file path=\"{path}\">\n{content}\n</file>" for path, content in context_files.items())

        return [self.prompts.system_repair, {"role": "user", "content": "\n".join(parts)}]

    async def _install_requested_packages(self, packages: List[str], results: ApplyResults) -> None:
        wanted = [p for p in dict.fromkeys(packages)
                  if p.strip() and p not in FRAMEWORK_PACKAGES and p not in results.packages_installed]
        if not wanted:
            return
        try:
            install = await self.sandbox.install_packages(wanted)
        except Exception as e:
            install = CommandResult(success=False, exit_code=1, stderr=str(e))
        if install.success:
            results.packages_installed.extend(wanted)
            await self.emitter.emit('package-progress', message=install.stdout, installedPackages=wanted)
        else:
            self.package_queue.extend(p for p in wanted if p not in self.package_queue)
            results.errors.append(f"Package installation failed: {install.stderr.strip() or 'exit code ' + str(install.exit_code)}")
            await self.emitter.warning(f"Could not install {', '.join(wanted)} during repair. Continuing...")

    async def run_repair_round(self, error_output: str, results: ApplyResults) -> RepairRoundResult:
        """
        One repair round: gather the files the build log implicates, ask the
        model for corrected or newly created files, write them and rebuild.
        """
        context_files: Dict[str, str] = {}
        for rel in extract_error_paths(error_output, self.settings.app_root):
            try:
                context_files[rel] = await self.sandbox.read_file(rel)
            except Exception:
                logger.debug(f"File implicated by build output is not readable: {rel}")

        messages = self.build_repair_messages(error_output, context_files)
        await self.emitter.step(REPAIR_STEP, 'LLM fixing build errors...')
        try:
            llm_text = await self.streamer.complete_text(self.model, messages, max_tokens=self.settings.repair_max_tokens)
        except Exception as e:
            logger.error(f"Repair model call failed: {e}")
            results.errors.append(f"LLM repair failed: {e}")
            return RepairRoundResult(success=False)

        parsed = parse_response(llm_text)
        typescript = self.index.is_typescript_project()
        changed: List[str] = []
        for file in parsed.files:
            try:
                target = normalize_repair_path(file.path, self.settings.app_root, typescript)
                path, _ = await self.materializer.write(target, file.content, results, normalized=True)
                changed.append(path)
            except Exception as e:
                logger.error(f"Failed to write repaired file {file.path}: {e}")
                results.errors.append(f"Failed to write repair {file.path}: {e}")

        if parsed.packages:
            await self._install_requested_packages(parsed.packages, results)

        rebuild = await self.build()
        output = combined_output(rebuild)
        success = not still_failing(rebuild.success, output)
        if not success:
            results.errors.append("Build still failing after LLM repair")
        logger.info(f"Repair round changed {len(changed)} file(s); rebuild {'passed' if success else 'failed'}.")
        return RepairRoundResult(changed_files=changed, success=success, stdout=rebuild.stdout, stderr=rebuild.stderr)

    async def run(self, results: ApplyResults) -> RepairOutcome:
        """Pre-flight, build, and repair until the build passes or the round budget is spent."""
        outcome = RepairOutcome(status=RepairCycleStatus.CLEAN)
        outcome.preflight = await self.run_preflight(results)

        try:
            first = await self.build()
        except Exception as e:
            logger.error(f"Build validation could not run: {e}")
            results.errors.append(f"Build validation failed: {e}")
            outcome.status = RepairCycleStatus.ERROR
            return outcome

        error_output = combined_output(first)
        files = await self._snapshot()
        missing = find_missing_imports(files, self.index)
        if missing:
            logger.warning(f"Static scan found {len(missing)} unresolved relative import(s).")
            error_output = "\n".join([error_output] + missing) if error_output else "\n".join(missing)

        if first.success and not has_failure_signature(error_output):
            logger.info("Build passed without repair.")
            return outcome

        outcome.status = RepairCycleStatus.UNRESOLVED
        for round_number in range(1, self.settings.max_repair_rounds + 1):
            logger.info(f"Build/repair round {round_number} of {self.settings.max_repair_rounds}.")
            self.rounds_run = outcome.rounds = round_number
            round_result = await self.run_repair_round(error_output, results)
            if round_result.success:
                outcome.status = RepairCycleStatus.REPAIRED
                break
            rebuilt_output = "\n".join(p for p in (round_result.stdout, round_result.stderr) if p)
            if rebuilt_output:
                error_output = rebuilt_output

        if outcome.status == RepairCycleStatus.UNRESOLVED:
            outcome.remaining_errors = error_output
            logger.warning(f"Build errors remain after {outcome.rounds} repair round(s).")
            await self.emitter.warning(f"Build errors remain after {outcome.rounds} repair round(s); "
                                       "the generated files were kept.")
        return outcome

