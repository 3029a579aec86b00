# backend/src/main.py
import argparse
import asyncio
import json
import logging
import platform
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    from .core.config_manager import ConfigManager
    from .core.exceptions import CoreError
    from .core.local_sandbox import LocalSandbox
    from .core.memory_manager import JsonlChatStore
    from .core.project_models import ApplyCodeStreamInput, ConversationContext, StreamContext
    from .core.provider_registry import ProviderRegistry
    from .core.sandbox_registry import SandboxManager
    from .core.workflow_manager import GenerationOrchestrator
except ImportError as e_initial:
    print(f"Failed to import core components: {e_initial}", file=sys.stderr)
    print("\nThis script should be run as a module from the 'backend' directory.", file=sys.stderr)
    print("Example: python -m src.main \"build a todo app\"", file=sys.stderr)
    sys.exit(1)


# --- Logging Configuration ---
# Logs go to stderr; stdout carries one JSON progress event per line.
LOG_LEVEL = logging.INFO
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] - %(message)s'

# Client libraries log every request at INFO.
NOISY_LOGGERS = ('httpx', 'openai', 'urllib3')

logger = logging.getLogger(__name__)


def configure_logging(level: int = LOG_LEVEL) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="webforge",
        description="Generate or edit a React + Vite application from a natural-language request.",
    )
    parser.add_argument("prompt", help="What to build, or what to change when --edit is given.")
    parser.add_argument("--project-dir", type=Path, default=None,
                        help="Project directory to work in. Existing directories are edited in place.")
    parser.add_argument("--workspace", type=Path, default=Path.cwd() / ".sandboxes",
                        help="Directory holding throwaway sandboxes when --project-dir is not given.")
    parser.add_argument("--model", default=None, help="Prefixed model id, e.g. openai/gpt-4o or anthropic/claude-3-5-sonnet.")
    parser.add_argument("--edit", action="store_true", help="Apply a targeted edit to the existing project.")
    parser.add_argument("--package", dest="packages", action="append", default=[],
                        help="Extra npm package to install (repeatable).")
    parser.add_argument("--settings", type=Path, default=None, help="Optional JSON file with pipeline settings.")
    parser.add_argument("--project-id", default=None, help="Project id for chat history and duplicate detection.")
    parser.add_argument("--user-id", default="local", help="User id for chat history.")
    parser.add_argument("--history-dir", type=Path, default=None,
                        help="Directory for persisted chat history (enables duplicate-prompt detection).")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser


def print_event(event: Dict[str, Any]) -> None:
    print(json.dumps(event, default=str), flush=True)


async def run(args: argparse.Namespace) -> int:
    settings = ConfigManager.load_pipeline_settings(args.settings)
    config_manager = ConfigManager()
    prompts = config_manager.load_prompts(settings.framework)
    registry = ProviderRegistry(config_manager)

    project_dir: Optional[Path] = args.project_dir.resolve() if args.project_dir else None
    workspace = project_dir.parent if project_dir else args.workspace.resolve()

    def sandbox_factory() -> LocalSandbox:
        return LocalSandbox(workspace, app_root=settings.app_root,
                            command_timeout=settings.command_timeout_seconds, project_dir=project_dir)

    # An existing directory is reconnected, never re-scaffolded.
    sandbox_id = project_dir.name if project_dir and project_dir.is_dir() and any(project_dir.iterdir()) else None

    manager = SandboxManager(sandbox_factory, reconnect_timeout=settings.reconnect_timeout_seconds)
    persistence = JsonlChatStore(args.history_dir) if args.history_dir else None
    orchestrator = GenerationOrchestrator(registry, prompts, manager, sandbox_factory,
                                          persistence=persistence, settings=settings)

    context = StreamContext(
        sandbox_id=sandbox_id,
        user_id=args.user_id,
        conversation_context=ConversationContext(current_project=args.project_id) if args.project_id else None,
    )
    request = ApplyCodeStreamInput(
        prompt=args.prompt,
        model=args.model or settings.default_model,
        context=context,
        is_edit=args.edit,
        packages=list(args.packages),
        sandbox_id=sandbox_id,
    )
    try:
        result = await orchestrator.apply_code_stream(request, on_progress=print_event)
    finally:
        await manager.terminate_all()

    print_event({"type": "result", **result.model_dump()})
    if result.skipped:
        logger.info("Generation skipped: duplicate prompt.")
        return 0
    return 0 if result.success else 1


def main(argv: Optional[List[str]] = None) -> int:
    """
    Command-line entry point. Runs one generation or edit against a local
    sandbox and streams progress events to stdout as JSON lines.
    """
    args = build_arg_parser().parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else LOG_LEVEL)
    logger.info("=" * 60)
    logger.info("Starting code generation pipeline...")
    logger.info(f"Python Version: {sys.version}")
    logger.info(f"Platform: {platform.system()} ({platform.release()}) - {platform.machine()}")
    logger.info("=" * 60)
    try:
        return asyncio.run(run(args))
    except (CoreError, ValueError) as e:
        logger.error(f"Generation failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted by user.")
        return 130
    except Exception as e:
        logger.critical("An unhandled exception occurred during generation.", exc_info=True)
        print(f"FATAL ERROR: {e}", file=sys.stderr)
        return 1


# --- Standard Python Entry Point Check ---
if __name__ == "__main__":
    sys.exit(main())
