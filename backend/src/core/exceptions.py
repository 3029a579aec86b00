# src/core/exceptions.py
from typing import Optional

class CoreError(Exception):
    """Base exception for all custom errors raised within the pipeline core modules."""
    pass

class AgentError(CoreError):
    """
    Raised by the provider layer when a language model cannot be resolved or
    reached, e.g. an unknown `provider/` prefix or a missing API key.
    """
    pass

class WorkflowError(CoreError):
    """Base exception for errors originating from the generation orchestrator."""
    pass

class SandboxError(CoreError):
    """
    Raised by the sandbox registry or a sandbox provider when a sandbox cannot be
    created, reconnected to, or is no longer alive.
    """
    pass

# Specific LLM client exceptions (RateLimitError, AuthenticationError) are in llm_client.py
class BlockedCommandException(Exception):
    """
    Raised by the CommandExecutor when a command is refused by the allow-list.

    The orchestrator treats this like any other command failure: it is recorded
    as a non-critical error and generation continues.
    """
    def __init__(self, original_command: str, description: str):
        self.original_command = original_command
        self.description = description
        message = f"Command '{original_command}' was blocked: {description}"
        super().__init__(message)

class CommandExecutionError(RuntimeError):
    """
    Raised when a sandbox command cannot be executed at all (missing binary,
    timeout, sandbox gone). A command that runs and exits non-zero is reported
    through `CommandResult` instead.

    The exception carries the complete context of the failure, including its
    output streams and exit code, so callers can surface it as a progress event.
    """
    def __init__(self, message: str, stdout: Optional[str] = None, stderr: Optional[str] = None, exit_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code

class VisualEditRejectedError(CoreError):
    """
    Raised by the VisualEditEngine when the target component cannot be identified
    or when a proposed edit fails post-edit validation. Nothing is written to the
    sandbox when this is raised.
    """
    pass
