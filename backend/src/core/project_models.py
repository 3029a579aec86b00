# src/core/project_models.py
import logging
import time
import uuid
from enum import Enum
from typing import List, Dict, Any, Optional, Literal
from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "anthropic/claude-sonnet-4-20250514"

# --- Edit Intent ---
class EditType(str, Enum):
    """
    Classification of what kind of change a natural-language request represents.
    """
    UPDATE_COMPONENT = "UPDATE_COMPONENT"
    ADD_FEATURE = "ADD_FEATURE"
    FIX_ISSUE = "FIX_ISSUE"
    UPDATE_STYLE = "UPDATE_STYLE"
    REFACTOR = "REFACTOR"
    FULL_REBUILD = "FULL_REBUILD"
    ADD_DEPENDENCY = "ADD_DEPENDENCY"

class GenerationState(str, Enum):
    """States of the generation orchestrator. Edit and visual-edit runs use their own linear paths."""
    THINKING = "thinking"
    PLANNING = "planning"
    COMPONENT_GENERATION = "component_generation"
    FILE_WRITE = "file_write"
    PACKAGE_INSTALL = "package_install"
    BUILD_VALIDATE = "build_validate"
    REPAIR = "repair"
    EDIT_CONTEXT = "edit_context"
    EDIT_APPLY = "edit_apply"
    VISUAL_TARGET_RESOLVE = "visual_target_resolve"
    VISUAL_APPLY = "visual_apply"
    COMPLETE = "complete"

class EditIntent(BaseModel):
    """The classified intent of an edit request and the files it is expected to touch."""
    type: EditType
    description: str = ""
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    target_files: List[str] = Field(default_factory=list)
    suggested_context: List[str] = Field(default_factory=list)

    @field_validator('confidence', mode='before')
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        # Scores are summed from several cues and may overshoot.
        return max(0.0, min(float(v), 1.0))

class EditContext(BaseModel):
    """Output of the edit context selector."""
    edit_intent: EditIntent
    primary_files: List[str] = Field(default_factory=list)
    context_files: List[str] = Field(default_factory=list)
    system_prompt: str = ""

# --- Response Parser ---
class ProjectFile(BaseModel):
    path: str
    content: str

class ParsedResponse(BaseModel):
    """
    Structured artifacts extracted from a (possibly partial) model response.
    Files are unique by path; packages and commands keep first-seen order.
    """
    files: List[ProjectFile] = Field(default_factory=list)
    packages: List[str] = Field(default_factory=list)
    commands: List[str] = Field(default_factory=list)
    structure: Optional[str] = None
    explanation: str = ""
    template: str = ""

    def get_file(self, path: str) -> Optional[ProjectFile]:
        for f in self.files:
            if f.path == path:
                return f
        return None

# --- Code Search ---
class FallbackSearch(BaseModel):
    terms: List[str] = Field(default_factory=list)
    patterns: List[str] = Field(default_factory=list)

class SearchPlan(BaseModel):
    """Search terms and patterns derived deterministically from an EditIntent and the prompt."""
    edit_type: EditType
    search_terms: List[str] = Field(default_factory=list)
    regex_patterns: List[str] = Field(default_factory=list)
    file_types_to_search: List[str] = Field(default_factory=lambda: ['.tsx', '.jsx', '.ts', '.js'])
    fallback_search: FallbackSearch = Field(default_factory=FallbackSearch)

    @field_validator('search_terms')
    @classmethod
    def dedupe_terms(cls, v: List[str]) -> List[str]:
        seen: Dict[str, None] = {}
        for term in v:
            if term and term not in seen:
                seen[term] = None
        return list(seen)

class SearchHit(BaseModel):
    file_path: str
    line_number: int
    line_content: str = ""
    matched_term: str = ""
    reason: str = ""
    score: int = 1

class SearchExecutionResult(BaseModel):
    success: bool
    results: List[SearchHit] = Field(default_factory=list)
    files_searched: int = 0
    used_fallback: bool = False
    error: Optional[str] = None

# --- Visual Edit ---
class ElementBounds(BaseModel):
    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0

class SelectedElement(BaseModel):
    """Descriptor of a UI element picked in the preview. Transient, never persisted."""
    selector: str
    element_type: str
    text_content: str = ""
    bounds: ElementBounds = Field(default_factory=ElementBounds)
    component_path: Optional[str] = None
    component_name: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None

class VisualEditorContext(BaseModel):
    is_visual_edit: bool = False
    selected_element: Optional[SelectedElement] = None

# --- File Manifest ---
class ImportInfo(BaseModel):
    source: str
    default_name: Optional[str] = None
    named: List[str] = Field(default_factory=list)
    is_side_effect: bool = False

class FileInfo(BaseModel):
    path: str
    content: str = ""
    imports: List[ImportInfo] = Field(default_factory=list)
    component_name: Optional[str] = None
    is_component: bool = False
    file_type: Literal["script", "style", "config", "markup", "other"] = "other"

class FileManifest(BaseModel):
    """Path-keyed view of the project used for edit-mode file selection."""
    files: Dict[str, FileInfo] = Field(default_factory=dict)
    entry_point: str = "src/App.tsx"
    routes: List[str] = Field(default_factory=list)
    timestamp: float = Field(default_factory=time.time)

# --- Conversation State ---
class MessageMetadata(BaseModel):
    sandbox_id: Optional[str] = None
    edited_files: List[str] = Field(default_factory=list)

class ConversationMessage(BaseModel):
    id: str = Field(default_factory=lambda: f"msg-{uuid.uuid4().hex[:12]}")
    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: float = Field(default_factory=time.time)
    metadata: MessageMetadata = Field(default_factory=MessageMetadata)

class EditRecord(BaseModel):
    timestamp: float = Field(default_factory=time.time)
    user_request: str
    edit_type: EditType
    target_files: List[str] = Field(default_factory=list)
    confidence: float = 0.0
    outcome: Literal["success", "partial", "failed"] = "success"

class MajorChange(BaseModel):
    timestamp: float = Field(default_factory=time.time)
    description: str
    files_affected: List[str] = Field(default_factory=list)

class ProjectEvolution(BaseModel):
    major_changes: List[MajorChange] = Field(default_factory=list)

class UserPreferences(BaseModel):
    edit_style: Optional[Literal["targeted", "comprehensive"]] = None
    common_patterns: List[str] = Field(default_factory=list)

class ConversationState(BaseModel):
    """Advisory multi-turn context. Authoritative file state lives in the sandbox."""
    conversation_id: str = Field(default_factory=lambda: f"conv-{int(time.time() * 1000)}")
    started_at: float = Field(default_factory=time.time)
    last_updated: float = Field(default_factory=time.time)
    messages: List[ConversationMessage] = Field(default_factory=list)
    edits: List[EditRecord] = Field(default_factory=list)
    project_evolution: ProjectEvolution = Field(default_factory=ProjectEvolution)
    user_preferences: UserPreferences = Field(default_factory=UserPreferences)

# --- Orchestrator input / output ---
class ScrapedWebsite(BaseModel):
    url: str
    timestamp: float = Field(default_factory=time.time)
    content: Optional[Any] = None

class ConversationContext(BaseModel):
    current_project: Optional[str] = None
    scraped_websites: List[ScrapedWebsite] = Field(default_factory=list)

class StreamContext(BaseModel):
    """Optional caller context for a generation run."""
    sandbox_id: Optional[str] = None
    user_id: Optional[str] = None
    structure: Optional[str] = None
    current_files: Dict[str, str] = Field(default_factory=dict)
    manifest: Optional[FileManifest] = None
    conversation_context: Optional[ConversationContext] = None
    visual_editor_context: Optional[VisualEditorContext] = None

    @property
    def project_id(self) -> Optional[str]:
        return self.conversation_context.current_project if self.conversation_context else None

    @property
    def selected_element(self) -> Optional[SelectedElement]:
        """The selected element, only when the caller explicitly flagged a visual edit."""
        vec = self.visual_editor_context
        if vec and vec.is_visual_edit and vec.selected_element:
            return vec.selected_element
        return None

class ApplyCodeStreamInput(BaseModel):
    prompt: str
    model: str = DEFAULT_MODEL
    context: Optional[StreamContext] = None
    is_edit: bool = False
    packages: List[str] = Field(default_factory=list)
    sandbox_id: Optional[str] = None

    @field_validator('prompt')
    @classmethod
    def prompt_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("prompt must not be empty")
        return v

    @field_validator('packages', mode='before')
    @classmethod
    def keep_string_packages(cls, v: Any) -> List[str]:
        if not isinstance(v, list):
            return []
        return [p for p in v if isinstance(p, str)]

class ApplyResults(BaseModel):
    files_created: List[str] = Field(default_factory=list)
    files_updated: List[str] = Field(default_factory=list)
    packages_installed: List[str] = Field(default_factory=list)
    packages_already_installed: List[str] = Field(default_factory=list)
    packages_failed: List[str] = Field(default_factory=list)
    commands_executed: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

class ApplyResult(BaseModel):
    """Terminal result of one orchestrator call."""
    success: bool
    results: ApplyResults = Field(default_factory=ApplyResults)
    explanation: str = ""
    structure: Optional[str] = None
    parsed_files: List[ProjectFile] = Field(default_factory=list)
    message: str = ""
    thinking_analysis: Optional[str] = None
    skipped: bool = False

# --- Sandbox ---
class CommandResult(BaseModel):
    """Standardized result object for command executions."""
    success: bool
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    command_str: str = ""

    @model_validator(mode='after')
    def success_matches_exit_code(self) -> 'CommandResult':
        if self.exit_code != 0 and self.success:
            logger.debug(f"CommandResult for '{self.command_str}' reported success with exit code {self.exit_code}; forcing success=False.")
            self.success = False
        return self

class SandboxInfo(BaseModel):
    sandbox_id: str
    url: str = ""
    provider: str = "local"
    created_at: float = Field(default_factory=time.time)

# --- Build / Repair ---
class RepairRoundResult(BaseModel):
    changed_files: List[str] = Field(default_factory=list)
    success: bool = False
    stdout: str = ""
    stderr: str = ""

class FixReport(BaseModel):
    """Outcome of one pre-flight static fixer pass."""
    fixes: int = 0
    notes: List[str] = Field(default_factory=list)
    invalid_icons: List[str] = Field(default_factory=list)
    created_files: List[str] = Field(default_factory=list)

class ComponentResult(BaseModel):
    success: bool
    content: Optional[str] = None
    error: Optional[str] = None
    file_path: Optional[str] = None

# --- Persistence ---
class ChatRecord(BaseModel):
    project_id: str
    user_id: str
    role: Literal["user", "assistant", "system"]
    content: str
    created_at: float = Field(default_factory=time.time)

logger.debug("Pipeline model definitions loaded.")
