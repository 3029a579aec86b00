# src/core/sandbox_registry.py
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Set

from .exceptions import SandboxError
from .project_models import SandboxInfo
from .sandbox import SandboxProvider

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[], SandboxProvider]

# Seconds a sandbox may stay unused before `cleanup_inactive` terminates it.
MAX_INACTIVE_AGE = 24 * 60 * 60


@dataclass
class ManagedSandboxInfo:
    sandbox_id: str
    provider: SandboxProvider
    created_at: float = field(default_factory=time.time)
    last_accessed: float = field(default_factory=time.time)


class SandboxManager:
    """
    Keeps at most one provider handle per sandbox id and tracks the active one.

    `create_new_sandbox` is the only place new sandboxes are created;
    `get_or_reconnect_provider` never creates, it only re-attaches.
    """
    def __init__(self, factory: ProviderFactory, reconnect_timeout: float = 15.0):
        self.factory = factory
        self.reconnect_timeout = reconnect_timeout
        self.sandboxes: Dict[str, ManagedSandboxInfo] = {}
        self.active_sandbox_id: Optional[str] = None
        self._creating_projects: Set[str] = set()
        self.acquire_lock = asyncio.Lock()

    def get_provider(self, sandbox_id: str) -> Optional[SandboxProvider]:
        info = self.sandboxes.get(sandbox_id)
        if info is None:
            return None
        info.last_accessed = time.time()
        return info.provider

    def register_sandbox(self, sandbox_id: str, provider: SandboxProvider) -> None:
        """Registers a provider under its id and makes it the active sandbox."""
        existing = self.sandboxes.get(sandbox_id)
        if existing is not None and existing.provider is not provider:
            logger.warning(f"Replacing the registered provider handle for sandbox {sandbox_id}.")
        self.sandboxes[sandbox_id] = ManagedSandboxInfo(sandbox_id=sandbox_id, provider=provider)
        self.active_sandbox_id = sandbox_id
        logger.info(f"Registered sandbox {sandbox_id} (now active).")

    def set_active_sandbox(self, sandbox_id: str) -> bool:
        if sandbox_id in self.sandboxes:
            self.active_sandbox_id = sandbox_id
            return True
        return False

    def get_active_provider(self) -> Optional[SandboxProvider]:
        if not self.active_sandbox_id:
            return None
        return self.get_provider(self.active_sandbox_id)

    async def create_new_sandbox(self, project_id: Optional[str] = None) -> SandboxInfo:
        """
        Creates, registers and activates a new sandbox.

        Raises:
            SandboxError: If creation is already running for `project_id` or fails.
        """
        if project_id and project_id in self._creating_projects:
            logger.warning(f"Sandbox creation already in progress for project {project_id}")
            raise SandboxError(f"Sandbox creation already in progress for project {project_id}")

        if project_id:
            self._creating_projects.add(project_id)
        try:
            logger.info(f"Creating new sandbox{f' for project {project_id}' if project_id else ''}")
            provider = self.factory()
            info = await provider.create_sandbox()
            self.register_sandbox(info.sandbox_id, provider)
            return info
        except SandboxError:
            raise
        except Exception as e:
            logger.exception("Failed to create sandbox")
            raise SandboxError(f"Failed to create sandbox: {e}") from e
        finally:
            if project_id:
                self._creating_projects.discard(project_id)

    async def get_or_reconnect_provider(self, sandbox_id: str) -> SandboxProvider:
        """
        Returns the registered provider for `sandbox_id`, re-attaching through a
        fresh provider when it is not in memory.

        Raises:
            SandboxError: If reconnection fails, returns False or times out.
        """
        existing = self.get_provider(sandbox_id)
        if existing is not None:
            return existing

        logger.info(f"Sandbox {sandbox_id} not in memory, attempting to reconnect")
        provider = self.factory()
        try:
            reconnected = await asyncio.wait_for(provider.reconnect(sandbox_id), timeout=self.reconnect_timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Reconnection to sandbox {sandbox_id} timed out.")
            await _discard(provider)
            raise SandboxError(f"Failed to reconnect to sandbox {sandbox_id}: Sandbox reconnection timeout") from e
        except Exception as e:
            logger.error(f"Failed to reconnect to sandbox {sandbox_id}: {e}")
            await _discard(provider)
            raise SandboxError(f"Failed to reconnect to sandbox {sandbox_id}: {e}") from e
        if not reconnected:
            await _discard(provider)
            raise SandboxError(f"Failed to reconnect to sandbox {sandbox_id}: provider returned false")

        self.register_sandbox(sandbox_id, provider)
        logger.info(f"Successfully reconnected to sandbox {sandbox_id}")
        return provider

    async def terminate_sandbox(self, sandbox_id: str) -> None:
        info = self.sandboxes.pop(sandbox_id, None)
        if info is None:
            return
        try:
            await info.provider.terminate()
        except Exception as e:
            logger.error(f"Error terminating sandbox {sandbox_id}: {e}")
        if self.active_sandbox_id == sandbox_id:
            self.active_sandbox_id = None

    async def terminate_all(self) -> None:
        for sandbox_id in list(self.sandboxes):
            await self.terminate_sandbox(sandbox_id)

    async def cleanup_inactive(self, max_age: float = MAX_INACTIVE_AGE) -> int:
        """Terminates sandboxes not accessed for `max_age` seconds. Returns how many were removed."""
        now = time.time()
        stale = [sid for sid, info in self.sandboxes.items() if now - info.last_accessed > max_age]
        for sandbox_id in stale:
            logger.info(f"Terminating inactive sandbox {sandbox_id}")
            await self.terminate_sandbox(sandbox_id)
        return len(stale)


async def _discard(provider: SandboxProvider) -> None:
    """Terminates a provider handle that never made it into the registry."""
    try:
        await provider.terminate()
    except Exception as e:
        logger.error(f"Error terminating unregistered sandbox handle: {e}")


async def ensure_provider_for_sandbox(manager: SandboxManager, factory: ProviderFactory,
                                      sandbox_id: Optional[str]) -> SandboxProvider:
    """
    Get existing (or the active sandbox when no id is given), else reconnect,
    else create (with the Vite base app), register and set active. Acquisition
    is serialised so one sandbox id never ends up with two live handles.
    """
    async with manager.acquire_lock:
        if sandbox_id:
            existing = manager.get_provider(sandbox_id)
            if existing is not None:
                manager.set_active_sandbox(sandbox_id)
                return existing
            try:
                return await manager.get_or_reconnect_provider(sandbox_id)
            except SandboxError as e:
                logger.warning(f"Could not reconnect to sandbox {sandbox_id}, creating a new one: {e}")
        else:
            active = manager.get_active_provider()
            if active is not None:
                logger.debug(f"No sandbox id given, using active sandbox {manager.active_sandbox_id}")
                return active

        provider = factory()
        try:
            info = await provider.create_sandbox()
            await provider.setup_vite_app()
        except Exception:
            await _discard(provider)
            raise
        manager.register_sandbox(info.sandbox_id, provider)
        return provider
