# src/core/local_sandbox.py
import asyncio
import json
import logging
import shlex
import uuid
from pathlib import Path
from typing import Dict, List, Optional

from .command_executor import CommandExecutor
from .exceptions import SandboxError
from .file_system_manager import FileSystemManager
from .project_models import CommandResult, SandboxInfo
from .sandbox import SandboxProvider

logger = logging.getLogger(__name__)

PACKAGE_JSON = {
    "name": "vite-react-typescript",
    "version": "0.0.0",
    "type": "module",
    "scripts": {
        "dev": "vite",
        "build": "vite build",
        "lint": "eslint .",
        "preview": "vite preview",
    },
    "dependencies": {
        "lucide-react": "^0.344.0",
        "react": "^18.3.1",
        "react-dom": "^18.3.1",
    },
    "devDependencies": {
        "@types/react": "^18.3.5",
        "@types/react-dom": "^18.3.0",
        "@vitejs/plugin-react": "^4.3.1",
        "autoprefixer": "^10.4.18",
        "postcss": "^8.4.35",
        "tailwindcss": "^3.4.1",
        "typescript": "^5.5.3",
        "vite": "^5.4.2",
    },
}

VITE_CONFIG = """import { defineConfig } from 'vite'
import react from '@vitejs/plugin-react'

export default defineConfig({
  plugins: [react()],
  server: {
    host: '0.0.0.0',
    port: 5173,
    strictPort: true,
  }
})
"""

TAILWIND_CONFIG = """/** @type {import('tailwindcss').Config} */
export default {
  content: [
    "./index.html",
    "./src/**/*.{js,ts,jsx,tsx}",
  ],
  theme: {
    extend: {},
  },
  plugins: [],
}
"""

POSTCSS_CONFIG = """export default {
  plugins: {
    tailwindcss: {},
    autoprefixer: {},
  },
}
"""

INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="UTF-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0" />
    <title>Sandbox App</title>
  </head>
  <body>
    <div id="root"></div>
    <script type="module" src="/src/main.tsx"></script>
  </body>
</html>
"""

MAIN_TSX = """import React from 'react'
import ReactDOM from 'react-dom/client'
import App from './App.tsx'
import './index.css'

ReactDOM.createRoot(document.getElementById('root')!).render(
  <React.StrictMode>
    <App />
  </React.StrictMode>,
)
"""

APP_TSX = """function App() {
  return (
    <div className="min-h-screen bg-gray-900 text-white flex items-center justify-center p-4">
      <div className="text-center max-w-2xl">
        <p className="text-lg text-gray-400">
          Sandbox Ready<br/>
          Start building your React app with Vite and Tailwind CSS!
        </p>
      </div>
    </div>
  )
}

export default App
"""

INDEX_CSS = """@tailwind base;
@tailwind components;
@tailwind utilities;

body {
  font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Oxygen, Ubuntu, sans-serif;
  background-color: rgb(17 24 39);
}
"""


def vite_template() -> Dict[str, str]:
    """The base project written by `setup_vite_app`, keyed by relative path."""
    return {
        "package.json": json.dumps(PACKAGE_JSON, indent=2) + "\n",
        "vite.config.js": VITE_CONFIG,
        "tailwind.config.js": TAILWIND_CONFIG,
        "postcss.config.js": POSTCSS_CONFIG,
        "index.html": INDEX_HTML,
        "src/main.tsx": MAIN_TSX,
        "src/App.tsx": APP_TSX,
        "src/index.css": INDEX_CSS,
    }


class LocalSandbox(SandboxProvider):
    """
    A sandbox backed by a directory on the local machine: one subdirectory of
    `workspace_root` per sandbox id. Blocking file and process work runs in
    worker threads so the event loop is never blocked.
    """
    def __init__(self, workspace_root: str | Path, app_root: str = "/home/user/app",
                 command_timeout: float = 300, project_dir: Optional[str | Path] = None):
        super().__init__()
        self.workspace_root = Path(workspace_root).resolve()
        self.app_root = app_root
        self.command_timeout = command_timeout
        self._project_dir = Path(project_dir).resolve() if project_dir else None
        self.fs: Optional[FileSystemManager] = None
        self.executor: Optional[CommandExecutor] = None
        self._alive = False

    def _attach(self, sandbox_id: str, directory: Path) -> SandboxInfo:
        self.fs = FileSystemManager(directory, app_root=self.app_root)
        self.executor = CommandExecutor(self.fs.project_root, timeout=self.command_timeout)
        self.sandbox_info = SandboxInfo(sandbox_id=sandbox_id, url="http://localhost:5173", provider="local")
        self._alive = True
        return self.sandbox_info

    def _require_alive(self) -> None:
        if not self._alive or self.fs is None or self.executor is None:
            raise SandboxError("No active sandbox")

    async def create_sandbox(self) -> SandboxInfo:
        if self._project_dir is not None:
            sandbox_id = self._project_dir.name
            directory = self._project_dir
        else:
            sandbox_id = f"local-{uuid.uuid4().hex[:8]}"
            directory = self.workspace_root / sandbox_id
        info = await asyncio.to_thread(self._attach, sandbox_id, directory)
        logger.info(f"Local sandbox {sandbox_id} created at {directory}")
        return info

    async def reconnect(self, sandbox_id: str) -> bool:
        directory = self._project_dir if self._project_dir is not None else self.workspace_root / sandbox_id
        if not directory.is_dir():
            logger.warning(f"Local sandbox directory not found for {sandbox_id}: {directory}")
            return False
        await asyncio.to_thread(self._attach, sandbox_id, directory)
        logger.info(f"Reconnected to local sandbox {sandbox_id}")
        return True

    async def setup_vite_app(self) -> None:
        self._require_alive()
        for path, content in vite_template().items():
            await self.write_file(path, content)
        result = await self.run_command("npm install")
        if not result.success:
            logger.warning(f"npm install had issues: {result.stderr[:500]}")

    async def read_file(self, path: str) -> str:
        self._require_alive()
        return await asyncio.to_thread(self.fs.read_file, path)

    async def write_file(self, path: str, content: str) -> None:
        self._require_alive()
        await asyncio.to_thread(self.fs.write_file, path, content)

    async def list_files(self, directory: Optional[str] = None) -> List[str]:
        self._require_alive()
        return await asyncio.to_thread(self.fs.list_files, directory)

    async def run_command(self, command: str) -> CommandResult:
        self._require_alive()
        return await asyncio.to_thread(self.executor.run_command, command)

    async def install_packages(self, packages: List[str]) -> CommandResult:
        if not packages:
            return CommandResult(success=True, exit_code=0, command_str="npm install")
        command = "npm install " + " ".join(shlex.quote(p) for p in packages)
        return await self.run_command(command)

    async def terminate(self) -> None:
        # The directory is left on disk so the sandbox can be reconnected later.
        self._alive = False
        logger.info(f"Local sandbox {self.sandbox_id} terminated.")

    def is_alive(self) -> bool:
        return self._alive
