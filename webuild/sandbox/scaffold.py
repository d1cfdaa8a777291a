"""
Default project scaffold written into a freshly booted sandbox.

Gives the dev server something to run (a Vite + React + TypeScript app on
port 3000) before the model has produced any files. Only written when the
instance has no package.json yet; main.tsx and App.tsx are also left alone
when they already exist.
"""

import json
from typing import Dict

from webuild.logging import get_logger
from webuild.sandbox.runtime import SandboxFileSystem

logger = get_logger("webuild.sandbox.scaffold")

PACKAGE_JSON = {
    "name": "webuild-preview",
    "version": "1.0.0",
    "type": "module",
    "scripts": {
        "dev": "vite --port 3000 --host",
        "build": "vite build",
        "preview": "vite preview",
    },
    "dependencies": {
        "react": "^18.2.0",
        "react-dom": "^18.2.0",
    },
    "devDependencies": {
        "@types/react": "^18.2.0",
        "@types/react-dom": "^18.2.0",
        "@vitejs/plugin-react": "^4.0.0",
        "typescript": "^5.0.0",
        "vite": "^4.4.0",
    },
}

VITE_CONFIG = """import { defineConfig } from 'vite'
import react from '@vitejs/plugin-react'

export default defineConfig({
  plugins: [react()],
  server: {
    port: 3000,
    host: '0.0.0.0',
    strictPort: true
  },
  optimizeDeps: {
    include: ['react', 'react-dom']
  }
})
"""

INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="UTF-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0" />
    <title>WeBuild Preview</title>
  </head>
  <body>
    <div id="root"></div>
    <script type="module" src="/src/main.tsx"></script>
  </body>
</html>
"""

MAIN_TSX = """import React from 'react'
import ReactDOM from 'react-dom/client'
import App from './App'

ReactDOM.createRoot(document.getElementById('root')!).render(
  <React.StrictMode>
    <App />
  </React.StrictMode>
)
"""

APP_TSX = """import React from 'react'

function App() {
  return (
    <div style={{ padding: '20px', fontFamily: 'system-ui' }}>
      <h1>WeBuild Preview</h1>
      <p>Your application will appear here.</p>
    </div>
  )
}

export default App
"""


def scaffold_files() -> Dict[str, str]:
    """Return the scaffold as a path-to-content map."""
    return {
        "package.json": json.dumps(PACKAGE_JSON, indent=2) + "\n",
        "vite.config.ts": VITE_CONFIG,
        "index.html": INDEX_HTML,
        "src/main.tsx": MAIN_TSX,
        "src/App.tsx": APP_TSX,
    }


async def _exists(fs: SandboxFileSystem, path: str) -> bool:
    try:
        await fs.read_file(path)
        return True
    except FileNotFoundError:
        return False


async def ensure_scaffold(fs: SandboxFileSystem) -> bool:
    """
    Write the default project unless package.json already exists.

    Args:
        fs: Filesystem of the booted instance

    Returns:
        True if the scaffold was written, False if the project already had one
    """
    if await _exists(fs, "package.json"):
        return False

    files = scaffold_files()
    for path in ("package.json", "vite.config.ts", "index.html"):
        await fs.write_file(path, files[path])

    await fs.mkdir("src", recursive=True)
    for path in ("src/main.tsx", "src/App.tsx"):
        if not await _exists(fs, path):
            await fs.write_file(path, files[path])

    logger.info("sandbox.scaffold.written", files=len(files))
    return True
