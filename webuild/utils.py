"""
Utility functions shared by the projection and the generation pipeline.
"""

import io
import re
import zipfile
from pathlib import PurePosixPath
from typing import Mapping


def make_zip_bytes(files: Mapping[str, str], root: str = "") -> bytes:
    """
    Create an in-memory ZIP archive from a mapping of project files.

    Args:
        files: Mapping of file path to file content
        root: Optional folder name every entry is placed under

    Returns:
        Bytes of the ZIP archive
    """
    buffer = io.BytesIO()
    prefix = f"{root.strip('/')}/" if root else ""

    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        # Sorted so identical projects give identical archives
        for path in sorted(files):
            normalized_path = path.replace("\\", "/").lstrip("/")
            zf.writestr(prefix + normalized_path, files[path])

    return buffer.getvalue()


# Language tags for the editor tabs, keyed by extension
EXTENSION_LANGUAGE_MAP = {
    # TypeScript / JavaScript
    ".ts": "typescript",
    ".tsx": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    # Markup and styles
    ".html": "html",
    ".htm": "html",
    ".css": "css",
    ".scss": "scss",
    ".sass": "sass",
    ".less": "less",
    ".svg": "xml",
    ".xml": "xml",
    ".vue": "vue",
    ".svelte": "svelte",
    ".astro": "astro",
    # Data / config
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".graphql": "graphql",
    ".gql": "graphql",
    # Docs
    ".md": "markdown",
    ".mdx": "markdown",
    ".txt": "text",
    # Scripts
    ".sh": "shell",
    ".py": "python",
}

# Special filename mappings (no useful extension)
FILENAME_LANGUAGE_MAP = {
    "Dockerfile": "dockerfile",
    "Makefile": "makefile",
    "Procfile": "text",
    ".gitignore": "text",
    ".npmrc": "ini",
    ".editorconfig": "ini",
    ".env": "dotenv",
    ".env.local": "dotenv",
    ".env.example": "dotenv",
    ".prettierrc": "json",
    ".eslintrc": "json",
}


def guess_language_from_filename(path: str) -> str:
    """
    Guess the language tag of a file for syntax highlighting.

    Args:
        path: File path or filename

    Returns:
        Language tag, defaults to "text"
    """
    filename = PurePosixPath(path.replace("\\", "/")).name

    if filename in FILENAME_LANGUAGE_MAP:
        return FILENAME_LANGUAGE_MAP[filename]

    suffix = PurePosixPath(filename).suffix.lower()
    return EXTENSION_LANGUAGE_MAP.get(suffix, "text")


def safe_project_name(user_query: str) -> str:
    """
    Generate a safe project name from a user query.

    Args:
        user_query: The user's original request

    Returns:
        A lower-case name usable as a folder or archive name
    """
    # Take first 50 characters
    name = user_query[:50].strip()

    # Replace whitespace with underscores
    name = re.sub(r'\s+', '_', name)

    # Remove non-alphanumeric characters except underscores and hyphens
    name = re.sub(r'[^\w\-]', '', name)

    name = name.strip('_')

    if not name:
        name = "project"

    return name.lower()
