"""
File classification for repository indexing: which paths are indexable, which language they are,
and which content category (code / documentation) drives their chunk size.
"""
import logging
import os
from pathlib import Path, PurePath
from typing import List, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

CATEGORY_CODE = "code"
CATEGORY_DOCUMENTATION = "documentation"
CATEGORY_MEETING = "meeting"

ALLOWED_FILE_EXTENSIONS = frozenset({
    ".ts", ".tsx", ".js", ".jsx",
    ".py", ".java", ".c", ".cpp", ".h",
    ".go", ".rs", ".rb", ".php",
    ".css", ".html", ".vue", ".svelte",
    ".md", ".txt", ".rst", ".json", ".yaml", ".yml",
    ".prisma", ".sql", ".sh", ".bat",
    ".kt", ".swift",
})

IGNORED_DIRECTORIES = frozenset({
    "node_modules",
    ".git",
    ".next",
    "dist",
    "build",
    "coverage",
    ".cache",
    "vendor",
    "__pycache__",
})

IGNORED_FILES = frozenset({
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    ".env",
    ".env.local",
})

BINARY_EXTENSIONS = frozenset({
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico",
    ".pdf", ".zip", ".tar", ".gz", ".rar",
    ".exe", ".dll", ".so", ".dylib",
    ".woff", ".woff2", ".ttf", ".eot",
})

DOCUMENTATION_EXTENSIONS = frozenset({".md", ".txt", ".rst"})

LANGUAGE_MAP = {
    ".ts": "TypeScript",
    ".tsx": "TypeScript React",
    ".js": "JavaScript",
    ".jsx": "JavaScript React",
    ".py": "Python",
    ".java": "Java",
    ".c": "C",
    ".cpp": "C++",
    ".h": "C/C++ Header",
    ".go": "Go",
    ".rs": "Rust",
    ".rb": "Ruby",
    ".php": "PHP",
    ".css": "CSS",
    ".html": "HTML",
    ".vue": "Vue",
    ".svelte": "Svelte",
    ".md": "Markdown",
    ".rst": "reStructuredText",
    ".txt": "Text",
    ".json": "JSON",
    ".yaml": "YAML",
    ".yml": "YAML",
    ".prisma": "Prisma",
    ".sql": "SQL",
    ".sh": "Shell",
    ".bat": "Batch",
    ".kt": "Kotlin",
    ".swift": "Swift",
}

UNKNOWN_LANGUAGE = "Unknown"


def _ext(path: PathLike) -> str:
    return os.path.splitext(str(path))[1].lower()


def is_ignored_directory(name: str) -> bool:
    return name in IGNORED_DIRECTORIES


def is_ignored_file(name: str) -> bool:
    return name in IGNORED_FILES


def is_allowed_extension(path: PathLike) -> bool:
    return _ext(path) in ALLOWED_FILE_EXTENSIONS


def is_binary(path: PathLike) -> bool:
    """True for image/archive/executable/font extensions; content of these is never read."""
    return _ext(path) in BINARY_EXTENSIONS


def detect_language(path: PathLike) -> str:
    return LANGUAGE_MAP.get(_ext(path), UNKNOWN_LANGUAGE)


def classify_content_category(path: PathLike) -> str:
    """Return "documentation" for prose files (.md, .txt, .rst) and "code" for everything else.
    Why available: The category selects chunk size/overlap in the chunker and is stored on every chunk."""
    if _ext(path) in DOCUMENTATION_EXTENSIONS:
        return CATEGORY_DOCUMENTATION
    return CATEGORY_CODE


def is_indexable_file(path: PathLike) -> bool:
    name = os.path.basename(str(path))
    if is_ignored_file(name):
        return False
    if not is_allowed_extension(name):
        return False
    return not is_binary(name)


def collect_indexable_files(root: PathLike) -> List[Path]:
    """Walk root depth-first and return absolute paths of indexable files.
    Ignored directories are pruned with everything below them; entries are visited in sorted order so the
    result is deterministic for a fixed tree. Symlinked directories are not followed.
    Why available: The pipeline's file enumeration step; the only place that decides what gets persisted and embedded."""
    root_path = Path(root).resolve()
    out: List[Path] = []

    def walk(directory: Path) -> None:
        try:
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except OSError:
            logger.warning("directory_unreadable", exc_info=True, extra={"directory": str(directory)})
            return
        for entry in entries:
            if entry.is_dir(follow_symlinks=False):
                if is_ignored_directory(entry.name):
                    continue
                walk(Path(entry.path))
            elif entry.is_file():
                if is_indexable_file(entry.name):
                    out.append(Path(entry.path))

    walk(root_path)
    return out


def relative_posix_path(root: PathLike, file_path: PathLike, flavor: type = PurePath) -> str:
    """Path of file_path (found under root) relative to root with forward slashes.
    Only separators of the path flavor are translated; a backslash inside a POSIX file name is kept."""
    return flavor(file_path).relative_to(flavor(root)).as_posix()
