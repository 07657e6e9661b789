import fnmatch
import re
from pathlib import PurePosixPath

NON_CODE_EXTENSIONS = {
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".svg",
    ".ico",
    ".webp",
    ".bmp",
    ".pdf",
    ".woff",
    ".woff2",
    ".ttf",
    ".eot",
    ".otf",
    ".mp4",
    ".mp3",
    ".wav",
    ".ogg",
    ".zip",
    ".tar",
    ".gz",
    ".rar",
    ".7z",
    ".lock",  # e.g. package-lock.json, Pipfile.lock
}

# Extension -> (language key, display name, code fence tag).
_LANGUAGES = {
    ".py": ("python", "Python", "python"),
    ".pyi": ("python", "Python", "python"),
    ".js": ("javascript", "JavaScript", "javascript"),
    ".jsx": ("javascript", "JavaScript", "jsx"),
    ".ts": ("typescript", "TypeScript", "typescript"),
    ".tsx": ("typescript", "TypeScript", "tsx"),
    ".go": ("go", "Go", "go"),
    ".rs": ("rust", "Rust", "rust"),
    ".java": ("java", "Java", "java"),
    ".kt": ("kotlin", "Kotlin", "kotlin"),
    ".rb": ("ruby", "Ruby", "ruby"),
    ".cs": ("csharp", "C#/.NET", "csharp"),
    ".c": ("c", "C", "c"),
    ".cpp": ("cpp", "C++", "cpp"),
    ".cxx": ("cpp", "C++", "cpp"),
    ".cc": ("cpp", "C++", "cpp"),
    ".h": ("cpp", "C++", "cpp"),  # .h could be either; C++ is more common in mixed codebases
    ".hpp": ("cpp", "C++", "cpp"),
    ".hxx": ("cpp", "C++", "cpp"),
    ".sql": ("sql", "SQL", "sql"),
    ".sh": ("shell", "Shell", "bash"),
    ".yml": ("yaml", "YAML", "yaml"),
    ".yaml": ("yaml", "YAML", "yaml"),
}
_UNKNOWN = ("unknown", "Unknown", "")

# Hiragana, Katakana, CJK unified ideographs and fullwidth forms.
_JAPANESE_CHAR_RE = re.compile(r"[぀-ゟ゠-ヿ一-鿿＀-￯]")


def is_code_file(file_name: str) -> bool:
    return not any(file_name.lower().endswith(ext) for ext in NON_CODE_EXTENSIONS)


def is_excluded(filename: str, patterns: list[str]) -> bool:
    """Return True if filename matches any exclude pattern.

    Supports:
    - fnmatch globs on the full path: "src/generated/*.py"
    - fnmatch globs on the basename: "*.lock", "*.min.js"
    - Directory names/prefixes: "migrations/", "tests" (matches any file within that tree)
    """
    for pattern in patterns:
        if fnmatch.fnmatch(filename, pattern):
            return True
        if fnmatch.fnmatch(filename.rsplit("/", 1)[-1], pattern):
            return True
        prefix = pattern.rstrip("/") + "/"
        if filename.startswith(prefix) or ("/" + prefix) in filename:
            return True
    return False


def detect_programming_language(file_path: str) -> str:
    return _LANGUAGES.get(PurePosixPath(file_path or "").suffix.lower(), _UNKNOWN)[0]


def language_display_name(file_path: str) -> str:
    return _LANGUAGES.get(PurePosixPath(file_path or "").suffix.lower(), _UNKNOWN)[1]


def fence_language(file_path: str) -> str:
    return _LANGUAGES.get(PurePosixPath(file_path or "").suffix.lower(), _UNKNOWN)[2]


def detect_language(text: str, threshold: float = 0.3) -> str:
    """Return "ja" when more than ``threshold`` of the non-whitespace characters are Japanese, else "en"."""
    if not text or not text.strip():
        return "en"
    non_whitespace = sum(1 for c in text if not c.isspace())
    japanese = len(_JAPANESE_CHAR_RE.findall(text))
    return "ja" if japanese / non_whitespace > threshold else "en"
