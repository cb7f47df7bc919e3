# Author: Bradley R. Kinnard — garbage in, 400 out

"""Input validation. Reject bad requests before they waste LLM tokens."""

import re

from src.criticode.core.errors import AppError, ErrorKind, validation_error

MAX_CODE_BYTES = 500 * 1024
MAX_UPLOAD_BYTES = 2 * 1024 * 1024
MAX_LANGUAGE_CHARS = 50
MAX_FILE_NAME_CHARS = 255
MAX_QUERY_CHARS = 100
MAX_PAGE_LIMIT = 100

LANGUAGE_RE = re.compile(r"^[a-zA-Z0-9+#-]+$")
BAD_FILE_NAME_CHARS = re.compile(r'[<>:"|?*\x00-\x1f]')

LANGUAGE_BY_EXTENSION = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".py": "python",
    ".java": "java",
    ".cpp": "cpp",
    ".c": "c",
    ".h": "c",
    ".cs": "csharp",
    ".go": "go",
    ".rb": "ruby",
    ".php": "php",
    ".swift": "swift",
    ".kt": "kotlin",
    ".dart": "dart",
    ".rs": "rust",
    ".scala": "scala",
    ".clj": "clojure",
    ".sql": "sql",
    ".html": "html",
    ".css": "css",
    ".json": "json",
    ".xml": "xml",
    ".yaml": "yaml",
    ".yml": "yaml",
}
ALLOWED_EXTENSIONS = frozenset(LANGUAGE_BY_EXTENSION)


def _problem(field: str, message: str, value=None) -> dict:
    return {"field": field, "message": message, "value": value}


def _fail(problems: list[dict]) -> AppError:
    return validation_error("Please check your input and try again", details={"errors": problems})


def _file_name_problem(file_name: str) -> str | None:
    if len(file_name) > MAX_FILE_NAME_CHARS:
        return f"File name must not exceed {MAX_FILE_NAME_CHARS} characters"
    if BAD_FILE_NAME_CHARS.search(file_name):
        return "File name contains invalid characters"
    if ".." in file_name or "/" in file_name or "\\" in file_name:
        return "File name cannot contain path separators or relative path indicators"
    return None


def validate_analyze_request(code: str, language: str, file_name: str | None) -> tuple[str, str | None]:
    """
    Check all fields, report every problem at once.
    Returns (language, file_name) trimmed.
    """
    problems: list[dict] = []

    if not code or not code.strip():
        problems.append(_problem("code", "Code is required"))
    else:
        size = len(code.encode("utf-8"))
        if size > MAX_CODE_BYTES:
            problems.append(_problem("code", f"Code size cannot exceed 500KB. Current size: {round(size / 1024)}KB"))

    language = (language or "").strip()
    if not language:
        problems.append(_problem("language", "Programming language is required", language))
    elif len(language) > MAX_LANGUAGE_CHARS:
        problems.append(_problem("language", f"Language must be between 1 and {MAX_LANGUAGE_CHARS} characters", language))
    elif not LANGUAGE_RE.match(language):
        problems.append(_problem("language", "Language can only contain letters, numbers, +, #, and - characters", language))

    if file_name is not None:
        file_name = file_name.strip() or None
    if file_name:
        issue = _file_name_problem(file_name)
        if issue:
            problems.append(_problem("fileName", issue, file_name))

    if problems:
        raise _fail(problems)
    return language, file_name


def file_extension(file_name: str) -> str:
    dot = file_name.rfind(".")
    return file_name[dot:].lower() if dot >= 0 else ""


def detect_language(file_name: str) -> str:
    """extension -> language, 'text' when we don't know it"""
    return LANGUAGE_BY_EXTENSION.get(file_extension(file_name), "text")


def validate_upload_name(file_name: str | None) -> str:
    if not file_name:
        raise validation_error("Please select a file to upload", reason="no_file")
    issue = _file_name_problem(file_name)
    if issue:
        raise validation_error(issue, reason="bad_file_name")
    ext = file_extension(file_name)
    if ext not in ALLOWED_EXTENSIONS:
        raise validation_error(
            f"File type {ext or '(none)'} is not supported. Allowed types: {', '.join(sorted(ALLOWED_EXTENSIONS))}",
            reason="bad_extension",
        )
    return file_name


def validate_upload_content(data: bytes) -> str:
    """size cap, utf-8, non-empty, 500KB of code. returns the decoded text."""
    if len(data) > MAX_UPLOAD_BYTES:
        raise AppError(ErrorKind.PAYLOAD_TOO_LARGE, "File size must be less than 2MB")
    try:
        code = data.decode("utf-8")
    except UnicodeDecodeError:
        raise validation_error("The uploaded file is not valid UTF-8 text", reason="bad_encoding")
    if not code.strip():
        raise validation_error("The uploaded file appears to be empty", reason="empty_file")
    if len(code) > MAX_CODE_BYTES:
        raise validation_error("Code content must be less than 500KB", reason="too_large")
    return code


def validate_pagination(page: int, limit: int) -> None:
    if page < 1:
        raise validation_error("Page number must be greater than 0")
    if limit < 1 or limit > MAX_PAGE_LIMIT:
        raise validation_error(f"Limit must be between 1 and {MAX_PAGE_LIMIT}")


def validate_search_query(query: str | None) -> str:
    if not query or not query.strip():
        raise validation_error("Search query is required")
    if len(query) > MAX_QUERY_CHARS:
        raise validation_error(f"Search query must be less than {MAX_QUERY_CHARS} characters")
    return query.strip()
