"""Security helpers for candidate materialization and sandbox output."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from pathlib import Path, PurePosixPath
from typing import Final


class SecurityError(RuntimeError):
    """Raised when a candidate tries to escape its workspace."""


POTENTIAL_SECRET_PATTERNS: Final[tuple[tuple[str, str], ...]] = (
    ("openai_api_key", r"sk-[A-Za-z0-9]{20,}"),
    ("groq_api_key", r"gsk_[A-Za-z0-9]{20,}"),
    ("github_token", r"gh[pousr]_[A-Za-z0-9]{20,}"),
    ("aws_access_key_id", r"AKIA[0-9A-Z]{16}"),
    ("private_key_block", r"-----BEGIN (?:RSA |EC |OPENSSH )?PRIVATE KEY-----"),
    ("jwt_token", r"eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+"),
    ("bearer_token", r"(?i)bearer\s+[A-Za-z0-9._-]{16,}"),
)

SENSITIVE_KEY_PATTERN: Final[str] = (
    r"[A-Za-z0-9_.-]*(?:token|secret|api[_-]?key|password|passphrase|"
    r"private[_-]?key|access[_-]?key)[A-Za-z0-9_.-]*"
)

_SENSITIVE_INLINE_VALUE_PATTERN: Final[re.Pattern[str]] = re.compile(
    rf"(?i)(\b{SENSITIVE_KEY_PATTERN}\b)(\s*[:=]\s*)([^\s,;]+)"
)
_SENSITIVE_QUOTED_VALUE_PATTERN: Final[re.Pattern[str]] = re.compile(
    rf"(?i)(\b{SENSITIVE_KEY_PATTERN}\b)(\s*[:=]\s*)(\"[^\"]*\"|'[^']*')"
)
_HARDCODED_SECRET_ASSIGNMENT: Final[re.Pattern[str]] = re.compile(
    r"(?im)^\s*[A-Z0-9_]*(?:TOKEN|SECRET|API_?KEY|PASSWORD)[A-Z0-9_]*\s*=\s*['\"][^'\"]{8,}['\"]"
)
_BASIC_AUTH_HEADER_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)(authorization\s*:\s*basic\s+)[A-Za-z0-9+/=]+"
)
_URL_CREDENTIALS_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?i)(https?://[^:\s]+:)[^@\s/]+@")

_SKIPPED_DIRECTORIES: Final[frozenset[str]] = frozenset(
    {".git", "__pycache__", ".mypy_cache", ".pytest_cache", ".ruff_cache"}
)


def normalize_candidate_path(raw_path: str) -> str:
    """Return a normalized POSIX relative path or raise SecurityError."""
    cleaned = raw_path.strip().replace("\\", "/")
    if not cleaned:
        raise SecurityError("Candidate file path must be non-empty.")
    pure = PurePosixPath(cleaned)
    if pure.is_absolute() or re.match(r"^[A-Za-z]:", cleaned):
        raise SecurityError(f"Absolute paths are not allowed: {raw_path}")
    if any(part == ".." for part in pure.parts):
        raise SecurityError(f"Unsafe path traversal attempt: {raw_path}")
    return str(pure)


def ensure_safe_relative_path(base_dir: Path, relative_path: str) -> Path:
    """Resolve and validate that relative_path stays within base_dir."""
    normalized = normalize_candidate_path(relative_path)
    target = (base_dir / normalized).resolve()
    root = base_dir.resolve()
    if target == root:
        raise SecurityError("Target path must reference a file, not the workspace root.")
    if root not in target.parents:
        raise SecurityError(f"Unsafe path traversal attempt: {relative_path}")
    return target


def find_potential_secrets(text: str) -> list[str]:
    """Return labels for secret-like substrings found in text."""
    findings: list[str] = []
    for label, pattern in POTENTIAL_SECRET_PATTERNS:
        if re.search(pattern, text):
            findings.append(label)
    if _HARDCODED_SECRET_ASSIGNMENT.search(text):
        findings.append("hardcoded_secret_assignment")
    return findings


def scan_texts_for_secrets(named_texts: Iterable[tuple[str, str]]) -> list[str]:
    """Scan (name, text) pairs and return ``name:label`` findings."""
    findings: list[str] = []
    for name, text in named_texts:
        for label in find_potential_secrets(text):
            findings.append(f"{name}:{label}")
    return findings


def scan_workspace_for_secrets(base_dir: Path) -> list[str]:
    """Scan text files below base_dir for secret-like patterns."""

    def _iter_texts() -> Iterable[tuple[str, str]]:
        for path in sorted(base_dir.rglob("*")):
            if not path.is_file():
                continue
            if _SKIPPED_DIRECTORIES.intersection(path.parts):
                continue
            try:
                text = path.read_text(encoding="utf-8")
            except (UnicodeDecodeError, OSError):
                continue
            yield path.relative_to(base_dir).as_posix(), text

    return scan_texts_for_secrets(_iter_texts())


def redact_sensitive_text(text: str) -> str:
    """Replace secret-like values with redaction placeholders."""
    redacted = text
    for label, pattern in POTENTIAL_SECRET_PATTERNS:
        redacted = re.sub(pattern, f"[REDACTED:{label}]", redacted)

    def _replace_match(match: re.Match[str]) -> str:
        return f"{match.group(1)}{match.group(2)}[REDACTED:value]"

    redacted = _SENSITIVE_QUOTED_VALUE_PATTERN.sub(_replace_match, redacted)
    redacted = _SENSITIVE_INLINE_VALUE_PATTERN.sub(_replace_match, redacted)
    redacted = _BASIC_AUTH_HEADER_PATTERN.sub(r"\1[REDACTED:value]", redacted)
    redacted = _URL_CREDENTIALS_PATTERN.sub(r"\1[REDACTED:value]@", redacted)
    return redacted


_CREDENTIAL_ENV_NAME: Final[re.Pattern[str]] = re.compile(
    r"(?i)(?:API_?KEY|TOKEN|SECRET|PASSWORD)(?:_|$)"
)


def scrub_environment(environ: Mapping[str, str]) -> dict[str, str]:
    """Return a copy of ``environ`` without variables named like credentials."""
    return {
        name: value for name, value in environ.items() if not _CREDENTIAL_ENV_NAME.search(name)
    }
