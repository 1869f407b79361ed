"""
Read, append to and reconcile flat KEY=VALUE environment files.

The reconciler never edits an existing line: keys the operator already set
keep their value, missing keys are appended below a marker comment. The whole
file is rewritten through a temp file + rename so a crash never leaves a
half-written .env behind.
"""

import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

ENV_HEADER = '# === Added by n8n-beget-setup ==='

# Bytes that are not UTF-8 (a Latin-1 comment, say) survive a read/write round trip
ENCODING = 'utf-8'
ERRORS = 'surrogateescape'


@dataclass(frozen=True)
class MergeResult:
    """Outcome of reconciling a single key."""
    key: str
    added: bool
    value: Optional[str] = None

    @property
    def status(self) -> str:
        return 'added' if self.added else 'kept'


def _split_line(line: str) -> Optional[tuple[str, str]]:
    stripped = line.strip()
    if not stripped or stripped.startswith('#') or '=' not in stripped:
        return None
    key, _, value = stripped.partition('=')
    value = value.strip()
    # Strip surrounding quotes (single or double)
    if len(value) >= 2 and value[0] == value[-1] and value[0] in '"\'':
        value = value[1:-1]
    return key.strip(), value


def parse_env_text(text: str) -> list[tuple[str, str]]:
    """Parse KEY=VALUE lines in file order.

    Comments (#) and empty lines are skipped. Duplicate keys are kept
    as separate entries.
    """
    entries = []
    for line in text.splitlines():
        pair = _split_line(line)
        if pair is not None:
            entries.append(pair)
    return entries


def load_env_file(path: Path) -> list[tuple[str, str]]:
    """Load key=value pairs from a .env file.

    Raises:
        OSError: If the file is missing or unreadable
    """
    return parse_env_text(Path(path).read_text(encoding=ENCODING, errors=ERRORS))


def env_as_dict(entries: Iterable[tuple[str, str]]) -> dict[str, str]:
    """Collapse entries into a dict. The first occurrence of a key wins."""
    result: dict[str, str] = {}
    for key, value in entries:
        result.setdefault(key, value)
    return result


def contains_key(entries: Iterable[tuple[str, str]], key: str) -> bool:
    """Exact, case-sensitive key lookup."""
    return any(existing == key for existing, _ in entries)


def format_entry(key: str, value: str) -> str:
    if not key or '=' in key or key.strip() != key:
        raise ValueError(f"Invalid environment key: {key!r}")
    if '\n' in value or '\r' in value:
        raise ValueError(f"Value for {key} must not contain line breaks")
    return f'{key}={value}'


def append_raw(path: Path, line: str) -> None:
    """Append one line to the file and flush it to disk."""
    with open(path, 'a', encoding=ENCODING, errors=ERRORS) as f:
        f.write(line.rstrip('\n') + '\n')
        f.flush()


def write_atomic(path: Path, content: str) -> None:
    """Write a file via temp file + rename.

    An existing target keeps its permission bits and owner (.env holds
    secrets and is usually 0600).
    """
    path = Path(path)
    tmp_path = path.with_name(path.name + '.tmp')
    try:
        current = path.stat()
    except FileNotFoundError:
        current = None

    # The temp file never exists with wider permissions than the target
    mode = stat.S_IMODE(current.st_mode) if current is not None else 0o666
    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, 'w', encoding=ENCODING, errors=ERRORS) as f:
        f.write(content)
    if current is not None:
        os.chmod(tmp_path, stat.S_IMODE(current.st_mode))
        if os.geteuid() == 0:
            os.chown(tmp_path, current.st_uid, current.st_gid)
    tmp_path.replace(path)


def reconcile_env_text(
    text: str, defaults: Iterable[tuple[str, str]]
) -> tuple[str, list[MergeResult]]:
    """Reconcile file content against a desired-defaults table in memory.

    Args:
        text: Current file content
        defaults: Ordered (key, default_value) pairs

    Returns:
        Tuple of (new_content, results). new_content equals text when
        every key was already present.
    """
    entries = parse_env_text(text)
    present = {key for key, _ in entries}

    results = []
    new_lines = []
    for key, value in defaults:
        if key in present:
            results.append(MergeResult(key=key, added=False))
            continue
        new_lines.append(format_entry(key, value))
        present.add(key)
        results.append(MergeResult(key=key, added=True, value=value))

    if not new_lines:
        return text, results

    content = text
    if content and not content.endswith('\n'):
        content += '\n'
    if content.strip():
        content += '\n'
    content += ENV_HEADER + '\n'
    content += '\n'.join(new_lines) + '\n'
    return content, results


def reconcile_env_file(path: Path, defaults: Iterable[tuple[str, str]]) -> list[MergeResult]:
    """Add missing keys to an env file without touching existing ones.

    The file is only rewritten when at least one key was added.

    Raises:
        OSError: If the file cannot be read or written
    """
    path = Path(path)
    text = path.read_text(encoding=ENCODING, errors=ERRORS)
    content, results = reconcile_env_text(text, defaults)
    if content != text:
        write_atomic(path, content)
    return results
