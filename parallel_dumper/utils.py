"""
Utility functions for the parallel dumper.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Optional, Union

from .exceptions import DumpFileError

# MySQL string literal escapes, see "String Literals" in the reference manual
_ESCAPES = {
    0x00: b'\\0',
    ord("'"): b"\\'",
    ord('"'): b'\\"',
    0x08: b'\\b',
    ord('\n'): b'\\n',
    ord('\r'): b'\\r',
    ord('\t'): b'\\t',
    0x1A: b'\\Z',
    ord('\\'): b'\\\\',
}
_ESCAPE_TABLE = [_ESCAPES.get(b, bytes([b])) for b in range(256)]
_UNESCAPES = {value[1]: key for key, value in _ESCAPES.items()}


def setup_logging(log_settings: dict[str, Any]) -> None:
    """Setup logging configuration."""
    log_level = getattr(logging, log_settings.get('level', 'INFO').upper())
    log_file = log_settings.get('file')

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )


def escape_bytes(data: Union[bytes, bytearray]) -> bytes:
    """Escape arbitrary bytes for use inside a quoted MySQL string literal."""
    return b''.join(_ESCAPE_TABLE[b] for b in data)


def unescape_bytes(data: Union[bytes, bytearray]) -> bytes:
    """Reverse :func:`escape_bytes`."""
    out = bytearray()
    i = 0
    while i < len(data):
        b = data[i]
        if b == 0x5C and i + 1 < len(data):
            nxt = data[i + 1]
            out.append(_UNESCAPES.get(nxt, nxt))
            i += 2
        else:
            out.append(b)
            i += 1
    return bytes(out)


def split_names(value: Optional[str]) -> list[str]:
    """Split a comma separated name list, keeping the given order."""
    if not value:
        return []
    return [name.strip() for name in value.split(',') if name.strip()]


def to_mb(num_bytes: int) -> int:
    return num_bytes // 1024 // 1024


def write_file(path: Path, content: Union[str, bytes]) -> None:
    """Create or overwrite ``path`` with ``content``."""
    try:
        if isinstance(content, str):
            path.write_text(content, encoding='utf-8')
        else:
            path.write_bytes(content)
    except OSError as e:
        raise DumpFileError(f"cannot write {path}: {e}") from e
