"""Common utilities shared by the engine and the bundled providers."""

import base64
import hashlib
import logging
import re
import threading
import time
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# Resource names: [a-z] [A-Z] _ - [0-9], max 128 chars
MAX_NAME_LENGTH = 128
_NAME_RE = re.compile(r'^[a-zA-Z0-9\-_]+$')
_NON_URI_RE = re.compile(r'[^a-zA-Z0-9\-\.]+')

FQDN_SUFFIX = 'converge.local'


def validate_name(name: str) -> None:
    """Validate a resource name.

    Raises:
        ValueError: If the name is too long or contains invalid characters
    """
    if len(name) > MAX_NAME_LENGTH:
        raise ValueError(
            f"Name '{name[:32]}...' exceeds max length of {MAX_NAME_LENGTH} characters"
        )
    if not _NAME_RE.match(name):
        raise ValueError(
            f"Name '{name}' contains invalid characters "
            "(allowed: letters, digits, '-' and '_')"
        )


def replace_non_uri_chars(value: str) -> str:
    """Replace any run of characters that cannot appear in a URI with '-'."""
    return _NON_URI_RE.sub('-', value)


def fqdn(name: str, module: str, type_name: str) -> str:
    """Build the fully qualified, URI-safe name of a resource.

    Examples:
        fqdn('consul', '', 'container') -> 'consul.container.converge.local'
        fqdn('consul', 'net', 'container') -> 'consul.net.container.converge.local'
    """
    if module:
        value = f'{name}.{module}.{type_name}.{FQDN_SUFFIX}'
    else:
        value = f'{name}.{type_name}.{FQDN_SUFFIX}'
    return replace_non_uri_chars(value)


def _sha256_file(path: Path) -> bytes:
    digest = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(65536), b''):
            digest.update(chunk)
    return digest.digest()


def hash_file(path: Path) -> str:
    """Return the 'h1:' base64 SHA-256 digest of a file's contents."""
    return 'h1:' + base64.b64encode(_sha256_file(Path(path))).decode('ascii')


def hash_dir(path: Path, prefix: str = '') -> str:
    """Hash the file set of a directory.

    The digest covers relative file names and file contents only: it is
    independent of walk order and ignores modification times and
    permissions. Each file contributes a '<sha256 hex>  <name>' line; the
    sorted lines are hashed again and encoded as 'h1:<base64>'.

    Args:
        path: Directory to hash
        prefix: Optional prefix joined onto every relative name

    Raises:
        FileNotFoundError: If path does not exist
        NotADirectoryError: If path is not a directory
    """
    root = Path(path)
    if not root.exists():
        raise FileNotFoundError(f"Directory not found: {root}")
    if not root.is_dir():
        raise NotADirectoryError(f"Not a directory: {root}")

    names = []
    for file_path in root.rglob('*'):
        if file_path.is_file():
            rel = file_path.relative_to(root).as_posix()
            names.append((f'{prefix}/{rel}' if prefix else rel, file_path))

    summary = hashlib.sha256()
    for name, file_path in sorted(names):
        if '\n' in name:
            raise ValueError(f"File name contains newline: {name!r}")
        summary.update(f'{_sha256_file(file_path).hex()}  {name}\n'.encode('utf-8'))

    return 'h1:' + base64.b64encode(summary.digest()).decode('ascii')


def hash_path(path: Path) -> str:
    """Hash a file or a directory, whichever path points at."""
    path = Path(path)
    if path.is_dir():
        return hash_dir(path)
    return hash_file(path)


def wait_until(
    check: Callable[[], bool],
    timeout: float = 60,
    interval: float = 2,
    cancelled: Optional[threading.Event] = None,
) -> bool:
    """Poll check() until it returns True, the timeout expires, or cancellation.

    Returns:
        True if check() succeeded, False on timeout or cancellation
    """
    start = time.time()
    while time.time() - start < timeout:
        if check():
            return True
        if cancelled is not None:
            if cancelled.wait(interval):
                logger.debug("Wait cancelled")
                return False
        else:
            time.sleep(interval)
    return False
