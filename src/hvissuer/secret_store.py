"""Load issuer credentials from a mounted secret directory.

Kubernetes mounts each key of a Secret as a file named after the key;
:func:`load_secret_dir` turns such a directory back into the
``{name: bytes}`` mapping the signer builders take.
"""

from __future__ import annotations

import logging
from pathlib import Path

from hvissuer.errors import ConfigurationError

log = logging.getLogger(__name__)


def load_secret_dir(path: str | Path) -> dict[str, bytes]:
    """Read every regular file in *path* into a name -> bytes mapping.

    Hidden entries (the ``..data`` symlinks Kubernetes maintains) are
    skipped.

    Raises
    ------
    ConfigurationError
        If *path* is not a readable directory.

    """
    directory = Path(path)
    if not directory.is_dir():
        msg = f"secret directory '{directory}' does not exist"
        raise ConfigurationError(msg)

    secret: dict[str, bytes] = {}
    try:
        for entry in sorted(directory.iterdir()):
            if entry.name.startswith(".") or not entry.is_file():
                continue
            secret[entry.name] = entry.read_bytes()
    except OSError as exc:
        msg = f"failed to read secret directory '{directory}': {exc}"
        raise ConfigurationError(msg) from exc

    log.debug("Loaded %d secret entries from %s", len(secret), directory)
    return secret
