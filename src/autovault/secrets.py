"""Session credential loader with file-permission enforcement.

The platform session token is read from a file that must not be world
readable or writable, or from AUTOVAULT_ACCESS_TOKEN. On any failure:
raises InsecureSecretsError so the caller refuses to start.
"""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

TOKEN_ENV_VAR = "AUTOVAULT_ACCESS_TOKEN"


class InsecureSecretsError(Exception):
    """Raised when the credential is missing or has insecure permissions."""


def _check_permissions(path: Path) -> None:
    """Verify a file is not world-readable or world-writable."""
    st = os.stat(path)
    mode = st.st_mode

    if mode & stat.S_IROTH:
        raise InsecureSecretsError(
            "Token file is world-readable (others +r): {}  "
            "mode={}.  Run: chmod o-r {}".format(path, oct(mode), path)
        )

    if mode & stat.S_IWOTH:
        raise InsecureSecretsError(
            "Token file is world-writable (others +w): {}  "
            "mode={}.  Run: chmod o-w {}".format(path, oct(mode), path)
        )


def load_access_token(token_file: Optional[str] = None) -> str:
    """Return the session token from `token_file`, else the environment."""
    if token_file:
        fpath = Path(token_file)
        if not fpath.is_file():
            raise InsecureSecretsError("Token file does not exist: {}".format(fpath))
        _check_permissions(fpath)
        value = fpath.read_text(encoding="utf-8").strip()
        if not value:
            raise InsecureSecretsError("Token file is empty: {}".format(fpath))
        logger.info("Session token loaded from %s", fpath)
        return value

    value = os.environ.get(TOKEN_ENV_VAR, "").strip()
    if value:
        logger.info("Session token loaded from %s", TOKEN_ENV_VAR)
        return value

    raise InsecureSecretsError(
        "No session token: pass --token-file or set {}".format(TOKEN_ENV_VAR)
    )
