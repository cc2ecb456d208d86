"""Durable result store: one file per correlation id under a directory."""

import logging
import os
import tempfile
from typing import Optional

logger = logging.getLogger('result_store')


class ResultStore:
    def __init__(self, path_prefix: str):
        self.path_prefix = path_prefix

    def path_for(self, correlation_id: str) -> Optional[str]:
        # ids that are not a plain file name never address a stored result
        if not correlation_id or correlation_id in ('.', '..'):
            return None
        if os.path.basename(correlation_id) != correlation_id or os.sep in correlation_id:
            return None
        return os.path.join(self.path_prefix, correlation_id)

    def write(self, correlation_id: str, payload: bytes) -> str:
        """Write (or overwrite) the payload stored for an id and return its path."""
        path = self.path_for(correlation_id)
        if path is None:
            raise ValueError(f"Invalid result id: {correlation_id!r}")

        os.makedirs(self.path_prefix, exist_ok=True)
        # write next to the target and rename, so readers never see a partial file
        fd, tmp_path = tempfile.mkstemp(dir=self.path_prefix, prefix=f".{correlation_id}.")
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(payload)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        return path

    def read(self, correlation_id: str) -> Optional[bytes]:
        """Return the stored payload, or None when nothing is stored for the id."""
        path = self.path_for(correlation_id)
        if path is None:
            return None
        try:
            with open(path, 'rb') as f:
                return f.read()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            return None
