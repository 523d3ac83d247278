"""Provider writing a file with declared content.

Config:
    path: Destination file
    content: File content (default: empty)
    mode: Octal permission string (default: 0644)

The content checksum is stored, so edits made to the file outside the
engine are detected and the file is rewritten on the next apply.
"""

import os
from pathlib import Path

from common import hash_file
from providers.base import BaseProvider


class FileProvider(BaseProvider):

    def validate(self) -> None:
        self.require('path')
        try:
            int(str(self.config.get('mode', '0644')), 8)
        except ValueError:
            raise ValueError(f"Invalid file mode: {self.config.get('mode')!r}")

    @property
    def path(self) -> Path:
        return Path(self.config['path']).expanduser()

    @property
    def mode(self) -> int:
        return int(str(self.config.get('mode', '0644')), 8)

    def create(self) -> None:
        path = self.path
        path.parent.mkdir(parents=True, exist_ok=True)

        # Write to temp file, then rename
        tmp_path = path.with_name(f'.{path.name}.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            f.write(str(self.config.get('content') or ''))
        os.chmod(tmp_path, self.mode)
        tmp_path.replace(path)

        self.resource.checksum = hash_file(path)
        self.resource.outputs['path'] = str(path)
        self.log.info(f"Wrote {path}")

    def destroy(self, force: bool = False) -> None:
        path = self.path
        if not path.exists():
            self.log.debug(f"{path} already absent")
            return
        path.unlink()
        self.log.info(f"Removed {path}")

    def refresh(self) -> None:
        self.resource.outputs['path'] = str(self.path)

    def changed(self) -> bool:
        path = self.path
        if not path.is_file():
            self.log.info(f"{path} is missing")
            return True
        if self.resource.checksum and hash_file(path) != self.resource.checksum:
            self.log.info(f"{path} was modified outside of converge")
            return True
        return False

    def lookup(self) -> list[str]:
        path = self.path
        return [str(path)] if path.exists() else []
