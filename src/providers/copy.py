"""Provider copying a file or directory tree to a destination.

Config:
    source: File or directory to copy
    destination: Target path (replaced as a whole on create)

The checksum is taken over the source, so changing source content
triggers a replace even when the declared config is unchanged.
"""

import shutil
from pathlib import Path

from common import hash_path
from providers.base import BaseProvider


class CopyProvider(BaseProvider):

    def validate(self) -> None:
        self.require('source')
        self.require('destination')

    @property
    def source(self) -> Path:
        return Path(self.config['source']).expanduser()

    @property
    def destination(self) -> Path:
        return Path(self.config['destination']).expanduser()

    def create(self) -> None:
        source, dest = self.source, self.destination
        if not source.exists():
            raise FileNotFoundError(f"Copy source not found: {source}")

        self._remove(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        if source.is_dir():
            shutil.copytree(source, dest)
        else:
            shutil.copy2(source, dest)

        self.resource.checksum = hash_path(source)
        self.resource.outputs['destination'] = str(dest)
        self.log.info(f"Copied {source} -> {dest}")

    def destroy(self, force: bool = False) -> None:
        dest = self.destination
        if self._remove(dest):
            self.log.info(f"Removed {dest}")

    def refresh(self) -> None:
        self.resource.outputs['destination'] = str(self.destination)

    def changed(self) -> bool:
        if not self.destination.exists():
            self.log.info(f"{self.destination} is missing")
            return True
        current = hash_path(self.source)
        if current != self.resource.checksum:
            self.log.debug(f"Source checksum {self.resource.checksum} -> {current}")
            return True
        return False

    def lookup(self) -> list[str]:
        return [str(self.destination)] if self.destination.exists() else []

    @staticmethod
    def _remove(path: Path) -> bool:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
            return True
        if path.exists() or path.is_symlink():
            path.unlink()
            return True
        return False
