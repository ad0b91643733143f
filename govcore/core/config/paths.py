from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class ConfigFsPaths:
    root: str = "."

    @property
    def config_dir(self) -> str:
        return os.path.join(self.root, "config")

    @property
    def backups_dir(self) -> str:
        return os.path.join(self.config_dir, "backups")

    @property
    def governance(self) -> str:
        return os.path.join(self.config_dir, "governance.json")

    def resolve(self, rel_path: str) -> str:
        """
        Resolve a configured path against the root unless it is already absolute.
        """
        if os.path.isabs(rel_path):
            return rel_path
        return os.path.join(self.root, rel_path)
