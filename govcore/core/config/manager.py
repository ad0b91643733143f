from __future__ import annotations

import os
from typing import Any, Dict, Optional

from pydantic import ValidationError

from govcore.core.config.io import atomic_write_json, quarantine_corrupt, read_json_file
from govcore.core.config.models import GovernanceConfigFile, default_governance_config_dict
from govcore.core.config.paths import ConfigFsPaths
from govcore.core.errors import ConfigError
from govcore.core.logger import get_logger


class ConfigManager:
    """
    Loads config/governance.json.

    - missing file: defaults are written (unless read_only)
    - corrupt JSON: the file is quarantined under config/backups and defaults are used
    - schema-invalid JSON: ConfigError (an operator typo must not silently weaken settings)
    """

    def __init__(self, *, fs: Optional[ConfigFsPaths] = None, read_only: bool = False):
        self.fs = fs or ConfigFsPaths(".")
        self.read_only = read_only
        self.log = get_logger("config")
        self._cfg: Optional[GovernanceConfigFile] = None

    def load_all(self) -> GovernanceConfigFile:
        if not self.read_only:
            os.makedirs(self.fs.config_dir, exist_ok=True)
        rr = read_json_file(self.fs.governance)
        raw: Dict[str, Any]
        if rr.ok:
            raw = rr.data
        elif rr.error == "missing":
            raw = default_governance_config_dict()
            if not self.read_only:
                atomic_write_json(self.fs.governance, raw)
                self.log.info("Wrote default governance config to %s", self.fs.governance)
        else:
            moved = None if self.read_only else quarantine_corrupt(self.fs.governance, self.fs.backups_dir)
            self.log.warning("governance.json unreadable (%s); using defaults (moved to %s)", rr.error, moved)
            raw = default_governance_config_dict()
        try:
            self._cfg = GovernanceConfigFile.model_validate(raw)
        except ValidationError as e:
            raise ConfigError("governance.json failed validation.", errors=e.errors()) from e
        return self._cfg

    def get(self) -> GovernanceConfigFile:
        if self._cfg is None:
            return self.load_all()
        return self._cfg

    def path(self, rel_path: str) -> str:
        return self.fs.resolve(rel_path)

    def save(self, cfg: GovernanceConfigFile) -> None:
        if self.read_only:
            raise ConfigError("Config manager is read-only.")
        validated = GovernanceConfigFile.model_validate(cfg.model_dump())
        atomic_write_json(self.fs.governance, validated.model_dump())
        self._cfg = validated
