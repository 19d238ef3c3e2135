"""Backups of files rewritten by `consumelint fix --backup`."""
import json
import shutil
import secrets
from pathlib import Path
from datetime import datetime
from typing import Dict, List


class BackupStore:
    """Copies originals into a per-run directory before they are rewritten.

    Layout::

        <backup_dir>/<YYYYMMDD_HHMMSS_hex>/
            manifest.json        original path -> backup path
            0001_model.ts
            0002_train.js
    """

    def __init__(self, backup_dir: str | Path = ".consumelint_backup"):
        self.backup_dir = Path(backup_dir)
        self.run_id = self._generate_run_id()
        self.run_dir = self.backup_dir / self.run_id
        self.entries: List[Dict[str, str]] = []

    def save(self, file_path: str | Path) -> Path:
        """Copy ``file_path`` into the run directory.

        Raises:
            FileNotFoundError: If file doesn't exist
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        self.run_dir.mkdir(parents=True, exist_ok=True)
        # Numbered so same-named files from different directories don't collide
        backup_path = self.run_dir / f"{len(self.entries) + 1:04d}_{file_path.name}"
        shutil.copy2(str(file_path), str(backup_path))

        self.entries.append({
            "original_path": str(file_path.resolve()),
            "backup_path": str(backup_path),
            "saved_at": datetime.now().isoformat(),
        })
        self._write_manifest()
        return backup_path

    def _write_manifest(self):
        manifest = self.run_dir / "manifest.json"
        with open(manifest, 'w', encoding='utf-8') as f:
            json.dump({"run_id": self.run_id, "files": self.entries}, f, indent=2)

    def _generate_run_id(self) -> str:
        """Run ID in format: YYYYMMDD_HHMMSS_randomhex"""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return f"{timestamp}_{secrets.token_hex(3)}"
