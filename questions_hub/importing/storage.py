from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class StoragePaths:
    root: Path

    def job_dir(self, job_id: str) -> Path:
        return self.root / "jobs" / str(job_id)

    def input_dir(self, job_id: str) -> Path:
        return self.job_dir(job_id) / "input"

    def input_file_path(self, job_id: str, file_name: str) -> Path:
        return self.input_dir(job_id) / file_name

    def working_dir(self, job_id: str) -> Path:
        return self.job_dir(job_id) / "working"

    def assets_dir(self, job_id: str) -> Path:
        return self.working_dir(job_id) / "assets"

    def extracted_json_path(self, job_id: str) -> Path:
        return self.working_dir(job_id) / "extracted.json"

    def output_json_path(self, job_id: str) -> Path:
        return self.job_dir(job_id) / "output" / "package_import.json"

    def media_handouts_dir(self) -> Path:
        return self.root / "media" / "handouts"

    def package_dir(self, package_id: int) -> Path:
        return self.root / "packages" / str(package_id)


class LocalImportStorage:
    """
    Manages the filesystem layout for import jobs: uploaded input, working
    files and extracted assets per job, published media and the original
    document kept next to each imported package.
    """

    def __init__(self, storage_paths: StoragePaths):
        self.paths = storage_paths

    def ensure_job_dirs(self, job_id: str) -> None:
        self.paths.input_dir(job_id).mkdir(parents=True, exist_ok=True)
        self.paths.assets_dir(job_id).mkdir(parents=True, exist_ok=True)
        self.paths.output_json_path(job_id).parent.mkdir(parents=True, exist_ok=True)

    def save_upload(self, job_id: str, file_name: str, data: bytes) -> Path:
        self.ensure_job_dirs(job_id)
        target = self.paths.input_file_path(job_id, file_name)
        target.write_bytes(data)
        return target

    def write_json(self, target: Path, payload: Any) -> Path:
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2, default=str)
        return target

    def publish_media(self, source: Path) -> Optional[str]:
        """
        Copy an extracted asset into the shared media folder and return its
        public URL. Copying keeps the job folder intact for retries.
        """
        if not source.is_file():
            logger.warning("Asset file not found: %s", source)
            return None
        target_dir = self.paths.media_handouts_dir()
        target_dir.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copy2(source, target_dir / source.name)
        except OSError as exc:
            logger.warning("Failed to copy asset %s: %s", source.name, exc)
            return None
        return f"/media/{source.name}"

    def save_original(self, package_id: int, source: Path) -> Path:
        target_dir = self.paths.package_dir(package_id)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / f"original{source.suffix.lower()}"
        shutil.copy2(source, target)
        return target

    def delete_job(self, job_id: str) -> None:
        shutil.rmtree(self.paths.job_dir(job_id), ignore_errors=True)
