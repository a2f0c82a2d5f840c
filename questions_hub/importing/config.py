from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple

_SIZE_UNITS = ("Б", "КБ", "МБ", "ГБ")


def format_file_size(size_bytes: int) -> str:
    """Human-readable size in Ukrainian units, e.g. "50 МБ" or "1.5 КБ"."""
    size = float(size_bytes)
    order = 0
    while size >= 1024 and order < len(_SIZE_UNITS) - 1:
        order += 1
        size /= 1024
    text = f"{size:.2f}".rstrip("0").rstrip(".")
    return f"{text} {_SIZE_UNITS[order]}"


@dataclass
class ImportOptions:
    database_url: str = "sqlite+pysqlite:///./data/questions_hub.db"
    storage_root: Path = Path("./data")
    whoosh_dir: Path = Path("./data/whoosh")
    redis_url: str = "redis://localhost:6379/0"
    queue_name: str = "package-imports"
    max_file_size_bytes: int = 50 * 1024 * 1024
    allowed_extensions: Tuple[str, ...] = field(default=(".docx", ".qhub"))
    job_timeout_minutes: int = 10
    max_retry_attempts: int = 3
    download_timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> "ImportOptions":
        defaults = cls()
        extensions = os.getenv("IMPORT_ALLOWED_EXTENSIONS")
        return cls(
            database_url=os.getenv("DATABASE_URL", defaults.database_url),
            storage_root=Path(os.getenv("STORAGE_ROOT", str(defaults.storage_root))),
            whoosh_dir=Path(os.getenv("WHOOSH_DIR", str(defaults.whoosh_dir))),
            redis_url=os.getenv("REDIS_URL", defaults.redis_url),
            queue_name=os.getenv("IMPORT_QUEUE_NAME", defaults.queue_name),
            max_file_size_bytes=int(os.getenv("IMPORT_MAX_FILE_SIZE_MB", "50")) * 1024 * 1024,
            allowed_extensions=(
                tuple(e.strip().lower() for e in extensions.split(",") if e.strip())
                if extensions
                else defaults.allowed_extensions
            ),
            job_timeout_minutes=int(os.getenv("IMPORT_JOB_TIMEOUT_MINUTES", str(defaults.job_timeout_minutes))),
            max_retry_attempts=int(os.getenv("IMPORT_MAX_RETRY_ATTEMPTS", str(defaults.max_retry_attempts))),
            download_timeout_seconds=float(
                os.getenv("IMPORT_DOWNLOAD_TIMEOUT_SECONDS", str(defaults.download_timeout_seconds))
            ),
        )

    def is_extension_allowed(self, file_name: str) -> bool:
        return Path(file_name).suffix.lower() in self.allowed_extensions
