from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .domain import normalize_code
from .store import DEFAULT_TX_MAX_ATTEMPTS


def load_env_file(repo_root: Path) -> None:
    env_path = repo_root / "config" / ".env"
    if env_path.exists():
        # real environment variables win over the file
        load_dotenv(dotenv_path=env_path, override=False)


@dataclass(frozen=True)
class Settings:
    event_id: str
    event_title: str
    store_backend: str
    log_level: str
    tx_max_attempts: int
    # when set, an admin user with this access code is created at startup
    admin_code: str | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            event_id=os.getenv("EVENT_ID", "hackathon").strip() or "hackathon",
            event_title=os.getenv("EVENT_TITLE", "Hackathon"),
            store_backend=os.getenv("STORE_BACKEND", "inmemory").strip().lower(),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
            tx_max_attempts=int(os.getenv("TX_MAX_ATTEMPTS", str(DEFAULT_TX_MAX_ATTEMPTS))),
            admin_code=normalize_code(os.getenv("ADMIN_CODE", "")) or None,
        )
