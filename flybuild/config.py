from __future__ import annotations

"""Configuration parsing for optional ~/.flyrc files.

Only the `[client]` section is read. The `ATC_URL` environment variable always
wins over the file.
"""

import os
import re
from dataclasses import dataclass

DEFAULT_CONFIG_PATH = os.path.join(os.path.expanduser("~"), ".flyrc")
DEFAULT_ATC_URL = "http://127.0.0.1:8080"


@dataclass
class FlyConfig:
    """Orchestrator location and transport settings."""

    atc_url: str = DEFAULT_ATC_URL
    connect_timeout: float = 10.0
    chunk_size: int = 64 * 1024

    @property
    def websocket_url(self) -> str:
        """Base URL with the scheme swapped for its websocket counterpart."""
        base = self.atc_url.rstrip("/")
        if base.startswith("https://"):
            return "wss://" + base[len("https://") :]
        if base.startswith("http://"):
            return "ws://" + base[len("http://") :]
        return base


def _strip_comments(record: str) -> str:
    """Drop inline comments while preserving leading assignment content."""
    hash_pos = record.find("#")
    if hash_pos == -1:
        return record
    return record[:hash_pos]


def load_fly_config(path: str = DEFAULT_CONFIG_PATH) -> FlyConfig:
    """
    Parse client configuration from disk and the environment.

    A missing file is not an error; defaults apply. Unknown keys are ignored.
    """

    cfg = FlyConfig()
    if path and os.path.exists(path):
        section_re = re.compile(r"^\s*\[([^\]]+)\]\s*$")
        kv_re = re.compile(r"^\s*(\w+)\s*=\s*(.*?)\s*$")
        in_client_section = False

        with open(path, "r", encoding="utf-8") as fp:
            for raw_record in fp:
                record = _strip_comments(raw_record).strip()
                if not record:
                    continue

                section_match = section_re.match(record)
                if section_match:
                    in_client_section = section_match.group(1) == "client"
                    continue

                if not in_client_section:
                    continue

                kv_match = kv_re.match(record)
                if not kv_match:
                    continue

                key, value = kv_match.group(1), kv_match.group(2)
                if key == "atcURL":
                    cfg.atc_url = value
                elif key == "connectTimeout":
                    cfg.connect_timeout = float(value)
                elif key == "chunkSize":
                    cfg.chunk_size = int(value)

    atc_url = os.environ.get("ATC_URL")
    if atc_url:
        cfg.atc_url = atc_url

    if cfg.connect_timeout <= 0:
        raise ValueError("connectTimeout must be positive")
    if cfg.chunk_size <= 0:
        raise ValueError("chunkSize must be positive")
    return cfg
