"""Per-trial statistics and their newline-delimited JSON persistence."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List

from pydantic import BaseModel, ConfigDict, Field


class TrialStatistics(BaseModel):
    """Outcome of one upload/download trial."""

    model_config = ConfigDict(populate_by_name=True)

    hash_match: bool = Field(alias="hash-match")
    size_mb: int = Field(alias="size-mb")
    upload_ns: int = Field(alias="upload-ns")
    download_ns: int = Field(alias="download-ns")

    def to_json_line(self) -> str:
        return self.model_dump_json(by_alias=True)


def write_statistics(path: Path, stats: Iterable[TrialStatistics]) -> Path:
    """Write one JSON record per trial and return the path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        for entry in stats:
            handle.write(entry.to_json_line())
            handle.write("\n")
    return path


def read_statistics(path: Path) -> List[TrialStatistics]:
    with path.open("r", encoding="utf-8") as handle:
        return [
            TrialStatistics.model_validate_json(line)
            for line in handle
            if line.strip()
        ]
