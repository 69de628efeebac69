"""Configuration model for the ingestkit-reports normalization engine.

Provides ``ReportParserConfig`` with all tunable parameters and sensible
defaults.  Supports loading overrides from YAML or JSON files via the
``from_file()`` classmethod.
"""

from __future__ import annotations

import json
import pathlib

from pydantic import BaseModel


class ReportParserConfig(BaseModel):
    """All tunable parameters with sensible defaults.

    Override individual values via constructor kwargs or load a complete
    config from a file with ``ReportParserConfig.from_file(path)``.
    """

    # --- Identity ---
    parser_version: str = "ingestkit_reports:1.0.0"

    # --- Canonical values ---
    missing_value: str = "N/A"

    # --- Worksheet extraction ---
    delimited_text_ratio_threshold: float = 8.0
    field_delimiter: str = ","
    date_format: str = "%Y-%m-%d"

    # --- Resource limits ---
    max_file_size_mb: int = 50
    max_rows_per_tab: int = 100_000

    # --- Normalization ---
    rejoin_split_amounts: bool = True

    # --- Logging / PII safety ---
    log_sample_data: bool = False

    @classmethod
    def from_file(cls, path: str) -> ReportParserConfig:
        """Load configuration from a YAML or JSON file.

        File format is detected by extension: ``.yaml`` / ``.yml`` for YAML,
        ``.json`` for JSON.  Any keys present in the file override the
        corresponding defaults; keys not present retain their defaults.

        Args:
            path: Filesystem path to the configuration file.

        Returns:
            A fully-populated ``ReportParserConfig`` instance.

        Raises:
            FileNotFoundError: If *path* does not exist.
            ValueError: If the file extension is not recognized.
            ImportError: If a YAML file is provided but ``pyyaml`` is not
                installed.
        """
        file_path = pathlib.Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        suffix = file_path.suffix.lower()

        if suffix in (".yaml", ".yml"):
            try:
                import yaml  # type: ignore[import-untyped]
            except ImportError as exc:
                raise ImportError(
                    "pyyaml is required to load YAML config files. "
                    "Install it with: pip install pyyaml"
                ) from exc
            with open(file_path) as fh:
                data = yaml.safe_load(fh)
        elif suffix == ".json":
            with open(file_path) as fh:
                data = json.load(fh)
        else:
            raise ValueError(
                f"Unsupported config file extension '{suffix}'. "
                "Use .yaml, .yml, or .json."
            )

        if data is None:
            data = {}

        return cls(**data)
