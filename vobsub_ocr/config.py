# vobsub_ocr/config.py
# -*- coding: utf-8 -*-
"""
Settings for the VobSub OCR pipeline.

AppConfig persists a flat dict of `ocr_*` keys in settings.json.
OCRSettings is the typed view the pipeline components are built from.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_BLACKLIST = "|\\/`_~"


@dataclass
class OCRSettings:
    """Typed OCR pipeline settings.

    All pipeline code should read settings through this dataclass,
    not through raw dict access.
    """

    # =========================================================================
    # Recognition (Tesseract)
    # =========================================================================
    language: str = "eng"
    tessdata_path: str | None = None
    psm: int = 7  # Single line mode
    oem: int = 1  # LSTM only
    dpi: int = 150
    char_blacklist: str = DEFAULT_BLACKLIST
    config_overrides: dict[str, str] = field(default_factory=dict)
    timeout_seconds: float = 30.0

    # =========================================================================
    # Index selection
    # =========================================================================
    stream_index: int | None = None
    forced_only: bool = False

    # =========================================================================
    # Compositing
    # =========================================================================
    composite_mode: str = "binary"
    threshold: float = 0.6

    # =========================================================================
    # Line segmentation
    # =========================================================================
    border_size: int = 10
    min_gap_rows: int = 2
    crop_horizontal: bool = True
    upscale_threshold_height: int = 0
    target_height: int = 80

    # =========================================================================
    # Processing & output
    # =========================================================================
    max_workers: int = field(default_factory=lambda: os.cpu_count() or 1)
    keep_empty_cues: bool = True
    default_duration_ms: int = 4000
    save_debug_images: bool = False
    debug_dir: str | None = None

    @classmethod
    def from_dict(cls, settings: dict[str, Any]) -> OCRSettings:
        """Build settings from a flat `ocr_*` settings dict."""
        defaults = cls()
        overrides = settings.get("ocr_config_overrides") or {}
        workers = settings.get("ocr_max_workers") or defaults.max_workers
        stream_index = settings.get("ocr_stream_index")

        return cls(
            language=settings.get("ocr_language", defaults.language),
            tessdata_path=settings.get("ocr_tessdata_path") or None,
            psm=int(settings.get("ocr_tesseract_psm", defaults.psm)),
            oem=int(settings.get("ocr_tesseract_oem", defaults.oem)),
            dpi=int(settings.get("ocr_dpi", defaults.dpi)),
            char_blacklist=settings.get("ocr_char_blacklist", defaults.char_blacklist),
            config_overrides={str(k): str(v) for k, v in overrides.items()},
            timeout_seconds=float(settings.get("ocr_timeout_seconds", defaults.timeout_seconds)),
            stream_index=int(stream_index) if stream_index is not None else None,
            forced_only=bool(settings.get("ocr_forced_only", defaults.forced_only)),
            composite_mode=settings.get("ocr_composite_mode", defaults.composite_mode),
            threshold=float(settings.get("ocr_threshold", defaults.threshold)),
            border_size=int(settings.get("ocr_border_size", defaults.border_size)),
            min_gap_rows=int(settings.get("ocr_min_gap_rows", defaults.min_gap_rows)),
            crop_horizontal=bool(settings.get("ocr_crop_horizontal", defaults.crop_horizontal)),
            upscale_threshold_height=int(
                settings.get("ocr_upscale_threshold", defaults.upscale_threshold_height)
            ),
            target_height=int(settings.get("ocr_target_height", defaults.target_height)),
            max_workers=max(1, int(workers)),
            keep_empty_cues=bool(settings.get("ocr_keep_empty_cues", defaults.keep_empty_cues)),
            default_duration_ms=int(
                settings.get("ocr_default_duration_ms", defaults.default_duration_ms)
            ),
            save_debug_images=bool(
                settings.get("ocr_save_debug_images", defaults.save_debug_images)
            ),
            debug_dir=settings.get("ocr_debug_dir") or None,
        )


class AppConfig:
    def __init__(self, settings_filename='settings.json', settings_dir: Path | str | None = None):
        self.script_dir = Path(__file__).resolve().parent.parent
        base_dir = Path(settings_dir) if settings_dir else self.script_dir
        self.settings_path = base_dir / settings_filename
        self.defaults = {
            # --- Recognition ---
            'ocr_language': 'eng',
            'ocr_tessdata_path': '',
            'ocr_tesseract_psm': 7,
            'ocr_tesseract_oem': 1,
            'ocr_dpi': 150,
            'ocr_char_blacklist': DEFAULT_BLACKLIST,
            'ocr_config_overrides': {},  # extra "-c key=value" pairs for Tesseract
            'ocr_timeout_seconds': 30.0,

            # --- Index selection ---
            'ocr_stream_index': None,  # None = use langidx from the .idx
            'ocr_forced_only': False,

            # --- Compositing ---
            'ocr_composite_mode': 'binary',  # 'binary' or 'grayscale'
            'ocr_threshold': 0.6,

            # --- Line segmentation ---
            'ocr_border_size': 10,
            'ocr_min_gap_rows': 2,
            'ocr_crop_horizontal': True,
            'ocr_upscale_threshold': 0,  # 0 = never upscale
            'ocr_target_height': 80,

            # --- Processing & output ---
            'ocr_max_workers': 0,  # 0 = one per CPU
            'ocr_keep_empty_cues': True,
            'ocr_default_duration_ms': 4000,
            'ocr_save_debug_images': False,
            'ocr_debug_dir': '',
        }
        self.settings = self.defaults.copy()
        self.load()

    def load(self):
        changed = False
        if self.settings_path.exists():
            try:
                with open(self.settings_path, 'r', encoding='utf-8') as f:
                    loaded_settings = json.load(f)

                for key, default_value in self.defaults.items():
                    if key not in loaded_settings:
                        loaded_settings[key] = default_value
                        changed = True
                self.settings = loaded_settings
            except (json.JSONDecodeError, OSError) as e:
                logger.warning(f"Could not read {self.settings_path}, using defaults: {e}")
                self.settings = self.defaults.copy()
                changed = True
        else:
            self.settings = self.defaults.copy()
            changed = True

        if changed:
            self.save()

    def save(self):
        try:
            keys_to_save = self.defaults.keys()
            settings_to_save = {k: self.settings.get(k) for k in keys_to_save if k in self.settings}
            with open(self.settings_path, 'w', encoding='utf-8') as f:
                json.dump(settings_to_save, f, indent=4)
        except OSError as e:
            logger.error(f"Error saving settings: {e}")

    def get(self, key: str, default: Any = None) -> Any:
        return self.settings.get(key, default)

    def set(self, key: str, value: Any):
        self.settings[key] = value

    def to_settings(self) -> OCRSettings:
        """Typed settings for the pipeline."""
        return OCRSettings.from_dict(self.settings)

    def ensure_dirs_exist(self):
        debug_dir = self.get('ocr_debug_dir')
        if self.get('ocr_save_debug_images') and debug_dir:
            Path(debug_dir).mkdir(parents=True, exist_ok=True)
