# ABOUTME: Configuration dataclass for compression settings
# ABOUTME: Validates format selectors and output location before any stage runs

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from ..formats import (
    QUALITY_PRESETS, ColorFormat, SHFormat, VectorFormat,
)

DEFAULT_PRESET = 'medium'


def _parse_format(enum_cls, value, label: str):
    try:
        return enum_cls.parse(value)
    except ValueError:
        valid = ', '.join(m.name for m in enum_cls)
        raise ValueError(f"Invalid {label} format: {value} (valid: {valid})")


@dataclass
class CompressionConfig:
    """Configuration for one compression run."""

    output_dir: Path
    base_name: str
    pos_format: Union[VectorFormat, str] = VectorFormat.Norm11
    scale_format: Union[VectorFormat, str] = VectorFormat.Norm11
    color_format: Union[ColorFormat, str] = ColorFormat.Norm8x4
    sh_format: Union[SHFormat, str] = SHFormat.Norm6
    import_cameras: bool = False
    source_path: Optional[Path] = None  # where to look for cameras.json
    workers: Optional[int] = None  # None = one per CPU
    kmeans_seed: int = 0
    cleanup_on_failure: bool = False  # remove buffers written by a failed run

    def __post_init__(self):
        """Validate configuration after initialization."""
        self.output_dir = Path(self.output_dir)
        if self.source_path is not None:
            self.source_path = Path(self.source_path)

        if not self.base_name or not str(self.base_name).strip():
            raise ValueError("Base name must not be empty")
        if any(sep in self.base_name for sep in ('/', '\\')):
            raise ValueError(f"Base name must not contain path separators: {self.base_name}")

        self.pos_format = _parse_format(VectorFormat, self.pos_format, 'position')
        self.scale_format = _parse_format(VectorFormat, self.scale_format, 'scale')
        self.color_format = _parse_format(ColorFormat, self.color_format, 'color')
        self.sh_format = _parse_format(SHFormat, self.sh_format, 'SH')

        if self.workers is not None and self.workers < 1:
            raise ValueError("Worker count must be at least 1")

        if self.import_cameras and self.source_path is None:
            raise ValueError("Camera import requires a source path")

        if self.output_dir.exists() and not self.output_dir.is_dir():
            raise ValueError(f"Output path is not a directory: {self.output_dir}")

        self.output_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_preset(cls, preset: str, output_dir: Path, base_name: str, **kwargs) -> 'CompressionConfig':
        """
        Build a config from a named quality preset.

        Presets: very_high, high, medium, low, very_low.
        """
        key = preset.strip().lower().replace('-', '_').replace(' ', '_')
        if key not in QUALITY_PRESETS:
            raise ValueError(f"Invalid preset: {preset} (valid: {', '.join(QUALITY_PRESETS)})")
        pos, scale, color, sh = QUALITY_PRESETS[key]
        return cls(output_dir=output_dir, base_name=base_name,
                   pos_format=pos, scale_format=scale, color_format=color, sh_format=sh,
                   **kwargs)
