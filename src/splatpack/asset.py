# ABOUTME: Asset assembly: buffer files, content hash, camera metadata and the asset record
# ABOUTME: Writes <base>_*.bytes buffers and a <base>.asset.json descriptor

import hashlib
import json
import logging
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np

from .errors import AssetIOError, InvalidInputError
from .formats import FORMAT_VERSION, ColorFormat, SHFormat, VectorFormat

logger = logging.getLogger('splatpack')

CAMERAS_JSON = 'cameras.json'
DEFAULT_CAMERA_FOV = 25.0

# Buffer kind -> file suffix
BUFFER_SUFFIXES = {
    'chunk': '_chk.bytes',
    'position': '_pos.bytes',
    'other': '_oth.bytes',
    'color': '_col.bytes',
    'sh': '_shs.bytes',
}


class ContentHash:
    """
    128-bit order-sensitive fingerprint over everything an asset is built from.

    Used for change detection only.
    """

    def __init__(self, splat_count: int, format_version: int = FORMAT_VERSION):
        self._hash = hashlib.blake2b(digest_size=16)
        self._hash.update(struct.pack('<II', splat_count & 0xffffffff, format_version & 0xffffffff))

    def append(self, data: bytes) -> None:
        self._hash.update(data)

    def append_int(self, value: int) -> None:
        self._hash.update(struct.pack('<I', value & 0xffffffff))

    def hexdigest(self) -> str:
        return self._hash.hexdigest()


@dataclass
class CameraInfo:
    """Pass-through camera pose; axes are world-space unit vectors."""
    pos: List[float]
    axis_x: List[float]
    axis_y: List[float]
    axis_z: List[float]
    fov: float = DEFAULT_CAMERA_FOV

    def to_dict(self) -> dict:
        return {
            'pos': list(self.pos),
            'axis_x': list(self.axis_x),
            'axis_y': list(self.axis_y),
            'axis_z': list(self.axis_z),
            'fov': self.fov,
        }


def find_cameras_file(source_path: Union[str, Path]) -> Optional[Path]:
    """Look for cameras.json next to the source file, then in each parent directory."""
    current = Path(source_path).resolve()
    directory = current if current.is_dir() else current.parent
    for candidate_dir in [directory, *directory.parents]:
        candidate = candidate_dir / CAMERAS_JSON
        if candidate.is_file():
            return candidate
    return None


def load_cameras(source_path: Union[str, Path]) -> Optional[List[CameraInfo]]:
    """
    Load camera poses from the nearest cameras.json.

    Each entry needs ``position`` (3 floats) and ``rotation`` (3x3, camera
    axes in columns). Y and Z axes are flipped to match the renderer's
    convention and fov is fixed.

    Returns:
        List of cameras, or None when no file or no entries are found
    """
    path = find_cameras_file(source_path)
    if path is None:
        logger.debug("No %s found for %s", CAMERAS_JSON, source_path)
        return None

    try:
        entries = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise InvalidInputError(f"Malformed camera file {path}: {e}") from e

    if not entries:
        return None

    cameras = []
    for i, entry in enumerate(entries):
        try:
            pos = np.asarray(entry['position'], dtype=np.float32).reshape(3)
            rot = np.asarray(entry['rotation'], dtype=np.float32).reshape(3, 3)
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidInputError(f"Camera {i} in {path} is malformed: {e}") from e
        cameras.append(CameraInfo(
            pos=pos.tolist(),
            axis_x=rot[:, 0].tolist(),
            axis_y=(-rot[:, 1]).tolist(),
            axis_z=(-rot[:, 2]).tolist(),
        ))

    logger.info("Loaded %d cameras from %s", len(cameras), path)
    return cameras


@dataclass
class SplatAsset:
    """Metadata record binding the buffers of one compressed splat set."""
    name: str
    splat_count: int
    pos_format: VectorFormat
    scale_format: VectorFormat
    color_format: ColorFormat
    sh_format: SHFormat
    bounds_min: List[float]
    bounds_max: List[float]
    requested_sh_format: Optional[SHFormat] = None
    chunk_count: int = 0
    sh_count: int = 0
    data_hash: str = ''
    format_version: int = FORMAT_VERSION
    cameras: Optional[List[CameraInfo]] = None
    files: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'format_version': self.format_version,
            'splat_count': self.splat_count,
            'pos_format': self.pos_format.name,
            'scale_format': self.scale_format.name,
            'color_format': self.color_format.name,
            'sh_format': self.sh_format.name,
            'requested_sh_format': (self.requested_sh_format or self.sh_format).name,
            'bounds_min': [float(v) for v in self.bounds_min],
            'bounds_max': [float(v) for v in self.bounds_max],
            'chunk_count': self.chunk_count,
            'sh_count': self.sh_count,
            'data_hash': self.data_hash,
            'cameras': [c.to_dict() for c in self.cameras] if self.cameras else None,
            'files': dict(self.files),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'SplatAsset':
        cameras = data.get('cameras')
        return cls(
            name=data['name'],
            splat_count=data['splat_count'],
            pos_format=VectorFormat.parse(data['pos_format']),
            scale_format=VectorFormat.parse(data['scale_format']),
            color_format=ColorFormat.parse(data['color_format']),
            sh_format=SHFormat.parse(data['sh_format']),
            requested_sh_format=SHFormat.parse(data.get('requested_sh_format', data['sh_format'])),
            bounds_min=data['bounds_min'],
            bounds_max=data['bounds_max'],
            chunk_count=data.get('chunk_count', 0),
            sh_count=data.get('sh_count', 0),
            data_hash=data.get('data_hash', ''),
            format_version=data.get('format_version', FORMAT_VERSION),
            cameras=[CameraInfo(**c) for c in cameras] if cameras else None,
            files=data.get('files', {}),
        )


class AssetWriter:
    """Writes buffer files for one asset and folds their bytes into the content hash."""

    def __init__(self, output_dir: Union[str, Path], base_name: str, content_hash: ContentHash):
        self.output_dir = Path(output_dir)
        self.base_name = base_name
        self.content_hash = content_hash
        self.written: Dict[str, Path] = {}

    def path_for(self, kind: str) -> Path:
        return self.output_dir / f"{self.base_name}{BUFFER_SUFFIXES[kind]}"

    def write_buffer(self, kind: str, data: bytes) -> Path:
        """Hash and persist one buffer. Raises AssetIOError on failure."""
        self.content_hash.append(data)
        path = self.path_for(kind)
        try:
            path.write_bytes(data)
        except OSError as e:
            raise AssetIOError(f"Failed to write {kind} buffer to {path}: {e}") from e
        self.written[kind] = path
        logger.debug("Wrote %s buffer: %s (%d bytes)", kind, path.name, len(data))
        return path

    def write_asset(self, asset: SplatAsset) -> Path:
        """Persist the asset descriptor after all buffers are on disk."""
        asset.files = {kind: path.name for kind, path in self.written.items()}
        path = self.output_dir / f"{self.base_name}.asset.json"
        try:
            path.write_text(json.dumps(asset.to_dict(), indent=2))
        except OSError as e:
            raise AssetIOError(f"Failed to write asset metadata to {path}: {e}") from e
        self.written['asset'] = path
        return path

    def remove_written(self) -> None:
        """Delete files written so far (used when a run fails)."""
        for path in self.written.values():
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("Could not remove partial output %s: %s", path, e)
        self.written.clear()


def load_asset(path: Union[str, Path]) -> SplatAsset:
    """Read an asset descriptor written by ``AssetWriter.write_asset``."""
    return SplatAsset.from_dict(json.loads(Path(path).read_text()))
