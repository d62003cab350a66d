# ABOUTME: Package initialization for the splat compressor
# ABOUTME: Exports the data model, format selectors and pipeline entry points

from .gaussian_splat import InputSplat, SplatArray
from .formats import VectorFormat, ColorFormat, SHFormat, FORMAT_VERSION, CHUNK_SIZE
from .errors import SplatPackError, InvalidInputError, AssetIOError
from .asset import SplatAsset, CameraInfo, load_asset
from .pipeline import CompressionConfig, Pipeline, compress_splats

__version__ = "0.1.0"

__all__ = [
    "InputSplat",
    "SplatArray",
    "VectorFormat",
    "ColorFormat",
    "SHFormat",
    "FORMAT_VERSION",
    "CHUNK_SIZE",
    "SplatPackError",
    "InvalidInputError",
    "AssetIOError",
    "SplatAsset",
    "CameraInfo",
    "load_asset",
    "CompressionConfig",
    "Pipeline",
    "compress_splats",
]
