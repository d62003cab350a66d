# ABOUTME: Exception hierarchy for the splat compression pipeline
# ABOUTME: Separates rejected input from storage failures


class SplatPackError(Exception):
    """Base class for all pipeline errors."""
    pass


class InvalidInputError(SplatPackError, ValueError):
    """Input rejected before any stage runs (empty array, bad format combination)."""
    pass


class AssetIOError(SplatPackError, OSError):
    """Writing an output buffer or the asset metadata failed."""
    pass
