"""AES-128-GCM frame cryptors, per-generation cryptor management and codec-aware frame splitting."""

__version__ = "0.1.0"

__all__ = ["codec_utils", "cryptor", "cryptor_manager"]