from .deduplicator import Deduplicator, DuplicateVerdict
from .fingerprint import content_checksum, frame_hash, perceptual_fingerprint
from .index import DuplicateIndex, IndexEntry

__all__ = [
    "Deduplicator",
    "DuplicateVerdict",
    "DuplicateIndex",
    "IndexEntry",
    "perceptual_fingerprint",
    "frame_hash",
    "content_checksum",
]
