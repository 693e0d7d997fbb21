from typing import Optional

from ..config import TokenizerConfig
from ..memory import MemoryLedger
from ..types import TokenizerVariant
from .base import TokenizationCodec, codec_id, validate_config
from .continuous import ContinuousCodec
from .discrete import DiscreteCodec
from .models import BlockPoolingModel, FrameCodecModel, block_shape, lattice_codebook
from .tokens import (
    DecodeOptions,
    DecodeResult,
    EncodeOptions,
    TokenBuffer,
    TokenizationResult,
    ValidationResult,
)

CODECS = {
    TokenizerVariant.CONTINUOUS: ContinuousCodec,
    TokenizerVariant.DISCRETE: DiscreteCodec,
}


def create_codec(
    config: TokenizerConfig,
    ledger: Optional[MemoryLedger] = None,
    model: Optional[FrameCodecModel] = None
) -> TokenizationCodec:
    """Instantiate the codec class matching ``config.variant``."""
    return CODECS[config.variant](config, ledger=ledger, model=model)


__all__ = [
    "TokenizationCodec",
    "ContinuousCodec",
    "DiscreteCodec",
    "FrameCodecModel",
    "BlockPoolingModel",
    "TokenBuffer",
    "TokenizationResult",
    "DecodeResult",
    "ValidationResult",
    "EncodeOptions",
    "DecodeOptions",
    "CODECS",
    "create_codec",
    "codec_id",
    "validate_config",
    "block_shape",
    "lattice_codebook",
]
