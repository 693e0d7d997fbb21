from .base import Annotator
from .mock import MockAnnotator

__all__ = ["Annotator", "MockAnnotator"]
