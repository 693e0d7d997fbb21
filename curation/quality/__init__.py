from .assessor import QualityAssessor, sliding_windows

__all__ = ["QualityAssessor", "sliding_windows"]
