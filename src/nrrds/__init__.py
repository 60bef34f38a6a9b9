"""nrrds - feedback-guided comic strip generator built on a chain of LLM calls."""

__version__ = "0.1.0"

from .models import Comic, Guidance, ReactionAck
from .service import ComicService

__all__ = ["Comic", "ComicService", "Guidance", "ReactionAck"]
