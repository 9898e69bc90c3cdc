"""Kernel services: flush-only writers operating in the caller's transaction."""

from pos_kernel.services.base import BaseService
from pos_kernel.services.sequence_service import SequenceService

__all__ = ["BaseService", "SequenceService"]
