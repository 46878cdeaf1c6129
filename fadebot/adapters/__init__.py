from .base import ChannelAdapter
from .mock import MockAdapter

__all__ = ["ChannelAdapter", "MockAdapter"]
