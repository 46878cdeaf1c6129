"""FadeBot - degrading-awareness engagement bot

This package selects an eligible member of a community, opens a single engagement
session for them and carries the session through a fixed number of conversation
rounds over a one-to-one channel. Delivery and generation are pluggable so a real
transport or language model can be added without changing the session engine.
"""

__all__ = [
    "__version__",
]

__version__ = "0.1.0"
