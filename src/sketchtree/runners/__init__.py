"""External tool runner adapters."""

from sketchtree.runners.mash import MashRunner

__all__ = ["MashRunner"]
