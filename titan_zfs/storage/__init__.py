from .pool import Pool, PoolManager

__all__ = ["Pool", "PoolManager"]
