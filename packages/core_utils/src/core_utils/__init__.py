from . import jsonx

__all__ = ["jsonx"]
