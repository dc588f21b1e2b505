"""Simulator of four MESI-coherent L1 caches on a snooping bus."""

__version__ = "0.1.0"
__all__ = ["model", "cache", "bus", "simulator"]