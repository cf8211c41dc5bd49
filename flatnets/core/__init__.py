"""Core layout primitives for flatnets."""

from . import activations, buffers, layers, layout, types

__all__ = ["activations", "buffers", "layers", "layout", "types"]
