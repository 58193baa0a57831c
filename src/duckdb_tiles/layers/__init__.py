from .registry import LayerConfig, LayerRegistry

__all__ = [
    "LayerConfig",
    "LayerRegistry"
]
