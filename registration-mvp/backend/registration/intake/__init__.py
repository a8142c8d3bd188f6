from .factory import accepts, get_adapter, known_discriminators

__all__ = ["accepts", "get_adapter", "known_discriminators"]
