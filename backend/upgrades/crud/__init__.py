from . import crud_checkout

__all__ = ["crud_checkout"]
