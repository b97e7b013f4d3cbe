from ._version import __version__
from .api import ClientContext
from .client import HTTPError, NotFoundError, ThreeBladesClient, ThreeBladesError, TransportError, ValidationError
from .renderer import EncodingError, TemplateError, render

__all__ = [
    "ClientContext",
    "EncodingError",
    "HTTPError",
    "NotFoundError",
    "TemplateError",
    "ThreeBladesClient",
    "ThreeBladesError",
    "TransportError",
    "ValidationError",
    "__version__",
    "render",
]
