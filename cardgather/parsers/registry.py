from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cardgather.parsers.base import BaseParser

PARSER_REGISTRY: dict[str, type[BaseParser]] = {}


def register_parser(key: str):
    """Decorator to register a parser class under a source key."""
    def decorator(cls):
        PARSER_REGISTRY[key] = cls
        cls.SOURCE = key
        return cls
    return decorator


def get_parser(key: str, base_url: str | None = None) -> BaseParser:
    """Return a parser instance for the given source key."""
    import cardgather.parsers  # noqa: F401  (registers the built-in parsers)

    try:
        parser_cls = PARSER_REGISTRY[key]
    except KeyError:
        raise ValueError(f"No parser registered for source '{key}'") from None
    return parser_cls(base_url) if base_url else parser_cls()


def list_parser_keys() -> list[str]:
    """Return all registered parser keys."""
    import cardgather.parsers  # noqa: F401

    return sorted(PARSER_REGISTRY.keys())
