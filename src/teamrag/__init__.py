"""TeamRAG: grounded question answering over team documentation."""

from importlib import metadata


def __getattr__(name: str) -> str:
    if name == "__version__":
        try:
            return metadata.version("teamrag")
        except metadata.PackageNotFoundError:  # pragma: no cover - running from a source checkout
            return "0.0.0"
    raise AttributeError(name)


__all__ = ["__version__"]
