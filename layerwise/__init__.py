"""layerwise: layer-order linting, build-context scanning and cache planning for Dockerfiles."""

__version__ = "0.1.0"
