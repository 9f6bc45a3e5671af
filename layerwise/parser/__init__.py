"""Dockerfile parsing."""

from .dockerfile_parser import (
    Dockerfile,
    ImageReference,
    Instruction,
    Stage,
    load_dockerfile,
    parse_arg_declarations,
    parse_dockerfile,
    parse_image_reference,
)

__all__ = [
    "Dockerfile",
    "ImageReference",
    "Instruction",
    "Stage",
    "load_dockerfile",
    "parse_arg_declarations",
    "parse_dockerfile",
    "parse_image_reference",
]
