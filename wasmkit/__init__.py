"""Decode, encode, link and validate WebAssembly binary modules."""

__version__ = "0.1.0"
__all__ = [
    "leb128",
    "wire",
    "types",
    "initexpr",
    "operators",
    "sections",
    "module",
    "validate",
]