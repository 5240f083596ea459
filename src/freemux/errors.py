# src/freemux/errors.py
from __future__ import annotations


class FreemuxError(Exception):
    """Base class for fatal freemux errors."""


class ConfigError(FreemuxError):
    """Missing or invalid run configuration."""


class PileupFormatError(FreemuxError, ValueError):
    """Malformed record in one of the pileup inputs."""


class IndexMismatch(PileupFormatError):
    """SNP/droplet index bookkeeping disagrees with what was ingested."""


class LengthMismatch(PileupFormatError):
    """Allele and base-quality strings of a pileup row differ in length."""


def where(path: object, line: int | None = None) -> str:
    """Location prefix for error messages: 'file:line'."""
    if line is None:
        return str(path)
    return f"{path}:{line}"
