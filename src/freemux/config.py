from __future__ import annotations
from pathlib import Path
from typing import List, Optional
import json

from pydantic import BaseModel, ValidationError, field_validator, model_validator

from .errors import ConfigError


class FreemuxConfig(BaseModel):
    plp: Optional[str] = None         # prefix of <plp>.cel.gz / .var.gz / .plp.gz
    out: Optional[str] = None         # output prefix

    alpha: List[float] = [0.0, 0.5]   # grid of doublet mixing fractions
    doublet_prior: float = 0.5

    cap_bq: int = 40                  # higher base qualities are capped
    min_bq: int = 13                  # lower base qualities are skipped

    group_list: Optional[str] = None  # barcodes to keep; all others ignored
    min_total: int = 0
    min_uniq: int = 0
    min_snp: int = 0

    threads: int = 1
    max_droplets: Optional[int] = None   # top-K ranked droplets for the pairwise pass
    max_seconds: Optional[float] = None  # deadline for the pairwise pass

    cluster: bool = True
    cluster_margin: float = 2.0       # LLK2 - LLK0 above which two droplets share an edge
    seed: int = 0

    chunk_rows: int = 1_000_000       # pileup rows per pandas chunk
    flush_rows: int = 100_000         # pair rows buffered before each write
    verbose: bool = True

    @field_validator("alpha")
    @classmethod
    def _alpha_in_unit_interval(cls, v: List[float]) -> List[float]:
        for a in v:
            if not 0.0 <= a <= 1.0:
                raise ValueError(f"alpha must be within [0, 1], got {a}")
        return sorted(set(v)) if v else [0.0, 0.5]

    @field_validator("doublet_prior")
    @classmethod
    def _prior_open_interval(cls, v: float) -> float:
        if not 0.0 < v < 1.0:
            raise ValueError(f"doublet_prior must be within (0, 1), got {v}")
        return v

    @field_validator("min_total", "min_uniq", "min_snp", "min_bq", "cap_bq")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("thresholds must be >= 0")
        return v

    @field_validator("threads", "chunk_rows", "flush_rows")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        return max(1, int(v))

    @model_validator(mode="after")
    def _bq_order(self) -> "FreemuxConfig":
        if self.min_bq > self.cap_bq:
            raise ValueError(f"min_bq ({self.min_bq}) exceeds cap_bq ({self.cap_bq})")
        return self

    @classmethod
    def load(cls, path: str | Path) -> "FreemuxConfig":
        p = Path(path)
        if not p.exists():
            raise ConfigError(f"Config file not found: {p}")
        try:
            return cls(**json.loads(p.read_text()))
        except (ValidationError, json.JSONDecodeError) as e:
            raise ConfigError(f"Invalid config {p}: {e}") from e

    def merged(self, **overrides) -> "FreemuxConfig":
        """Copy with every non-None override applied (CLI > JSON > defaults)."""
        d = self.model_dump()
        d.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return FreemuxConfig(**d)
        except ValidationError as e:
            raise ConfigError(str(e)) from e

    # input / output paths
    def cel_path(self) -> Path: return Path(f"{self.plp}.cel.gz")
    def var_path(self) -> Path: return Path(f"{self.plp}.var.gz")
    def plp_path(self) -> Path: return Path(f"{self.plp}.plp.gz")
    def lmix_path(self) -> Path: return Path(f"{self.out}.lmix")
    def ldist_path(self) -> Path: return Path(f"{self.out}.ldist")
    def dbl_path(self) -> Path: return Path(f"{self.out}.dbl")
    def clust_path(self) -> Path: return Path(f"{self.out}.clust")

    def check_inputs(self) -> None:
        if not self.plp or not self.out:
            raise ConfigError("Missing required option(s) : --plp and --out")
        missing = [str(p) for p in (self.cel_path(), self.var_path(), self.plp_path()) if not p.exists()]
        if missing:
            raise ConfigError(f"Pileup input(s) not found: {', '.join(missing)}")
        if self.group_list and not Path(self.group_list).exists():
            raise ConfigError(f"Group list not found: {self.group_list}")

    def ensure_out_dir(self) -> None:
        Path(self.out).parent.mkdir(parents=True, exist_ok=True)
