"""freemux: genotype-free singlet/doublet scoring and droplet relatedness for pooled single-cell pileups."""

__version__ = "0.1.0"
