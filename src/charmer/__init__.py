"""charmer: live monitoring for Snakemake pipelines on HPC schedulers."""

__version__ = "0.3.0"

__all__ = ["__version__"]
