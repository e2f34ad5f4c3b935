"""Scheduler producers (SLURM, LSF), field parsers, and the subprocess runner.

Import the submodules directly: ``charmer.schedulers.slurm``,
``charmer.schedulers.lsf``, ``charmer.schedulers.base``.
"""
