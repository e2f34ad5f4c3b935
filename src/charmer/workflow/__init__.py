"""Snakemake-side producers: metadata files and the main log."""

from charmer.workflow.log_errors import classify_pipeline_error
from charmer.workflow.main_log import LogInfo, find_latest_log, parse_log_content
from charmer.workflow.metadata import MetadataScanner, scan_metadata_directory

__all__ = [
    "LogInfo",
    "MetadataScanner",
    "classify_pipeline_error",
    "find_latest_log",
    "parse_log_content",
    "scan_metadata_directory",
]
