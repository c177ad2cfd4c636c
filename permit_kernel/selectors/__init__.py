"""Read-only selectors for the permit kernel."""

from permit_kernel.selectors.directory_selector import DirectorySelector
from permit_kernel.selectors.request_selector import RequestSelector, RequestStats

__all__ = ["DirectorySelector", "RequestSelector", "RequestStats"]
