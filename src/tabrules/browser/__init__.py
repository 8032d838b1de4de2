"""Browser hosts the rule engine can run against."""

from tabrules.browser.memory import InMemoryBrowser, MutationRecord

__all__ = [
    "InMemoryBrowser",
    "MutationRecord",
]
