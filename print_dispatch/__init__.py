"""Print Dispatch Gateway: routes document types to heterogeneous printer backends."""

__version__ = "1.0.0"
