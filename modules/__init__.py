"""Helper modules for the print fulfillment service."""

__all__ = [
    "address_validator",
    "mxjdf_builder",
    "pricing",
    "validation",
]
