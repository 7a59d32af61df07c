"""Clinical protocol template library."""

from protocols.catalog import (
    CLINICAL_PROTOCOLS,
    ProtocolItem,
    ProtocolTemplate,
    get_protocol,
    list_protocols,
    require_protocol,
    validate_catalog,
)

__all__ = [
    "CLINICAL_PROTOCOLS",
    "ProtocolItem",
    "ProtocolTemplate",
    "get_protocol",
    "list_protocols",
    "require_protocol",
    "validate_catalog",
]
