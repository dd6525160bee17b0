"""
Document-type mapping.

Maps logical document types (what you want to print) to a physical target.
The web app sends a document type, the server decides where it goes.
"""

from dataclasses import dataclass
from typing import Optional, Union

from print_dispatch.errors import ConfigError, MappingNotFound

AUTO_TRAY = "auto"


@dataclass(frozen=True)
class NetworkTray:
    """A tray on the network (IPP) printer. ``"auto"`` lets the printer choose."""
    tray_id: str = AUTO_TRAY

    def describe(self) -> str:
        return f"network tray={self.tray_id}"


@dataclass(frozen=True)
class SpoolerPrinter:
    """A printer known to the local OS spooler."""
    printer_name: str

    def describe(self) -> str:
        return f"spooler printer={self.printer_name}"


@dataclass(frozen=True)
class BridgeSlot:
    """A placeholder file watched by the filesystem bridge."""
    slot_id: str

    def describe(self) -> str:
        return f"bridge slot={self.slot_id}"


TargetDescriptor = Union[NetworkTray, SpoolerPrinter, BridgeSlot]

# Config key -> target variant. Exactly one of these per mapping entry.
TARGET_KEYS = {
    "tray": NetworkTray,
    "printer": SpoolerPrinter,
    "slot": BridgeSlot,
}


@dataclass(frozen=True)
class Mapping:
    name: str
    target: TargetDescriptor

    def to_dict(self) -> dict:
        if isinstance(self.target, NetworkTray):
            return {"name": self.name, "tray": self.target.tray_id}
        if isinstance(self.target, SpoolerPrinter):
            return {"name": self.name, "printer": self.target.printer_name}
        return {"name": self.name, "slot": self.target.slot_id}


def parse_mapping(entry: dict) -> Mapping:
    """
    Build a Mapping from a config entry.

    Config format:
        mappings:
          - name: invoice
            tray: tray-1          # network printer tray ("auto" allowed)
          - name: receipt
            printer: Brother_MFC  # OS spooler printer
          - name: legacy-form
            slot: output_tray__1.pdf   # filesystem bridge slot

    Raises ConfigError unless exactly one target key is present.
    """
    if not isinstance(entry, dict):
        raise ConfigError(f"Mapping entry must be a mapping, got {type(entry).__name__}")

    name = entry.get("name")
    if not name or not isinstance(name, str):
        raise ConfigError("Mapping entry has no 'name'", {"entry": entry})

    present = [key for key in TARGET_KEYS if entry.get(key) not in (None, "")]
    if len(present) != 1:
        raise ConfigError(
            f"Mapping '{name}' must set exactly one of {', '.join(TARGET_KEYS)}",
            {"entry": entry}
        )

    key = present[0]
    return Mapping(name=name, target=TARGET_KEYS[key](str(entry[key])))


class MappingResolver:
    """
    Resolves document types to target descriptors.

    Lookup is an exact string match. There is no fallback: a document type
    that should print to a tray of the same name needs an explicit
    one-to-one mapping.
    """

    def __init__(self, mappings: Optional[list[Mapping]] = None):
        self._mappings: dict[str, Mapping] = {}
        if mappings:
            self.replace(mappings)

    def load(self, entries: list[dict]) -> None:
        """Load mappings from raw config entries."""
        self.replace([parse_mapping(entry) for entry in entries or []])

    def replace(self, mappings: list[Mapping]) -> None:
        """Swap the whole mapping set. Duplicate names are rejected."""
        new_mappings: dict[str, Mapping] = {}
        for mapping in mappings:
            if mapping.name in new_mappings:
                raise ConfigError(f"Duplicate mapping name: '{mapping.name}'")
            new_mappings[mapping.name] = mapping
        # Rebind rather than mutate so an in-progress lookup sees one set
        self._mappings = new_mappings

    def resolve(self, doc_type: str) -> TargetDescriptor:
        """Resolve a document type, raising MappingNotFound on a miss."""
        mapping = self._mappings.get(doc_type)
        if mapping is None:
            raise MappingNotFound(doc_type)
        return mapping.target

    def list_mappings(self) -> list[Mapping]:
        """List all configured mappings for API discovery."""
        return list(self._mappings.values())

    def add_mapping(self, name: str, target: TargetDescriptor) -> None:
        """Programmatically add a mapping (useful for testing)."""
        self._mappings = {**self._mappings, name: Mapping(name=name, target=target)}

    def __len__(self) -> int:
        return len(self._mappings)
