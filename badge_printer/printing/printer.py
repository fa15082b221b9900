"""
Printer resource for Badge Printer.

This module owns:
- The PrinterResource contract the print queue drives (discover, connect,
  apply_preset, print_document, status)
- Named print presets
- An ESC/POS implementation built on python-escpos (USB, network, serial,
  and an in-memory Dummy printer for development)

Every driver failure surfaces as PrintError (or PrinterConnectionError from
connect); the queue never has to tell "offline" from "paper jam".
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from PIL import Image

from badge_printer.core.errors import InvalidState, PrintError, PrinterConnectionError, UnknownPreset

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PrinterDescriptor:
    id: str
    name: str
    connected: bool
    printer_type: str = "usb"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Preset:
    name: str
    description: str
    options: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "options": dict(self.options)}


PRESETS: Dict[str, Preset] = {
    "default": Preset(
        "Default Badge",
        "Standard badge printing settings",
        {"copies": 1, "cut": True, "align": "center", "max_width": 512},
    ),
    "high-quality": Preset(
        "High Quality",
        "High quality badge printing",
        {"copies": 1, "cut": True, "align": "center", "max_width": 512},
    ),
    "fast": Preset(
        "Fast Print",
        "Fast badge printing for high volume",
        {"copies": 1, "cut": False, "align": "left", "max_width": 384},
    ),
}


class PrinterResource(ABC):
    """
    A single serial printer exclusively driven by the print queue.

    print_document() may block for the whole physical print and must
    eventually return or raise PrintError.
    """

    supports_abort: bool = False

    def __init__(self, presets: Optional[Mapping[str, Preset]] = None) -> None:
        self.presets: Dict[str, Preset] = dict(presets or PRESETS)
        self.active_preset: str = "default"

    @abstractmethod
    def discover(self) -> List[PrinterDescriptor]:
        """Return the printers this resource can drive."""

    @abstractmethod
    def connect(self, printer_id: str) -> None:
        """Select a printer. Raises PrinterConnectionError when unavailable."""

    @abstractmethod
    def print_document(self, document: Image.Image, preset_name: str = "default") -> None:
        """Print one rendered document. Raises PrintError on any failure."""

    @abstractmethod
    def status(self) -> Dict[str, Any]:
        """Return {connected, printer_id, detail}."""

    def disconnect(self) -> None:
        return None

    def get_preset(self, name: str) -> Preset:
        preset = self.presets.get(name)
        if preset is None:
            raise UnknownPreset(f"Preset not found: {name}")
        return preset

    def apply_preset(self, name: str) -> Preset:
        """Make `name` the active preset and return it."""
        preset = self.get_preset(name)
        self.active_preset = name
        logger.info("Applied printer preset %s", name)
        return preset

    def list_presets(self) -> List[Dict[str, Any]]:
        return [{"id": key, **p.to_dict()} for key, p in self.presets.items()]

    def abort(self) -> None:
        """
        Stop the in-flight print. Only meaningful when supports_abort is True;
        resources without an abort primitive raise InvalidState.
        """
        raise InvalidState("This printer cannot abort an in-flight print")


def _open_escpos(config: Mapping[str, Any]):
    """
    Create and return an ESC/POS printer instance based on the provided config.
    Supports USB, Network, Serial and Dummy with optional 'printer_profile'.
    """
    profile = config.get("printer_profile") or None
    kwargs = {"profile": profile} if profile else {}
    ptype = str(config.get("printer_type", "usb")).lower()

    if ptype == "usb":
        from escpos.printer import Usb

        vendor = int(str(config.get("usb_vendor_id", "0x04b8")), 16)
        product = int(str(config.get("usb_product_id", "0x0e28")), 16)
        return Usb(vendor, product, **kwargs)
    if ptype == "network":
        from escpos.printer import Network

        ip = str(config.get("network_ip", ""))
        port = int(str(config.get("network_port", "9100")))
        return Network(ip, port, **kwargs)
    if ptype == "serial":
        from escpos.printer import Serial

        port = str(config.get("serial_port", ""))
        baud = int(str(config.get("serial_baudrate", "19200")))
        return Serial(port, baudrate=baud, **kwargs)
    if ptype == "dummy":
        from escpos.printer import Dummy

        return Dummy(**kwargs)
    raise ValueError(f"Unsupported printer type: {ptype}")


class EscposPrinterResource(PrinterResource):
    """
    Drive an ESC/POS printer through python-escpos.

    Printer entries come from config["printers"] (a list of mappings with an
    "id" plus the usual connection keys). When that list is absent the flat
    top-level connection keys describe a single printer with id "default".
    """

    def __init__(self, config: Optional[Mapping[str, Any]] = None, presets: Optional[Mapping[str, Preset]] = None):
        super().__init__(presets)
        self.config: Dict[str, Any] = dict(config or {})
        self.selected: Optional[PrinterDescriptor] = None
        self.last_output: Optional[bytes] = None
        self._known: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def _entries(self) -> Dict[str, Dict[str, Any]]:
        entries = self.config.get("printers")
        if isinstance(entries, list) and entries:
            out: Dict[str, Dict[str, Any]] = {}
            for entry in entries:
                if isinstance(entry, Mapping) and entry.get("id"):
                    out[str(entry["id"])] = dict(entry)
            return out
        flat = {k: v for k, v in self.config.items() if k != "printers"}
        flat.setdefault("name", "Default printer")
        return {"default": flat}

    def _probe(self, entry: Mapping[str, Any]) -> bool:
        try:
            p = _open_escpos(entry)
            try:
                p.close()
            except Exception:
                # Ignore close errors; connection succeeded if we got this far
                pass
            return True
        except Exception as e:
            logger.info("Printer probe failed for %s: %s", entry.get("id", "default"), type(e).__name__)
            return False

    def discover(self) -> List[PrinterDescriptor]:
        self._known = self._entries()
        found = []
        for pid, entry in self._known.items():
            found.append(
                PrinterDescriptor(
                    id=pid,
                    name=str(entry.get("name") or pid),
                    connected=self._probe(entry),
                    printer_type=str(entry.get("printer_type", "usb")).lower(),
                ),
            )
        logger.info("Discovered %d printer(s)", len(found))
        return found

    def connect(self, printer_id: str) -> None:
        if not self._known:
            self._known = self._entries()
        entry = self._known.get(printer_id)
        if entry is None:
            raise PrinterConnectionError(f"Printer {printer_id} not found")
        if not self._probe(entry):
            raise PrinterConnectionError(f"Printer {printer_id} is not available")
        self.selected = PrinterDescriptor(
            id=printer_id,
            name=str(entry.get("name") or printer_id),
            connected=True,
            printer_type=str(entry.get("printer_type", "usb")).lower(),
        )
        logger.info("Connected to printer %s", printer_id)

    def disconnect(self) -> None:
        if self.selected:
            logger.info("Disconnected from printer %s", self.selected.id)
        self.selected = None

    def _fit_width(self, document: Image.Image, max_width: int) -> Image.Image:
        img = document.convert("L")
        if max_width and img.width > max_width:
            ratio = max_width / float(img.width)
            img = img.resize((max_width, max(1, int(img.height * ratio))))
        return img

    def print_document(self, document: Image.Image, preset_name: str = "default") -> None:
        selected = self.selected
        if selected is None:
            raise PrintError("No printer selected")
        preset = self.get_preset(preset_name)
        opts = preset.options
        entry = self._known.get(selected.id, {})

        with self._lock:
            try:
                p = _open_escpos(entry)
            except Exception as e:
                raise PrintError(f"Printer {selected.id} unreachable: {e}") from e
            try:
                img = self._fit_width(document, int(opts.get("max_width", 0) or 0))
                copies = max(1, int(opts.get("copies", 1)))
                p.set(align=str(opts.get("align", "center")))
                for _ in range(copies):
                    p.image(img)
                    if opts.get("cut", True):
                        p.cut()
                    else:
                        p.text("\n\n")
                if hasattr(p, "output"):
                    self.last_output = p.output
            except Exception as e:
                logger.exception("Printer error: %s", e)
                raise PrintError(f"Failed to print document: {e}") from e
            finally:
                try:
                    p.close()
                except Exception:
                    pass

    def status(self) -> Dict[str, Any]:
        if self.selected is None:
            return {"connected": False, "printer_id": None, "detail": "No printer selected"}
        entry = self._known.get(self.selected.id, {})
        ok = self._probe(entry)
        return {
            "connected": ok,
            "printer_id": self.selected.id,
            "printer_name": self.selected.name,
            "preset": self.active_preset,
            "detail": "Ready" if ok else "Offline",
        }


__all__ = [
    "PRESETS",
    "EscposPrinterResource",
    "Preset",
    "PrinterDescriptor",
    "PrinterResource",
]
