"""
Printing subsystem for Badge Printer.

This package groups printing-related functionality:

- render: Badge templates and rendering to Pillow images
- printer: The printer resource contract, presets, and the ESC/POS driver
- events: Status publisher fanning job transitions out to subscribers
- worker: The print queue, job state machine, and background run loop
"""

from .events import StatusEvent, StatusPublisher, Subscription
from .printer import PRESETS, EscposPrinterResource, Preset, PrinterDescriptor, PrinterResource
from .render import BadgeRenderer, BadgeTemplate, TextField, load_templates
from .worker import PrintQueue, backoff_delay

__all__ = [
    "PRESETS",
    "BadgeRenderer",
    "BadgeTemplate",
    "EscposPrinterResource",
    "Preset",
    "PrintQueue",
    "PrinterDescriptor",
    "PrinterResource",
    "StatusEvent",
    "StatusPublisher",
    "Subscription",
    "TextField",
    "backoff_delay",
    "load_templates",
]
