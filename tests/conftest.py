# Ensure the repository root is on sys.path so `badge_printer` can be imported in tests,
# and provide in-memory collaborators for the print queue.

import random
import sys
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest


def _ensure_repo_root_on_syspath() -> None:
    # This file lives at: <repo_root>/tests/conftest.py
    # We want to add <repo_root> to sys.path (if not already present).
    here = Path(__file__).resolve()
    repo_root = here.parent.parent
    repo_str = str(repo_root)
    if repo_str not in sys.path:
        sys.path.insert(0, repo_str)


_ensure_repo_root_on_syspath()

from PIL import Image  # noqa: E402

from badge_printer.core.config import QueueSettings  # noqa: E402
from badge_printer.core.db import JobStore  # noqa: E402
from badge_printer.core.errors import PrintError  # noqa: E402
from badge_printer.printing.events import StatusPublisher  # noqa: E402
from badge_printer.printing.printer import PrinterDescriptor, PrinterResource  # noqa: E402
from badge_printer.printing.render import BadgeRenderer, load_templates  # noqa: E402
from badge_printer.printing.worker import PrintQueue  # noqa: E402


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePrinter(PrinterResource):
    """
    Printer double. `failures` is the number of upcoming print calls that
    raise PrintError. With `block=True` each print waits for `release`.
    """

    def __init__(self, failures: int = 0, supports_abort: bool = False, block: bool = False) -> None:
        super().__init__()
        self.failures = failures
        self.supports_abort = supports_abort
        self.block = block
        self.printed: List[str] = []
        self.calls = 0
        self.aborted = 0
        self.connected_id: Optional[str] = "fake"
        self.in_print = threading.Event()
        self.release = threading.Event()

    def discover(self) -> List[PrinterDescriptor]:
        return [PrinterDescriptor(id="fake", name="Fake printer", connected=True, printer_type="dummy")]

    def connect(self, printer_id: str) -> None:
        self.connected_id = printer_id

    def disconnect(self) -> None:
        self.connected_id = None

    def print_document(self, document: Image.Image, preset_name: str = "default") -> None:
        self.calls += 1
        self.get_preset(preset_name)
        if self.block:
            self.in_print.set()
            self.release.wait(5)
        if self.failures > 0:
            self.failures -= 1
            raise PrintError("paper jam")
        self.printed.append(preset_name)

    def status(self) -> Dict[str, Any]:
        return {"connected": self.connected_id is not None, "printer_id": self.connected_id, "detail": "fake"}

    def abort(self) -> None:
        self.aborted += 1
        self.release.set()


class CountingRenderer(BadgeRenderer):
    """Small-canvas renderer that counts render calls."""

    def __init__(self) -> None:
        super().__init__(
            templates=load_templates(
                {
                    "mini": {
                        "width": 64,
                        "height": 32,
                        "preset": "fast",
                        "text_fields": [
                            {"name": "badge_name", "x1": 0, "y1": 0, "x2": 64, "y2": 16, "max_font_size": 12, "min_font_size": 6},
                            {"name": "uid", "x1": 0, "y1": 16, "x2": 64, "y2": 32, "max_font_size": 10, "min_font_size": 6},
                        ],
                    },
                },
            ),
        )
        self.renders = 0

    def render(self, template_id: str, uid: str, badge_name: str) -> Image.Image:
        self.renders += 1
        return super().render(template_id, uid, badge_name)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def printer():
    return FakePrinter()


@pytest.fixture
def renderer():
    return CountingRenderer()


@pytest.fixture
def publisher():
    return StatusPublisher()


@pytest.fixture
def store():
    s = JobStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def settings():
    return QueueSettings(retry_jitter=0.0, max_queue_size=5)


@pytest.fixture
def make_queue(store, printer, renderer, publisher, settings, clock):
    def _make(**kwargs) -> PrintQueue:
        params = dict(
            store=store,
            printer=printer,
            renderer=renderer,
            publisher=publisher,
            settings=settings,
            clock=clock,
            rng=random.Random(7),
        )
        params.update(kwargs)
        return PrintQueue(**params)

    return _make


@pytest.fixture
def queue(make_queue):
    q = make_queue()
    yield q
    q.stop(timeout=1)
