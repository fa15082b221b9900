"""
Badge rendering for Badge Printer.

- Resolve a font from config/env/common locations
- Describe badge templates (canvas size, background, text boxes) as pydantic models
- Render (template, uid, badge name) into a grayscale Pillow image for the printer

Any failure here is a RenderError; the queue counts it against the job's
retries exactly like a print failure.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, Sequence
from typing import Any, Dict, List, Literal, Optional

from PIL import Image, ImageDraw, ImageFont
from pydantic import BaseModel, Field, ValidationError, model_validator

from badge_printer.core.errors import RenderError

logger = logging.getLogger(__name__)

FontType = ImageFont.FreeTypeFont | ImageFont.ImageFont


def _measure_text(font: FontType, text: str) -> tuple[int, int]:
    """
    Text measurement across Pillow font types.
    Tries getbbox() first, then getmask() as fallback.
    Returns (width, height).
    """
    try:
        bbox = font.getbbox(text)
        return int(bbox[2] - bbox[0]), int(bbox[3] - bbox[1])
    except Exception:
        try:
            mask = font.getmask(text)  # type: ignore[attr-defined]
            return int(mask.size[0]), int(mask.size[1])
        except Exception:
            return 0, 0


def resolve_font(config: Optional[Mapping[str, object]], font_size: int) -> FontType:
    """
    Resolve a TTF font to use for rendering, preferring:
    1) config["font_path"] when provided
    2) BADGEPRINTER_FONT_PATH environment variable
    3) A list of common system font paths (DejaVu, FreeSans, Liberation, Noto, Arial)
    Falls back to Pillow's bundled default font at the requested size.
    """
    candidates: List[str] = []
    if config:
        val = config.get("font_path")
        if isinstance(val, str) and val.strip():
            candidates.append(val.strip())

    env_path = os.environ.get("BADGEPRINTER_FONT_PATH")
    if env_path and env_path not in candidates:
        candidates.append(env_path)

    common: Sequence[str] = (
        "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
        "/usr/share/fonts/truetype/freefont/FreeSans.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
        "/usr/share/fonts/truetype/noto/NotoSans-Regular.ttf",
        "/usr/share/fonts/truetype/msttcorefonts/Arial.ttf",
        "/usr/share/fonts/dejavu/DejaVuSans.ttf",
        "/usr/share/fonts/TTF/DejaVuSans.ttf",
    )
    for pth in common:
        if pth not in candidates:
            candidates.append(pth)

    for pth in candidates:
        try:
            return ImageFont.truetype(pth, font_size)
        except OSError:
            continue

    return ImageFont.load_default(size=font_size)


class TextField(BaseModel):
    """A bounding box on the badge that one value is fitted into."""

    name: Literal["uid", "badge_name"]
    x1: int = Field(ge=0)
    y1: int = Field(ge=0)
    x2: int = Field(gt=0)
    y2: int = Field(gt=0)
    max_font_size: int = Field(default=64, ge=4, le=400)
    min_font_size: int = Field(default=12, ge=4, le=400)
    align: Literal["left", "center", "right"] = "center"

    @model_validator(mode="after")
    def _box_is_sane(self) -> "TextField":
        if self.x2 <= self.x1 or self.y2 <= self.y1:
            raise ValueError(f"text field {self.name!r} has an empty bounding box")
        if self.min_font_size > self.max_font_size:
            raise ValueError(f"text field {self.name!r} min_font_size exceeds max_font_size")
        return self


class BadgeTemplate(BaseModel):
    """Layout for one kind of badge."""

    id: str = Field(min_length=1, max_length=64)
    name: str = ""
    width: int = Field(default=512, gt=0, le=4096)
    height: int = Field(default=320, gt=0, le=4096)
    background: Optional[str] = Field(default=None, description="Path to a background image, scaled to fit")
    preset: Optional[str] = Field(default=None, description="Printer preset used when a job does not name one")
    text_fields: List[TextField] = Field(default_factory=list)

    @model_validator(mode="after")
    def _fields_inside_canvas(self) -> "BadgeTemplate":
        for f in self.text_fields:
            if f.x2 > self.width or f.y2 > self.height:
                raise ValueError(f"text field {f.name!r} lies outside the {self.width}x{self.height} canvas")
        return self

    def summary(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name or self.id, "width": self.width, "height": self.height}


DEFAULT_TEMPLATE: Dict[str, Any] = {
    "id": "default",
    "name": "Default Badge",
    "width": 512,
    "height": 320,
    "text_fields": [
        {"name": "badge_name", "x1": 24, "y1": 60, "x2": 488, "y2": 200, "max_font_size": 72, "min_font_size": 16},
        {"name": "uid", "x1": 24, "y1": 230, "x2": 488, "y2": 290, "max_font_size": 32, "min_font_size": 10},
    ],
}


def load_templates(raw: Optional[Mapping[str, Any]]) -> Dict[str, BadgeTemplate]:
    """
    Build the template registry from config["templates"] merged over the
    built-in default. Raises ValueError naming the first invalid template.
    """
    merged: Dict[str, Any] = {"default": DEFAULT_TEMPLATE}
    for key, value in (raw or {}).items():
        merged[str(key)] = {"id": str(key), **dict(value)}
    templates: Dict[str, BadgeTemplate] = {}
    for key, value in merged.items():
        try:
            templates[key] = BadgeTemplate.model_validate(value)
        except ValidationError as e:
            raise ValueError(f"Invalid badge template {key!r}: {e.errors()[0].get('msg')}") from e
    return templates


def fit_text(text: str, box_w: int, box_h: int, config: Optional[Mapping[str, object]], max_size: int, min_size: int):
    """
    Largest font (stepping down by 2) whose rendering of `text` fits the box.
    Returns (font, (width, height)); at min_size the text may still overflow.
    """
    size = max_size
    while True:
        font = resolve_font(config, size)
        w, h = _measure_text(font, text)
        if (w <= box_w and h <= box_h) or size <= min_size:
            return font, (w, h)
        size = max(min_size, size - 2)


class BadgeRenderer:
    """
    Render badges from a fixed set of templates.

    Templates are validated once at construction; render() only does Pillow
    work and turns any failure into RenderError.
    """

    def __init__(
        self,
        templates: Optional[Mapping[str, BadgeTemplate]] = None,
        config: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.config: Dict[str, Any] = dict(config or {})
        self.templates: Dict[str, BadgeTemplate] = dict(templates) if templates else load_templates(
            self.config.get("templates"),
        )

    def has_template(self, template_id: str) -> bool:
        return template_id in self.templates

    def get_template(self, template_id: str) -> Optional[BadgeTemplate]:
        return self.templates.get(template_id)

    def list_templates(self) -> List[Dict[str, Any]]:
        return [t.summary() for t in self.templates.values()]

    def _canvas(self, template: BadgeTemplate) -> Image.Image:
        if template.background:
            try:
                with Image.open(template.background) as bg:
                    return bg.convert("L").resize((template.width, template.height))
            except OSError as e:
                raise RenderError(f"Background for template {template.id!r} unreadable: {e}") from e
        img = Image.new("L", (template.width, template.height), 255)
        ImageDraw.Draw(img).rectangle([0, 0, template.width - 1, template.height - 1], outline=0, width=3)
        return img

    def render(self, template_id: str, uid: str, badge_name: str) -> Image.Image:
        """
        Render a badge. Returns an 'L' mode PIL Image where black=0 and white=255.
        """
        template = self.templates.get(template_id)
        if template is None:
            raise RenderError(f"Template with ID {template_id!r} not found")

        values = {"uid": uid, "badge_name": badge_name}
        try:
            img = self._canvas(template)
            draw = ImageDraw.Draw(img)
            for f in template.text_fields:
                text = values[f.name]
                box_w, box_h = f.x2 - f.x1, f.y2 - f.y1
                font, (w, h) = fit_text(text, box_w, box_h, self.config, f.max_font_size, f.min_font_size)
                if f.align == "left":
                    x = f.x1
                elif f.align == "right":
                    x = f.x2 - w
                else:
                    x = f.x1 + (box_w - w) // 2
                y = f.y1 + max(0, (box_h - h) // 2)
                draw.text((x, y), text, font=font, fill=0)
        except RenderError:
            raise
        except Exception as e:
            logger.exception("Badge render failed for template %s", template_id)
            raise RenderError(f"Failed to render badge: {e}") from e

        logger.debug("Rendered badge template=%s uid=%s", template_id, uid)
        return img


__all__ = [
    "DEFAULT_TEMPLATE",
    "BadgeRenderer",
    "BadgeTemplate",
    "TextField",
    "fit_text",
    "load_templates",
    "resolve_font",
]
