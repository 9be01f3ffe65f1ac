"""
Raster rendering of night sessions: route overlays, photo compositing,
heatmaps and the per-night stats card.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import List, Mapping, Optional, Sequence, Tuple

import numpy as np
from PIL import Image, ImageDraw, ImageFont
from scipy.ndimage import gaussian_filter1d

from .clustering_utils import HeatmapPoint
from .errors import InsufficientData
from .location_utils import DEFAULT_PADDING, LocationUtils, MapBounds
from .models import NightSession
from .session_stats import session_summary

logger = logging.getLogger(__name__)

DEFAULT_SIZE = (1080, 1080)

Color = Tuple[int, int, int]

FONT_PATHS = {
    False: (
        "/System/Library/Fonts/Helvetica.ttc",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    ),
    True: (
        "/System/Library/Fonts/Helvetica.ttc",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
        "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    ),
}


@lru_cache(maxsize=32)
def load_font(size: int, bold: bool = False):
    """Load a TrueType font, trying common system fonts before Pillow's bundled one"""
    for path in FONT_PATHS[bold]:
        try:
            return ImageFont.truetype(path, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


class PathSmoother:
    """Smooth GPS paths before drawing"""

    PRESETS = {
        'none': None,
        'light': 0.8,
        'medium': 2.0,
        'heavy': 4.0,
    }

    @staticmethod
    def gaussian_smooth(coordinates, sigma=2.0):
        """
        Smooth path using Gaussian filter

        Args:
            coordinates: List of (lat, lon) pairs
            sigma: Standard deviation for Gaussian kernel (higher = smoother)

        Returns:
            Smoothed list of (lat, lon) pairs
        """
        if len(coordinates) < 3:
            return list(coordinates)

        coords_array = np.array(coordinates, dtype=float)
        lat_smooth = gaussian_filter1d(coords_array[:, 0], sigma=sigma)
        lon_smooth = gaussian_filter1d(coords_array[:, 1], sigma=sigma)

        return [tuple(point) for point in np.column_stack([lat_smooth, lon_smooth]).tolist()]

    @staticmethod
    def apply_preset(coordinates, preset: str):
        if preset not in PathSmoother.PRESETS:
            raise ValueError(f"Unknown smoothing preset: {preset!r}")
        sigma = PathSmoother.PRESETS[preset]
        if sigma is None:
            return list(coordinates)
        return PathSmoother.gaussian_smooth(coordinates, sigma=sigma)


@dataclass
class RouteStyle:
    """Look of the route overlay."""

    line_width: int = 8
    outline_width: int = 12
    outline_color: Color = (255, 255, 255)
    gradient_start: Color = (0, 122, 255)
    gradient_end: Color = (175, 82, 222)
    start_color: Color = (52, 199, 89)
    end_color: Color = (255, 59, 48)
    dwell_color: Color = (175, 82, 222)
    endpoint_marker_size: int = 30
    endpoint_ring_width: int = 3
    dwell_marker_size: int = 20
    dwell_ring_width: int = 2
    ring_color: Color = (255, 255, 255)
    label_font_size: int = 28
    label_padding: int = 12
    label_offset: int = 35
    label_max_width_fraction: float = 0.4
    label_corner_radius: int = 8
    label_background_alpha: float = 0.7
    label_stroke_fraction: float = 0.08
    label_spacing: int = 6
    smoothing: str = 'none'
    padding: float = DEFAULT_PADDING


def _gradient(size: Tuple[int, int], start: Color, end: Color) -> Image.Image:
    """Linear RGBA gradient from the top-left corner to the bottom-right corner"""
    width, height = size
    ys, xs = np.mgrid[0:height, 0:width].astype(float)
    length_sq = float(width * width + height * height) or 1.0
    t = np.clip((xs * width + ys * height) / length_sq, 0.0, 1.0)[..., None]

    rgb = np.array(start, dtype=float) * (1 - t) + np.array(end, dtype=float) * t
    alpha = np.full((height, width, 1), 255.0)
    pixels = np.concatenate([rgb, alpha], axis=2).round().astype(np.uint8)
    return Image.fromarray(pixels)


def _stroke(draw: ImageDraw.ImageDraw, points: Sequence[Tuple[float, float]], fill, width: int) -> None:
    """Polyline with rounded joins and round caps"""
    draw.line(list(points), fill=fill, width=width, joint="curve")
    radius = width / 2
    for x, y in (points[0], points[-1]):
        draw.ellipse((x - radius, y - radius, x + radius, y + radius), fill=fill)


def _draw_marker(draw: ImageDraw.ImageDraw, center: Tuple[float, float], size: int,
                 fill: Color, ring: int, ring_color: Color) -> None:
    x, y = center
    outer = size / 2 + ring
    inner = size / 2
    if ring > 0:
        draw.ellipse((x - outer, y - outer, x + outer, y + outer), fill=ring_color)
    draw.ellipse((x - inner, y - inner, x + inner, y + inner), fill=fill)


def wrap_text(text: str, font, max_width: float, draw: ImageDraw.ImageDraw) -> List[str]:
    """
    Greedy word wrap. A single word wider than max_width keeps its own line.
    """
    lines: List[str] = []
    current = ""
    for word in text.split():
        candidate = f"{current} {word}" if current else word
        if current and draw.textlength(candidate, font=font) > max_width:
            lines.append(current)
            current = word
        else:
            current = candidate
    if current:
        lines.append(current)
    return lines


def truncate_text(text: str, font, max_width: float, draw: ImageDraw.ImageDraw, ellipsis: str = "...") -> str:
    """Shorten text with a trailing ellipsis until it fits within max_width"""
    if draw.textlength(text, font=font) <= max_width:
        return text
    while text and draw.textlength(text + ellipsis, font=font) > max_width:
        text = text[:-1]
    return text.rstrip() + ellipsis


def _overlaps(a: Tuple[float, float, float, float], b: Tuple[float, float, float, float]) -> bool:
    return a[0] < b[2] and b[0] < a[2] and a[1] < b[3] and b[1] < a[3]


class RouteRenderer:
    """Draw sessions onto transparent canvases"""

    def __init__(self, style: Optional[RouteStyle] = None):
        self.style = style or RouteStyle()

    # ------------------------------------------------------------------
    # Route overlay
    # ------------------------------------------------------------------

    def render_route(self, session: NightSession, size: Tuple[int, int] = DEFAULT_SIZE,
                     place_names: Optional[Mapping[uuid.UUID, str]] = None,
                     outline: bool = False, style: Optional[RouteStyle] = None) -> Image.Image:
        """
        Render a session's route, markers and venue labels

        Args:
            session: Session to draw
            size: (width, height) of the canvas
            place_names: Optional names by dwell id, overriding the dwells' own names
            outline: Draw a white outline under the route for busy backgrounds
            style: Overrides the renderer's style for this call

        Returns:
            RGBA image with a transparent background

        Raises:
            InsufficientData: fewer than 2 route points
        """
        style = style or self.style
        if len(session.route) < 2:
            raise InsufficientData(f"Need at least 2 route points to render, got {len(session.route)}")
        width, height = size
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid canvas size {size}")

        route = [fix.coordinate for fix in session.route]
        bounds = LocationUtils.bounding_box(route + [dwell.location for dwell in session.dwells])

        def to_canvas(coordinate):
            return LocationUtils.project(coordinate, bounds, size, padding=style.padding)

        path = [to_canvas(c) for c in PathSmoother.apply_preset(route, style.smoothing)]
        canvas = Image.new('RGBA', size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(canvas)

        if outline:
            _stroke(draw, path, style.outline_color + (255,), style.outline_width)

        # Gradient along the stroke: stroke into a mask, then fill the masked region
        mask = Image.new('L', size, 0)
        _stroke(ImageDraw.Draw(mask), path, 255, style.line_width)
        canvas.paste(_gradient(size, style.gradient_start, style.gradient_end), (0, 0), mask)

        for dwell in session.dwells:
            _draw_marker(draw, to_canvas(dwell.location), style.dwell_marker_size,
                         style.dwell_color, style.dwell_ring_width, style.ring_color)

        start = to_canvas(route[0])
        end = to_canvas(route[-1])
        _draw_marker(draw, start, style.endpoint_marker_size, style.start_color,
                     style.endpoint_ring_width, style.ring_color)
        _draw_marker(draw, end, style.endpoint_marker_size, style.end_color,
                     style.endpoint_ring_width, style.ring_color)

        labels = []
        for dwell in session.dwells:
            name = (place_names or {}).get(dwell.id) or dwell.display_name
            if name and name.strip():
                labels.append((to_canvas(dwell.location), name.strip()))
        if labels:
            canvas = self._draw_labels(canvas, labels, style)

        logger.debug("Rendered route with %d points and %d dwells at %dx%d",
                     len(path), len(session.dwells), width, height)
        return canvas

    def _draw_labels(self, canvas: Image.Image, labels, style: RouteStyle) -> Image.Image:
        width, height = canvas.size
        font = load_font(style.label_font_size, bold=True)
        layer = Image.new('RGBA', canvas.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(layer)
        stroke = max(1, round(style.label_font_size * style.label_stroke_fraction))
        background = (0, 0, 0, round(255 * style.label_background_alpha))
        placed: List[Tuple[float, float, float, float]] = []

        for (x, y), name in labels:
            max_width = width * style.label_max_width_fraction
            # A single word can still be wider than the wrap width
            lines = [truncate_text(line, font, max_width, draw) for line in wrap_text(name, font, max_width, draw)]
            text = "\n".join(lines)
            left, top, right, bottom = draw.multiline_textbbox(
                (0, 0), text, font=font, spacing=style.label_spacing, stroke_width=stroke, align='center')
            box_w = right - left + 2 * style.label_padding
            box_h = bottom - top + 2 * style.label_padding

            # Keep the pill inside the canvas horizontally
            box_x = x - box_w / 2
            box_x = max(style.label_padding, min(box_x, width - style.label_padding - box_w))
            box_y = y + style.label_offset
            box = self._free_slot((box_x, box_y, box_x + box_w, box_y + box_h), placed, y, style, height)
            placed.append(box)

            draw.rounded_rectangle(box, radius=style.label_corner_radius, fill=background)
            draw.multiline_text(
                (box[0] + style.label_padding - left, box[1] + style.label_padding - top), text,
                font=font, fill=(255, 255, 255, 255), spacing=style.label_spacing, align='center',
                stroke_width=stroke, stroke_fill=(0, 0, 0, 255),
            )

        return Image.alpha_composite(canvas, layer)

    @staticmethod
    def _free_slot(box, placed, marker_y: float, style: RouteStyle, height: int):
        """Move a label box until it overlaps no placed label, trying below then above the marker"""
        box_h = box[3] - box[1]
        step = box_h + style.label_spacing
        candidates = []
        for i in range(len(placed) + 1):
            candidates.append(box[1] + i * step)
            candidates.append(marker_y - style.label_offset - box_h - i * step)

        for top in candidates:
            candidate = (box[0], top, box[2], top + box_h)
            if candidate[1] < 0 or candidate[3] > height:
                continue
            if not any(_overlaps(candidate, other) for other in placed):
                return candidate
        return box

    # ------------------------------------------------------------------
    # Photo compositing
    # ------------------------------------------------------------------

    @staticmethod
    def overlay_placement(image_size: Tuple[int, int], overlay_size: Tuple[int, int],
                          view_size: Tuple[float, float], offset: Tuple[float, float] = (0.0, 0.0),
                          scale: float = 1.0) -> Tuple[Tuple[float, float], Tuple[float, float]]:
        """
        Map the overlay's on-screen placement into the photo's pixel space

        In the preview the overlay is aspect-fit inside the view, scaled by
        `scale` about the view centre and moved by `offset` view points. The
        photo is shown at the view width, so one view point is
        image_width / view_width photo pixels.

        Returns:
            ((x, y) origin, (width, height)) in photo pixels
        """
        img_w, img_h = image_size
        ov_w, ov_h = overlay_size
        view_w, view_h = view_size
        if min(view_w, view_h, ov_w, ov_h) <= 0:
            raise ValueError("View and overlay sizes must be positive")
        if scale <= 0:
            raise ValueError(f"scale must be positive, got {scale}")

        fit = min(view_w / ov_w, view_h / ov_h)
        display_w, display_h = ov_w * fit, ov_h * fit
        base_scale = img_w / view_w

        final_w = display_w * scale * base_scale
        final_h = display_h * scale * base_scale
        x = (img_w - final_w) / 2 + offset[0] * base_scale
        y = (img_h - final_h) / 2 + offset[1] * base_scale
        return (x, y), (final_w, final_h)

    @staticmethod
    def composite_onto_photo(background: Image.Image, overlay: Image.Image, view_size: Tuple[float, float],
                             offset: Tuple[float, float] = (0.0, 0.0), scale: float = 1.0,
                             opacity: float = 1.0) -> Image.Image:
        """
        Draw the overlay onto a photo where the user placed it in the preview

        Args:
            background: The user's photo
            overlay: RGBA overlay from render_route
            view_size: Size of the preview the user arranged the overlay in
            offset: Drag offset in preview points
            scale: User zoom of the overlay
            opacity: Overlay opacity, clamped to 0..1

        Returns:
            RGB image at the photo's native resolution
        """
        base = background.convert('RGBA')
        (x, y), (final_w, final_h) = RouteRenderer.overlay_placement(
            base.size, overlay.size, view_size, offset, scale)

        resized = overlay.convert('RGBA').resize(
            (max(1, round(final_w)), max(1, round(final_h))), Image.LANCZOS)
        opacity = min(max(opacity, 0.0), 1.0)
        if opacity < 1.0:
            alpha = np.asarray(resized.getchannel('A'), dtype=float) * opacity
            resized.putalpha(Image.fromarray(alpha.round().astype(np.uint8)))

        layer = Image.new('RGBA', base.size, (0, 0, 0, 0))
        layer.paste(resized, (round(x), round(y)))
        return Image.alpha_composite(base, layer).convert('RGB')

    # ------------------------------------------------------------------
    # Heatmap
    # ------------------------------------------------------------------

    @staticmethod
    def render_heatmap(points: Sequence[HeatmapPoint], size: Tuple[int, int] = DEFAULT_SIZE,
                       padding: float = DEFAULT_PADDING) -> Image.Image:
        """
        Draw heatmap points as translucent discs sized in meters

        Raises:
            InsufficientData: no points
        """
        if not points:
            raise InsufficientData("No heatmap points to render")
        width, height = size

        # Bounds cover every disc, not just the centres
        lat_m, _ = LocationUtils.meters_per_degree(0.0)
        extents = []
        for point in points:
            _, lon_m = LocationUtils.meters_per_degree(point.coordinate.latitude)
            dlat = point.radius / lat_m
            dlon = point.radius / max(lon_m, 1e-9)
            extents.append((point.coordinate.latitude - dlat, point.coordinate.longitude - dlon))
            extents.append((point.coordinate.latitude + dlat, point.coordinate.longitude + dlon))
        bounds: MapBounds = LocationUtils.bounding_box(extents)
        padded = LocationUtils.pad_bounds(bounds, padding)

        canvas = Image.new('RGBA', size, (0, 0, 0, 0))
        for point in sorted(points, key=lambda p: p.radius, reverse=True):
            x, y = LocationUtils.project(point.coordinate, bounds, size, padding=padding)
            _, lon_m = LocationUtils.meters_per_degree(point.coordinate.latitude)
            rx = point.radius / max(lon_m, 1e-9) / padded.lon_range * width if padded.lon_range else 0
            ry = point.radius / lat_m / padded.lat_range * height if padded.lat_range else 0

            layer = Image.new('RGBA', size, (0, 0, 0, 0))
            alpha = round(255 * min(max(point.opacity, 0.0), 1.0))
            ImageDraw.Draw(layer).ellipse((x - rx, y - ry, x + rx, y + ry), fill=point.color + (alpha,))
            canvas = Image.alpha_composite(canvas, layer)

        return canvas

    # ------------------------------------------------------------------
    # Stats card
    # ------------------------------------------------------------------

    def render_stats_card(self, session: NightSession, now: Optional[datetime] = None,
                          size: Tuple[int, int] = DEFAULT_SIZE) -> Image.Image:
        """
        Create a shareable card with the night's figures in a 2x3 grid

        Returns:
            RGBA image, transparent outside the rounded card
        """
        width, height = size
        padding = 40
        summary = session_summary(session, now)
        rating = f"{summary.rating}/5" if summary.rating else "-"
        cells = [
            ("Duration", summary.duration_label),
            ("Venues", str(summary.venues)),
            ("Drinks", str(summary.drinks)),
            ("Distance", summary.distance_label),
            ("Avg Time/Venue", summary.average_time_per_venue_label),
            ("Rating", rating),
        ]

        card_mask = Image.new('L', size, 0)
        ImageDraw.Draw(card_mask).rounded_rectangle((0, 0, width - 1, height - 1), radius=30, fill=255)
        card = Image.new('RGBA', size, (0, 0, 0, 0))
        card.paste(_gradient(size, self.style.gradient_start, self.style.gradient_end), (0, 0), card_mask)

        draw = ImageDraw.Draw(card)
        draw.rounded_rectangle((0, 0, width - 1, height - 1), radius=30, outline=(255, 255, 255, 255), width=4)

        title_font = load_font(max(12, int(height * 0.06)), bold=True)
        value_font = load_font(max(12, int(height * 0.07)), bold=True)
        label_font = load_font(max(10, int(height * 0.03)))

        title = f"Night Out - {session.start_time.strftime('%b %d, %Y')}"
        draw.text((padding, padding), title, font=title_font, fill=(255, 255, 255, 255))

        grid_top = padding + int(height * 0.15)
        cell_w = (width - 2 * padding) / 2
        cell_h = (height - grid_top - padding) / 3
        for index, (label, value) in enumerate(cells):
            col, row = index % 2, index // 2
            cx = padding + col * cell_w + cell_w / 2
            cy = grid_top + row * cell_h + cell_h / 2
            draw.text((cx, cy), value, font=value_font, fill=(255, 255, 255, 255), anchor='ms')
            draw.text((cx, cy + 12), label, font=label_font, fill=(235, 235, 245, 255), anchor='ma')

        return card
