"""Tests for route, heatmap and stats card rendering."""

from dataclasses import replace
from datetime import timedelta

import pytest
from PIL import Image, ImageDraw

from conftest import BASE_LAT, BASE_LON
from nighttrail.lib.clustering_utils import generate_heatmap
from nighttrail.lib.errors import InsufficientData
from nighttrail.lib.models import DrinkCounts, Fix
from nighttrail.lib.route_renderer import (
    PathSmoother,
    RouteRenderer,
    RouteStyle,
    load_font,
    truncate_text,
    wrap_text,
)
from nighttrail.lib.settings import HeatmapIntensity

SIZE = (400, 400)
STEP = 0.001


@pytest.fixture
def right_angle_session(t0, make_session):
    """North along the left edge, then east along the top edge."""
    route = [
        Fix(BASE_LAT, BASE_LON, t0),
        Fix(BASE_LAT + STEP, BASE_LON, t0 + timedelta(minutes=10)),
        Fix(BASE_LAT + STEP, BASE_LON + STEP, t0 + timedelta(minutes=20)),
    ]
    return make_session(t0, route=route)


def alpha_sum(image, box):
    return sum(image.crop(box).getchannel('A').getdata())


def test_right_angle_route_renders(right_angle_session) -> None:
    """Test a 3 point route renders markers and a gradient stroke."""
    image = RouteRenderer().render_route(right_angle_session, SIZE)

    assert image.mode == 'RGBA'
    assert image.size == SIZE
    # 10% padding puts the start at (33, 367) and the end at (367, 33)
    assert image.getpixel((33, 367)) == (52, 199, 89, 255)
    assert image.getpixel((367, 33)) == (255, 59, 48, 255)
    # Corner of the route, drawn with the gradient
    r, g, b, a = image.getpixel((33, 33))
    assert a == 255
    assert b > r
    # Away from the route the canvas stays transparent
    assert image.getpixel((200, 300))[3] == 0


def test_gradient_runs_from_top_left_to_bottom_right(right_angle_session) -> None:
    """Test the stroke takes the start colour near the top left and drifts to the end colour."""
    image = RouteRenderer().render_route(right_angle_session, SIZE)
    near_start = image.getpixel((33, 80))
    near_end = image.getpixel((320, 33))
    # gradient goes from (0,122,255) to (175,82,222)
    assert near_start[0] < near_end[0]
    assert near_start[1] > near_end[1]


def test_single_point_is_insufficient(t0, make_session) -> None:
    """Test fewer than 2 route points cannot be drawn."""
    session = make_session(t0, route=[Fix(BASE_LAT, BASE_LON, t0)])
    with pytest.raises(InsufficientData):
        RouteRenderer().render_route(session, SIZE)
    with pytest.raises(InsufficientData):
        RouteRenderer().render_route(make_session(t0), SIZE)


def test_outline_is_drawn_under_route(right_angle_session) -> None:
    """Test the outline widens the stroke in white."""
    renderer = RouteRenderer(RouteStyle(outline_width=30))
    plain = renderer.render_route(right_angle_session, SIZE)
    outlined = renderer.render_route(right_angle_session, SIZE, outline=True)

    assert plain.getpixel((43, 200))[3] == 0
    assert outlined.getpixel((43, 200)) == (255, 255, 255, 255)


def test_dwell_marker_and_label(t0, make_dwell, right_angle_session) -> None:
    """Test a named dwell gets a marker and a label pill below it."""
    named = make_dwell(BASE_LAT + STEP / 2, BASE_LON, name='The Crown Tavern')
    session = replace(right_angle_session, dwells=(named,))
    unnamed = replace(session, dwells=(named.with_place_name(None),))

    renderer = RouteRenderer()
    labelled = renderer.render_route(session, SIZE)
    bare = renderer.render_route(unnamed, SIZE)

    # Dwell marker sits at (33, 200)
    assert labelled.getpixel((33, 200)) == (175, 82, 222, 255)
    assert alpha_sum(labelled, (60, 240, 150, 250)) > 0
    assert alpha_sum(bare, (60, 240, 150, 250)) == 0


def test_place_names_override(t0, make_dwell, right_angle_session) -> None:
    """Test names passed to the renderer label dwells that have none."""
    dwell = make_dwell(BASE_LAT + STEP / 2, BASE_LON)
    session = replace(right_angle_session, dwells=(dwell,))
    image = RouteRenderer().render_route(session, SIZE, place_names={dwell.id: 'Late Bar'})
    assert alpha_sum(image, (60, 240, 100, 250)) > 0


def test_label_is_clamped_to_canvas(t0, make_dwell, right_angle_session) -> None:
    """Test a label near the right edge stays inside the padding."""
    dwell = make_dwell(BASE_LAT + STEP / 2, BASE_LON + STEP, name='The Extremely Long Named Cocktail Lounge')
    session = replace(right_angle_session, dwells=(dwell,))
    image = RouteRenderer().render_route(session, SIZE)

    assert alpha_sum(image, (390, 240, 400, 280)) == 0
    assert alpha_sum(image, (300, 240, 380, 280)) > 0


def test_wrap_text_respects_max_width() -> None:
    """Test long names wrap onto several lines within the width."""
    font = load_font(28, bold=True)
    draw = ImageDraw.Draw(Image.new('RGBA', (10, 10)))
    lines = wrap_text('The Extremely Long Named Cocktail Lounge', font, 160, draw)

    assert len(lines) > 1
    assert ' '.join(lines) == 'The Extremely Long Named Cocktail Lounge'
    for line in lines:
        assert draw.textlength(line, font=font) <= 160 or ' ' not in line


def test_truncate_text_adds_ellipsis() -> None:
    """Test an over-wide word is shortened to fit, short text is untouched."""
    font = load_font(28, bold=True)
    draw = ImageDraw.Draw(Image.new('RGBA', (10, 10)))

    assert truncate_text('Bar', font, 160, draw) == 'Bar'
    short = truncate_text('Supercalifragilisticexpialidocious', font, 160, draw)
    assert short.endswith('...')
    assert draw.textlength(short, font=font) <= 160


def test_single_long_word_label_stays_on_canvas(make_dwell, right_angle_session) -> None:
    """Test a label made of one very long word does not cross either canvas edge."""
    dwell = make_dwell(BASE_LAT + STEP / 2, BASE_LON + STEP / 2, name='Supercalifragilisticexpialidocious')
    session = replace(right_angle_session, dwells=(dwell,))
    image = RouteRenderer().render_route(session, SIZE)

    assert alpha_sum(image, (120, 240, 280, 270)) > 0
    assert alpha_sum(image, (0, 240, 12, 280)) == 0
    assert alpha_sum(image, (388, 240, 400, 280)) == 0


def test_smoothing_presets() -> None:
    """Test Gaussian smoothing keeps the point count and rejects unknown presets."""
    coords = [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (2.0, 1.0), (2.0, 2.0)]
    assert PathSmoother.apply_preset(coords, 'none') == coords
    assert len(PathSmoother.apply_preset(coords, 'medium')) == len(coords)
    with pytest.raises(ValueError):
        PathSmoother.apply_preset(coords, 'extreme')


def test_overlay_placement() -> None:
    """Test the preview placement is mapped into photo pixels."""
    origin, size = RouteRenderer.overlay_placement((1000, 2000), (1080, 1080), (390, 780))
    assert size == pytest.approx((1000, 1000))
    assert origin == pytest.approx((0, 500))

    origin, size = RouteRenderer.overlay_placement((1000, 2000), (1080, 1080), (390, 780),
                                                   offset=(39, -39), scale=0.5)
    assert size == pytest.approx((500, 500))
    assert origin == pytest.approx((350, 650))

    with pytest.raises(ValueError):
        RouteRenderer.overlay_placement((1000, 2000), (1080, 1080), (390, 780), scale=0)


def test_composite_onto_photo() -> None:
    """Test the overlay lands where placed, with opacity applied."""
    photo = Image.new('RGB', (200, 200), (0, 0, 0))
    overlay = Image.new('RGBA', (100, 100), (255, 0, 0, 255))

    full = RouteRenderer.composite_onto_photo(photo, overlay, (100, 100))
    assert full.mode == 'RGB'
    assert full.size == (200, 200)
    assert full.getpixel((100, 100)) == (255, 0, 0)

    faded = RouteRenderer.composite_onto_photo(photo, overlay, (100, 100), opacity=0.5)
    assert faded.getpixel((100, 100))[0] == pytest.approx(128, abs=2)

    moved = RouteRenderer.composite_onto_photo(photo, overlay, (100, 100), offset=(50, 0), scale=0.5)
    # 100 px overlay, shifted 100 photo px right of centre: covers x 150..250
    assert moved.getpixel((100, 100)) == (0, 0, 0)
    assert moved.getpixel((175, 100)) == (255, 0, 0)


def test_render_heatmap(make_dwell) -> None:
    """Test heatmap discs are drawn and an empty heatmap is refused."""
    dwells = [make_dwell(), make_dwell(start=60), make_dwell(BASE_LAT + 0.01, BASE_LON + 0.01)]
    points = generate_heatmap(dwells, HeatmapIntensity.HIGH)
    image = RouteRenderer.render_heatmap(points, SIZE)

    assert image.size == SIZE
    assert alpha_sum(image, (0, 0, 400, 400)) > 0
    with pytest.raises(InsufficientData):
        RouteRenderer.render_heatmap([], SIZE)


def test_render_heatmap_single_cluster(make_dwell) -> None:
    """Test a single place still renders, centred on the canvas."""
    points = generate_heatmap([make_dwell()], HeatmapIntensity.LOW)
    image = RouteRenderer.render_heatmap(points, SIZE)
    assert image.getpixel((200, 200))[3] > 0
    assert image.getpixel((0, 0))[3] == 0


def test_render_stats_card(t0, make_dwell, make_session) -> None:
    """Test the stats card is a rounded opaque card."""
    session = make_session(t0, dwells=[make_dwell()], drinks=DrinkCounts(beer=2), rating=5)
    card = RouteRenderer().render_stats_card(session, size=(540, 540))

    assert card.size == (540, 540)
    assert card.getpixel((0, 0))[3] == 0
    assert card.getpixel((270, 270))[3] == 255
