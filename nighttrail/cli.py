#!/usr/bin/env python3
"""
NightTrail CLI

Command-line interface for replaying recorded location fixes into night
sessions, and for the statistics, heatmaps and route images built from the
stored history.
"""

import argparse
import csv
import logging
import sys
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

from PIL import Image

from nighttrail.lib import settings
from nighttrail.lib.clustering_utils import DwellClusterer, generate_heatmap
from nighttrail.lib.dwell_detector import TrackingSession
from nighttrail.lib.errors import InsufficientData, MalformedInput
from nighttrail.lib.geocoding import ReverseGeocoder
from nighttrail.lib.models import DrinkCounts, Fix, decode_datetime
from nighttrail.lib.route_renderer import RouteRenderer, RouteStyle
from nighttrail.lib.session_stats import (
    all_dwells,
    compute_history_statistics,
    format_distance,
    format_duration,
    session_summary,
)
from nighttrail.lib.settings import HeatmapIntensity, TrackingConfig
from nighttrail.lib.storage import SessionStorage

logger = logging.getLogger(__name__)


def load_fixes(path):
    """
    Read fixes from a CSV file with columns timestamp, latitude, longitude[, accuracy]

    A header row is optional. Timestamps are ISO-8601; those without an offset
    are read as UTC.
    """
    fixes = []
    with open(path, newline='') as f:
        for line_no, row in enumerate(csv.reader(f), 1):
            if not row or row[0].strip().startswith('#'):
                continue
            if line_no == 1 and row[0].strip().lower() == 'timestamp':
                continue
            try:
                accuracy = row[3].strip() if len(row) > 3 else ''
                fixes.append(Fix(
                    latitude=float(row[1]),
                    longitude=float(row[2]),
                    timestamp=decode_datetime(row[0].strip()),
                    accuracy=float(accuracy) if accuracy else None,
                ))
            except (IndexError, ValueError) as e:
                logger.warning("⚠️ Skipping line %d of %s: %s", line_no, path, e)
    return fixes


def print_session(session, now=None):
    summary = session_summary(session, now)
    print(f"\n{'='*60}")
    print(f"Night of {session.start_time.strftime('%Y-%m-%d %H:%M')}  ({session.id})")
    print(f"{'='*60}")
    print(f"  Duration:   {summary.duration_label}")
    print(f"  Distance:   {summary.distance_label}")
    print(f"  Venues:     {summary.venues}")
    print(f"  Drinks:     {summary.drinks}")
    print(f"  Rating:     {summary.rating or '-'}")

    for i, dwell in enumerate(session.dwells, 1):
        name = dwell.display_name or "Unnamed location"
        print(f"  [{i}] {dwell.start_time.strftime('%H:%M')}-{dwell.end_time.strftime('%H:%M')} "
              f"{format_duration(dwell.duration):>7}  {name}  "
              f"({dwell.location.latitude:.5f}, {dwell.location.longitude:.5f})")


def replay(args, storage):
    config = TrackingConfig(
        dwell_radius_m=args.radius if args.radius is not None else settings.DWELL_RADIUS_M,
        dwell_min_seconds=args.min_duration * 60 if args.min_duration is not None else settings.DWELL_MIN_SECONDS,
        max_accuracy_m=TrackingConfig.from_env().max_accuracy_m,
        auto_stop_hours=settings.AUTO_STOP_HOURS,
    )
    fixes = load_fixes(args.fixes)
    if not fixes:
        print("❌ Error: No fixes found in the file.")
        return 1

    tracker = TrackingSession(config, start_time=fixes[0].timestamp)
    for fix in fixes:
        try:
            tracker.add_fix(fix)
        except MalformedInput as e:
            logger.warning("⚠️ Rejected fix: %s", e)
        if tracker.should_auto_stop(fix.timestamp):
            logger.info("⏰ Auto-stopping after %.0f hours", config.auto_stop_hours)
            break

    for entry in args.drink or []:
        category, _, count = entry.partition('=')
        tracker.add_drink(category.strip().lower(), int(count) if count else 1)
    if args.rating:
        tracker.set_rating(args.rating)

    route = tracker.snapshot().route
    session = tracker.end(end_time=route[-1].timestamp if route else fixes[0].timestamp)
    print_session(session)

    if args.save:
        storage.save(session)
        print(f"\n✓ Session saved to {storage.path}")
    return 0


def stats(args, storage):
    sessions = storage.load_all()
    if not sessions:
        print("No sessions stored yet.")
        return 0

    history = compute_history_statistics(sessions, datetime.now(timezone.utc).astimezone())
    print(f"\n{'='*60}")
    print("Your Nights Out")
    print(f"{'='*60}")
    for label, value in history.as_dict().items():
        print(f"  {label + ':':<20} {value}")

    records = [
        ("Longest night", history.longest_night, lambda s: format_duration(s.duration())),
        ("Furthest night", history.furthest_night, lambda s: format_distance(s.total_distance)),
        ("Most stops", history.most_stops_night, lambda s: f"{len(s.dwells)} stops"),
        ("Biggest night", history.biggest_night, lambda s: f"{s.drinks.total} drinks"),
    ]
    print("\nRecords:")
    for label, session, describe in records:
        if session is not None:
            print(f"  {label + ':':<20} {describe(session)} on {session.start_time.strftime('%Y-%m-%d')}")

    drinks = history.yearly_drinks.as_dict()
    if any(drinks.values()):
        print("\nDrinks this year:")
        for category in DrinkCounts.categories():
            print(f"  {category:<10} {drinks[category]}")
    return 0


def heatmap(args, storage):
    intensity = HeatmapIntensity.from_name(args.intensity) if args.intensity else HeatmapIntensity.default()
    dwells = all_dwells(storage.load_all())
    if not dwells:
        print("No stops recorded yet - nothing to show.")
        return 0

    spots = DwellClusterer.hot_spots(dwells, intensity.cluster_radius)
    print(f"\nHot spots ({intensity.label}, {intensity.cluster_radius:.0f} m):")
    if not spots:
        print("  None yet (a place needs at least 3 visits)")
    for spot in sorted(spots, key=lambda c: c.count, reverse=True):
        print(f"  {spot.count:>3} visits  {spot.display_name or 'Unnamed location'}  "
              f"({spot.center.latitude:.5f}, {spot.center.longitude:.5f})")

    count, name = DwellClusterer.most_visited_place(dwells)
    print(f"\nMost visited: {name} ({count})")

    if args.output:
        image = RouteRenderer.render_heatmap(generate_heatmap(dwells, intensity), (args.size, args.size))
        image.save(args.output)
        print(f"\n✓ Heatmap saved to {args.output}")
    return 0


def render(args, storage):
    session = storage.get(args.session_id)
    if session is None:
        print(f"❌ Error: No unique session matches '{args.session_id}'")
        return 1

    renderer = RouteRenderer(RouteStyle(smoothing=args.smoothing))
    try:
        if args.card:
            image = renderer.render_stats_card(session, size=(args.size, args.size))
        else:
            image = renderer.render_route(session, size=(args.size, args.size), outline=args.outline)
    except InsufficientData as e:
        print(f"Nothing to show: {e}")
        return 1

    if args.background:
        with Image.open(args.background) as photo:
            view = (args.view_width, args.view_width * photo.height / photo.width)
            image = RouteRenderer.composite_onto_photo(
                photo, image, view, offset=(args.offset_x, args.offset_y),
                scale=args.scale, opacity=args.opacity,
            )

    image.save(args.output)
    print(f"✓ Image saved to {args.output} ({image.width}x{image.height}px)")
    return 0


def geocode(args, storage):
    session = storage.get(args.session_id)
    if session is None:
        print(f"❌ Error: No unique session matches '{args.session_id}'")
        return 1

    geocoder = ReverseGeocoder()
    try:
        futures = {
            dwell.id: geocoder.lookup_async(dwell.location.latitude, dwell.location.longitude)
            for dwell in session.dwells if not dwell.place_name or args.force
        }
        dwells = []
        for dwell in session.dwells:
            name = futures[dwell.id].result() if dwell.id in futures else None
            dwells.append(dwell.with_place_name(name) if name else dwell)
    finally:
        geocoder.close()

    session = replace(session, dwells=tuple(dwells))
    storage.save(session)
    print_session(session)
    return 0


def clear(args, storage):
    if not args.yes:
        print("This deletes every stored session. Re-run with --yes to confirm.")
        return 1
    storage.clear_all()
    print("✓ All sessions deleted")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(
        description='Track nights out: detect stops, build statistics and route images',
        epilog='Examples:\n'
               '  %(prog)s replay fixes.csv --save\n'
               '  %(prog)s stats\n'
               '  %(prog)s heatmap --intensity high --output heatmap.png\n'
               '  %(prog)s render 3f2a --output route.png --outline\n',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument('--data-dir', type=Path, default=None,
                        help=f'Directory of the session store (default: {settings.DATA_DIR})')
    parser.add_argument('--debug', action='store_true', help='Enable debug output')
    subparsers = parser.add_subparsers(dest='command', required=True)

    replay_parser = subparsers.add_parser('replay', help='Replay a CSV of fixes into a session')
    replay_parser.add_argument('fixes', help='CSV file: timestamp,latitude,longitude[,accuracy]')
    replay_parser.add_argument('--radius', type=float, default=None, help='Dwell radius in meters')
    replay_parser.add_argument('--min-duration', type=float, default=None, help='Minimum dwell in minutes')
    replay_parser.add_argument('--drink', action='append', metavar='CATEGORY[=N]',
                               help=f"Log drinks ({', '.join(DrinkCounts.categories())})")
    replay_parser.add_argument('--rating', type=int, choices=range(1, 6), help='Rate the night (1-5)')
    replay_parser.add_argument('--save', action='store_true', help='Store the session')
    replay_parser.set_defaults(handler=replay)

    stats_parser = subparsers.add_parser('stats', help='Show statistics across all nights')
    stats_parser.set_defaults(handler=stats)

    heatmap_parser = subparsers.add_parser('heatmap', help='Show hot spots and render a heatmap')
    heatmap_parser.add_argument('--intensity', choices=[p.label for p in HeatmapIntensity], default=None)
    heatmap_parser.add_argument('--output', '-o', default=None, help='Save a heatmap PNG')
    heatmap_parser.add_argument('--size', type=int, default=1080, help='Image size in pixels')
    heatmap_parser.set_defaults(handler=heatmap)

    render_parser = subparsers.add_parser('render', help='Render a route overlay or stats card')
    render_parser.add_argument('session_id', help='Session id (or a unique prefix)')
    render_parser.add_argument('--output', '-o', required=True, help='Output image file')
    render_parser.add_argument('--size', type=int, default=1080, help='Image size in pixels')
    render_parser.add_argument('--outline', action='store_true', help='White outline under the route')
    render_parser.add_argument('--card', action='store_true', help='Render the stats card instead')
    render_parser.add_argument('--smoothing', '-s', default='none', choices=['none', 'light', 'medium', 'heavy'])
    render_parser.add_argument('--background', help='Photo to composite the overlay onto')
    render_parser.add_argument('--view-width', type=float, default=390.0,
                               help='Width of the preview the offsets refer to')
    render_parser.add_argument('--scale', type=float, default=1.0)
    render_parser.add_argument('--opacity', type=float, default=1.0)
    render_parser.add_argument('--offset-x', type=float, default=0.0)
    render_parser.add_argument('--offset-y', type=float, default=0.0)
    render_parser.set_defaults(handler=render)

    geocode_parser = subparsers.add_parser('geocode', help="Name a stored session's stops")
    geocode_parser.add_argument('session_id', help='Session id (or a unique prefix)')
    geocode_parser.add_argument('--force', action='store_true', help='Look up stops that already have names')
    geocode_parser.set_defaults(handler=geocode)

    clear_parser = subparsers.add_parser('clear', help='Delete all stored sessions')
    clear_parser.add_argument('--yes', action='store_true', help='Confirm deletion')
    clear_parser.set_defaults(handler=clear)

    return parser


def main(argv=None):
    """Main entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    data_dir = args.data_dir or settings.DATA_DIR
    storage = SessionStorage(Path(data_dir) / settings.SESSIONS_FILENAME)

    try:
        return args.handler(args, storage)
    except (ValueError, OSError) as e:
        print(f"❌ Error: {e}")
        if args.debug:
            raise
        return 1


if __name__ == "__main__":
    sys.exit(main())
