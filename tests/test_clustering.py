"""Tests for dwell clustering, hot spots and heatmap points."""

import pytest

from conftest import BASE_LAT, BASE_LON, offset_north
from nighttrail.lib.clustering_utils import DwellClusterer, color_band, generate_heatmap
from nighttrail.lib.errors import InsufficientData
from nighttrail.lib.location_utils import LocationUtils
from nighttrail.lib.settings import HeatmapIntensity


def dwell_at(make_dwell, meters, minutes=30.0, name=None, start=0.0):
    point = offset_north(meters)
    return make_dwell(point.latitude, point.longitude, start=start, minutes=minutes, name=name)


def test_clusters_partition_input(make_dwell) -> None:
    """Test every dwell lands in exactly one cluster within radius of its seed."""
    dwells = [dwell_at(make_dwell, m) for m in (0, 30, 60, 500, 520, 2000, 90, 1990)]
    clusters = DwellClusterer.cluster(dwells, 75)

    members = [d for c in clusters for d in c.members]
    assert len(members) == len(dwells)
    assert {d.id for d in members} == {d.id for d in dwells}
    for cluster in clusters:
        for member in cluster.members:
            assert LocationUtils.distance_meters(member.location, cluster.seed.location) <= 75


def test_clustering_compares_with_seed(make_dwell) -> None:
    """Test chained dwells are not absorbed through the growing cluster."""
    dwells = [dwell_at(make_dwell, m) for m in (0, 60, 120)]
    clusters = DwellClusterer.cluster(dwells, 75)
    assert [c.count for c in clusters] == [2, 1]
    assert clusters[0].seed == dwells[0]
    assert clusters[1].seed == dwells[2]


def test_centroid_is_duration_weighted(make_dwell) -> None:
    """Test durations 10 and 30 put the centroid 3/4 of the way to the second dwell."""
    first = make_dwell(BASE_LAT, BASE_LON, minutes=10)
    second = make_dwell(BASE_LAT + 0.0004, BASE_LON + 0.0004, minutes=30)
    cluster = DwellClusterer.cluster([first, second], 100)[0]

    assert cluster.center.latitude == pytest.approx(BASE_LAT + 0.0003)
    assert cluster.center.longitude == pytest.approx(BASE_LON + 0.0003)


def test_centroid_falls_back_to_plain_mean(make_dwell) -> None:
    """Test zero-duration members give the unweighted mean."""
    first = make_dwell(BASE_LAT, BASE_LON, minutes=0)
    second = make_dwell(BASE_LAT + 0.0002, BASE_LON, minutes=0)
    center = DwellClusterer.weighted_centroid([first, second])
    assert center.latitude == pytest.approx(BASE_LAT + 0.0001)


def test_empty_input(make_dwell) -> None:
    """Test an empty dwell set is 'nothing to show'."""
    assert DwellClusterer.cluster([], 75) == []
    assert generate_heatmap([], HeatmapIntensity.MEDIUM) == []
    assert DwellClusterer.most_visited_place([]) == (0, 'No data yet')
    with pytest.raises(InsufficientData):
        DwellClusterer.require_clusters([], 75)


def test_hot_spots_need_three_visits(make_dwell) -> None:
    """Test only clusters with at least 3 members are hot spots."""
    dwells = [dwell_at(make_dwell, m) for m in (0, 5, 10, 1000, 1005)]
    spots = DwellClusterer.hot_spots(dwells, 50)
    assert [s.count for s in spots] == [3]


def test_most_visited_place_name(make_dwell) -> None:
    """Test the most common name among the biggest cluster is used."""
    dwells = [
        dwell_at(make_dwell, 0, name='The Crown'),
        dwell_at(make_dwell, 10, name='Crown Pub'),
        dwell_at(make_dwell, 20, name='The Crown'),
        dwell_at(make_dwell, 30),
        dwell_at(make_dwell, 3000, name='Elsewhere'),
    ]
    assert DwellClusterer.most_visited_place(dwells) == (4, 'The Crown')


def test_most_visited_place_unnamed_and_tie(make_dwell) -> None:
    """Test the unnamed fallback and that the first cluster wins a tie."""
    dwells = [
        dwell_at(make_dwell, 0),
        dwell_at(make_dwell, 3000, name='Later'),
        dwell_at(make_dwell, 10),
        dwell_at(make_dwell, 3010, name='Later'),
    ]
    assert DwellClusterer.most_visited_place(dwells) == (2, 'Unnamed location (2 visits)')


def test_heatmap_points(make_dwell) -> None:
    """Test each cluster gets one disc per radius step with fading opacity."""
    busy = [dwell_at(make_dwell, m) for m in (0, 10, 20, 30)]
    quiet = [dwell_at(make_dwell, 5000)]
    intensity = HeatmapIntensity.MEDIUM
    points = generate_heatmap(busy + quiet, intensity)

    assert len(points) == 2 * intensity.radius_steps
    busy_points = points[:intensity.radius_steps]
    assert [p.radius for p in busy_points] == pytest.approx([40, 80, 120, 160, 200])
    assert busy_points[0].intensity == 1.0
    assert busy_points[0].color_band == 'red'
    assert busy_points[0].opacity == pytest.approx((1 - 0.2 * 0.7) * 0.5)
    assert busy_points[-1].opacity == pytest.approx((1 - 0.7) * 0.5)

    quiet_point = points[intensity.radius_steps]
    assert quiet_point.intensity == pytest.approx(0.25)
    assert quiet_point.color_band == 'purple'


def test_color_bands() -> None:
    """Test the intensity to colour band boundaries."""
    assert color_band(0.1) == 'blue'
    assert color_band(0.25) == 'purple'
    assert color_band(0.5) == 'orange'
    assert color_band(0.75) == 'red'
    assert color_band(1.0) == 'red'


def test_intensity_presets() -> None:
    """Test preset lookup by name."""
    assert HeatmapIntensity.from_name('High').cluster_radius == 100
    assert HeatmapIntensity.LOW.radius_steps == 3
    with pytest.raises(ValueError):
        HeatmapIntensity.from_name('extreme')
