#!/usr/bin/env python3
"""
Unit tests for orbitrack: TLE parsing, propagation, record validation,
the filter/query engine and configuration.
"""
from dataclasses import FrozenInstanceError
from datetime import date, timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError

from conftest import EPOCH, HST_LINE1, HST_LINE2, ISS_LINE1, ISS_LINE2
from orbitrack.config import TrackerConfig
from orbitrack.errors import PropagationError, ValidationError
from orbitrack.filtering import apply_filters, build_catalog_frame, elevation_deg
from orbitrack.models import (
    Category,
    FilterCriteria,
    LifecycleStatus,
    Observer,
    Position,
)
from orbitrack.propagator import FALLBACK_RESULT, propagate, propagate_strict
from orbitrack.records import (
    classify,
    country_name,
    infer_operator,
    parse_record,
    parse_records,
    sanitize,
    tle_to_record,
)
from orbitrack.tle_parser import TLE, ElementSet


# ═══════════════════════════════════════════════════════════════
# TLE PARSER TESTS
# ═══════════════════════════════════════════════════════════════
class TestTLEParser:
    def test_parse_iss(self):
        tle = TLE.parse(ISS_LINE1, ISS_LINE2)
        assert tle.norad_id == 25544
        assert tle.classification == "U"
        assert tle.intl_designator == "98067A"
        assert abs(tle.inclination - 51.64) < 0.01
        assert abs(tle.raan - 208.5) < 0.01
        assert abs(tle.eccentricity - 0.0007417) < 1e-8
        assert abs(tle.mean_motion - 15.4956) < 0.001
        assert abs(tle.bstar - 0.1027e-3) < 1e-9

    def test_derived_summary_iss(self):
        tle = TLE.parse(ISS_LINE1, ISS_LINE2)
        # ISS period ~92.9 minutes, ~420 km
        assert 92.5 < tle.period_min < 93.2
        assert 400 < tle.perigee_km < tle.apogee_km < 440
        assert 6780 < tle.semi_major_axis < 6810

    def test_epoch_datetime(self):
        tle = TLE.parse(ISS_LINE1, ISS_LINE2)
        # 2024, day 1.5 = Jan 1 at noon UTC
        assert tle.epoch == EPOCH
        assert tle.epoch.tzinfo is not None

    def test_parse_3line(self):
        tle = TLE.parse(ISS_LINE1, ISS_LINE2, name="ISS (ZARYA)")
        assert tle.name == "ISS (ZARYA)"

    def test_parse_batch_multiple(self):
        text = f"0 ISS (ZARYA)\n{ISS_LINE1}\n{ISS_LINE2}\nHST\n{HST_LINE1}\n{HST_LINE2}\n"
        tles = TLE.parse_batch(text)
        assert [t.name for t in tles] == ["ISS (ZARYA)", "HST"]

    def test_parse_batch_2line(self):
        tles = TLE.parse_batch(f"{ISS_LINE1}\n{ISS_LINE2}\n")
        assert len(tles) == 1
        assert tles[0].name is None

    def test_parse_batch_skips_malformed(self):
        bad_line2 = "2 99999" + ISS_LINE2[7:]
        text = f"BROKEN\n{ISS_LINE1}\n{bad_line2}\nHST\n{HST_LINE1}\n{HST_LINE2}\n"
        tles = TLE.parse_batch(text)
        assert [t.norad_id for t in tles] == [20580]

    def test_elements(self):
        tle = TLE.parse(ISS_LINE1, ISS_LINE2)
        assert tle.elements == ElementSet(ISS_LINE1, ISS_LINE2)
        assert tle.elements.looks_valid()

    def test_alpha5_catalog_number(self):
        line1 = "1 A0001" + ISS_LINE1[7:]
        line2 = "2 A0001" + ISS_LINE2[7:]
        assert TLE.parse(line1, line2).norad_id == 100001

    def test_invalid_line1_start(self):
        with pytest.raises(ValueError, match="Line 1 must start"):
            TLE.parse("2" + ISS_LINE1[1:], ISS_LINE2)

    def test_norad_id_mismatch(self):
        bad_line2 = "2 99999" + ISS_LINE2[7:]
        with pytest.raises(ValueError, match="NORAD ID mismatch"):
            TLE.parse(ISS_LINE1, bad_line2)

    def test_too_short(self):
        with pytest.raises(ValueError, match="too short"):
            TLE.parse(ISS_LINE1[:40], ISS_LINE2)


# ═══════════════════════════════════════════════════════════════
# PROPAGATOR TESTS
# ═══════════════════════════════════════════════════════════════
class TestPropagator:
    def test_iss_at_epoch(self):
        r = propagate_strict(ElementSet(ISS_LINE1, ISS_LINE2), EPOCH)
        assert 350 < r.altitude_km < 450
        assert -52.0 <= r.latitude <= 52.0
        assert -180.0 <= r.longitude <= 180.0
        assert 7.5 < r.velocity_km_s < 7.8
        assert 0.0 <= r.heading_deg < 360.0

    def test_hubble_higher_than_iss(self):
        iss = propagate_strict(ElementSet(ISS_LINE1, ISS_LINE2), EPOCH)
        hst = propagate_strict(ElementSet(HST_LINE1, HST_LINE2), EPOCH)
        assert hst.altitude_km > iss.altitude_km
        assert abs(hst.latitude) <= 29.0

    def test_pure(self):
        elements = ElementSet(ISS_LINE1, ISS_LINE2)
        assert propagate_strict(elements, EPOCH) == propagate_strict(elements, EPOCH)

    def test_naive_datetime_is_utc(self):
        elements = ElementSet(ISS_LINE1, ISS_LINE2)
        naive = EPOCH.replace(tzinfo=None)
        assert propagate_strict(elements, naive) == propagate_strict(elements, EPOCH)

    def test_position_moves(self):
        elements = ElementSet(ISS_LINE1, ISS_LINE2)
        a = propagate_strict(elements, EPOCH)
        b = propagate_strict(elements, EPOCH + timedelta(minutes=10))
        assert (a.latitude, a.longitude) != (b.latitude, b.longitude)

    def test_malformed_returns_fallback(self):
        """A malformed element string yields the documented fallback, no exception."""
        result = propagate(ElementSet("garbage", "not a tle"), EPOCH)
        assert result == FALLBACK_RESULT
        assert (result.latitude, result.longitude, result.altitude_km) == (0.0, 0.0, 400.0)
        assert (result.velocity_km_s, result.heading_deg) == (7.8, 0.0)

    def test_fallback_results_are_finite(self):
        for elements in (
            ElementSet("", ""),
            ElementSet(ISS_LINE2, ISS_LINE1),
        ):
            result = propagate(elements, EPOCH)
            assert result.is_finite()

    def test_raw_inputs_return_fallback(self):
        for raw in ("garbage string", "", None, 42, ElementSet(None, None)):
            assert propagate(raw, EPOCH) == FALLBACK_RESULT

    def test_accepts_element_text(self):
        text = f"ISS (ZARYA)\n{ISS_LINE1}\n{ISS_LINE2}\n"
        expected = propagate_strict(ElementSet(ISS_LINE1, ISS_LINE2), EPOCH)
        assert propagate_strict(text, EPOCH) == expected
        assert propagate(f"{ISS_LINE1}\n{ISS_LINE2}", EPOCH) == expected

    def test_strict_raises(self):
        with pytest.raises(PropagationError):
            propagate_strict(ElementSet("garbage", "not a tle"), EPOCH)
        with pytest.raises(PropagationError, match="two lines"):
            propagate_strict("garbage string", EPOCH)
        with pytest.raises(PropagationError, match="NoneType"):
            propagate_strict(None, EPOCH)

    def test_strict_rejects_non_datetime(self):
        with pytest.raises(PropagationError, match="datetime"):
            propagate_strict(ElementSet(ISS_LINE1, ISS_LINE2), "2024-01-01")


# ═══════════════════════════════════════════════════════════════
# RECORD VALIDATION TESTS
# ═══════════════════════════════════════════════════════════════
class TestRecords:
    def test_parse_iss_record(self, iss_record):
        obj = parse_record(iss_record, EPOCH)
        assert obj.id == "25544"
        assert obj.name == "ISS (ZARYA)"
        assert obj.category == Category.SPACE_STATION
        assert obj.status == LifecycleStatus.ACTIVE
        assert obj.metadata.operator == "ISS"
        assert obj.metadata.country == "International"
        assert obj.metadata.launch_date == date(1998, 11, 20)
        assert obj.metadata.purpose == "Space Station"
        assert obj.position.timestamp == EPOCH
        assert obj.position.is_valid()
        assert abs(obj.summary.inclination_deg - 51.64) < 1e-6

    def test_missing_optional_fields_defaulted(self):
        obj = parse_record(
            {"NORAD_CAT_ID": 20580, "TLE_LINE1": HST_LINE1, "TLE_LINE2": HST_LINE2},
            EPOCH,
        )
        assert obj.name == "NORAD 20580"
        assert obj.metadata.operator == "Individual"
        assert obj.metadata.country == "Unknown"
        assert obj.metadata.launch_date is None
        assert obj.category == Category.UNKNOWN

    def test_invalid_optional_field_falls_back_to_elements(self, iss_record):
        iss_record["INCLINATION"] = 500.0
        iss_record["ECCENTRICITY"] = float("nan")
        iss_record["LAUNCH_DATE"] = "not a date"
        obj = parse_record(iss_record, EPOCH)
        assert abs(obj.summary.inclination_deg - 51.64) < 0.01
        assert abs(obj.summary.eccentricity - 0.0007417) < 1e-8
        assert obj.metadata.launch_date is None

    def test_missing_required_field(self, iss_record):
        del iss_record["TLE_LINE1"]
        with pytest.raises(ValidationError, match="TLE_LINE1"):
            parse_record(iss_record, EPOCH)

    def test_non_positive_id(self, iss_record):
        iss_record["NORAD_CAT_ID"] = -1
        with pytest.raises(ValidationError):
            parse_record(iss_record, EPOCH)

    def test_id_mismatch(self, iss_record):
        iss_record["NORAD_CAT_ID"] = 20580
        with pytest.raises(ValidationError, match="does not match"):
            parse_record(iss_record, EPOCH)

    def test_malformed_lines(self, iss_record):
        iss_record["TLE_LINE2"] = "2 25544  this is not an element set at all, not even close"
        with pytest.raises(ValidationError):
            parse_record(iss_record, EPOCH)

    def test_decayed_status(self, iss_record):
        iss_record["DECAY_DATE"] = "2024-01-01"
        assert parse_record(iss_record, EPOCH).status == LifecycleStatus.DECAYED

    def test_not_a_mapping(self):
        with pytest.raises(ValidationError, match="mapping"):
            parse_record(["NORAD_CAT_ID", 25544], EPOCH)

    def test_name_sanitized(self, iss_record):
        iss_record["OBJECT_NAME"] = "<b>ISS (ZARYA)</b>"
        assert parse_record(iss_record, EPOCH).name == "bISS (ZARYA)/b"

    def test_parse_records_drops_invalid_and_duplicates(self, iss_record, hst_record):
        duplicate = dict(iss_record, OBJECT_NAME="ISS COPY")
        broken = dict(hst_record, TLE_LINE1="1 garbage")
        objects = parse_records([iss_record, broken, duplicate, hst_record, "junk"], EPOCH)
        assert [o.id for o in objects] == ["25544", "20580"]
        assert objects[0].name == "ISS (ZARYA)"

    def test_tle_to_record_roundtrip_fields(self):
        tle = TLE.parse(HST_LINE1, HST_LINE2, name="HST")
        record = tle_to_record(tle)
        assert record["NORAD_CAT_ID"] == 20580
        assert parse_record(record, EPOCH).name == "HST"


class TestClassification:
    def test_debris_and_rocket_bodies(self):
        assert classify("COSMOS 2251 DEB") == Category.DEBRIS
        assert classify("FALCON 9 R/B") == Category.ROCKET_BODY
        assert classify("ANYTHING", "DEBRIS") == Category.DEBRIS
        assert classify("ANYTHING", "ROCKET BODY") == Category.ROCKET_BODY

    def test_keywords(self):
        assert classify("STARLINK-1007") == Category.CONSTELLATION
        assert classify("NAVSTAR 43 (USA 132)") == Category.NAVIGATION
        assert classify("NOAA 19") == Category.WEATHER
        assert classify("HUBBLE SPACE TELESCOPE") == Category.SCIENTIFIC
        assert classify("LANDSAT 9") == Category.EARTH_OBSERVATION
        assert classify("INTELSAT 901") == Category.COMMUNICATION
        assert classify("TIANHE") == Category.SPACE_STATION

    def test_iss_keyword_needs_word_boundary(self):
        assert classify("MISSION X") == Category.UNKNOWN
        assert classify("MISSION X", "PAYLOAD") == Category.COMMUNICATION

    def test_operator_and_country(self):
        assert infer_operator("STARLINK-1007") == "Starlink"
        assert infer_operator("FLOCK 4P-1") == "Planet Labs"
        assert infer_operator("MISSION X") == "Individual"
        assert country_name("STARLINK-1007", None) == "USA"
        assert country_name("SOME SAT", "PRC") == "China"
        assert country_name("SOME SAT", "XYZ") == "XYZ"
        assert country_name("SOME SAT", None) == "Unknown"

    def test_sanitize(self):
        assert sanitize(" <script>'x'&\" ") == "scriptx"


# ═══════════════════════════════════════════════════════════════
# FILTER / QUERY ENGINE TESTS
# ═══════════════════════════════════════════════════════════════
@pytest.fixture
def three_objects(make_object):
    return [
        make_object("1", altitude=800, category=Category.CONSTELLATION),
        make_object("2", altitude=200, category=Category.DEBRIS, operator="Individual"),
        make_object("3", altitude=35000, category=Category.MILITARY, country="Russia",
                    operator="Individual", name="COSMOS 2500"),
    ]


def _altitudes(view):
    return [o.position.altitude_km for o in view]


class TestFiltering:
    def test_category_filter_sorted(self, three_objects):
        criteria = FilterCriteria(categories={Category.CONSTELLATION, Category.MILITARY})
        view = apply_filters(three_objects, criteria, cap=10)
        assert _altitudes(view) == [800, 35000]

    def test_empty_criteria_returns_all_sorted(self, three_objects):
        view = apply_filters(three_objects, FilterCriteria(search="", categories=()), cap=10)
        assert _altitudes(view) == [200, 800, 35000]

    def test_cap_one(self, three_objects):
        criteria = FilterCriteria(categories={Category.CONSTELLATION, Category.MILITARY})
        view = apply_filters(three_objects, criteria, cap=1)
        assert _altitudes(view) == [800]

    def test_cap_invariant(self, make_object):
        objects = [make_object(str(i), altitude=300 + i) for i in range(40)]
        for cap in (1, 7, 40, 100):
            assert len(apply_filters(objects, FilterCriteria(), cap)) <= cap

    def test_invalid_cap(self, three_objects):
        for cap in (0, -3, 2.5, True):
            with pytest.raises(ValueError, match="cap"):
                apply_filters(three_objects, FilterCriteria(), cap)

    def test_empty_input(self):
        assert apply_filters([], FilterCriteria(categories={"debris"}), cap=5) == ()

    def test_idempotent(self, three_objects):
        criteria = FilterCriteria(categories={"constellation", "military"})
        once = apply_filters(three_objects, criteria, cap=10)
        assert apply_filters(once, criteria, cap=10) == once

    def test_monotonic(self, three_objects):
        base = set(apply_filters(three_objects, FilterCriteria(), cap=10))
        for extra in (
            {"categories": {"debris"}},
            {"countries": {"USA"}},
            {"operators": {"Individual"}},
            {"altitude_range": (100.0, 1000.0)},
            {"search": "cosmos"},
        ):
            narrowed = apply_filters(three_objects, FilterCriteria(**extra), cap=10)
            assert set(narrowed) <= base

    def test_stable_ties(self, make_object):
        objects = [make_object(str(i), altitude=500) for i in range(5)]
        view = apply_filters(objects, FilterCriteria(), cap=10)
        assert [o.id for o in view] == ["0", "1", "2", "3", "4"]

    def test_country_operator_status(self, three_objects, make_object):
        objects = three_objects + [
            make_object("4", altitude=600, status=LifecycleStatus.DECAYED)
        ]
        assert [o.id for o in apply_filters(objects, FilterCriteria(countries={"Russia"}), 10)] == ["3"]
        assert [o.id for o in apply_filters(objects, FilterCriteria(operators={"Starlink"}), 10)] == ["4", "1"]
        assert [o.id for o in apply_filters(objects, FilterCriteria(statuses={"decayed"}), 10)] == ["4"]

    def test_altitude_range(self, three_objects):
        view = apply_filters(three_objects, FilterCriteria(altitude_range=(100, 1000)), 10)
        assert _altitudes(view) == [200, 800]

    def test_explicit_altitude_range_is_always_applied(self, make_object):
        objects = [make_object("1", altitude=60000), make_object("2", altitude=500)]
        criteria = FilterCriteria(altitude_range=(0, 50000))
        assert [o.id for o in apply_filters(objects, criteria, 10)] == ["2"]

    def test_open_altitude_bounds(self, three_objects):
        assert _altitudes(apply_filters(three_objects, FilterCriteria(), 10)) == [200, 800, 35000]
        below = FilterCriteria(altitude_range=(None, 1000))
        assert _altitudes(apply_filters(three_objects, below, 10)) == [200, 800]
        above = FilterCriteria(altitude_range=(500, None))
        assert _altitudes(apply_filters(three_objects, above, 10)) == [800, 35000]

    def test_search_fields(self, three_objects):
        assert [o.id for o in apply_filters(three_objects, FilterCriteria(search="COSMOS"), 10)] == ["3"]
        assert [o.id for o in apply_filters(three_objects, FilterCriteria(search="starlink"), 10)] == ["1"]
        assert [o.id for o in apply_filters(three_objects, FilterCriteria(search="russia"), 10)] == ["3"]
        assert [o.id for o in apply_filters(three_objects, FilterCriteria(search="debr"), 10)] == ["2"]

    def test_launch_date_range(self, make_object):
        objects = [
            make_object("1", launch_date=date(2019, 5, 24)),
            make_object("2", launch_date=date(2023, 1, 3)),
            make_object("3"),
        ]
        criteria = FilterCriteria(launch_date_range=(date(2020, 1, 1), None))
        assert [o.id for o in apply_filters(objects, criteria, 10)] == ["2"]

    def test_visible_only(self, make_object):
        objects = [
            make_object("overhead", latitude=0.0, longitude=0.0),
            make_object("antipode", latitude=0.0, longitude=180.0),
        ]
        observer = Observer(latitude=0.0, longitude=0.0)
        criteria = FilterCriteria(visible_only=True, observer=observer)
        assert [o.id for o in apply_filters(objects, criteria, 10)] == ["overhead"]

    def test_visible_only_without_observer_is_no_constraint(self, make_object):
        objects = [make_object("a"), make_object("b", longitude=180.0)]
        assert len(apply_filters(objects, FilterCriteria(visible_only=True), 10)) == 2

    def test_elevation_overhead(self):
        position = Position(10.0, 20.0, 500.0, EPOCH)
        assert elevation_deg(Observer(10.0, 20.0), position) == pytest.approx(90.0, abs=0.01)

    def test_catalog_frame(self, three_objects):
        df = build_catalog_frame(three_objects)
        assert len(df) == 3
        assert {"id", "name", "category", "altitude_km", "operator"} <= set(df.columns)
        assert build_catalog_frame([]).empty


class TestFilterCriteria:
    def test_coerces_sets(self):
        criteria = FilterCriteria(categories=["debris", "Military"], statuses="active")
        assert criteria.categories == frozenset({Category.DEBRIS, Category.MILITARY})
        assert criteria.statuses == frozenset({LifecycleStatus.ACTIVE})

    def test_merge_returns_new_value(self):
        original = FilterCriteria()
        merged = original.merge(search="iss", countries={"USA"})
        assert merged.search == "iss"
        assert original.search == ""
        assert original.countries == frozenset()

    def test_merge_unknown_key(self):
        with pytest.raises(TypeError, match="colour"):
            FilterCriteria().merge(colour="red")

    def test_frozen(self):
        with pytest.raises(FrozenInstanceError):
            FilterCriteria().search = "x"

    def test_inverted_altitude_range(self):
        with pytest.raises(ValueError, match="inverted"):
            FilterCriteria(altitude_range=(1000, 100))

    def test_unset_altitude_range(self):
        assert FilterCriteria().altitude_range == (None, None)
        assert FilterCriteria(altitude_range=(100, None)).altitude_range == (100.0, None)

    def test_rejects_unknown_names(self):
        with pytest.raises(ValueError, match="sattelite"):
            FilterCriteria(categories={"sattelite"})
        with pytest.raises(ValueError, match="orbiting"):
            FilterCriteria(statuses=["orbiting"])
        with pytest.raises(ValueError, match="sattelite"):
            FilterCriteria().merge(categories=["debris", "sattelite"])

    def test_ingestion_still_coerces_unknown_names(self):
        assert Category.coerce("sattelite") is Category.UNKNOWN
        assert LifecycleStatus.coerce("orbiting") is LifecycleStatus.UNKNOWN


# ═══════════════════════════════════════════════════════════════
# CONFIGURATION TESTS
# ═══════════════════════════════════════════════════════════════
class TestConfig:
    def test_defaults(self):
        cfg = TrackerConfig()
        assert cfg.update_interval_s == 15.0
        assert cfg.batch_size == 50
        assert cfg.rate_limit_delay_s == 2.0
        assert cfg.display_cap == 500
        assert (cfg.min_display_cap, cfg.max_display_cap) == (1, 10000)
        assert cfg.catalog_refresh_s == 600.0
        assert cfg.source_priority == ("spacetrack", "celestrak")

    def test_low_power_preset(self):
        cfg = TrackerConfig.for_low_power()
        assert cfg.display_cap == 250
        assert cfg.batch_size == 25
        assert cfg.update_interval_s == 20.0

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("ORBITRACK_BATCH_SIZE", "25")
        monkeypatch.setenv("ORBITRACK_UPDATE_INTERVAL_S", "7.5")
        monkeypatch.setenv("ORBITRACK_SOURCE_PRIORITY", "celestrak, spacetrack")
        monkeypatch.setenv("UNRELATED", "1")
        cfg = TrackerConfig.from_env()
        assert cfg.batch_size == 25
        assert cfg.update_interval_s == 7.5
        assert cfg.source_priority == ("celestrak", "spacetrack")
        assert cfg.display_cap == 500

    def test_validation(self):
        with pytest.raises(ValueError, match="batch_size"):
            TrackerConfig(batch_size=0)
        with pytest.raises(ValueError, match="update_interval_s"):
            TrackerConfig(update_interval_s=0)
        with pytest.raises(ValueError, match="display_cap"):
            TrackerConfig(display_cap=20000)

    def test_from_env_keeps_base(self, monkeypatch):
        monkeypatch.setenv("ORBITRACK_DISPLAY_CAP", "100")
        cfg = TrackerConfig.from_env(base=TrackerConfig.for_low_power())
        assert cfg.display_cap == 100
        assert cfg.batch_size == 25
        assert cfg.update_interval_s == 20.0

    def test_from_env_rejects_malformed_values(self, monkeypatch):
        monkeypatch.setenv("ORBITRACK_BATCH_SIZE", "fifty")
        with pytest.raises(PydanticValidationError, match="batch_size"):
            TrackerConfig.from_env()

    def test_from_env_rejects_out_of_range(self, monkeypatch):
        monkeypatch.setenv("ORBITRACK_MAX_RETRIES", "0")
        with pytest.raises(PydanticValidationError, match="max_retries"):
            TrackerConfig.from_env()

    def test_with_overrides_validates(self):
        cfg = TrackerConfig().with_overrides(batch_size=10)
        assert cfg.batch_size == 10
        with pytest.raises(ValueError, match="display_cap"):
            cfg.with_overrides(display_cap=0)

    def test_config_is_frozen(self):
        with pytest.raises(PydanticValidationError):
            TrackerConfig().batch_size = 5
