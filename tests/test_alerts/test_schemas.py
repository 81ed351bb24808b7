"""Tests for alert definition validation and the data model."""

import math

import pytest

from src.alerts.schemas import (
    AlertDefinition,
    ChannelKind,
    InvalidAlertDefinitionError,
    LocationMetadata,
    MetricKind,
    NotificationFrequency,
    Observation,
    Operator,
    is_valid_email,
    is_valid_phone_number,
    split_recipients,
)


class TestVocabulary:
    """Metric and operator parsing."""

    @pytest.mark.parametrize("raw,expected", [
        ("temperature", MetricKind.TEMPERATURE),
        ("rainfall", MetricKind.RAINFALL),
        ("ndvi", MetricKind.VEGETATION_INDEX),
        ("wind", MetricKind.WIND_SPEED),
        ("windspeed", MetricKind.WIND_SPEED),
        ("Wind_Speed", MetricKind.WIND_SPEED),
    ])
    def test_metric_aliases(self, raw, expected):
        assert MetricKind.parse(raw) is expected

    def test_unknown_metric_raises(self):
        with pytest.raises(InvalidAlertDefinitionError, match="Unknown metric kind"):
            MetricKind.parse("humidity")

    @pytest.mark.parametrize("raw,expected", [
        ("greaterThan", Operator.GREATER_THAN),
        ("lessThan", Operator.LESS_THAN),
        ("equals", Operator.EQUAL_TO),
        ("between", Operator.BETWEEN),
        ("greater_than", Operator.GREATER_THAN),
    ])
    def test_operator_aliases(self, raw, expected):
        assert Operator.parse(raw) is expected


class TestAlertDefinitionValidation:
    """Test AlertDefinition __post_init__ validation."""

    def test_valid_definition(self, make_alert):
        alert = make_alert()
        assert alert.metric_kind is MetricKind.TEMPERATURE
        assert alert.operator is Operator.GREATER_THAN
        assert alert.frequency is NotificationFrequency.ONCE
        assert alert.last_triggered is None

    def test_between_requires_second_threshold(self, make_alert):
        with pytest.raises(InvalidAlertDefinitionError, match="second threshold"):
            make_alert(operator="between", threshold=10)

    def test_between_thresholds_ordered(self, make_alert):
        with pytest.raises(InvalidAlertDefinitionError, match="exceeds"):
            make_alert(operator="between", threshold=20, threshold2=10)

    def test_between_equal_thresholds_allowed(self, make_alert):
        alert = make_alert(operator="between", threshold=10, threshold2=10)
        assert alert.threshold2 == 10.0

    def test_invalid_frequency(self, make_alert):
        with pytest.raises(InvalidAlertDefinitionError, match="Invalid frequency"):
            make_alert(frequency="weekly")

    def test_negative_duration(self, make_alert):
        with pytest.raises(InvalidAlertDefinitionError, match="negative"):
            make_alert(duration_hours=-1)

    def test_missing_duration_defaults_to_immediate(self, make_alert):
        alert = make_alert(duration_hours=None)
        assert alert.duration_hours == 0
        assert alert.requires_persistence is False

    def test_invalid_email(self, make_alert):
        with pytest.raises(InvalidAlertDefinitionError, match="invalid email"):
            make_alert(email_recipients=["not-an-address"])

    def test_invalid_phone(self, make_alert):
        with pytest.raises(InvalidAlertDefinitionError, match="invalid phone"):
            make_alert(sms_enabled=True, phone_numbers=["12345"])

    def test_no_recipients(self, make_alert):
        with pytest.raises(InvalidAlertDefinitionError, match="at least one recipient"):
            make_alert(email_recipients=[])

    def test_recipients_for_disabled_channel_do_not_count(self, make_alert):
        with pytest.raises(InvalidAlertDefinitionError, match="at least one recipient"):
            make_alert(email_enabled=False, phone_numbers=["+61 412 345 678"])

    def test_comma_separated_recipients(self, make_alert):
        alert = make_alert(email_recipients="a@example.com, b@example.org ,")
        assert alert.email_recipients == ["a@example.com", "b@example.org"]

    def test_thresholds_coerced_to_float(self, make_alert):
        alert = make_alert(threshold="35")
        assert alert.threshold == 35.0


class TestAlertDefinitionBehaviour:
    """Derived properties."""

    @pytest.mark.parametrize("hours,expected", [(0, False), (1, False), (2, True), (24, True)])
    def test_requires_persistence(self, make_alert, hours, expected):
        assert make_alert(duration_hours=hours).requires_persistence is expected

    def test_recipients_by_channel(self, make_alert):
        alert = make_alert(
            sms_enabled=True,
            whatsapp_enabled=True,
            phone_numbers=["+61 412 345 678"],
        )
        recipients = alert.recipients_by_channel()
        assert recipients[ChannelKind.EMAIL] == ["farmer@example.com"]
        assert recipients[ChannelKind.SMS] == ["+61 412 345 678"]
        assert recipients[ChannelKind.WHATSAPP] == ["+61 412 345 678"]


class TestRecipientHelpers:

    def test_email_shape(self):
        assert is_valid_email("grower@farm.co")
        assert not is_valid_email("grower@farm")
        assert not is_valid_email("two words@farm.co")

    @pytest.mark.parametrize("number,expected", [
        ("+61 412 345 678", True),
        ("(02) 9999-1234", True),
        ("12345678", False),
        ("1234567890123456", False),
    ])
    def test_phone_digits(self, number, expected):
        assert is_valid_phone_number(number) is expected

    def test_split_recipients(self):
        assert split_recipients(None) == []
        assert split_recipients(" a , ,b ") == ["a", "b"]
        assert split_recipients(["a", "", " b "]) == ["a", "b"]


class TestLocationAndObservation:

    def test_missing_coordinates(self):
        loc = LocationMetadata(location_id=3, name="", latitude=None, longitude=150.0)
        assert loc.has_coordinates is False
        assert loc.display_name == "Field #3"

    def test_value_for(self):
        obs = Observation(
            location_key="1.000,2.000",
            values={MetricKind.TEMPERATURE: 21.5, MetricKind.RAINFALL: math.nan},
        )
        assert obs.value_for(MetricKind.TEMPERATURE) == 21.5
        assert obs.value_for(MetricKind.RAINFALL) is None
        assert obs.value_for(MetricKind.WIND_SPEED) is None

    def test_measurement_for(self):
        loc = LocationMetadata(location_id=3, name="Orchard", ndvi=0.42)
        assert loc.measurement_for(MetricKind.VEGETATION_INDEX) == 0.42
        assert loc.measurement_for(MetricKind.TEMPERATURE) is None
        assert LocationMetadata(location_id=4, name="").measurement_for(
            MetricKind.VEGETATION_INDEX
        ) is None
