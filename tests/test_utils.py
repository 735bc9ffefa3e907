import io
from datetime import date, datetime

import pytest
from werkzeug.datastructures import FileStorage

from config import Config
from utils import (
    parse_datetime, to_iso, parse_month, calc_age, to_camel_car, first_row,
    driver_profile_fields, missing_profile_fields, upload_driver_license
)


def test_parse_datetime_variants():
    assert parse_datetime("2030-06-01T10:00:00") == datetime(2030, 6, 1, 10)
    assert parse_datetime("2030-06-01T10:00:00Z") == datetime(2030, 6, 1, 10)
    assert parse_datetime("2030-06-01T12:00:00+02:00") == datetime(2030, 6, 1, 10)
    assert parse_datetime(date(2030, 6, 1)) == datetime(2030, 6, 1)
    assert parse_datetime("") is None
    assert parse_datetime("not a date") is None


def test_parse_datetime_converts_to_business_timezone(monkeypatch):
    monkeypatch.setattr(Config, "BUSINESS_TIMEZONE", "Europe/Sofia")
    # Sofia is UTC+3 in summer
    assert parse_datetime("2030-06-01T07:00:00Z") == datetime(2030, 6, 1, 10)
    assert to_iso(datetime(2030, 6, 1, 10)) == "2030-06-01T10:00:00+03:00"


def test_parse_month():
    assert parse_month("2030-06") == datetime(2030, 6, 1)
    assert parse_month("2030-06-17") == datetime(2030, 6, 1)
    assert parse_month("june") is None
    assert parse_month(None).day == 1


def test_calc_age():
    assert calc_age("2000-06-02", today=datetime(2030, 6, 1)) == 29
    assert calc_age("2000-06-01", today=datetime(2030, 6, 1)) == 30
    assert calc_age(None) is None


def test_first_row_handles_lists_and_objects():
    assert first_row([{"name": "a"}]) == {"name": "a"}
    assert first_row([]) is None
    assert first_row({"name": "a"}) == {"name": "a"}


def test_to_camel_car():
    car = to_camel_car({
        "id": "car-1",
        "year": "2021",
        "license_plate": "CA1234AB",
        "models": [{"name": "Golf", "brands": {"name": "VW"}}],
        "locations": {"name": "Sofia", "countries": [{"id": "bg", "name": "Bulgaria"}]},
        "open_time": 540,
        "owner_id": "o1",
    })

    assert car["brand"] == "VW"
    assert car["model"] == "Golf"
    assert car["country"] == "Bulgaria"
    assert car["year"] == 2021
    assert car["openTime"] == 540
    assert car["ownerId"] == "o1"
    assert car["coverPhotos"] == []


def test_driver_profile_merge():
    fields = driver_profile_fields(
        {"name": "Ana", "phone": "", "dob": "2000-01-01", "licenseNumber": "B1"},
        today=datetime(2030, 6, 1)
    )
    assert fields["age"] == 30
    assert fields["phone"] is None

    update = missing_profile_fields({"full_name": "Ana K.", "age": None}, fields)
    assert "full_name" not in update
    assert update["age"] == 30
    assert update["driver_license_number"] == "B1"
    assert "phone" not in update


class FakeStorage:
    def __init__(self):
        self.calls = []

    def upload_file(self, bucket, path, content, content_type):
        self.calls.append((bucket, path, content, content_type))
        return path


def test_upload_driver_license():
    storage = FakeStorage()
    file = FileStorage(io.BytesIO(b"scan"), filename="My License.JPG", content_type="image/jpeg")

    result = upload_driver_license(file, storage)

    bucket, path, content, content_type = storage.calls[0]
    assert bucket == Config.DRIVER_LICENSE_BUCKET
    assert path.endswith(".jpg")
    assert content == b"scan"
    assert content_type == "image/jpeg"
    assert result == {"path": path, "fileName": "My License.JPG"}


def test_upload_driver_license_rejects_bad_type():
    from werkzeug.exceptions import BadRequest

    with pytest.raises(BadRequest):
        upload_driver_license(FileStorage(io.BytesIO(b"x"), filename="run.sh"), FakeStorage())
