import json

import pytest

from roulette.catalog import (
    Catalog,
    EmptyCatalogError,
    Entry,
    MalformedCatalogError,
    hash_content,
    load_catalog_file,
    load_embedded_catalog,
    load_initial_catalog,
)


def test_from_bytes_sorts_keys():
    payload = b'{"2024-01-01_UTC.jpg": "abc.jpg", "2023-01-01_UTC.jpg": "def.jpg"}'
    catalog = Catalog.from_bytes(payload)

    assert catalog.size() == 2
    assert catalog.keys() == ("2023-01-01_UTC.jpg", "2024-01-01_UTC.jpg")
    assert catalog.entries()[0] == Entry(key="2023-01-01_UTC.jpg", value="def.jpg")
    assert catalog.oldest_key == "2023-01-01_UTC.jpg"
    assert catalog.newest_key == "2024-01-01_UTC.jpg"


def test_from_bytes_records_payload_hash():
    payload = b'{"a": "b"}'
    catalog = Catalog.from_bytes(payload)

    assert catalog.content_hash == hash_content(payload)


def test_values_need_not_be_unique():
    catalog = Catalog.from_mapping({"2023-01-01_a": "same.jpg", "2023-01-02_b": "same.jpg"})

    assert len(catalog) == 2
    assert {entry.value for entry in catalog} == {"same.jpg"}


@pytest.mark.parametrize(
    "payload",
    [
        b"not json",
        b"",
        b'["2023-01-01_a", "x.jpg"]',
        b'"just a string"',
        b'{"2023-01-01_a": 42}',
        b'{"2023-01-01_a": null}',
        b"\xff\xfe\x00",
    ],
)
def test_from_bytes_rejects_malformed_payloads(payload):
    with pytest.raises(MalformedCatalogError):
        Catalog.from_bytes(payload)


def test_empty_object_is_a_load_error():
    with pytest.raises(EmptyCatalogError):
        Catalog.from_bytes(b"{}")


def test_from_mapping_rejects_non_mapping():
    with pytest.raises(MalformedCatalogError):
        Catalog.from_mapping([("a", "b")])


def test_hash_deterministic_and_content_sensitive():
    assert hash_content('{"a": "b"}') == hash_content(b'{"a": "b"}')
    assert hash_content('{"a": "b"}') != hash_content('{"a": "c"}')


def test_catalog_is_read_only():
    catalog = Catalog.from_mapping({"2023-01-01_a": "a.jpg"})

    assert isinstance(catalog.entries(), tuple)
    with pytest.raises(AttributeError):
        catalog.content_hash = "other"
    with pytest.raises(TypeError):
        catalog._index["2024"] = Entry("2024", "x")


def test_get_and_contains():
    catalog = Catalog.from_mapping({"2023-01-01_a": "a.jpg"})

    assert catalog.get("2023-01-01_a") == Entry("2023-01-01_a", "a.jpg")
    assert catalog.get("missing") is None
    assert "2023-01-01_a" in catalog


def test_load_catalog_file(tmp_path):
    path = tmp_path / "image-map.json"
    path.write_text(json.dumps({"2023-05-01_x": "a", "2024-01-01_x": "c"}), encoding="utf-8")

    catalog = load_catalog_file(path)

    assert catalog.size() == 2
    assert catalog.content_hash == hash_content(path.read_bytes())


def test_load_catalog_file_missing(tmp_path):
    with pytest.raises(MalformedCatalogError):
        load_catalog_file(tmp_path / "missing.json")


def test_embedded_catalog_is_valid():
    catalog = load_embedded_catalog()

    assert catalog.size() > 0
    assert load_initial_catalog(None).content_hash == catalog.content_hash
