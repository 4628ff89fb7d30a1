import pytest

from stable_id_v1 import (
    _utf16_code_units,
    fnv1a32,
    hash_key_to_id,
    hash_path_to_id,
    normalize_for_hash,
    to_base36,
)


def test_known_vectors():
    assert fnv1a32("a") == 0xE40C292C
    assert hash_path_to_id("a") == "1r9wi7g"
    assert hash_key_to_id("A") == "1r9wi7g"
    assert hash_key_to_id("") == "ztntfp"


@pytest.mark.parametrize(
    "raw",
    [
        "Maps/World.png",
        "[[Maps/World.png]]",
        "./Maps//World.png",
        "\\Maps\\World.png",
        "/Maps/World.png",
        "  Maps/World.png  ",
    ],
)
def test_equal_normal_forms_hash_equal(raw):
    assert normalize_for_hash(raw) == "Maps/World.png"
    assert hash_path_to_id(raw) == hash_path_to_id("Maps/World.png")


def test_path_ids_are_case_sensitive_key_ids_are_not():
    assert hash_path_to_id("Maps/World.png") != hash_path_to_id("maps/world.png")
    assert hash_key_to_id("Empire") == hash_key_to_id("  EMPIRE ")


def test_hashing_is_deterministic():
    assert hash_path_to_id("Maps/World.png") == hash_path_to_id("Maps/World.png")
    assert hash_key_to_id("House Varn") == hash_key_to_id("house varn")


def test_non_bmp_characters_hash_as_surrogate_pairs():
    assert list(_utf16_code_units("\U0001F600")) == [0xD83D, 0xDE00]
    assert list(_utf16_code_units("é")) == [0xE9]


def test_to_base36():
    assert to_base36(0) == "0"
    assert to_base36(35) == "z"
    assert to_base36(36) == "10"
    with pytest.raises(ValueError):
        to_base36(-1)


def test_none_normalizes_to_empty():
    assert normalize_for_hash(None) == ""
