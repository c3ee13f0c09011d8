"""Tests for splitting features by attribute value."""

import pytest

from cadgis.pipeline.grouping import SplitGroup, group_key, group_layer_name, sanitize_group_key, split, split_group


def test_split_keeps_first_seen_order(make_feature):
    features = [
        make_feature(0, 0, TYPE="b", n=1),
        make_feature(0, 0, TYPE="a", n=2),
        make_feature(0, 0, TYPE="b", n=3),
        make_feature(0, 0, TYPE=None, n=4),
    ]
    groups = split(features, "TYPE")
    assert list(groups) == ["b", "a", "NULL"]
    assert [f.get("n") for f in groups["b"]] == [1, 3]


def test_missing_attribute_groups_as_null(make_feature):
    assert group_key(make_feature(0, 0, other=1), "TYPE") == "NULL"


def test_key_lookup_is_case_insensitive(make_feature):
    assert group_key(make_feature(0, 0, Type="x"), "TYPE") == "x"


def test_numeric_keys_use_display_form(make_feature):
    groups = split([make_feature(0, 0, size=2.0), make_feature(0, 0, size=2)], "size")
    assert list(groups) == ["2"]
    assert len(groups["2"]) == 2


def test_split_group_keeps_raw_value(make_feature):
    features = [make_feature(0, 0, active=True), make_feature(0, 0, active=None), make_feature(0, 0, size=150.0)]
    groups = split(features, "ACTIVE")
    assert [split_group(key, members, "ACTIVE") for key, members in groups.items()] == [
        SplitGroup("True", True),
        SplitGroup("NULL", None),
    ]
    assert split_group("150", [features[2]], "size").value == 150.0


def test_every_feature_lands_in_exactly_one_group(make_feature):
    features = [make_feature(i, i, k=i % 3) for i in range(10)]
    groups = split(features, "k")
    assert sum(len(g) for g in groups.values()) == len(features)


@pytest.mark.parametrize(
    "key,expected",
    [
        ("Foul Water", "Foul_Water"),
        ('a<b>c:d"e/f\\g|h?i*j', "a_b_c_d_e_f_g_h_i_j"),
        ("tab\there", "tab_here"),
        ("plain", "plain"),
    ],
)
def test_sanitize_group_key(key, expected):
    assert sanitize_group_key(key) == expected


def test_group_layer_name():
    assert group_layer_name("pipes", "Foul Water") == "pipes-Foul_Water"
    assert group_layer_name("pipes", "NULL") == "pipes-NULL"
