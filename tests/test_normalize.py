"""
Tests for name, address, zip and license normalization.
"""

import pytest

from tracker.normalize import (
    normalize,
    normalize_address,
    normalize_city,
    normalize_license,
    normalize_zip,
)

SAMPLES = [
    "Sunrise Daycare, LLC",
    "Sunrise Early Learning Center Inc",
    "Happy Kids L.L.C.",
    "Little Acorns Child Care Center",
    "Child Care Inc",
    "Center for Kids, Inc.",
    "Kid's Corner",
    "Crèche Étoile",
    "  A  &  B   Learning  ",
    "Daycare Inc",
    "U.S.A. Preschool Co.",
    "",
    "!!!",
]


class TestNormalize:

    def test_case_and_punctuation_insensitive(self):
        assert normalize("Sunrise Daycare, LLC") == normalize("sunrise daycare llc")

    @pytest.mark.parametrize("raw", SAMPLES)
    def test_idempotent(self, raw):
        once = normalize(raw)
        assert normalize(once) == once

    def test_strips_trailing_legal_suffixes(self):
        assert normalize("Sunrise Early Learning Center Inc") == "sunrise early learning"
        assert normalize("Sunrise Early Learning Ctr") == "sunrise early learning"
        assert normalize("Bright Start Corp.") == "bright start"
        assert normalize("Bright Start Co Ltd") == "bright start"

    def test_dotted_abbreviations_collapse(self):
        assert normalize("Happy Kids L.L.C.") == "happy kids"

    def test_two_token_descriptor(self):
        assert normalize("Little Acorns Child Care Center") == "little acorns"
        assert normalize("Little Acorns Day Care") == "little acorns"

    def test_suffixes_only_stripped_when_trailing(self):
        assert normalize("Center for Kids, Inc.") == "center for kids"

    def test_keeps_at_least_one_token(self):
        assert normalize("Daycare Inc") == "daycare"
        assert normalize("Child Care") == "child care"

    def test_apostrophes_and_accents(self):
        assert normalize("Kid's Corner") == "kids corner"
        assert normalize("Crèche Étoile") == "creche etoile"

    def test_collapses_whitespace_and_symbols(self):
        assert normalize("  A  &  B   Learning  ") == "a b learning"

    @pytest.mark.parametrize("raw", ["", "   ", None, "!!!", "\t\n"])
    def test_empty_input(self, raw):
        assert normalize(raw) == ""


class TestFieldNormalizers:

    def test_zip(self):
        assert normalize_zip("03301") == "03301"
        assert normalize_zip("03301-1234") == "03301"
        assert normalize_zip(3301) == "03301"
        assert normalize_zip("") == ""
        assert normalize_zip(None) == ""
        assert normalize_zip("abc") == ""

    def test_address(self):
        assert normalize_address("12 Main Street") == "12 main st"
        assert normalize_address("400 North Avenue, Suite 5") == "400 n ave ste 5"
        assert normalize_address(None) == ""

    def test_city(self):
        assert normalize_city(" concord ") == "CONCORD"
        assert normalize_city("St. Johnsbury") == "ST JOHNSBURY"

    def test_license(self):
        assert normalize_license("lic-42") == "LIC42"
        assert normalize_license(None) == ""
