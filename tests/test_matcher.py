"""
Tests for the Tuple Matcher.

These tests verify:
1. Matching is exact equality, never pattern matching
2. Only joint name+version+hash satisfaction is a match
3. The first matching stanza wins
4. Partial-match evidence is recorded while scanning
"""

import pytest

from indexproof.domain import DEBIAN_SCHEMA
from indexproof.evidence import NO_EVIDENCE, PartialEvidence
from indexproof.ingestion.stanza import parse_stanzas
from indexproof.matching.matcher import (
    MatchTarget,
    match_stanzas,
    pattern_special_fields,
    stanza_fields_match,
)

from support import deb_stanza, index_text, stanza


HASH_A = "aa" * 32
HASH_B = "bb" * 32


def scan(text, target, schema=None):
    if schema is None:
        return match_stanzas(parse_stanzas(text), target)
    return match_stanzas(parse_stanzas(text), target, schema)


# =============================================================================
# EXACTNESS
# =============================================================================

class TestExactness:
    """Values containing pattern characters are compared literally."""

    def test_special_characters_match_literally(self):
        """`lib++.test*` matches only a stanza with exactly that name."""
        target = MatchTarget(name="lib++.test*", version="1.0+b1", hash=HASH_A)
        text = index_text(stanza("lib++.test*", "1.0+b1", HASH_A))

        result = scan(text, target)

        assert result.matched
        assert result.stanza.get("Name") == "lib++.test*"

    @pytest.mark.parametrize("name", [
        "libxx.test",       # what `lib++.test*` would mean loosely
        "lib++Xtest",       # `.` as any character
        "lib++.test",       # `*` as zero repetitions
        "lib++.testttt",    # `*` as repetitions
        "lib++.test*-dev",  # prefix only
    ])
    def test_pattern_like_names_do_not_match(self, name):
        target = MatchTarget(name="lib++.test*", version="1.0+b1", hash=HASH_A)
        text = index_text(stanza(name, "1.0+b1", HASH_A))

        result = scan(text, target)

        assert not result.matched
        assert result.evidence == NO_EVIDENCE

    def test_bracket_version_literal(self):
        target = MatchTarget(name="foo", version="[1.0]", hash=HASH_A)
        text = index_text(stanza("foo", "1", HASH_A), stanza("foo", "[1.0]", HASH_A))

        result = scan(text, target)

        assert result.matched
        assert result.stanza.start_line == 5

    def test_no_trimming_beyond_parser(self):
        """A trailing space in the index value is a different value."""
        target = MatchTarget(name="foo", version="1.0", hash=HASH_A)
        text = f"Name: foo\nVersion: 1.0 \nHash: {HASH_A}\n"

        result = scan(text, target)

        assert not result.matched
        assert result.evidence.name_seen_anywhere
        assert not result.evidence.name_and_version_seen_together

    def test_name_is_case_sensitive(self):
        target = MatchTarget(name="Foo", version="1", hash=HASH_A)
        result = scan(index_text(stanza("foo", "1", HASH_A)), target)
        assert not result.matched

    def test_hash_case_is_normalized(self):
        """Hex digests compare in one canonical case."""
        target = MatchTarget(name="foo", version="1", hash=HASH_A.upper())
        text = index_text(stanza("foo", "1", HASH_A.upper()))

        assert target.hash == HASH_A
        assert scan(text, target).matched

    def test_pattern_special_fields_reported(self):
        target = MatchTarget(name="lib++", version="1.0", hash=HASH_A)
        assert pattern_special_fields(target) == ["name", "version"]


# =============================================================================
# JOINT SATISFACTION
# =============================================================================

class TestJointMatch:
    """Partial satisfaction never yields a match."""

    def test_fields_spread_across_stanzas_do_not_match(self):
        target = MatchTarget(name="foo", version="1", hash=HASH_A)
        text = index_text(
            stanza("foo", "2", HASH_A),
            stanza("bar", "1", HASH_A),
            stanza("foo", "3", HASH_B),
        )

        result = scan(text, target)

        assert not result.matched
        assert result.evidence == PartialEvidence(name_seen_anywhere=True)

    def test_missing_hash_field_is_not_a_match(self):
        target = MatchTarget(name="foo", version="1", hash=HASH_A)
        result = scan("Name: foo\nVersion: 1\n", target)

        assert not result.matched
        assert result.evidence.name_and_version_seen_together

    def test_field_flags(self):
        target = MatchTarget(name="foo", version="1", hash=HASH_A)
        parsed = next(parse_stanzas(stanza("foo", "1", HASH_B)))

        assert stanza_fields_match(parsed, target) == (True, True, False)


# =============================================================================
# FIRST MATCH
# =============================================================================

class TestFirstMatch:
    """The lowest start line wins and scanning stops there."""

    def test_first_of_two_full_matches(self):
        """Full matches at lines 5 and 40: the line-5 stanza is returned."""
        lines = ["Name: other", "Version: 0", f"Hash: {HASH_B}", ""]   # 1-4
        lines += ["Name: foo", "Version: 1", f"Hash: {HASH_A}", ""]    # 5-8
        lines += [f"Filler{i}: x" for i in range(30)]                  # 9-38
        lines += [""]                                                  # 39
        lines += ["Name: foo", "Version: 1", f"Hash: {HASH_A}"]        # 40-42
        text = "\n".join(lines) + "\n"

        assert [s.start_line for s in parse_stanzas(text)] == [1, 5, 9, 40]

        result = scan(text, MatchTarget(name="foo", version="1", hash=HASH_A))

        assert result.stanza.start_line == 5
        assert result.stanzas_scanned == 2

    def test_scanning_stops_at_match(self):
        """Stanzas after the first match are never pulled from the stream."""
        seen = []

        def stream():
            for s in parse_stanzas(index_text(
                stanza("foo", "1", HASH_A),
                stanza("bar", "1", HASH_A),
            )):
                seen.append(s.start_line)
                yield s

        result = match_stanzas(stream(), MatchTarget(name="foo", version="1", hash=HASH_A))

        assert result.matched
        assert seen == [1]


# =============================================================================
# EVIDENCE
# =============================================================================

class TestEvidence:
    """Partial-match evidence recorded during a scan."""

    def test_name_only(self):
        target = MatchTarget(name="foo", version="9", hash=HASH_A)
        result = scan(index_text(stanza("foo", "1", HASH_A)), target)

        assert result.evidence.name_seen_anywhere
        assert not result.evidence.name_and_version_seen_together

    def test_name_and_version(self):
        target = MatchTarget(name="foo", version="1", hash=HASH_A)
        result = scan(index_text(stanza("foo", "1", HASH_B)), target)

        assert result.evidence.name_and_version_seen_together

    def test_nothing(self):
        target = MatchTarget(name="foo", version="1", hash=HASH_A)
        result = scan(index_text(stanza("bar", "1", HASH_A)), target)

        assert result.evidence.is_empty

    def test_merge_is_monotonic(self):
        """Once true, a flag survives merging with empty evidence."""
        strong = PartialEvidence(name_and_version_seen_together=True)

        assert strong.merge(NO_EVIDENCE) == strong
        assert NO_EVIDENCE.merge(strong) == strong
        assert strong.name_seen_anywhere


# =============================================================================
# DEBIAN SCHEMA
# =============================================================================

class TestDebianSchema:
    """Package/Version/SHA256 keys."""

    def test_debian_index(self):
        target = MatchTarget(name="curl", version="7.81.0-1ubuntu1.15", hash=HASH_A)
        text = index_text(
            deb_stanza("libcurl4", "7.81.0-1ubuntu1.15", HASH_B),
            deb_stanza("curl", "7.81.0-1ubuntu1.15", HASH_A),
        )

        result = scan(text, target, DEBIAN_SCHEMA)

        assert result.matched
        assert result.stanza.start_line == 8

    def test_generic_keys_ignored_under_debian_schema(self):
        target = MatchTarget(name="foo", version="1", hash=HASH_A)
        result = scan(index_text(stanza("foo", "1", HASH_A)), target, DEBIAN_SCHEMA)

        assert not result.matched
