"""
Tests for loose and strict photo ordering and the phase heuristic.
"""

import random

import pytest

from sitesight.models import Phase
from sitesight.selection.phase import keyword_phase_score, phase_score
from sitesight.selection.sequencer import PhotoSequencer, sort_loose, sort_strict_pairs

from conftest import make_analysis, make_photo, other_landmarks, site_landmarks


def file_names(photos):
    return [photo.file_name for photo in photos]


def tagged(name, day, scene, phase=None, **fields):
    analysis = make_analysis(**fields)
    if scene:
        analysis.assign_scene(scene, phase or Phase.STATUS)
    return make_photo(name, day, analysis)


class TestPhaseScore:
    """Test the phase ordering score."""

    def test_explicit_phase(self):
        """Test an explicit phase is authoritative."""
        analysis = make_analysis(remarks="完了")
        analysis.assign_scene("s", Phase.BEFORE)
        assert phase_score(analysis) == 0

    def test_unknown_phase_uses_keywords(self):
        """Test unknown phases fall back to keyword matching."""
        analysis = make_analysis(remarks="着手前")
        analysis.assign_scene("s", Phase.UNKNOWN)
        assert phase_score(analysis) == 0

    @pytest.mark.parametrize("text,expected", [
        ("着手前", 0),
        ("施工前 全景", 0),
        ("before work", 0),
        ("路盤完了状況", 2),
        ("竣工", 2),
        ("completed", 2),
        ("転圧状況", 1),
        ("", 1),
    ])
    def test_keywords(self, text, expected):
        """Test before/after wording in free text."""
        assert keyword_phase_score(text) == expected

    def test_missing_analysis(self):
        """Test photos without analysis sit in the middle."""
        assert phase_score(None) == 1


class TestStrictPairs:
    """Test the pair-only ordering policy."""

    def test_five_photo_cluster(self):
        """Test the earliest and latest of one scene pair up, the rest are omitted."""
        photos = [make_photo(f"d{day}.jpg", day, make_analysis(site_landmarks()))
                  for day in (3, 1, 5, 2, 4)]

        sequence = sort_strict_pairs(photos)

        assert sequence.pair_count == 1
        before, after = sequence.pairs[0]
        assert (before.file_name, after.file_name) == ("d1.jpg", "d5.jpg")
        assert sorted(file_names(sequence.omitted)) == ["d2.jpg", "d3.jpg", "d4.jpg"]
        assert file_names(sequence.photos) == ["d1.jpg", "d5.jpg"]

    def test_pairs_ordered_by_after_date(self):
        """Test pairs are emitted by their after photo's date, never interleaved."""
        photos = [
            make_photo("a1.jpg", 1, make_analysis(site_landmarks())),
            make_photo("b1.jpg", 2, make_analysis(other_landmarks())),
            make_photo("b2.jpg", 3, make_analysis(other_landmarks())),
            make_photo("a2.jpg", 9, make_analysis(site_landmarks())),
        ]
        sequence = sort_strict_pairs(photos)
        assert file_names(sequence.photos) == ["b1.jpg", "b2.jpg", "a1.jpg", "a2.jpg"]

    def test_conservation(self):
        """Test 2 * pairs + omitted equals the input size."""
        rng = random.Random(7)
        for _ in range(20):
            photos = []
            for index in range(rng.randint(0, 12)):
                choice = rng.choice(["site", "other", "none", "pending", "station"])
                if choice == "site":
                    analysis = make_analysis(site_landmarks(rng.uniform(-5, 5)))
                elif choice == "other":
                    analysis = make_analysis(other_landmarks())
                elif choice == "station":
                    analysis = make_analysis(station="No.1")
                elif choice == "none":
                    analysis = make_analysis([])
                else:
                    analysis = None
                photos.append(make_photo(f"p{index}.jpg", rng.randint(1, 5), analysis))

            sequence = sort_strict_pairs(photos)
            assert 2 * sequence.pair_count + sequence.omitted_count == len(photos)

    def test_omitted_in_input_order(self):
        """Test omitted photos are reported in input order."""
        photos = [
            make_photo("lonely.jpg", 9, make_analysis([])),
            make_photo("a1.jpg", 1, make_analysis(site_landmarks())),
            make_photo("a2.jpg", 2, make_analysis(site_landmarks())),
            make_photo("a3.jpg", 3, make_analysis(site_landmarks())),
            make_photo("pending.jpg", 0, None),
        ]
        sequence = sort_strict_pairs(photos)
        assert file_names(sequence.omitted) == ["lonely.jpg", "a2.jpg", "pending.jpg"]

    def test_deterministic(self):
        """Test repeated runs give identical output."""
        photos = [make_photo(f"p{i}.jpg", i % 3, make_analysis(site_landmarks()))
                  for i in range(6)]
        runs = [file_names(sort_strict_pairs(photos).photos) for _ in range(3)]
        assert runs[0] == runs[1] == runs[2]


class TestLooseSort:
    """Test the display ordering policy."""

    def test_phase_order_within_scene(self):
        """Test before, status and after order inside one scene."""
        photos = [
            tagged("after.jpg", 1, "scene-001", Phase.AFTER),
            tagged("before.jpg", 3, "scene-001", Phase.BEFORE),
            tagged("status.jpg", 2, "scene-001", Phase.STATUS),
        ]
        assert file_names(sort_loose(photos)) == ["before.jpg", "status.jpg", "after.jpg"]

    def test_scenes_by_latest_date_and_orphans_last(self):
        """Test groups sort by their latest date and orphans follow by date."""
        photos = [
            tagged("late-orphan.jpg", 5, None),
            tagged("s2-a.jpg", 1, "scene-002"),
            tagged("s1-a.jpg", 2, "scene-001"),
            tagged("s2-b.jpg", 8, "scene-002"),
            tagged("s1-b.jpg", 3, "scene-001"),
            tagged("early-orphan.jpg", 0, None),
            make_photo("pending.jpg", 4, None),
        ]
        assert file_names(sort_loose(photos)) == [
            "s1-a.jpg", "s1-b.jpg", "s2-a.jpg", "s2-b.jpg",
            "early-orphan.jpg", "pending.jpg", "late-orphan.jpg",
        ]

    def test_station_groups(self):
        """Test photos sharing a station are grouped without scene ids."""
        photos = [
            tagged("n1-done.jpg", 2, None, station="No.1", remarks="完了"),
            tagged("n2.jpg", 1, None, station="No.2"),
            tagged("n1-start.jpg", 3, None, station="NO 1", remarks="着手前"),
        ]
        assert file_names(sort_loose(photos)) == ["n2.jpg", "n1-start.jpg", "n1-done.jpg"]

    def test_permutation(self):
        """Test loose sorting never drops or duplicates a photo."""
        rng = random.Random(11)
        for _ in range(20):
            photos = []
            for index in range(rng.randint(0, 15)):
                scene = rng.choice([None, "scene-001", "scene-002"])
                photos.append(tagged(f"p{index}.jpg", rng.randint(0, 4), scene,
                                     rng.choice(list(Phase))))
            result = sort_loose(photos)
            assert sorted(map(id, result)) == sorted(map(id, photos))

    def test_deterministic(self):
        """Test equal dates keep first-appearance order across runs."""
        photos = [tagged(f"p{i}.jpg", 1, f"scene-{i % 2}") for i in range(6)]
        sequencer = PhotoSequencer()
        runs = [file_names(sequencer.sort_loose(photos)) for _ in range(3)]
        assert runs[0] == runs[1] == runs[2]
        assert runs[0] == ["p0.jpg", "p2.jpg", "p4.jpg", "p1.jpg", "p3.jpg", "p5.jpg"]
