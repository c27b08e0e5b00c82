"""
Tests for landmark-based scene similarity.
"""

import pytest

from sitesight.analysis.similarity.detector import SimilarityDetector, similarity

from conftest import make_analysis, make_landmark, other_landmarks, site_landmarks


class TestLandmarkMatching:
    """Test nearest same-category landmark matching."""

    def setup_method(self):
        self.detector = SimilarityDetector()

    def test_identical_landmarks_all_match(self):
        """Test every landmark matches its twin at distance zero."""
        a = make_analysis(site_landmarks())
        matches = self.detector.match_landmarks(a, make_analysis(site_landmarks()))
        assert len(matches) == 3
        assert all(distance == 0.0 for _, _, distance in matches)

    def test_match_tolerance_is_strict(self):
        """Test landmarks exactly at the tolerance do not match."""
        a = make_analysis([make_landmark("pole", 50, 50)])
        near = make_analysis([make_landmark("pole", 64.9, 50)])
        at_limit = make_analysis([make_landmark("pole", 65, 50)])

        assert len(self.detector.match_landmarks(a, near)) == 1
        assert self.detector.match_landmarks(a, at_limit) == []

    def test_category_must_match(self):
        """Test a landmark never matches a different category at the same spot."""
        a = make_analysis([make_landmark("pole", 50, 50)])
        b = make_analysis([make_landmark("sign", 50, 50)])
        assert self.detector.match_landmarks(a, b) == []

    def test_nearest_candidate_wins(self):
        """Test the closest same-category candidate is chosen."""
        a = make_analysis([make_landmark("tree", 50, 50)])
        far = make_landmark("tree", 60, 50, description="far")
        close = make_landmark("tree", 52, 50, description="close")
        matches = self.detector.match_landmarks(a, make_analysis([far, close]))
        assert matches[0][1].description == "close"

    def test_missing_analysis(self):
        """Test None or empty analyses produce no matches."""
        a = make_analysis(site_landmarks())
        assert self.detector.match_landmarks(None, a) == []
        assert self.detector.match_landmarks(a, make_analysis([])) == []


class TestSimilarityScore:
    """Test the similarity score formula."""

    def setup_method(self):
        self.detector = SimilarityDetector()

    def test_full_match_without_viewpoint(self):
        """Test a full match scores the match weight."""
        score = self.detector.similarity(make_analysis(site_landmarks()),
                                         make_analysis(site_landmarks(offset=5)))
        assert score == pytest.approx(0.9)

    def test_viewpoint_bonus(self):
        """Test the bonus applies only to the same known direction."""
        same = self.detector.similarity(make_analysis(site_landmarks(), direction="north"),
                                        make_analysis(site_landmarks(), direction="north"))
        different = self.detector.similarity(make_analysis(site_landmarks(), direction="north"),
                                             make_analysis(site_landmarks(), direction="south"))
        unknown = self.detector.similarity(make_analysis(site_landmarks(), direction="unknown"),
                                           make_analysis(site_landmarks(), direction="unknown"))
        assert same == pytest.approx(1.0)
        assert different == pytest.approx(0.9)
        assert unknown == pytest.approx(0.9)

    def test_partial_match_uses_average_count(self):
        """Test the match rate divides by the average landmark count."""
        a = make_analysis(site_landmarks())
        b = make_analysis(site_landmarks()[:2])
        breakdown = self.detector.compare(a, b)
        assert breakdown.matched == 2
        assert breakdown.match_rate == pytest.approx(2 / 2.5)
        assert breakdown.score == pytest.approx(0.9 * 0.8)

    def test_match_rate_is_capped(self):
        """Test several landmarks matching one candidate cannot exceed 1."""
        a = make_analysis([make_landmark("building", 50, 50), make_landmark("building", 55, 50)])
        b = make_analysis([make_landmark("building", 52, 50)])
        breakdown = self.detector.compare(a, b)
        assert breakdown.match_rate == 1.0
        assert breakdown.score == pytest.approx(0.9)

    def test_size_similarity_reported(self):
        """Test size similarity is reported without affecting the score."""
        a = make_analysis([make_landmark("sign", 50, 50, width=10, height=10)])
        b = make_analysis([make_landmark("sign", 50, 50, width=40, height=10)])
        breakdown = self.detector.compare(a, b)
        assert breakdown.size_similarity == pytest.approx(0.9)
        assert breakdown.score == pytest.approx(0.9)

    def test_different_locations(self):
        """Test unrelated landmark sets score zero."""
        assert similarity(make_analysis(site_landmarks()),
                          make_analysis(other_landmarks())) == 0.0

    def test_bounds(self):
        """Test scores stay in [0, 1] and self-similarity beats an empty analysis."""
        analyses = [
            make_analysis(site_landmarks(), direction="east"),
            make_analysis(site_landmarks(offset=14), direction="east"),
            make_analysis(other_landmarks(), direction="east"),
            make_analysis([], direction="east"),
            make_analysis([]),
            None,
        ]
        for a in analyses:
            for b in analyses:
                assert 0.0 <= similarity(a, b) <= 1.0

        a = analyses[0]
        for empty in (analyses[3], analyses[4]):
            assert similarity(a, a) >= similarity(a, empty)

    def test_from_config(self, config):
        """Test tolerances are read from the pairing section."""
        config['pairing']['match_distance'] = 5.0
        detector = SimilarityDetector.from_config(config)
        assert detector.match_distance == 5.0
        assert detector.similarity(make_analysis(site_landmarks()),
                                   make_analysis(site_landmarks(offset=6))) == 0.0


class TestSimilarityReporting:
    """Test match descriptions and the similarity matrix."""

    def test_describe_matches(self):
        """Test one justification line per shared landmark."""
        detector = SimilarityDetector()
        lines = detector.describe_matches(make_analysis(site_landmarks()),
                                          make_analysis(site_landmarks()))
        assert len(lines) == 3
        assert lines[0].startswith("building: red roof house")

    def test_similarity_matrix(self):
        """Test the matrix is square with a zero diagonal."""
        detector = SimilarityDetector()
        analyses = [make_analysis(site_landmarks()), make_analysis(site_landmarks(offset=3)),
                    make_analysis(other_landmarks())]
        matrix = detector.similarity_matrix(analyses)

        assert matrix.shape == (3, 3)
        assert all(matrix[i, i] == 0.0 for i in range(3))
        assert matrix[0, 1] == pytest.approx(0.9)
        assert matrix[0, 2] == 0.0
