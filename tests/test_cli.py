"""
Tests for the command line interface over saved results.
"""

import json

import pytest
from click.testing import CliRunner

from cli import main

from conftest import make_analysis, make_photo, other_landmarks, site_landmarks


@pytest.fixture
def results_file(tmp_path):
    photos = [
        make_photo("a-before.jpg", 1, make_analysis(site_landmarks(), "unpaved")),
        make_photo("measure.jpg", 3, make_analysis(other_landmarks(), "under_construction")),
        make_photo("a-after.jpg", 5, make_analysis(site_landmarks(offset=2), "paved")),
    ]
    path = tmp_path / "analysis_results.json"
    path.write_text(json.dumps({'photos': [p.to_dict() for p in photos], 'cancelled': False},
                               ensure_ascii=False), encoding='utf-8')
    return path


class TestCli:
    """Test the offline commands."""

    def test_version(self):
        result = CliRunner().invoke(main, ['version'])
        assert result.exit_code == 0
        assert "SiteSight v" in result.output

    def test_sort_strict(self, results_file):
        result = CliRunner().invoke(main, ['-q', 'sort', str(results_file), '--strict'])
        assert result.exit_code == 0
        assert "a-before.jpg\ta-after.jpg" in result.output
        assert "omitted: measure.jpg" in result.output

    def test_pair_writes_scenes(self, results_file, tmp_path):
        """Test pairing output keeps the other sections of the results file."""
        output = tmp_path / "paired.json"
        result = CliRunner().invoke(main, ['-q', 'pair', str(results_file), '-o', str(output)])

        assert result.exit_code == 0
        assert "a-before.jpg -> a-after.jpg" in result.output

        data = json.loads(output.read_text(encoding='utf-8'))
        assert data['cancelled'] is False
        scenes = {p['fileName']: p['analysis'].get('sceneId') for p in data['photos']}
        assert scenes["a-before.jpg"] == scenes["a-after.jpg"] is not None
        assert scenes["measure.jpg"] is None
