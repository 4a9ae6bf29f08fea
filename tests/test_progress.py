import os, sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
import pytest
import progress


@pytest.mark.parametrize('raw, key', [
    ('A', 'A'), ('1', 'A'), ('Output A', 'A'), ('OUTPUTA', 'A'), (' output  a ', 'A'),
    ('2', 'B'), ('OUTPUT B', 'B'), ('c', 'C'), ('D', 'D'), (None, ''),
])
def test_normalize_output_key(raw, key):
    assert progress.normalize_output_key(raw) == key


def test_inclusive_days():
    assert progress.inclusive_days('2024-01-30', '2024-02-02') == 4
    assert progress.inclusive_days('02-02-2024', '30-01-2024') == 4
    assert progress.inclusive_days(None, '2024-01-01') == 0
    assert progress.inclusive_days('garbage', '2024-01-01') == 0


def test_training_totals_ignore_bad_counts():
    totals = progress.training_totals({
        'tma_male': '3', 'pdd_male': 2.0, 'lgrd_female': 'x', 'community_female': 7,
        'start_date': '2024-03-10', 'end_date': '2024-03-10',
    })
    assert totals == {'total_male': 5, 'total_female': 7, 'total_participants': 12, 'total_days': 1}


def test_output_progress_rounds_half_up_before_weighting():
    outputs = [{'output_id': 'A', 'output': 'Output A', 'weightage': 50},
               {'output_id': 'B', 'output': 'Output B', 'weightage': 50}]
    summary = [
        {'output_id': 'A', 'output_weightage': 62.5},
        {'output_id': '2', 'output_weightage': 33.3},
    ]
    result = progress.total_progress(outputs, summary)
    assert [o['progress'] for o in result['outputs']] == [63, 33]
    assert result['total_progress'] == 48.0


def test_total_progress_with_no_activity():
    outputs = [{'output_id': 'A', 'output': 'Output A', 'weightage': 100}]
    result = progress.total_progress(outputs, [])
    assert result['total_progress'] == 0.0
    assert result['outputs'][0]['progress'] == 0


def test_round_half_up():
    assert progress.round_half_up(2.5) == 3
    assert progress.round_half_up(0.45, 1) == 0.5
    assert progress.round_half_up(44.04, 1) == 44.0


def test_average_by_skips_blank_groups():
    rows = [{'sector_name': 'Water', 'activity_progress': 50},
            {'sector_name': 'Water', 'activity_progress': 25},
            {'sector_name': None, 'activity_progress': 90}]
    assert progress.average_by(rows, 'sector_name', 'activity_progress') == [
        {'sector_name': 'Water', 'average_progress': 37.5, 'count': 2}]
