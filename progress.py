"""
Progress arithmetic for the tracking sheet and training events.

Tracking progress rolls up in three weighted steps:

    sub-sub activity   activity_weightage_progress = progress * weightage / 100
    main activity      output_weightage = sum(activity_weightage_progress) * main weightage / 100
    output             output_progress = sum(output_weightage of its main activities)

and the programme total is sum(output_progress * output weightage) / 100.
"""
import re
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

PARTICIPANT_GROUPS = ('tma', 'phed', 'lgrd', 'pdd', 'community', 'any_other')

OUTPUT_ALIASES = {
    'A': ('A', '1', 'OUTPUT A', 'OUTPUTA', 'OUTPUT 1'),
    'B': ('B', '2', 'OUTPUT B', 'OUTPUTB', 'OUTPUT 2'),
    'C': ('C', '3', 'OUTPUT C', 'OUTPUTC', 'OUTPUT 3'),
}

TOTAL_PROGRESS_FORMULA = 'Total Progress % = Σ(output progress × output weightage) / 100'


def to_int(value, default=0):
    if value is None or value == '':
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default


def to_float(value, default=0.0):
    if value is None or value == '':
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_date(value):
    if not value:
        return None
    if hasattr(value, 'year'):
        return value
    text = str(value).strip()[:10]
    for fmt in ('%Y-%m-%d', '%d-%m-%Y', '%d/%m/%Y'):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def inclusive_days(start, end):
    """Calendar days covered by an event, counting both ends; 0 if a date is missing."""
    start_date = parse_date(start)
    end_date = parse_date(end)
    if start_date is None or end_date is None:
        return 0
    return abs((end_date - start_date).days) + 1


def training_totals(data):
    total_male = sum(to_int(data.get(f'{group}_male')) for group in PARTICIPANT_GROUPS)
    total_female = sum(to_int(data.get(f'{group}_female')) for group in PARTICIPANT_GROUPS)
    return {
        'total_male': total_male,
        'total_female': total_female,
        'total_participants': total_male + total_female,
        'total_days': inclusive_days(data.get('start_date'), data.get('end_date')),
    }


def round_half_up(value, places=0):
    quantum = Decimal(1).scaleb(-places)
    rounded = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    return int(rounded) if places == 0 else float(rounded)


def activity_weightage_progress(progress, weightage):
    return to_float(progress) * to_float(weightage) / 100


def normalize_output_key(output_id):
    key = re.sub(r'\s+', ' ', str(output_id or '')).strip().upper()
    for canonical, aliases in OUTPUT_ALIASES.items():
        if key in aliases:
            return canonical
    return key


def activity_progress_summary(main_activities, sheet_rows):
    """
    Roll sub-sub activity rows up to their main activity.

    ``main_activities`` are rows of (activity_id, main_activity_name, output_id,
    weightage_of_main_activity); ``sheet_rows`` carry activity_id and
    activity_weightage_progress.
    """
    totals = {}
    for row in sheet_rows:
        key = str(row['activity_id'])
        totals[key] = totals.get(key, 0.0) + to_float(row.get('activity_weightage_progress'))

    summary = []
    for activity in main_activities:
        total = totals.get(str(activity['activity_id']), 0.0)
        weightage = to_float(activity.get('weightage_of_main_activity'))
        summary.append({
            'activity_id': activity['activity_id'],
            'main_activity_name': activity['main_activity_name'],
            'output_id': activity['output_id'],
            'weightage_of_main_activity': weightage,
            'total_activity_weightage_progress': round(total, 4),
            'output_weightage': round(total * weightage / 100, 4),
        })
    return summary


def output_progress(summary):
    """Sum each main activity's contribution into its output."""
    progress = {}
    for item in summary:
        key = normalize_output_key(item['output_id'])
        progress[key] = progress.get(key, 0.0) + to_float(item['output_weightage'])
    return progress


def total_progress(outputs, summary):
    """
    Weighted programme total.

    ``outputs`` are rows of (output_id, output, weightage). Each output's
    progress is rounded to a whole percent before weighting; the total is
    rounded to one decimal.
    """
    by_output = output_progress(summary)
    breakdown = []
    total = 0.0
    for output in outputs:
        key = normalize_output_key(output['output_id'])
        progress = round_half_up(by_output.get(key, 0.0))
        weightage = to_float(output.get('weightage'))
        total += progress * weightage / 100
        breakdown.append({
            'output_key': key,
            'output_id': output['output_id'],
            'output': output.get('output'),
            'weightage': weightage,
            'progress': progress,
        })
    return {
        'outputs': breakdown,
        'total_progress': round_half_up(total, 1),
        'formula': TOTAL_PROGRESS_FORMULA,
    }


def average_by(rows, group_key, value_key):
    groups = {}
    for row in rows:
        name = row.get(group_key)
        if not name:
            continue
        groups.setdefault(name, []).append(to_float(row.get(value_key)))
    return [
        {group_key: name, 'average_progress': round(sum(values) / len(values), 2), 'count': len(values)}
        for name, values in sorted(groups.items())
    ]


def output_progress_by_district(main_activities, sheet_rows):
    by_district = {}
    for row in sheet_rows:
        district = row.get('district')
        if district:
            by_district.setdefault(district, []).append(row)

    results = []
    for district in sorted(by_district):
        summary = activity_progress_summary(main_activities, by_district[district])
        for key, value in sorted(output_progress(summary).items()):
            results.append({'district': district, 'output_key': key, 'output_progress': round(value, 2)})
    return results
