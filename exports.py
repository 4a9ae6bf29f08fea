import csv
from io import BytesIO, StringIO

from openpyxl import Workbook
from openpyxl.styles import Font, Border, Side, Alignment

XLSX_MIMETYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'

TRAINING_COLUMNS = [
    ('SN', 'sn'),
    ('Training Title', 'training_title'),
    ('Output', 'output'),
    ('Sub No', 'sub_no'),
    ('Sub Activity Name', 'sub_activity_name'),
    ('Event Type', 'event_type'),
    ('Sector', 'sector'),
    ('Venue', 'venue'),
    ('Location Tehsil', 'location_tehsil'),
    ('District', 'district'),
    ('Start Date', 'start_date'),
    ('End Date', 'end_date'),
    ('Total Days', 'total_days'),
    ('Training Facilitator Name', 'training_facilitator_name'),
    ('TMA Male', 'tma_male'),
    ('TMA Female', 'tma_female'),
    ('PHED Male', 'phed_male'),
    ('PHED Female', 'phed_female'),
    ('LGRD Male', 'lgrd_male'),
    ('LGRD Female', 'lgrd_female'),
    ('PDD Male', 'pdd_male'),
    ('PDD Female', 'pdd_female'),
    ('Community Male', 'community_male'),
    ('Community Female', 'community_female'),
    ('Any Other Male', 'any_other_male'),
    ('Any Other Female', 'any_other_female'),
    ('Any Other Specify', 'any_other_specify'),
    ('Total Male', 'total_male'),
    ('Total Female', 'total_female'),
    ('Total Participants', 'total_participants'),
    ('Pre Training Evaluation', 'pre_training_evaluation'),
    ('Post Training Evaluation', 'post_training_evaluation'),
    ('Event Agendas', 'event_agendas'),
    ('Expected Outcomes', 'expected_outcomes'),
    ('Challenges Faced', 'challenges_faced'),
    ('Suggested Actions', 'suggested_actions'),
    ('Activity Completion Report Link', 'activity_completion_report_link'),
    ('Participant List Attachment', 'participant_list_attachment'),
    ('Picture Attachment', 'picture_attachment'),
    ('Remarks', 'remarks'),
    ('Data Compiler Name', 'data_compiler_name'),
    ('Data Verified By', 'data_verified_by'),
    ('Created Date', 'created_date'),
    ('Last Modified Date', 'last_modified_date'),
]

TRACKING_COLUMNS = [
    ('Output ID', 'output_id'),
    ('Output', 'output'),
    ('Activity ID', 'activity_id'),
    ('Main Activity', 'main_activity_name'),
    ('Sub Activity ID', 'sub_activity_id'),
    ('Sub Activity', 'sub_activity_name'),
    ('Sub-Sub Activity ID', 'sub_sub_activity_id'),
    ('Sub-Sub Activity', 'sub_sub_activity_name'),
    ('Unit', 'unit_name'),
    ('Planned Targets', 'planned_targets'),
    ('Achieved Targets', 'achieved_targets'),
    ('Activity Progress (%)', 'activity_progress'),
    ('Activity Weightage (%)', 'activity_weightage'),
    ('Weighted Progress', 'activity_weightage_progress'),
    ('Planned Start Date', 'planned_start_date'),
    ('Planned End Date', 'planned_end_date'),
    ('Sector', 'sector_name'),
    ('District', 'district'),
    ('Tehsil', 'tehsil'),
    ('Beneficiaries Male', 'beneficiaries_male'),
    ('Beneficiaries Female', 'beneficiaries_female'),
    ('Total Beneficiaries', 'total_beneficiaries'),
    ('Beneficiary Types', 'beneficiary_types'),
    ('Remarks', 'remarks'),
    ('Links', 'links'),
]

PARTICIPANT_COLUMNS = [
    ('Participant Name', 'participant_name'),
    ('SO/DO/WO/HO', 'so_do_wo_ho'),
    ('Gender', 'gender'),
    ('Organization/Department', 'organization_department'),
    ('CNIC Number', 'cnic_number'),
    ('Contact Number', 'contact_number'),
    ('District', 'district'),
    ('Tehsil', 'tehsil'),
    ('Workshop/Training Name', 'workshop_training_name'),
    ('Workshop/Session/Conference', 'workshop_session_conference'),
    ('Start Date', 'start_date'),
    ('End Date', 'end_date'),
]

SECURITY_COLUMNS = [
    ('ID', 'id'),
    ('Reference Number', 'reference_number'),
    ('Incident Title', 'incident_title'),
    ('Category', 'category'),
    ('District', 'location_district'),
    ('Province', 'location_province'),
    ('Incident Date', 'incident_date'),
    ('Summary', 'incident_summary'),
    ('Operational Impact', 'operational_impact'),
    ('Recommended Actions', 'recommended_actions'),
    ('Date Reported', 'date_reported'),
    ('Reported By', 'reported_by'),
    ('Comment', 'comment'),
]


def build_csv(rows, columns):
    si = StringIO()
    cw = csv.writer(si)
    cw.writerow([header for header, _ in columns])
    for row in rows:
        cw.writerow(['' if row.get(key) is None else row.get(key) for _, key in columns])
    return si.getvalue()


def build_xlsx(rows, columns, sheet_title):
    """Render rows into a styled single-sheet workbook and return it as BytesIO."""
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_title

    ws.append([header for header, _ in columns])
    for row in rows:
        ws.append([row.get(key) for _, key in columns])

    thin_border = Border(
        left=Side(style='thin'),
        right=Side(style='thin'),
        top=Side(style='thin'),
        bottom=Side(style='thin'),
    )
    header_font = Font(bold=True)
    center_align = Alignment(horizontal='center', vertical='center', wrap_text=True)

    for cell in ws[1]:
        cell.font = header_font
        cell.border = thin_border
        cell.alignment = center_align

    for row in ws.iter_rows(min_row=2, max_row=ws.max_row, min_col=1, max_col=ws.max_column):
        for cell in row:
            cell.border = thin_border
            cell.alignment = Alignment(wrap_text=True, vertical='center')

    for col in ws.columns:
        max_length = max(len(str(cell.value or '')) for cell in col)
        ws.column_dimensions[col[0].column_letter].width = min(max_length + 2, 50)

    output = BytesIO()
    wb.save(output)
    output.seek(0)
    return output
