import csv
import datetime
import decimal
import io

from django.http import HttpResponse
from openpyxl import Workbook
from openpyxl.styles import Font
from rest_framework.exceptions import ValidationError

from common.utils import to_json_compatible

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
EXPORT_FILE_TYPES = {"csv", "xlsx"}


def requested_file_type(request):
    file_type = (request.query_params.get("file_type") or "").strip().lower()
    if not file_type:
        return None
    if file_type not in EXPORT_FILE_TYPES:
        raise ValidationError({"file_type": "file_type must be one of: csv, xlsx."})
    return file_type


def _fieldnames(rows, columns):
    if columns:
        return list(columns)
    if not rows:
        return []
    return list(rows[0].keys())


def csv_response(filename, rows, columns=None):
    response = HttpResponse(content_type="text/csv")
    response["Content-Disposition"] = f'attachment; filename="{filename}"'

    fieldnames = _fieldnames(rows, columns)
    if not fieldnames:
        return response

    writer = csv.DictWriter(response, fieldnames=fieldnames, extrasaction="ignore")
    writer.writeheader()
    for row in rows:
        writer.writerow(to_json_compatible(row))
    return response


def _cell_value(value):
    # Excel has no timezone-aware datetimes; those are written as ISO text.
    if isinstance(value, datetime.datetime):
        return value.isoformat() if value.tzinfo else value
    if value is None or isinstance(value, (bool, int, float, str, decimal.Decimal, datetime.date)):
        return value
    return str(to_json_compatible(value))


def xlsx_response(filename, rows, columns=None, sheet_title="Report"):
    workbook = Workbook()
    worksheet = workbook.active
    worksheet.title = sheet_title[:31]

    fieldnames = _fieldnames(rows, columns)
    if fieldnames:
        worksheet.append(fieldnames)
        for cell in worksheet[1]:
            cell.font = Font(bold=True)
        for row in rows:
            worksheet.append([_cell_value(row.get(name)) for name in fieldnames])

    buffer = io.BytesIO()
    workbook.save(buffer)

    response = HttpResponse(buffer.getvalue(), content_type=XLSX_CONTENT_TYPE)
    response["Content-Disposition"] = f'attachment; filename="{filename}"'
    return response


def export_response(file_type, basename, rows, columns=None, sheet_title="Report"):
    if file_type == "xlsx":
        return xlsx_response(f"{basename}.xlsx", rows, columns=columns, sheet_title=sheet_title)
    return csv_response(f"{basename}.csv", rows, columns=columns)
