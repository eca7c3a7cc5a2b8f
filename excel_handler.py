import pandas as pd
import openpyxl
from openpyxl.styles import Font, Alignment, Border, Side, PatternFill
from openpyxl.utils import get_column_letter
import os
import logging
from datetime import datetime
from typing import Optional, Dict, List


class ExcelHandler:
    def __init__(self, export_folder: str = 'exports'):
        self.logger = logging.getLogger(__name__)
        self.export_folder = export_folder

    def read_student_data(self, filepath: str) -> Optional[pd.DataFrame]:
        """
        Read student data from Excel file.
        Expected columns: First Name, Last Name (or Name), Roll Number,
        Admission Number, Class, Section, Date of Birth
        """
        try:
            df = pd.read_excel(filepath)

            # Normalize column names (handle case variations and spaces)
            df.columns = df.columns.astype(str).str.strip().str.lower().str.replace(' ', '_')

            column_mappings = {
                'first_name': ['first_name', 'firstname', 'first', 'given_name'],
                'last_name': ['last_name', 'lastname', 'last', 'surname'],
                'name': ['name', 'student_name', 'full_name'],
                'roll_no': ['roll_no', 'roll_number', 'roll', 'rollno'],
                'admission_no': ['admission_no', 'admission_number', 'admission', 'admissionno', 'adm_no'],
                'class_level': ['class_level', 'class', 'class_name', 'std', 'standard', 'grade'],
                'section': ['section', 'sec', 'division'],
                'date_of_birth': ['date_of_birth', 'dob', 'birth_date', 'birthdate'],
            }

            mapped_columns = {}
            for expected_col, possible_names in column_mappings.items():
                for possible_name in possible_names:
                    if possible_name in df.columns:
                        mapped_columns[expected_col] = possible_name
                        break

            # A single name column can stand in for first and last name
            if 'name' in mapped_columns and not ('first_name' in mapped_columns and 'last_name' in mapped_columns):
                names = df[mapped_columns['name']].fillna('').astype(str).str.strip().str.split(n=1, expand=True)
                df['__first_name'] = names[0]
                df['__last_name'] = names[1] if 1 in names.columns else ''
                mapped_columns['first_name'] = '__first_name'
                mapped_columns['last_name'] = '__last_name'
            mapped_columns.pop('name', None)

            required_columns = ['first_name', 'last_name', 'roll_no', 'admission_no',
                                'class_level', 'section', 'date_of_birth']
            missing_columns = [col for col in required_columns if col not in mapped_columns]

            if missing_columns:
                self.logger.error(f"Missing columns: {missing_columns}")
                return None

            result_df = pd.DataFrame()
            for standard_name, original_name in mapped_columns.items():
                result_df[standard_name] = df[original_name]

            return self._clean_student_data(result_df)

        except Exception as e:
            self.logger.error(f"Error reading Excel file: {str(e)}")
            return None

    def _clean_student_data(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Clean student data. Field validation happens when the rows are added.
        """
        df = df.dropna(subset=['roll_no', 'first_name']).copy()

        dates = pd.to_datetime(df['date_of_birth'], errors='coerce')
        df['date_of_birth'] = dates.dt.strftime('%Y-%m-%d').fillna('')

        for col in ['first_name', 'last_name', 'roll_no', 'admission_no', 'class_level', 'section']:
            df[col] = df[col].fillna('').astype(str).str.strip()

        # Numeric cells come back as floats, e.g. 10.0
        for col in ['roll_no', 'admission_no', 'class_level']:
            df[col] = df[col].str.replace(r'\.0$', '', regex=True)
        df['section'] = df['section'].str.upper()
        df = df[(df['first_name'] != '') & (df['roll_no'] != '')]

        df = df.drop_duplicates(subset=['roll_no'], keep='first')
        return df.reset_index(drop=True)

    def _write_table(self, ws, title: str, subtitle: str, headers: List[str], rows: List[List]) -> int:
        header_font = Font(bold=True, size=12, color="FFFFFF")
        header_fill = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
        border = Border(
            left=Side(style='thin'),
            right=Side(style='thin'),
            top=Side(style='thin'),
            bottom=Side(style='thin')
        )
        center_alignment = Alignment(horizontal='center', vertical='center')
        last_letter = get_column_letter(len(headers))

        ws['A1'] = title
        ws['A1'].font = Font(bold=True, size=14)
        ws.merge_cells(f'A1:{last_letter}1')

        ws['A2'] = subtitle
        ws.merge_cells(f'A2:{last_letter}2')

        for col, header in enumerate(headers, 1):
            cell = ws.cell(row=4, column=col, value=header)
            cell.font = header_font
            cell.fill = header_fill
            cell.border = border
            cell.alignment = center_alignment

        row_num = 5
        for row_data in rows:
            for col, value in enumerate(row_data, 1):
                cell = ws.cell(row=row_num, column=col, value=value)
                cell.border = border
            row_num += 1

        # Auto-adjust column widths, ignoring the merged title rows
        for col_idx in range(1, len(headers) + 1):
            max_length = 0
            column_letter = get_column_letter(col_idx)
            for row_idx in range(4, row_num):
                cell = ws.cell(row=row_idx, column=col_idx)
                if cell.value:
                    max_length = max(max_length, len(str(cell.value)))
            ws.column_dimensions[column_letter].width = min(max_length + 2, 50)

        return row_num

    def export_students(self, students: List[Dict], filename: Optional[str] = None) -> Optional[str]:
        """
        Export the roster to an Excel file. Pictures are left out.
        """
        try:
            wb = openpyxl.Workbook()
            ws = wb.active
            ws.title = "Students"

            headers = ['Roll Number', 'Admission Number', 'First Name', 'Last Name',
                       'Class', 'Section', 'Date of Birth', 'Added On']
            rows = [
                [s.get('roll_no', ''), s.get('admission_no', ''), s.get('first_name', ''),
                 s.get('last_name', ''), s.get('class_level', ''), s.get('section', ''),
                 s.get('date_of_birth', ''), s.get('created_at', '')]
                for s in students
            ]
            exported_on = datetime.now().strftime('%Y-%m-%d %H:%M')
            row_num = self._write_table(ws, "Student Roster", f"Exported {exported_on}", headers, rows)

            ws.cell(row=row_num + 1, column=1, value="Summary:").font = Font(bold=True)
            ws.cell(row=row_num + 2, column=1, value=f"Total Students: {len(students)}")
            classes = sorted({f"{s.get('class_level', '')}-{s.get('section', '')}" for s in students})
            ws.cell(row=row_num + 3, column=1, value=f"Classes: {len(classes)}")

            if not filename:
                filename = f"students_export_{datetime.now().strftime('%Y%m%d_%H%M%S')}.xlsx"
            os.makedirs(self.export_folder, exist_ok=True)
            filepath = os.path.join(self.export_folder, filename)
            wb.save(filepath)

            self.logger.info(f"Exported {len(students)} students to {filepath}")
            return filepath

        except Exception as e:
            self.logger.error(f"Error exporting students: {str(e)}")
            return None

    def export_attendance(self, day: str, rows: List[Dict]) -> Optional[str]:
        """
        Export attendance for one date. Each row holds a student and their
        status for the day (None when not marked).
        """
        try:
            wb = openpyxl.Workbook()
            ws = wb.active
            ws.title = f"Attendance {day}"

            status_fills = {
                'absent': PatternFill(start_color="FFE6E6", end_color="FFE6E6", fill_type="solid"),
                'late': PatternFill(start_color="FFF2CC", end_color="FFF2CC", fill_type="solid"),
            }

            headers = ['Roll Number', 'Name', 'Class', 'Status', 'Marked By']
            table = [
                [r.get('roll_no', ''), f"{r.get('first_name', '')} {r.get('last_name', '')}",
                 f"{r.get('class_level', '')}-{r.get('section', '')}",
                 (r.get('status') or 'not marked').capitalize(), r.get('marked_by') or '']
                for r in rows
            ]
            row_num = self._write_table(ws, f"Attendance - {day}", f"{len(rows)} students", headers, table)

            for offset, r in enumerate(rows):
                fill = status_fills.get(r.get('status'))
                if fill:
                    for col in range(1, len(headers) + 1):
                        ws.cell(row=5 + offset, column=col).fill = fill

            ws.cell(row=row_num + 1, column=1, value="Summary:").font = Font(bold=True)
            counts = pd.Series([r.get('status') or 'not marked' for r in rows], dtype=object).value_counts()
            for i, (status, count) in enumerate(counts.items(), 2):
                ws.cell(row=row_num + i, column=1, value=f"{status.capitalize()}: {count}")

            os.makedirs(self.export_folder, exist_ok=True)
            filepath = os.path.join(self.export_folder, f"attendance_{day}.xlsx")
            wb.save(filepath)

            self.logger.info(f"Exported attendance for {day} to {filepath}")
            return filepath

        except Exception as e:
            self.logger.error(f"Error exporting attendance: {str(e)}")
            return None
