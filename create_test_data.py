#!/usr/bin/env python3
"""
Create a sample student roster for trying out the roster manager.
"""
import random
from datetime import date, timedelta
from typing import Dict, List, Optional

import pandas as pd
from faker import Faker

from validators import CLASS_LEVELS, SECTIONS

MAX_SAMPLE_STUDENTS = 500


def create_sample_students(count: int = 60, seed: Optional[int] = None,
                           today: Optional[date] = None, start: int = 0) -> List[Dict]:
    """
    Create realistic student fields, spread over classes and sections.

    Numbering continues after ``start`` so a second batch loaded into the same
    roster gets fresh roll and admission numbers.
    """
    fake = Faker('en_IN')  # Indian locale for better names
    rng = random.Random(seed)
    if seed is not None:
        fake.seed_instance(seed)
    today = today or date.today()

    students = []
    per_class: Dict = {}
    for i in range(count):
        class_level = rng.choice(CLASS_LEVELS)
        section = rng.choice(SECTIONS)
        per_class[(class_level, section)] = per_class.get((class_level, section), 0) + 1

        # Class 1 students are around six years old
        age_days = (int(class_level) + 5) * 365 + rng.randint(0, 364)

        students.append({
            'first_name': fake.first_name(),
            'last_name': fake.last_name(),
            'roll_no': f"{class_level}{section}{str(start + per_class[(class_level, section)]).zfill(3)}",
            'admission_no': f"ADM{today.year}{str(start + i + 1).zfill(4)}",
            'class_level': class_level,
            'section': section,
            'date_of_birth': (today - timedelta(days=age_days)).isoformat(),
        })

    return students


def create_sample_workbook(output_file: str = 'sample_students.xlsx', count: int = 60,
                           seed: Optional[int] = None) -> str:
    """Write sample students in the spreadsheet layout the upload accepts."""
    df = pd.DataFrame(create_sample_students(count, seed))
    df = df.rename(columns={
        'first_name': 'First Name',
        'last_name': 'Last Name',
        'roll_no': 'Roll Number',
        'admission_no': 'Admission Number',
        'class_level': 'Class',
        'section': 'Section',
        'date_of_birth': 'Date of Birth',
    })
    df.to_excel(output_file, index=False, engine='openpyxl')
    return output_file


if __name__ == "__main__":
    output_file = create_sample_workbook()
    df = pd.read_excel(output_file)

    print(f"Sample student data created in '{output_file}'")
    print(f"Total students: {len(df)}")
    print(f"Classes: {sorted(df['Class'].astype(str).unique(), key=int)}")
    print(f"Sections per class: {df.groupby('Class')['Section'].nunique().to_dict()}")
