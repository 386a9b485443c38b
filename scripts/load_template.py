#!/usr/bin/env python3
"""Load an inspection template JSON file into the database.

Usage:
    python scripts/load_template.py <template.json> [--id TEMPLATE_ID] [--db PATH]

The JSON file is either the list of section blocks, or an object with
"name", "type" and "questions" (the list of section blocks).
"""
import argparse
import json
import os
import sqlite3
import sys

from inspection_sections.errors import ValidationError
from inspection_sections.services.db import apply_schema
from inspection_sections.services.template_loader import resolve_sections
from inspection_sections.utils import generate_id

DEFAULT_DB = os.environ.get('DATABASE_PATH', 'data/inspections.db')


def main(argv=None):
    parser = argparse.ArgumentParser(description='Load an inspection template')
    parser.add_argument('path', help='template JSON file')
    parser.add_argument('--id', dest='template_id', help='template id (default: generated)')
    parser.add_argument('--name', help='template name (default: from file or file name)')
    parser.add_argument('--db', default=DEFAULT_DB, help='SQLite database path')
    args = parser.parse_args(argv)

    if not os.path.exists(args.path):
        print(f"ERROR: template file not found at {args.path}")
        return 1

    with open(args.path, 'r') as f:
        payload = json.load(f)

    if isinstance(payload, dict):
        questions = payload.get('questions', [])
        name = args.name or payload.get('name')
        template_type = payload.get('type')
    else:
        questions = payload
        name = args.name
        template_type = None
    name = name or os.path.splitext(os.path.basename(args.path))[0]

    try:
        sections = resolve_sections(questions)
    except ValidationError as e:
        print(f"ERROR: {e.message}")
        return 1
    if not sections:
        print("ERROR: template has no usable sections")
        return 1

    template_id = args.template_id or generate_id('tpl')
    questions_json = json.dumps(questions, ensure_ascii=False)

    db_dir = os.path.dirname(args.db)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)

    conn = sqlite3.connect(args.db)
    apply_schema(conn)

    existing = conn.execute(
        "SELECT questions FROM inspection_template WHERE id = ?", [template_id]
    ).fetchone()
    if existing is not None and existing[0] != questions_json:
        answered = conn.execute("""
            SELECT COUNT(*) FROM section_answer sa
            JOIN inspection i ON i.id = sa.inspection_id
            WHERE i.template_id = ?
        """, [template_id]).fetchone()[0]
        if answered:
            conn.close()
            print(f"ERROR: template {template_id} already has answers recorded; "
                  "load the new version under a new id")
            return 1

    conn.execute("""
        INSERT INTO inspection_template (id, name, type, questions, is_active)
        VALUES (?, ?, ?, ?, 1)
        ON CONFLICT (id) DO UPDATE SET
            name = excluded.name, type = excluded.type, questions = excluded.questions
    """, [template_id, name, template_type, questions_json])
    conn.commit()
    conn.close()

    print(f"Loaded template {template_id} ({name})")
    for key, section in sections.items():
        print(f"  {section.order:>2}. {key} - {section.title} ({len(section.fields)} fields)")
    print("\nDone!")
    return 0


if __name__ == '__main__':
    sys.exit(main())
