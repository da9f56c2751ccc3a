from __future__ import annotations

from psycopg import Connection

from problem_import.schemas.pdf_import import ImportResult


def save_import_result(conn: Connection, result: ImportResult, *, topic_whitelist: list[str]) -> tuple[int, int]:
    """Persist a finished import in one transaction and return (folder_id, imported_count)."""
    try:
        with conn.cursor() as cur:
            folder_id = _get_or_create_folder(cur, result.folder_name)
            tag_ids = _ensure_tags(cur, topic_whitelist)
            imported = 0
            for problem in result.problems:
                tag_names = [topic for topic in problem.topics if topic in tag_ids] or topic_whitelist[:1]
                cur.execute(
                    """
                    INSERT INTO problems (question, answer, topic, source, folder_id)
                    VALUES (%s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (
                        problem.question_latex,
                        problem.answer_numeric,
                        tag_names[0] if tag_names else None,
                        problem.source_label,
                        folder_id,
                    ),
                )
                problem_id = cur.fetchone()["id"]
                for tag_name in tag_names:
                    tag_id = tag_ids.get(tag_name)
                    if tag_id is None:
                        continue
                    cur.execute(
                        "INSERT INTO problem_tags (problem_id, tag_id) VALUES (%s, %s) ON CONFLICT DO NOTHING",
                        (problem_id, tag_id),
                    )
                imported += 1
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    return folder_id, imported


def _get_or_create_folder(cur, name: str) -> int:
    cur.execute("SELECT id FROM folders WHERE name = %s", (name,))
    row = cur.fetchone()
    if row:
        return row["id"]
    cur.execute("INSERT INTO folders (name) VALUES (%s) RETURNING id", (name,))
    return cur.fetchone()["id"]


def _ensure_tags(cur, tag_names: list[str]) -> dict[str, int]:
    tag_ids: dict[str, int] = {}
    for name in tag_names:
        cur.execute(
            "INSERT INTO tags (name) VALUES (%s) ON CONFLICT (name) DO NOTHING RETURNING id",
            (name,),
        )
        row = cur.fetchone()
        if row is None:
            cur.execute("SELECT id FROM tags WHERE name = %s", (name,))
            row = cur.fetchone()
        if row is not None:
            tag_ids[name] = row["id"]
    return tag_ids
