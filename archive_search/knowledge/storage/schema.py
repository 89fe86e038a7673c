"""SQL templates for the archive search store."""

PRAGMAS = """
PRAGMA journal_mode=WAL;
PRAGMA foreign_keys=ON;
PRAGMA synchronous=NORMAL;
"""

CREATE_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
  id TEXT PRIMARY KEY,
  title TEXT,
  path TEXT NOT NULL,
  source TEXT NOT NULL,
  type TEXT NOT NULL,
  date TEXT NOT NULL,
  metadata TEXT,
  UNIQUE(source, path)
);

CREATE VIRTUAL TABLE IF NOT EXISTS document_content USING fts5(
  id UNINDEXED,
  title,
  content,
  query,
  tokenize='porter unicode61 remove_diacritics 1'
);

CREATE TABLE IF NOT EXISTS citations (
  id TEXT PRIMARY KEY,
  source_id TEXT NOT NULL,
  target_url TEXT NOT NULL,
  target_id TEXT,
  context TEXT,
  confidence REAL,
  FOREIGN KEY(source_id) REFERENCES documents(id),
  FOREIGN KEY(target_id) REFERENCES documents(id)
);

CREATE VIRTUAL TABLE IF NOT EXISTS citation_content USING fts5(
  id UNINDEXED,
  context,
  tokenize='porter unicode61 remove_diacritics 1'
);

CREATE INDEX IF NOT EXISTS idx_citations_source ON citations(source_id);
CREATE INDEX IF NOT EXISTS idx_citations_target_id ON citations(target_id);
CREATE INDEX IF NOT EXISTS idx_citations_target_url ON citations(target_url);
"""

# FTS5 column order: id, title, content, query
FTS_COLUMNS = {"title": 1, "content": 2, "query": 3}

# bm25() weights per FTS5 column; title outweighs content.
BM25_WEIGHTS = (0.0, 4.0, 1.0, 2.0)

SELECT_DOCUMENT = """
SELECT d.id, d.title, d.path, d.source, d.type, d.date, d.metadata,
       dc.content AS content, dc.query AS query
FROM documents d
JOIN document_content dc ON d.id = dc.id
WHERE d.id = ?
"""

SELECT_ALL_DOCUMENTS = """
SELECT d.id, d.title, d.path, d.source, d.type, d.date, d.metadata,
       dc.content AS content, dc.query AS query
FROM documents d
JOIN document_content dc ON d.id = dc.id
ORDER BY d.source, d.path
"""

SELECT_DOCUMENT_KEYS = "SELECT id, source, path FROM documents"

DOCUMENT_EXISTS = "SELECT 1 FROM documents WHERE id = ?"

INSERT_DOCUMENT = """
INSERT INTO documents (id, title, path, source, type, date, metadata)
VALUES (?, ?, ?, ?, ?, ?, ?)
"""

UPDATE_DOCUMENT = """
UPDATE documents SET title = ?, path = ?, source = ?, type = ?, date = ?, metadata = ?
WHERE id = ?
"""

INSERT_DOCUMENT_CONTENT = """
INSERT INTO document_content (id, title, content, query)
VALUES (?, ?, ?, ?)
"""

DELETE_DOCUMENT_CONTENT = "DELETE FROM document_content WHERE id = ?"

DELETE_DOCUMENT = "DELETE FROM documents WHERE id = ?"

INSERT_CITATION = """
INSERT INTO citations (id, source_id, target_url, target_id, context, confidence)
VALUES (?, ?, ?, ?, ?, ?)
"""

INSERT_CITATION_CONTENT = "INSERT INTO citation_content (id, context) VALUES (?, ?)"

SELECT_CITATIONS_BY_TARGET = """
SELECT id, source_id, target_url, target_id, context, confidence
FROM citations
WHERE target_id = ?
ORDER BY rowid
"""

SELECT_CITATIONS_BY_SOURCE = """
SELECT id, source_id, target_url, target_id, context, confidence
FROM citations
WHERE source_id = ?
ORDER BY rowid
"""

SELECT_ALL_CITATIONS = """
SELECT id, source_id, target_url, target_id, context, confidence
FROM citations
ORDER BY rowid
"""

DELETE_CITATIONS_FROM_SOURCE_CONTENT = """
DELETE FROM citation_content
WHERE id IN (SELECT id FROM citations WHERE source_id = ?)
"""

DELETE_CITATIONS_FROM_SOURCE = "DELETE FROM citations WHERE source_id = ?"

DETACH_CITATIONS_TO_TARGET = "UPDATE citations SET target_id = NULL WHERE target_id = ?"

DELETE_ALL_CITATION_CONTENT = "DELETE FROM citation_content"

DELETE_ALL_CITATIONS = "DELETE FROM citations"

COUNT_DOCUMENTS = "SELECT COUNT(*) FROM documents"

COUNT_CITATIONS = "SELECT COUNT(*) FROM citations"

# Highlight markers are control characters; normalized content never contains them.
HIGHLIGHT_OPEN = "\x02"
HIGHLIGHT_CLOSE = "\x03"


def build_search_query(field_columns: list[int]) -> str:
    """Ranked FTS5 search returning one highlighted copy of each requested column."""

    highlights = ",\n       ".join(
        f"highlight(document_content, {column}, '{HIGHLIGHT_OPEN}', '{HIGHLIGHT_CLOSE}') AS hl_{column}"
        for column in field_columns
    )
    weights = ", ".join(str(weight) for weight in BM25_WEIGHTS)
    return f"""
SELECT d.id, d.title, d.path, d.source, d.type, d.date, d.metadata,
       document_content.content AS content, document_content.query AS query,
       bm25(document_content, {weights}) AS score_rank,
       {highlights}
FROM document_content
JOIN documents d ON d.id = document_content.id
WHERE document_content MATCH ?
ORDER BY score_rank
LIMIT ?
"""
