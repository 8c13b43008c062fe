"""Import phrases from tab-separated text.

One phrase per line::

    prompt<TAB>answer<TAB>alternates (comma-separated)<TAB>tags (comma-separated)<TAB>difficulty (1-5)

Only prompt and answer are required. Blank lines, ``#`` comments and a
header row whose first column is ``prompt`` or ``english`` are skipped.
"""

import json
import logging
import unicodedata
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.models.card import Card
from backend.models.phrase import Phrase
from backend.srs.session import create_card

logger = logging.getLogger(__name__)

DEFAULT_TAGS = ["imported"]
DEFAULT_DIFFICULTY = 3


@dataclass
class ParsedRow:
    line_number: int
    prompt: str
    answer: str
    alternates: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=lambda: list(DEFAULT_TAGS))
    difficulty: int = DEFAULT_DIFFICULTY
    error: str | None = None

    @property
    def valid(self) -> bool:
        return self.error is None


@dataclass
class ImportResult:
    phrases_created: int = 0
    cards_created: int = 0
    duplicates: int = 0
    invalid: list[ParsedRow] = field(default_factory=list)


def normalize_text(text: str) -> str:
    """Normalize text for duplicate detection.

    - Unicode NFC normalization
    - Strip whitespace and collapse inner runs
    - Remove zero-width characters that don't affect meaning
    - Case-fold
    """
    text = unicodedata.normalize("NFC", text.strip())
    text = text.replace("\u200b", "")  # zero-width space
    text = text.replace("\u200c", "")  # zero-width non-joiner
    text = text.replace("\u200d", "")  # zero-width joiner
    text = text.replace("\ufeff", "")  # BOM
    return " ".join(text.split()).casefold()


def _split_list(raw: str, lower: bool = False) -> list[str]:
    values = [part.strip() for part in raw.split(",")]
    return [v.lower() if lower else v for v in values if v]


def parse_tsv(content: str) -> list[ParsedRow]:
    """Parse TSV text into rows; malformed rows are returned with ``error`` set."""
    rows: list[ParsedRow] = []
    for number, raw_line in enumerate(content.splitlines(), 1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        parts = [part.strip() for part in raw_line.split("\t")]
        if parts[0].lower() in ("prompt", "english"):
            continue
        parts += [""] * (5 - len(parts))
        prompt, answer, alternates, tags, difficulty = parts[:5]

        try:
            level = int(difficulty) if difficulty else DEFAULT_DIFFICULTY
        except ValueError:
            level = DEFAULT_DIFFICULTY
        if not 1 <= level <= 5:
            level = DEFAULT_DIFFICULTY

        row = ParsedRow(
            line_number=number,
            prompt=prompt,
            answer=answer,
            alternates=_split_list(alternates),
            tags=_split_list(tags, lower=True) or list(DEFAULT_TAGS),
            difficulty=level,
        )
        if not prompt or not answer:
            row.error = f"Line {number}: missing {'prompt' if not prompt else 'answer'}"
        rows.append(row)
    return rows


def deduplicate(rows: list[ParsedRow]) -> list[ParsedRow]:
    """Drop repeated prompts, keeping the entry with the most accepted answers."""
    best: dict[str, ParsedRow] = {}
    for row in rows:
        key = normalize_text(row.prompt)
        current = best.get(key)
        if current is None or len(row.alternates) > len(current.alternates):
            best[key] = row
    deduped = sorted(best.values(), key=lambda r: r.line_number)

    if len(deduped) < len(rows):
        logger.info("Deduplication: %d rows -> %d unique", len(rows), len(deduped))
    return deduped


async def import_phrases(
    db: AsyncSession,
    content: str,
    member_id: int | None = None,
    mode: str = "recall",
) -> ImportResult:
    """Create phrases (and cards for ``member_id``) from TSV text.

    Phrases whose prompt already exists are reused rather than duplicated,
    and a member never gets a second card for the same phrase, so running an
    import twice is safe.
    """
    result = ImportResult()
    rows = parse_tsv(content)
    result.invalid = [row for row in rows if not row.valid]
    for row in result.invalid:
        logger.warning("Skipping %s", row.error)

    existing = {
        normalize_text(phrase.prompt): phrase
        for phrase in (await db.execute(select(Phrase))).scalars().all()
    }
    carded: set[int] = set()
    if member_id is not None:
        stmt = select(Card.phrase_id).where(Card.member_id == member_id)
        carded = set((await db.execute(stmt)).scalars().all())

    for row in deduplicate([row for row in rows if row.valid]):
        key = normalize_text(row.prompt)
        phrase = existing.get(key)
        if phrase is None:
            phrase = Phrase(
                mode=mode,
                prompt=row.prompt,
                canonical_answer=row.answer,
                answers=json.dumps([row.answer, *row.alternates], ensure_ascii=False),
                tags=json.dumps(row.tags, ensure_ascii=False),
                difficulty=row.difficulty,
            )
            db.add(phrase)
            await db.flush()
            existing[key] = phrase
            result.phrases_created += 1
        else:
            result.duplicates += 1

        if member_id is not None and phrase.id not in carded:
            await create_card(db, member_id, phrase.id)
            carded.add(phrase.id)
            result.cards_created += 1

    await db.commit()
    logger.info(
        "Imported %d phrases (%d already existed), %d cards, %d invalid rows",
        result.phrases_created,
        result.duplicates,
        result.cards_created,
        len(result.invalid),
    )
    return result
