"""Quick-entry parser.

Turns one freeform line such as

    50 steel 10x20 @250 from depot to factory carting @200 truck MH12AB1234 pending

into a structured transaction entry, resolving fuzzy references to known
items, destinations and dimensioned variants, and reporting which parts
of the line failed to resolve.

Grammar (keywords are case-insensitive, everything is positional):

    {qty} {item} {variant?} @{rate} [from {source}] [to {dest}]
        [carting @{cost} [{vehicleType} {regNo}]] [paid|pending|advance]
"""

import logging
import math
import re
from dataclasses import dataclass
from datetime import date
from typing import Optional

from rapidfuzz.distance import Levenshtein

logger = logging.getLogger(__name__)


# ============================================================
# Tunables
# ============================================================

# Fuzzy acceptance: best score must be below ACCEPT_SCORE, unless the
# name starts with / contains the query, or the query is a short
# abbreviation within SHORT_QUERY_MAX_DISTANCE edits.
ACCEPT_SCORE = 0.4
PREFIX_BONUS = 0.5
SUBSTRING_BONUS = 0.3
SHORT_QUERY_MAX_LEN = 3
SHORT_QUERY_MAX_DISTANCE = 2
SUGGESTION_LIMIT = 5

DIMENSION_TOLERANCE = 0.001

PAYMENT_STATUSES = ('paid', 'pending', 'advance')
DEFAULT_PAYMENT_STATUS = 'paid'

KW_FROM = 'from'
KW_TO = 'to'
KW_CARTING = 'carting'


# ============================================================
# Records
# ============================================================

def _opt_str(value):
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class MatchableItem:
    id: str
    name: str
    unit: Optional[str] = None

    @classmethod
    def from_dict(cls, data):
        return cls(id=str(data['id']), name=str(data['name']),
                   unit=_opt_str(data.get('unit')))


@dataclass(frozen=True)
class Variant:
    id: str
    entity_id: Optional[str] = None
    length: Optional[str] = None
    width: Optional[str] = None
    height: Optional[str] = None
    thickness: Optional[str] = None
    dimension_unit: Optional[str] = None
    thickness_unit: Optional[str] = None

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=str(data['id']),
            entity_id=_opt_str(data.get('entity_id')),
            length=_opt_str(data.get('length')),
            width=_opt_str(data.get('width')),
            height=_opt_str(data.get('height')),
            thickness=_opt_str(data.get('thickness')),
            dimension_unit=_opt_str(data.get('dimension_unit')),
            thickness_unit=_opt_str(data.get('thickness_unit')),
        )


@dataclass(frozen=True)
class MatchResult:
    match: Optional[MatchableItem] = None
    suggestions: tuple = ()


NO_MATCH = MatchResult()


@dataclass(frozen=True)
class ResolvedField:
    """Raw text of a segment plus what the fuzzy resolver made of it."""
    raw: str = ''
    match: Optional[MatchableItem] = None
    suggestions: tuple = ()

    @classmethod
    def of(cls, raw, result):
        return cls(raw=raw, match=result.match, suggestions=result.suggestions)


@dataclass(frozen=True)
class VariantField:
    raw: str = ''
    match: Optional[Variant] = None


@dataclass(frozen=True)
class Segments:
    core: str = ''
    source: str = ''
    dest: str = ''
    carting: str = ''
    status: str = DEFAULT_PAYMENT_STATUS


@dataclass(frozen=True)
class CoreFields:
    quantity: Optional[float] = None
    entity_raw: str = ''
    rate: Optional[float] = None


@dataclass(frozen=True)
class EntitySplit:
    entity_raw: str = ''
    variant_raw: str = ''
    entity_result: MatchResult = NO_MATCH


@dataclass(frozen=True)
class CartingInfo:
    cost: Optional[float] = None
    vehicle_type: str = ''
    reg_no: str = ''


@dataclass(frozen=True)
class ParsedEntry:
    quantity: Optional[float] = None
    entity: ResolvedField = ResolvedField()
    variant: VariantField = VariantField()
    rate: Optional[float] = None
    source: ResolvedField = ResolvedField()
    destination: ResolvedField = ResolvedField()
    transport_cost: Optional[float] = None
    vehicle_type: str = ''
    reg_no: str = ''
    payment_status: str = DEFAULT_PAYMENT_STATUS
    errors: tuple = ()

    @property
    def complete(self):
        return (self.quantity is not None and self.quantity > 0
                and self.rate is not None and self.rate >= 0
                and self.entity.match is not None
                and self.source.match is not None
                and self.destination.match is not None
                and not self.errors)

    @property
    def amount(self):
        if self.quantity is None or self.rate is None:
            return 0
        return self.quantity * self.rate


class IncompleteEntryError(ValueError):
    """Raised when a submission payload is requested for an incomplete entry."""


# ============================================================
# Segmenter
# ============================================================

def _is_word_char(ch):
    return ch.isalnum() or ch == '_'


def _is_whole_word_at(text, pos, word):
    end = pos + len(word)
    if text[pos:end].lower() != word:
        return False
    before_ok = pos == 0 or not _is_word_char(text[pos - 1])
    after_ok = end == len(text) or not _is_word_char(text[end])
    return before_ok and after_ok


def _find_keyword(text, keyword, start=0):
    """Index of the first whole-word *keyword* at or after *start*, or -1."""
    for pos in range(start, len(text) - len(keyword) + 1):
        if _is_whole_word_at(text, pos, keyword):
            return pos
    return -1


def _strip_status(text):
    """Split a trailing payment-status word off *text*."""
    for status in PAYMENT_STATUSES:
        start = len(text) - len(status)
        if start >= 0 and _is_whole_word_at(text, start, status):
            return text[:start].strip(), status
    return text, DEFAULT_PAYMENT_STATUS


def segment(text):
    remaining = (text or '').strip()
    remaining, status = _strip_status(remaining)

    from_idx = _find_keyword(remaining, KW_FROM)
    if from_idx < 0:
        return Segments(core=remaining, status=status)

    core = remaining[:from_idx].strip()
    from_end = from_idx + len(KW_FROM)
    to_idx = _find_keyword(remaining, KW_TO, from_end)
    if to_idx < 0:
        return Segments(core=core, source=remaining[from_end:].strip(),
                        status=status)

    source = remaining[from_end:to_idx].strip()
    to_end = to_idx + len(KW_TO)
    carting_idx = _find_keyword(remaining, KW_CARTING, to_end)
    if carting_idx < 0:
        return Segments(core=core, source=source,
                        dest=remaining[to_end:].strip(), status=status)

    return Segments(
        core=core,
        source=source,
        dest=remaining[to_end:carting_idx].strip(),
        carting=remaining[carting_idx + len(KW_CARTING):].strip(),
        status=status,
    )


# ============================================================
# Core fields: quantity, entity text, rate
# ============================================================

_NUMBER = r'\d+(?:\.\d+)?'
_LEADING_QTY = re.compile(rf'^({_NUMBER})\s*')
_TRAILING_RATE = re.compile(rf'@({_NUMBER})\s*$')
_DANGLING_AT = re.compile(r'@\s*$')
_AT_NUMBER = re.compile(rf'@({_NUMBER})')


def _to_number(text):
    val = float(text)
    if not math.isfinite(val):
        return val
    return int(val) if val == int(val) else val


def parse_core(core):
    if not core:
        return CoreFields()

    qm = _LEADING_QTY.match(core)
    if not qm:
        return CoreFields()

    quantity = _to_number(qm.group(1))
    rest = core[qm.end():]
    rate = None

    rm = _TRAILING_RATE.search(rest)
    if rm:
        rate = _to_number(rm.group(1))
        rest = rest[:rm.start()].strip()
    else:
        # "@" typed but no number yet
        rest = _DANGLING_AT.sub('', rest).strip()

    return CoreFields(quantity=quantity, entity_raw=rest, rate=rate)


# ============================================================
# Fuzzy resolver
# ============================================================

def fuzzy_search(query, candidates, limit=SUGGESTION_LIMIT):
    q = (query or '').strip().lower()
    if not q or not candidates:
        return NO_MATCH

    for item in candidates:
        if item.name.lower() == q:
            return MatchResult(match=item, suggestions=(item,))

    scored = []
    for item in candidates:
        name = item.name.lower()
        score = Levenshtein.distance(q, name) / max(len(q), len(name))
        if name.startswith(q):
            score -= PREFIX_BONUS
        elif q in name:
            score -= SUBSTRING_BONUS
        scored.append((score, item))

    # sorted() is stable, so equal scores keep catalog order
    scored.sort(key=lambda s: s[0])
    suggestions = tuple(item for _, item in scored[:limit])

    best_score, best = scored[0]
    best_name = best.name.lower()
    accepted = (
        best_score < ACCEPT_SCORE
        or best_name.startswith(q)
        or q in best_name
        or (len(q) <= SHORT_QUERY_MAX_LEN
            and Levenshtein.distance(q, best_name) <= SHORT_QUERY_MAX_DISTANCE)
    )
    return MatchResult(match=best if accepted else None, suggestions=suggestions)


# ============================================================
# Entity / variant split
# ============================================================

def split_entity_variant(combined, entities):
    """Longest token prefix of *combined* that resolves to a known entity."""
    if not combined:
        return EntitySplit()

    tokens = combined.split()
    for n in range(len(tokens), 0, -1):
        candidate = ' '.join(tokens[:n])
        result = fuzzy_search(candidate, entities)
        if result.match is not None:
            return EntitySplit(entity_raw=candidate,
                               variant_raw=' '.join(tokens[n:]),
                               entity_result=result)

    return EntitySplit(entity_raw=combined, variant_raw='',
                       entity_result=fuzzy_search(combined, entities))


# ============================================================
# Variant matching
# ============================================================

_LEADING_FLOAT = re.compile(r'^\s*[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?')


def _leading_float(text):
    """Numeric prefix of *text* as float, or None (``"20 mm"`` -> 20.0)."""
    if not text:
        return None
    m = _LEADING_FLOAT.match(text)
    if not m:
        return None
    return float(m.group(0))


def _format_dimension(value):
    if not value:
        return None
    n = _leading_float(value)
    if n is None or not math.isfinite(n):
        return value
    return re.sub(r'\.?0+$', '', f'{n:.3f}')


def variant_label(variant):
    """Display label, e.g. ``10x20x5 mm T:2 mm``."""
    dims = [d for d in (_format_dimension(variant.length),
                        _format_dimension(variant.width),
                        _format_dimension(variant.height)) if d]
    dim_str = ''
    if dims:
        dim_str = 'x'.join(dims)
        if variant.dimension_unit:
            dim_str += ' ' + variant.dimension_unit

    thk = _format_dimension(variant.thickness)
    thk_str = ''
    if thk:
        thk_str = f'T:{thk}'
        if variant.thickness_unit:
            thk_str += ' ' + variant.thickness_unit

    return ' '.join(p for p in (dim_str, thk_str) if p).strip()


def match_variant(raw, variants, entity_id):
    q = (raw or '').strip().lower()
    if not q:
        return None

    pool = [v for v in variants if v.entity_id == entity_id]
    if not pool:
        return None

    for v in pool:
        label = variant_label(v).lower()
        if label and (label == q or label.startswith(q) or q.startswith(label)):
            return v

    parts = [_leading_float(p) for p in q.split('x')]
    parts = [p for p in parts if p is not None]
    if len(parts) < 2:
        return None

    for v in pool:
        dims = [_leading_float(d) for d in (v.length, v.width, v.height)]
        dims = [d for d in dims if d is not None]
        if len(dims) < len(parts):
            continue
        if all(abs(p - d) < DIMENSION_TOLERANCE for p, d in zip(parts, dims)):
            return v
    return None


# ============================================================
# Carting segment
# ============================================================

def parse_carting(carting):
    if not carting:
        return CartingInfo()

    cm = _AT_NUMBER.search(carting)
    if not cm:
        return CartingInfo()

    cost = _to_number(cm.group(1))
    tokens = carting[cm.end():].split()
    if not tokens:
        return CartingInfo(cost=cost)

    if len(tokens) == 1:
        # No vehicle-type list to check against: digits suggest a reg number
        if any(ch.isdigit() for ch in tokens[0]):
            return CartingInfo(cost=cost, reg_no=tokens[0])
        return CartingInfo(cost=cost, vehicle_type=tokens[0])

    return CartingInfo(cost=cost, vehicle_type=tokens[0],
                       reg_no=' '.join(tokens[1:]))


# ============================================================
# Public API
# ============================================================

def _resolve_place(raw, destinations):
    if not raw:
        return ResolvedField()
    return ResolvedField.of(raw, fuzzy_search(raw, destinations))


def parse(text, entities=(), destinations=(), variants=()):
    """Parse one quick-entry line against the given catalog snapshots.

    Never raises for any string input: unresolved references end up in
    ``errors`` and missing numbers leave ``complete`` false.
    """
    segments = segment(text)
    core = parse_core(segments.core)
    split = split_entity_variant(core.entity_raw, entities)
    entity = ResolvedField.of(split.entity_raw, split.entity_result)

    variant_match = None
    if entity.match is not None and split.variant_raw:
        variant_match = match_variant(split.variant_raw, variants, entity.match.id)

    source = _resolve_place(segments.source, destinations)
    destination = _resolve_place(segments.dest, destinations)
    carting = parse_carting(segments.carting)

    errors = []
    if entity.raw and entity.match is None:
        errors.append(f'Item "{entity.raw}" not found')
    if split.variant_raw and entity.match is not None and variant_match is None:
        errors.append(f'Variant "{split.variant_raw}" not found for {entity.match.name}')
    if source.raw and source.match is None:
        errors.append(f'Source "{source.raw}" not found')
    if destination.raw and destination.match is None:
        errors.append(f'Destination "{destination.raw}" not found')

    entry = ParsedEntry(
        quantity=core.quantity,
        entity=entity,
        variant=VariantField(raw=split.variant_raw, match=variant_match),
        rate=core.rate,
        source=source,
        destination=destination,
        transport_cost=carting.cost,
        vehicle_type=carting.vehicle_type,
        reg_no=carting.reg_no,
        payment_status=segments.status,
        errors=tuple(errors),
    )
    logger.debug('parsed %r -> complete=%s errors=%s', text, entry.complete, entry.errors)
    return entry


def format_number(value):
    """``30.0`` -> ``'30'``, ``2.5`` -> ``'2.5'``."""
    if isinstance(value, float) and math.isfinite(value) and value == int(value):
        return str(int(value))
    return str(value)


def to_submission(entry, today=None):
    """Flat key/value payload for the downstream "create transaction" call."""
    if not entry.complete:
        reason = '; '.join(entry.errors) or 'missing quantity, rate or a resolved reference'
        raise IncompleteEntryError(f'entry is incomplete: {reason}')
    if today is None:
        today = date.today()

    payload = {
        'entity_id': entry.entity.match.id,
        'entity_variant_id': entry.variant.match.id if entry.variant.match else '',
        'quantity': format_number(entry.quantity),
        'rate': format_number(entry.rate),
        'source_id': entry.source.match.id,
        'destination_id': entry.destination.match.id,
        'payment_status': entry.payment_status,
        'date': today.isoformat(),
    }
    if entry.transport_cost is not None and entry.transport_cost > 0:
        payload['add_transportation_cost'] = 'on'
        payload['transportation_cost'] = format_number(entry.transport_cost)
        payload['vehicle_type'] = entry.vehicle_type
        payload['reg_no'] = entry.reg_no
    return payload


class QuickEntryParser:
    """Holds catalog snapshots for the lifetime of one request / session.

    Each ``set_*`` call replaces the whole collection with an immutable
    copy, so later mutation of the caller's list can't leak into a parse.
    """

    def __init__(self, entities=(), destinations=(), variants=()):
        self.entities = tuple(entities)
        self.destinations = tuple(destinations)
        self.variants = tuple(variants)

    def set_entities(self, entities):
        self.entities = tuple(entities)

    def set_destinations(self, destinations):
        self.destinations = tuple(destinations)

    def set_variants(self, variants):
        self.variants = tuple(variants)

    def parse(self, text):
        return parse(text, self.entities, self.destinations, self.variants)

    def to_submission(self, entry, today=None):
        return to_submission(entry, today)
