"""Quick-entry core — shared I/O-free logic used by the TUI and tests.

Config loading, catalog building, UI strings, preview formatting,
suggestion application, row export and clipboard.
"""

import logging
import math
import re
import shutil
import subprocess
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

import yaml

from quick_entry_parser import (
    KW_CARTING, KW_FROM, KW_TO, PAYMENT_STATUSES,
    MatchableItem, Variant, format_number, variant_label,
)

logger = logging.getLogger(__name__)


# ============================================================
# UI Strings: all user-facing text, configurable per language
# ============================================================

_EN_DEFAULTS = {
    'commands': {
        'confirm': 'c',
        'quit': 'q',
        'edit': 'e',
        'help': '?',
        'yes': 'y',
        'no': 'n',
    },
    'field_labels': {
        'item': 'Item',
        'variant': 'Variant',
        'qty': 'Qty',
        'rate': 'Rate',
        'total': 'Total',
        'source': 'From',
        'destination': 'To',
        'carting': 'Carting',
        'vehicle': 'Vehicle',
        'reg_no': 'Reg No',
        'status': 'Status',
    },
    'suggestion_labels': {
        'entity': 'Items',
        'source': 'Sources',
        'destination': 'Destinations',
    },
    'strings': {
        'title': '=== Quick Entry ===',
        'subtitle': "Type one entry per line. Type 'exit' to quit.\n",
        'format_guide': ('{qty} {item} {variant?} @{rate} from {source} to {dest} '
                         'carting @{cost} {vehicle} {reg} {paid|pending|advance}'),
        'format_example': ('e.g. 50 steel 10x20 @250 from depot to factory '
                           'carting @200 truck MH12AB1234 pending'),
        'entry_prompt': '\nEntry:',
        'exit_word': 'exit',
        'parsed_header': '\nParsed',
        'unresolved_marker': '?',
        'errors_header': 'Problems:',
        'suggestions_header': 'Did you mean ({label}):',
        'review_prompt': '\n[c]onfirm / [e]dit / # to pick a suggestion / [q]uit  (? for help)',
        'incomplete_prompt': '\n[e]dit / # to pick a suggestion / [q]uit  (? for help)',
        'incomplete_cannot_confirm': '  Entry is incomplete; fix the problems above first.',
        'edit_prompt': 'Current: {text}\nNew text (Enter to keep):',
        'suggestion_applied': '  Using "{name}".',
        'unknown_command': '  Unknown command. Type ? for help.',
        'discarded': '  Discarded.',
        'goodbye': 'Goodbye.',
        'saved_to_sheet': '\n({count} entry appended to sheet)',
        'clipboard_copied': '\n({count} entry copied to clipboard)',
        'clipboard_failed': '\nCould not copy to clipboard. Row:',
        'config_not_found': 'Config file not found: {path}',
        'config_hint': 'Create one based on config.yaml.example',
        'config_invalid': 'Invalid config: {error}',
        'help_commands_header': 'Commands:',
        'help_confirm_desc': 'Confirm and save the entry',
        'help_edit_desc': 'Edit the text and re-parse',
        'help_pick_desc': 'Replace the unresolved text with suggestion <#>',
        'help_quit_desc': 'Discard this entry',
        'help_help_desc': 'Show this help',
    },
}


class UIStrings:
    """All user-facing strings and commands.

    Reads from config['ui'] if present; falls back to English defaults.
    """

    def __init__(self, config):
        ui = config.get('ui', {}) or {}
        self.commands = {**_EN_DEFAULTS['commands'], **ui.get('commands', {})}
        self.field_labels = {**_EN_DEFAULTS['field_labels'], **ui.get('field_labels', {})}
        self.suggestion_labels = {
            **_EN_DEFAULTS['suggestion_labels'],
            **ui.get('suggestion_labels', {}),
        }
        self.strings = {**_EN_DEFAULTS['strings'], **ui.get('strings', {})}
        self.help_text = self._build_help()

    def s(self, key, **kwargs):
        """Get a UI string, with optional format substitution."""
        template = self.strings.get(key, key)
        if kwargs:
            return template.format(**kwargs)
        return template

    def label(self, field):
        return self.field_labels.get(field, field)

    def _build_help(self):
        c = self.commands
        lines = [
            self.s('help_commands_header'),
            f'  {c["confirm"]:8s} {self.s("help_confirm_desc")}',
            f'  {c["edit"]:8s} {self.s("help_edit_desc")}',
            f'  {"<#>":8s} {self.s("help_pick_desc")}',
            f'  {c["quit"]:8s} {self.s("help_quit_desc")}',
            f'  {c["help"]:8s} {self.s("help_help_desc")}',
            '',
            self.s('format_guide'),
            self.s('format_example'),
        ]
        return '\n'.join(lines)


# ============================================================
# Config loading
# ============================================================

class CatalogError(ValueError):
    """A catalog entry in the config is malformed."""


def load_config(path):
    with open(path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f) or {}


def load_config_with_sheets(path):
    """Load YAML config, overlaying catalogs from Google Sheets if configured.

    Returns (config, client); client is None without a google_sheets.input
    section.
    """
    config = load_config(path)
    gs = config.get('google_sheets')
    if not gs or not gs.get('input'):
        return config, None

    import quick_entry_sheets

    client = quick_entry_sheets.authenticate(
        gs.get('credentials_file'), gs.get('token_file'))
    overlay = quick_entry_sheets.load_sheet_catalogs(
        client, gs['spreadsheet_id'], gs['input'])
    config.update(overlay)
    logger.info('loaded %s from spreadsheet %s',
                ', '.join(sorted(overlay)), gs['spreadsheet_id'])
    return config, client


def _build(cls, entries, section):
    built = []
    for i, data in enumerate(entries or []):
        if not isinstance(data, dict):
            raise CatalogError(f'{section}[{i}]: expected a mapping, got {data!r}')
        missing = [k for k in ('id', 'name') if k in cls.__dataclass_fields__
                   and data.get(k) in (None, '')]
        if missing:
            raise CatalogError(f'{section}[{i}]: missing {", ".join(missing)}')
        built.append(cls.from_dict(data))
    return tuple(built)


def load_catalogs(config):
    """Build (entities, destinations, variants) snapshots from config."""
    entities = _build(MatchableItem, config.get('entities'), 'entities')
    destinations = _build(MatchableItem, config.get('destinations'), 'destinations')
    variants = _build(Variant, config.get('variants'), 'variants')
    logger.debug('catalogs: %d entities, %d destinations, %d variants',
                 len(entities), len(destinations), len(variants))
    return entities, destinations, variants


def configure_logging(config):
    level = str(config.get('log_level', 'WARNING')).upper()
    logging.basicConfig(level=getattr(logging, level, logging.WARNING),
                        format='%(levelname)s %(name)s: %(message)s')


# ============================================================
# Formatting
# ============================================================

def format_currency(value, symbol='₹'):
    """Whole-rupee amount with Indian digit grouping: 123456 -> ₹1,23,456."""
    if isinstance(value, float) and not math.isfinite(value):
        return f'{symbol}{value}'
    rounded = int(Decimal(str(value)).quantize(Decimal('1'), rounding=ROUND_HALF_UP))
    sign = '-' if rounded < 0 else ''
    digits = str(abs(rounded))
    if len(digits) > 3:
        head, tail = digits[:-3], digits[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        digits = ','.join(groups + [tail])
    return f'{sign}{symbol}{digits}'


def preview_fields(entry, ui, symbol='₹'):
    """(label, value, ok) rows for everything the entry has parsed so far."""
    fields = []
    if entry.entity.raw:
        name = entry.entity.match.name if entry.entity.match else entry.entity.raw
        fields.append((ui.label('item'), name, entry.entity.match is not None))
    if entry.variant.raw:
        fields.append((ui.label('variant'), entry.variant.raw,
                       entry.variant.match is not None))
    if entry.quantity is not None:
        fields.append((ui.label('qty'), format_number(entry.quantity), True))
    if entry.rate is not None:
        fields.append((ui.label('rate'), format_currency(entry.rate, symbol), True))
    if entry.rate is not None and entry.quantity is not None:
        fields.append((ui.label('total'), format_currency(entry.amount, symbol), True))
    for key, resolved in (('source', entry.source), ('destination', entry.destination)):
        if resolved.raw:
            name = resolved.match.name if resolved.match else resolved.raw
            fields.append((ui.label(key), name, resolved.match is not None))
    if entry.transport_cost is not None:
        fields.append((ui.label('carting'),
                       format_currency(entry.transport_cost, symbol), True))
    if entry.vehicle_type:
        fields.append((ui.label('vehicle'), entry.vehicle_type, True))
    if entry.reg_no:
        fields.append((ui.label('reg_no'), entry.reg_no, True))
    fields.append((ui.label('status'), entry.payment_status.capitalize(), True))
    return fields


# ============================================================
# Suggestions: progressive correction of the input line
# ============================================================

def active_suggestions(entry):
    """First unresolved field that has suggestions, as (field, items)."""
    for key in ('entity', 'source', 'destination'):
        resolved = getattr(entry, key)
        if resolved.raw and resolved.match is None and resolved.suggestions:
            return key, resolved.suggestions
    return None


_STATUS_TAIL = r'\b(?:' + '|'.join(PAYMENT_STATUSES) + r')\s*$'
_LEADING_QTY = re.compile(r'^(\d+(?:\.\d+)?)\s+')


def replace_segment(text, start_kw, end_kw, replacement, start=0):
    """Replace the text between two keywords.

    replace_segment("30 cement @100 from old to dest", "from", "to", "site A")
      -> "30 cement @100 from site A to dest"

    Without *end_kw* (or when it's absent) the segment runs to a trailing
    payment status or the end of the line.
    """
    sm = re.compile(rf'\b{re.escape(start_kw)}\s+', re.IGNORECASE).search(text, start)
    if not sm:
        return text
    after_start = sm.end()

    ends = [_STATUS_TAIL]
    if end_kw:
        ends.insert(0, rf'\b{re.escape(end_kw)}\b')
    em = re.compile(r'\s+(?:' + '|'.join(ends) + ')', re.IGNORECASE).search(text, after_start)
    if em:
        return text[:after_start] + replacement + text[em.start():]
    return text[:after_start] + replacement


def apply_suggestion(text, entry, field, name):
    """Rewrite *text* so the unresolved *field* reads *name*."""
    if field == 'entity':
        raw = entry.entity.raw
        qm = _LEADING_QTY.match(text)
        if not raw or not qm:
            return text
        after_qty = text[qm.end():]
        idx = after_qty.find(raw)
        if idx < 0:
            return text
        return qm.group(0) + name + after_qty[idx + len(raw):]

    if field == 'source':
        return replace_segment(text, KW_FROM, KW_TO, name)

    if field == 'destination':
        fm = re.search(rf'\b{KW_FROM}\b', text, re.IGNORECASE)
        start = fm.end() if fm else 0
        return replace_segment(text, KW_TO, KW_CARTING, name, start=start)

    raise ValueError(f'unknown suggestion field: {field!r}')


# ============================================================
# Row export
# ============================================================

FIELD_ORDER = [
    'date', 'item', 'variant', 'qty', 'rate', 'amount', 'source',
    'destination', 'transport_cost', 'vehicle_type', 'reg_no', 'payment_status',
]


def entry_to_row(entry, today=None):
    """Flatten a parsed entry into a display/export row."""
    def name_of(resolved):
        return resolved.match.name if resolved.match else None

    return {
        'date': today or date.today(),
        'item': name_of(entry.entity),
        'variant': variant_label(entry.variant.match) if entry.variant.match else None,
        'qty': entry.quantity,
        'rate': entry.rate,
        'amount': entry.amount,
        'source': name_of(entry.source),
        'destination': name_of(entry.destination),
        'transport_cost': entry.transport_cost,
        'vehicle_type': entry.vehicle_type,
        'reg_no': entry.reg_no,
        'payment_status': entry.payment_status,
    }


def _format_cell(row, field):
    val = row.get(field)
    if val is None:
        return ''
    if isinstance(val, date):
        return val.strftime('%Y-%m-%d')
    if isinstance(val, (int, float)):
        return format_number(val)
    return str(val)


def format_rows_for_clipboard(rows, field_order=None):
    """Format rows as TSV for pasting into Excel/Google Sheets (no header)."""
    if not rows:
        return ''
    field_order = field_order or FIELD_ORDER
    return '\n'.join('\t'.join(_format_cell(row, f) for f in field_order)
                     for row in rows)


# ============================================================
# Clipboard export
# ============================================================

def copy_to_clipboard(text):
    """Copy text to system clipboard. Returns True on success, False otherwise."""
    commands = [
        ['powershell.exe', '-NoProfile', '-NonInteractive', '-Command',
         '$input | Set-Clipboard'],            # WSL
        ['xclip', '-selection', 'clipboard'],  # Linux
        ['pbcopy'],                            # macOS
    ]
    for cmd in commands:
        if shutil.which(cmd[0]):
            try:
                subprocess.run(cmd, input=text.encode('utf-8'), check=True)
                return True
            except (subprocess.CalledProcessError, OSError):
                logger.debug('clipboard command %s failed', cmd[0])
                continue
    return False
