"""Quick-entry parser — Text User Interface.

Interactive entry workflow:
  type a line → parse → preview / problems / suggestions
  → pick a suggestion or edit → re-parse → confirm → saved
"""

import logging
import sys
from datetime import date

from quick_entry_parser import QuickEntryParser
from quick_entry_core import (
    CatalogError, UIStrings, load_config_with_sheets, load_catalogs,
    configure_logging, preview_fields, active_suggestions, apply_suggestion,
    entry_to_row, format_rows_for_clipboard, copy_to_clipboard,
)

logger = logging.getLogger(__name__)


# ============================================================
# Input
# ============================================================

def get_input(ui):
    """Read one entry line. Returns None on the exit word or Ctrl-D."""
    print(ui.s('entry_prompt'))
    try:
        line = input('> ')
    except EOFError:
        return None
    if line.strip().lower() == ui.s('exit_word').lower():
        return None
    return line.strip()


# ============================================================
# Display
# ============================================================

def display_entry(entry, ui, symbol='₹'):
    """Print the parsed preview, problems and active suggestions."""
    fields = preview_fields(entry, ui, symbol)
    print(ui.s('parsed_header'))
    width = max(len(label) for label, _, _ in fields)
    marker = ui.s('unresolved_marker')
    for label, value, ok in fields:
        suffix = '' if ok else f' {marker}'
        print(f'  {label.ljust(width)}  {value}{suffix}')

    if entry.errors:
        print()
        print(ui.s('errors_header'))
        for err in entry.errors:
            print(f'  ⚠ {err}')

    active = active_suggestions(entry)
    if active:
        field, items = active
        print()
        print(ui.s('suggestions_header', label=ui.suggestion_labels.get(field, field)))
        for i, item in enumerate(items, 1):
            unit = f' ({item.unit})' if item.unit else ''
            print(f'  [{i}] {item.name}{unit}')
    return active


# ============================================================
# Review loop
# ============================================================

def review_loop(text, parser, ui, symbol='₹'):
    """Interactive review. Returns (entry, final_text) or None (discarded)."""
    cmd_confirm = ui.commands['confirm']
    cmd_quit = ui.commands['quit']
    cmd_edit = ui.commands['edit']
    cmd_help = ui.commands['help']

    while True:
        entry = parser.parse(text)
        active = display_entry(entry, ui, symbol)
        print(ui.s('review_prompt' if entry.complete else 'incomplete_prompt'))
        cmd = input('> ').strip().lower()

        if cmd == cmd_help:
            print(ui.help_text)
            continue

        if cmd == cmd_confirm:
            if entry.complete:
                return entry, text
            print(ui.s('incomplete_cannot_confirm'))
            continue

        if cmd == cmd_quit:
            return None

        if cmd == cmd_edit:
            print(ui.s('edit_prompt', text=text), end=' ')
            new = input().strip()
            if new:
                text = new
            continue

        if cmd.isdecimal() and active:
            field, items = active
            idx = int(cmd) - 1
            if 0 <= idx < len(items):
                name = items[idx].name
                text = apply_suggestion(text, entry, field, name)
                print(ui.s('suggestion_applied', name=name))
                continue

        print(ui.s('unknown_command'))


# ============================================================
# Saving
# ============================================================

def save_entry(entry, config, client, ui, today=None):
    """Append the confirmed entry to the output sheet, or the clipboard."""
    row = entry_to_row(entry, today or date.today())
    logger.debug('saving row %s', row)

    output = (config.get('google_sheets') or {}).get('output')
    if output:
        import quick_entry_sheets
        if client is None:
            gs = config['google_sheets']
            client = quick_entry_sheets.authenticate(
                gs.get('credentials_file'), gs.get('token_file'))
        count = quick_entry_sheets.append_entries(
            client, config['google_sheets']['spreadsheet_id'],
            output['sheet'], [row], output.get('field_order'))
        print(ui.s('saved_to_sheet', count=count))
        return client

    tsv = format_rows_for_clipboard([row])
    if copy_to_clipboard(tsv):
        print(ui.s('clipboard_copied', count=1))
    else:
        print(ui.s('clipboard_failed'))
        print(tsv)
    return client


# ============================================================
# Main
# ============================================================

def main(config_path='config.yaml'):
    try:
        config, client = load_config_with_sheets(config_path)
    except FileNotFoundError:
        ui = UIStrings({})
        print(ui.s('config_not_found', path=config_path))
        print(ui.s('config_hint'))
        sys.exit(1)

    configure_logging(config)
    ui = UIStrings(config)

    try:
        parser = QuickEntryParser(*load_catalogs(config))
    except CatalogError as e:
        print(ui.s('config_invalid', error=e))
        sys.exit(1)

    symbol = config.get('currency_symbol', '₹')

    print(ui.s('title'))
    print(ui.s('subtitle'))

    while True:
        text = get_input(ui)
        if text is None:
            print(ui.s('goodbye'))
            break
        if not text:
            continue

        outcome = review_loop(text, parser, ui, symbol)
        if outcome is None:
            print(ui.s('discarded'))
            continue

        entry, _ = outcome
        client = save_entry(entry, config, client, ui)


if __name__ == '__main__':
    config_path = sys.argv[1] if len(sys.argv) > 1 else 'config.yaml'
    main(config_path)
