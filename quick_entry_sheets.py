"""Google Sheets integration — read catalogs and write confirmed entries.

Thin wrapper around gspread.  Every function takes explicit parameters
(no module-level state) so callers can mock the client trivially.
Catalog rows come back as plain dicts in the same shape as the YAML
config sections, so ``quick_entry_core.load_catalogs`` handles both.
"""

import logging

import gspread

logger = logging.getLogger(__name__)


# ============================================================
# Authentication
# ============================================================

def authenticate(credentials_file=None, token_file=None):
    """Return an authenticated gspread Client.

    If *credentials_file* is provided, uses gspread's OAuth flow
    (prints a URL on first run, caches token in *token_file*).

    Otherwise falls back to Application Default Credentials — works
    after:
        gcloud auth application-default login \\
            --scopes=https://www.googleapis.com/auth/spreadsheets
    """
    if credentials_file:
        token = token_file or 'token.json'

        def _no_browser_flow(client_config, scopes, port=0):
            """OAuth flow that serves locally without opening a browser."""
            from google_auth_oauthlib.flow import InstalledAppFlow
            flow = InstalledAppFlow.from_client_config(client_config, scopes)
            flow.run_local_server(port=port, open_browser=False)
            return flow.credentials

        return gspread.oauth(
            credentials_filename=credentials_file,
            authorized_user_filename=token,
            flow=_no_browser_flow,
        )

    import google.auth
    from google.auth.transport.requests import Request
    scopes = ['https://www.googleapis.com/auth/spreadsheets']
    creds, _ = google.auth.default(scopes=scopes)
    creds.refresh(Request())
    return gspread.authorize(creds)


# ============================================================
# Readers
# ============================================================

_ITEM_COLUMNS = ('id', 'name', 'unit')
_VARIANT_COLUMNS = ('id', 'entity_id', 'length', 'width', 'height',
                    'thickness', 'dimension_unit', 'thickness_unit')


def _get_worksheet(client, spreadsheet_id, sheet_name):
    return client.open_by_key(spreadsheet_id).worksheet(sheet_name)


def _read_records(client, spreadsheet_id, sheet_name, cell_range, columns, required):
    ws = _get_worksheet(client, spreadsheet_id, sheet_name)
    records = []
    for row in ws.get_values(cell_range):
        cells = [c.strip() for c in row] + [''] * (len(columns) - len(row))
        record = {col: (cells[i] or None) for i, col in enumerate(columns)}
        if any(record[k] is None for k in required):
            continue
        records.append(record)
    return records


def read_matchable_items(client, spreadsheet_id, sheet_name, cell_range):
    """Read an (id, name, unit) range into a list of dicts.

    >>> read_matchable_items(client, sid, 'Items', 'A2:C')
    [{'id': '1', 'name': 'cement', 'unit': 'bag'}, ...]

    Rows without an id or name are skipped.
    """
    return _read_records(client, spreadsheet_id, sheet_name, cell_range,
                         _ITEM_COLUMNS, required=('id', 'name'))


def read_variants(client, spreadsheet_id, sheet_name, cell_range):
    """Read an eight-column variant range into a list of dicts.

    Columns: id, entity_id, length, width, height, thickness,
    dimension_unit, thickness_unit.  Blank cells become None.
    """
    return _read_records(client, spreadsheet_id, sheet_name, cell_range,
                         _VARIANT_COLUMNS, required=('id',))


# ============================================================
# Orchestrator: read all configured catalogs
# ============================================================

_READERS = {
    'entities': read_matchable_items,
    'destinations': read_matchable_items,
    'variants': read_variants,
}


def load_sheet_catalogs(client, spreadsheet_id, input_mappings):
    """Read all configured catalog ranges and return a dict to overlay on config.

    *input_mappings* comes from ``config['google_sheets']['input']``.
    """
    overlay = {}
    for field_name, mapping in input_mappings.items():
        reader = _READERS.get(field_name)
        if reader is None:
            logger.warning('ignoring unknown sheet input %r', field_name)
            continue
        overlay[field_name] = reader(client, spreadsheet_id,
                                     mapping['sheet'], mapping['range'])
    return overlay


# ============================================================
# Writers
# ============================================================

def append_entries(client, spreadsheet_id, sheet_name, rows, field_order=None):
    """Append confirmed entry rows to the output sheet.

    Returns the number of rows appended.
    """
    if not rows:
        return 0

    from quick_entry_core import FIELD_ORDER, _format_cell

    field_order = field_order or FIELD_ORDER
    ws = _get_worksheet(client, spreadsheet_id, sheet_name)
    values = [[_format_cell(row, f) for f in field_order] for row in rows]
    ws.append_rows(values, value_input_option='USER_ENTERED')
    logger.info('appended %d row(s) to %s', len(values), sheet_name)
    return len(values)
