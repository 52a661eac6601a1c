"""Tests for quick_entry_core — config, catalogs, formatting, suggestions, export.

Everything here is I/O free except the config loader (tmp_path) and the
clipboard helper (shutil.which / subprocess.run are monkeypatched).
"""

import logging
from datetime import date
from unittest.mock import patch

import pytest

from quick_entry_parser import MatchableItem, Variant, QuickEntryParser
from quick_entry_core import (
    UIStrings, CatalogError, load_config, load_config_with_sheets,
    load_catalogs, configure_logging, format_currency, preview_fields,
    active_suggestions, replace_segment, apply_suggestion,
    FIELD_ORDER, entry_to_row, format_rows_for_clipboard, copy_to_clipboard,
)


# ============================================================
# Fixtures
# ============================================================

TODAY = date(2025, 3, 19)

FULL_LINE = "50 steel 10x20 @250 from depot to factory carting @200 truck MH12AB1234 pending"


@pytest.fixture
def config():
    """Same catalogs as config.yaml.example."""
    return {
        'entities': [
            {'id': 1, 'name': 'cement', 'unit': 'bag'},
            {'id': 2, 'name': 'cement bag', 'unit': 'bag'},
            {'id': 3, 'name': 'steel', 'unit': 'kg'},
            {'id': 4, 'name': 'sand', 'unit': 'ton'},
        ],
        'destinations': [
            {'id': 'd1', 'name': 'depot'},
            {'id': 'd2', 'name': 'factory'},
            {'id': 'd3', 'name': 'site A'},
            {'id': 'd4', 'name': 'warehouse B'},
            {'id': 'd5', 'name': 'quarry'},
        ],
        'variants': [
            {'id': 'v1', 'entity_id': 3, 'length': 10, 'width': 20, 'dimension_unit': 'mm'},
            {'id': 'v2', 'entity_id': 3, 'length': 10, 'width': 20, 'height': 5,
             'dimension_unit': 'mm'},
            {'id': 'v3', 'entity_id': 3, 'thickness': 2, 'thickness_unit': 'mm'},
        ],
    }


@pytest.fixture
def parser(config):
    return QuickEntryParser(*load_catalogs(config))


@pytest.fixture
def ui():
    return UIStrings({})


# ============================================================
# UI strings
# ============================================================

class TestUIStrings:
    def test_english_defaults(self, ui):
        assert ui.commands['confirm'] == 'c'
        assert ui.label('source') == 'From'
        assert ui.s('goodbye') == 'Goodbye.'

    def test_format_substitution(self, ui):
        assert ui.s('config_not_found', path='x.yaml') == 'Config file not found: x.yaml'

    def test_unknown_key_returns_key(self, ui):
        assert ui.s('no_such_string') == 'no_such_string'
        assert ui.label('no_such_field') == 'no_such_field'

    def test_overrides_merge_with_defaults(self):
        ui = UIStrings({'ui': {
            'commands': {'confirm': 'ok'},
            'strings': {'goodbye': 'Bye'},
            'field_labels': {'item': 'Material'},
        }})
        assert ui.commands['confirm'] == 'ok'
        assert ui.commands['quit'] == 'q'
        assert ui.s('goodbye') == 'Bye'
        assert ui.s('discarded') == '  Discarded.'
        assert ui.label('item') == 'Material'

    def test_help_lists_commands(self):
        ui = UIStrings({'ui': {'commands': {'confirm': 'ok'}}})
        assert ui.help_text.startswith('Commands:')
        assert 'ok ' in ui.help_text
        assert '<#>' in ui.help_text

    def test_null_ui_section(self):
        assert UIStrings({'ui': None}).commands['edit'] == 'e'


# ============================================================
# Config loading
# ============================================================

class TestLoadConfig:
    def test_reads_yaml(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text("entities:\n  - {id: 1, name: cement}\n", encoding='utf-8')
        assert load_config(path) == {'entities': [{'id': 1, 'name': 'cement'}]}

    def test_empty_file(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text('', encoding='utf-8')
        assert load_config(path) == {}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / 'nope.yaml')


class TestLoadConfigWithSheets:
    def test_without_sheets_section(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text("log_level: info\n", encoding='utf-8')
        config, client = load_config_with_sheets(path)
        assert config == {'log_level': 'info'}
        assert client is None

    @patch('quick_entry_sheets.load_sheet_catalogs')
    @patch('quick_entry_sheets.authenticate')
    def test_overlays_sheet_catalogs(self, mock_auth, mock_load, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text(
            "entities: [{id: 1, name: old}]\n"
            "google_sheets:\n"
            "  spreadsheet_id: abc\n"
            "  credentials_file: creds.json\n"
            "  input:\n"
            "    entities: {sheet: Items, range: 'A2:C'}\n",
            encoding='utf-8')
        mock_load.return_value = {'entities': [{'id': '7', 'name': 'gravel', 'unit': None}]}

        config, client = load_config_with_sheets(path)

        mock_auth.assert_called_once_with('creds.json', None)
        mock_load.assert_called_once_with(
            mock_auth.return_value, 'abc', {'entities': {'sheet': 'Items', 'range': 'A2:C'}})
        assert client is mock_auth.return_value
        assert config['entities'] == [{'id': '7', 'name': 'gravel', 'unit': None}]

    @patch('quick_entry_sheets.authenticate')
    def test_output_only_does_not_authenticate(self, mock_auth, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text(
            "google_sheets:\n"
            "  spreadsheet_id: abc\n"
            "  output: {sheet: Entries}\n",
            encoding='utf-8')
        _, client = load_config_with_sheets(path)
        assert client is None
        mock_auth.assert_not_called()


class TestLoadCatalogs:
    def test_builds_records(self, config):
        entities, destinations, variants = load_catalogs(config)
        assert entities[0] == MatchableItem('1', 'cement', 'bag')
        assert destinations[2] == MatchableItem('d3', 'site A')
        assert variants[0] == Variant('v1', entity_id='3', length='10', width='20',
                                      dimension_unit='mm')

    def test_missing_sections_are_empty(self):
        assert load_catalogs({}) == ((), (), ())

    def test_missing_name(self):
        with pytest.raises(CatalogError, match=r'entities\[0\]: missing name'):
            load_catalogs({'entities': [{'id': '1'}]})

    def test_blank_id(self):
        with pytest.raises(CatalogError, match='missing id'):
            load_catalogs({'destinations': [{'id': '', 'name': 'depot'}]})

    def test_variant_without_id(self):
        with pytest.raises(CatalogError, match=r'variants\[0\]'):
            load_catalogs({'variants': [{'entity_id': '3', 'length': 10}]})

    def test_non_mapping_entry(self):
        with pytest.raises(CatalogError, match='expected a mapping'):
            load_catalogs({'entities': ['cement']})

    def test_catalog_error_is_value_error(self):
        assert issubclass(CatalogError, ValueError)


class TestConfigureLogging:
    def test_level_from_config(self, monkeypatch):
        calls = []
        monkeypatch.setattr('logging.basicConfig', lambda **kw: calls.append(kw))
        configure_logging({'log_level': 'debug'})
        assert calls[0]['level'] == logging.DEBUG

    def test_unknown_level_falls_back(self, monkeypatch):
        calls = []
        monkeypatch.setattr('logging.basicConfig', lambda **kw: calls.append(kw))
        configure_logging({'log_level': 'chatty'})
        assert calls[0]['level'] == logging.WARNING


# ============================================================
# Formatting
# ============================================================

class TestFormatCurrency:
    @pytest.mark.parametrize('value, expected', [
        (0, '₹0'),
        (100, '₹100'),
        (1000, '₹1,000'),
        (12500, '₹12,500'),
        (123456, '₹1,23,456'),
        (1234567, '₹12,34,567'),
        (99.5, '₹100'),
        (2.4, '₹2'),
        (-1500, '-₹1,500'),
    ])
    def test_indian_grouping(self, value, expected):
        assert format_currency(value) == expected

    def test_custom_symbol(self):
        assert format_currency(1500, '$') == '$1,500'


class TestPreviewFields:
    def test_full_entry(self, parser, ui):
        fields = preview_fields(parser.parse(FULL_LINE), ui)
        assert fields == [
            ('Item', 'steel', True),
            ('Variant', '10x20', True),
            ('Qty', '50', True),
            ('Rate', '₹250', True),
            ('Total', '₹12,500', True),
            ('From', 'depot', True),
            ('To', 'factory', True),
            ('Carting', '₹200', True),
            ('Vehicle', 'truck', True),
            ('Reg No', 'MH12AB1234', True),
            ('Status', 'Pending', True),
        ]

    def test_unresolved_shows_raw_text(self, parser, ui):
        fields = dict((label, (value, ok)) for label, value, ok in
                      preview_fields(parser.parse("5 widgetz @10 from nowhere to depot"), ui))
        assert fields['Item'] == ('widgetz', False)
        assert fields['From'] == ('nowhere', False)
        assert fields['To'] == ('depot', True)

    def test_partial_entry(self, parser, ui):
        labels = [label for label, _, _ in preview_fields(parser.parse("30 cement"), ui)]
        assert labels == ['Item', 'Qty', 'Status']

    def test_empty_entry_still_shows_status(self, parser, ui):
        assert preview_fields(parser.parse(""), ui) == [('Status', 'Paid', True)]


# ============================================================
# Suggestions
# ============================================================

class TestActiveSuggestions:
    def test_complete_entry_has_none(self, parser):
        assert active_suggestions(parser.parse(FULL_LINE)) is None

    def test_entity_comes_first(self, parser):
        entry = parser.parse("5 xyzw @10 from nowhere land to factory")
        field, items = active_suggestions(entry)
        assert field == 'entity'
        assert [i.name for i in items] == ['cement', 'cement bag', 'steel', 'sand']

    def test_source_when_entity_resolved(self, parser):
        field, items = active_suggestions(parser.parse("5 sand @10 from nowhere land to factory"))
        assert field == 'source'
        assert len(items) == 5

    def test_destination(self, parser):
        field, _ = active_suggestions(parser.parse("5 sand @10 from depot to nowhere land"))
        assert field == 'destination'

    def test_skips_field_without_suggestions(self, config):
        config['entities'] = []
        p = QuickEntryParser(*load_catalogs(config))
        field, _ = active_suggestions(p.parse("5 sand @10 from nowhere land to factory"))
        assert field == 'source'


class TestReplaceSegment:
    def test_between_keywords(self):
        assert replace_segment("30 cement @100 from old to dest", "from", "to", "site A") == \
            "30 cement @100 from site A to dest"

    def test_to_end_of_line(self):
        assert replace_segment("30 cement @100 from old place", "from", None, "depot") == \
            "30 cement @100 from depot"

    def test_stops_before_status(self):
        assert replace_segment("30 cement @100 from old pending", "from", "to", "depot") == \
            "30 cement @100 from depot pending"

    def test_missing_start_keyword(self):
        assert replace_segment("30 cement @100", "from", "to", "depot") == "30 cement @100"

    def test_case_insensitive(self):
        assert replace_segment("5 sand @1 FROM old TO depot", "from", "to", "quarry") == \
            "5 sand @1 FROM quarry TO depot"


class TestApplySuggestion:
    def test_entity(self, parser):
        text = "5 xyzw @10 from depot to factory"
        new = apply_suggestion(text, parser.parse(text), 'entity', 'sand')
        assert new == "5 sand @10 from depot to factory"
        assert parser.parse(new).complete is True

    def test_entity_keeps_variant_text(self, parser):
        text = "5 xyzw @10 from depot to factory"
        entry = parser.parse(text)
        assert apply_suggestion("5 xyzw 10x20 @10", entry, 'entity', 'steel') == \
            "5 steel 10x20 @10"

    def test_entity_without_quantity_unchanged(self, parser):
        text = "xyzw @10"
        entry = parser.parse("5 xyzw @10")
        assert apply_suggestion(text, entry, 'entity', 'sand') == text

    def test_source(self, parser):
        text = "5 sand @10 from nowhere land to factory"
        assert apply_suggestion(text, parser.parse(text), 'source', 'depot') == \
            "5 sand @10 from depot to factory"

    def test_source_with_tomato(self, parser):
        text = "5 sand @1 from tomato farm to nowhere"
        assert apply_suggestion(text, parser.parse(text), 'source', 'depot') == \
            "5 sand @1 from depot to nowhere"

    def test_destination_before_carting(self, parser):
        text = "5 sand @10 from depot to nowhere land carting @20 truck"
        assert apply_suggestion(text, parser.parse(text), 'destination', 'factory') == \
            "5 sand @10 from depot to factory carting @20 truck"

    def test_destination_before_status(self, parser):
        text = "5 sand @10 from depot to nowhere land pending"
        new = apply_suggestion(text, parser.parse(text), 'destination', 'factory')
        assert new == "5 sand @10 from depot to factory pending"
        assert parser.parse(new).payment_status == 'pending'

    def test_destination_after_tomato(self, parser):
        text = "5 tomato @10 from depot to nowhere"
        assert apply_suggestion(text, parser.parse(text), 'destination', 'factory') == \
            "5 tomato @10 from depot to factory"

    def test_unknown_field(self, parser):
        with pytest.raises(ValueError, match='unknown suggestion field'):
            apply_suggestion("x", parser.parse("x"), 'rate', 'y')


# ============================================================
# Row export
# ============================================================

class TestEntryToRow:
    def test_full_row(self, parser):
        row = entry_to_row(parser.parse(FULL_LINE), TODAY)
        assert row == {
            'date': TODAY, 'item': 'steel', 'variant': '10x20 mm', 'qty': 50,
            'rate': 250, 'amount': 12500, 'source': 'depot',
            'destination': 'factory', 'transport_cost': 200,
            'vehicle_type': 'truck', 'reg_no': 'MH12AB1234',
            'payment_status': 'pending',
        }

    def test_row_keys_match_field_order(self, parser):
        assert list(entry_to_row(parser.parse(FULL_LINE), TODAY)) == FIELD_ORDER

    def test_defaults_to_today(self, parser):
        assert entry_to_row(parser.parse("30 cement"))['date'] == date.today()


class TestFormatRowsForClipboard:
    def test_full_row(self, parser):
        tsv = format_rows_for_clipboard([entry_to_row(parser.parse(FULL_LINE), TODAY)])
        assert tsv.split('\t') == [
            '2025-03-19', 'steel', '10x20 mm', '50', '250', '12500', 'depot',
            'factory', '200', 'truck', 'MH12AB1234', 'pending']

    def test_no_header(self, parser):
        tsv = format_rows_for_clipboard([entry_to_row(parser.parse(FULL_LINE), TODAY)])
        assert '\n' not in tsv

    def test_blank_cells_for_missing_values(self, parser):
        row = entry_to_row(parser.parse("30 cement @100 from site A to warehouse B"), TODAY)
        cells = format_rows_for_clipboard([row]).split('\t')
        assert cells[2] == ''     # variant
        assert cells[8] == ''     # transport_cost
        assert cells[9] == ''     # vehicle_type

    def test_whole_floats_show_int(self):
        assert format_rows_for_clipboard([{'qty': 4.0}], ['qty']) == '4'

    def test_fractions_preserved(self):
        assert format_rows_for_clipboard([{'qty': 4.5}], ['qty']) == '4.5'

    def test_multiple_rows(self):
        rows = [{'item': 'sand'}, {'item': 'steel'}]
        assert format_rows_for_clipboard(rows, ['item']) == 'sand\nsteel'

    def test_empty_rows_returns_empty_string(self):
        assert format_rows_for_clipboard([]) == ''


class TestCopyToClipboard:
    """Tests for copy_to_clipboard (system clipboard integration)."""

    def test_success_returns_true(self, monkeypatch):
        monkeypatch.setattr('shutil.which', lambda cmd: '/usr/bin/xclip' if cmd == 'xclip' else None)
        monkeypatch.setattr('subprocess.run', lambda cmd, input, check: None)
        assert copy_to_clipboard("test data") is True

    def test_no_tool_returns_false(self, monkeypatch):
        monkeypatch.setattr('shutil.which', lambda cmd: None)
        assert copy_to_clipboard("test data") is False

    def test_text_passed_as_utf8_stdin(self, monkeypatch):
        captured = {}

        def mock_run(cmd, input, check):
            captured['input'] = input
            captured['cmd'] = cmd
        monkeypatch.setattr('shutil.which', lambda cmd: '/usr/bin/pbcopy' if cmd == 'pbcopy' else None)
        monkeypatch.setattr('subprocess.run', mock_run)

        copy_to_clipboard("₹100\tsteel")
        assert captured['input'] == "₹100\tsteel".encode('utf-8')
        assert captured['cmd'] == ['pbcopy']

    def test_fallback_on_first_tool_failure(self, monkeypatch):
        import subprocess
        call_log = []

        def mock_which(cmd):
            if cmd in ('powershell.exe', 'xclip'):
                return f'/usr/bin/{cmd}'
            return None

        def mock_run(cmd, input, check):
            call_log.append(cmd[0])
            if cmd[0] == 'powershell.exe':
                raise subprocess.CalledProcessError(1, cmd)
        monkeypatch.setattr('shutil.which', mock_which)
        monkeypatch.setattr('subprocess.run', mock_run)

        assert copy_to_clipboard("data") is True
        assert call_log == ['powershell.exe', 'xclip']

    def test_all_tools_fail(self, monkeypatch):
        def mock_run(cmd, input, check):
            raise OSError('broken')
        monkeypatch.setattr('shutil.which', lambda cmd: f'/usr/bin/{cmd}')
        monkeypatch.setattr('subprocess.run', mock_run)
        assert copy_to_clipboard("data") is False
